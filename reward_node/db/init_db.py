"""Schema bootstrap for the reward node database.

Run ``python -m reward_node.db.init_db`` to upgrade to the latest
migration, or with ``--reset`` to drop every reward table first.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

from sqlalchemy import inspect, text
from sqlmodel import SQLModel

import reward_node.db.tables  # noqa: F401  registers table metadata
from reward_node.db.session import engine

# Dependents before parents so DROP never trips a foreign key.
RESET_ORDER = (
    "transfer_results",
    "distribution_runs",
    "epoch_participants",
    "scanners",
    "epochs",
    "alembic_version",
)

SENTINEL_TABLE = "epochs"


def tables_to_reset() -> list[str]:
    return list(RESET_ORDER)


def migrations_dir() -> Path | None:
    """``ALEMBIC_DIR`` if set and valid, else ``alembic/`` at the repo root."""
    candidates = []
    if os.getenv("ALEMBIC_DIR"):
        candidates.append(Path(os.environ["ALEMBIC_DIR"]))
    candidates.append(Path(__file__).resolve().parents[2] / "alembic")

    for candidate in candidates:
        if (candidate / "env.py").is_file() and (candidate / "versions").is_dir():
            return candidate
    return None


def upgrade(alembic_dir: Path) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config()
    cfg.set_main_option("script_location", str(alembic_dir))
    cfg.set_main_option("sqlalchemy.url", engine.url.render_as_string(hide_password=False))

    if engine.dialect.name == "postgresql":
        with engine.connect() as conn:
            conn.execute(text("SET lock_timeout = '30s'"))
            conn.commit()

    command.upgrade(cfg, "head")


def migrate() -> None:
    """Bring the schema to head. Never drops data."""
    alembic_dir = migrations_dir()
    if alembic_dir is None:
        print("➡️  no migrations shipped, creating reward tables from metadata")
        SQLModel.metadata.create_all(engine)
    else:
        print(f"➡️  upgrading reward schema from {alembic_dir}")
        try:
            upgrade(alembic_dir)
        except Exception as exc:
            print(f"⚠️  migration failed ({exc}); creating missing tables from metadata")
            SQLModel.metadata.create_all(engine)
    print("✅ reward schema ready")


def reset_db() -> None:
    """Drop every reward table and rebuild. Destroys all distribution history."""
    print(f"⚠️  dropping {', '.join(RESET_ORDER)}")
    with engine.begin() as conn:
        for table in RESET_ORDER:
            conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE"))
    migrate()


def auto_migrate() -> None:
    """First boot creates the schema; later boots only apply pending migrations."""
    if not inspect(engine).has_table(SENTINEL_TABLE):
        migrate()
        return

    alembic_dir = migrations_dir()
    if alembic_dir is None:
        return
    try:
        upgrade(alembic_dir)
    except Exception as exc:
        print(f"⚠️  pending migrations not applied: {exc}")


if __name__ == "__main__":
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)

    if "--reset" in sys.argv[1:]:
        reset_db()
    else:
        migrate()
