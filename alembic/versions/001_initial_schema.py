"""initial schema: epochs, scanners, distribution runs

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric(38, 18)


def upgrade() -> None:
    # ── Epochs ──
    op.create_table(
        "epochs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("pool", AMOUNT, nullable=False),
        sa.Column("base_allocation", AMOUNT, nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("distributed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("distribution_timestamp", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_epochs_sequence", "epochs", ["sequence"], unique=True)
    op.create_index("ix_epochs_status", "epochs", ["status"])
    op.create_index("ix_epochs_distributed", "epochs", ["distributed"])
    op.create_index("ix_epochs_created_at", "epochs", ["created_at"])
    op.create_index("ix_epochs_updated_at", "epochs", ["updated_at"])
    op.create_index(
        "uq_epochs_single_active", "epochs", ["status"], unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    # ── Scanners & participation ──
    op.create_table(
        "scanners",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("wallet_address", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_scanners_wallet_address", "scanners", ["wallet_address"])
    op.create_index("ix_scanners_created_at", "scanners", ["created_at"])

    op.create_table(
        "epoch_participants",
        sa.Column("epoch_id", sa.String(), sa.ForeignKey("epochs.id"), primary_key=True),
        sa.Column("scanner_id", sa.String(), sa.ForeignKey("scanners.id"), primary_key=True),
        sa.Column("total_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winning_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("win_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_return", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_epoch_participants_updated_at", "epoch_participants", ["updated_at"])

    # ── Distribution runs → transfer results (append-only) ──
    op.create_table(
        "distribution_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("epoch_id", sa.String(), sa.ForeignKey("epochs.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False, server_default="DISTRIBUTE"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("abort_reason", sa.String(), nullable=True),
        sa.Column("capped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_allocated", AMOUNT, nullable=False, server_default="0"),
        sa.Column("allocation_root", sa.String(), nullable=True),
        sa.Column("allocations_jsonb", postgresql.JSONB(), server_default="[]"),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_distribution_runs_epoch_id", "distribution_runs", ["epoch_id"])
    op.create_index("ix_distribution_runs_status", "distribution_runs", ["status"])
    op.create_index("ix_distribution_runs_started_at", "distribution_runs", ["started_at"])

    op.create_table(
        "transfer_results",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("run_id", sa.String(), sa.ForeignKey("distribution_runs.id"), nullable=False),
        sa.Column("epoch_id", sa.String(), nullable=False),
        sa.Column("recipient_id", sa.String(), nullable=False),
        sa.Column("recipient_address", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("tx_reference", sa.String(), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skip_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transfer_results_run_id", "transfer_results", ["run_id"])
    op.create_index("ix_transfer_results_epoch_id", "transfer_results", ["epoch_id"])
    op.create_index("ix_transfer_results_recipient_id", "transfer_results", ["recipient_id"])
    op.create_index("ix_transfer_results_status", "transfer_results", ["status"])
    op.create_index("ix_transfer_results_created_at", "transfer_results", ["created_at"])
    op.create_index(
        "ix_transfer_results_epoch_recipient", "transfer_results", ["epoch_id", "recipient_id"],
    )


def downgrade() -> None:
    op.drop_table("transfer_results")
    op.drop_table("distribution_runs")
    op.drop_table("epoch_participants")
    op.drop_table("scanners")
    op.drop_table("epochs")
