"""Wake the distribution worker when an epoch closes.

The API publishes ``epoch_closed`` with the epoch id as payload; the worker
listens between polling intervals so a manual close is paid out promptly.
"""
from __future__ import annotations

import asyncio
import select as _select
from typing import Any

import psycopg2

from reward_node.db.session import database_url

EPOCH_CLOSED_CHANNEL = "epoch_closed"


def notify(channel: str = EPOCH_CLOSED_CHANNEL, payload: str = "", connection: Any = None) -> None:
    """Publish on ``channel``. A passed-in connection is left open."""
    conn = connection if connection is not None else _raw_connection()
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute("SELECT pg_notify(%s, %s)", (channel, payload))
    finally:
        if connection is None:
            conn.close()


async def wait_for_notify(channel: str = EPOCH_CLOSED_CHANNEL, timeout: float = 30.0) -> bool:
    """True once a notification arrives on ``channel``, False after ``timeout``."""
    conn = _raw_connection()
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute(f"LISTEN {channel}")
        return await asyncio.to_thread(_poll_notify, conn, timeout)
    finally:
        conn.close()


def _poll_notify(conn: Any, timeout: float) -> bool:
    readable, _, _ = _select.select([conn], [], [], timeout)
    if not readable:
        return False
    conn.poll()
    return len(conn.notifies) > 0


def _raw_connection():
    # psycopg2 wants a libpq DSN, not the SQLAlchemy dialect URL.
    return psycopg2.connect(database_url().replace("postgresql+psycopg2://", "postgresql://", 1))
