"""Scanners and their per-epoch participation.

Performance statistics hang off ``epoch_participants``, whose key carries
foreign keys to both ``epochs`` and ``scanners``: a scanner cannot hold
ranked statistics without a reward-eligible scanner record.
"""
from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScannerRow(SQLModel, table=True):
    __tablename__ = "scanners"

    id: str = Field(primary_key=True)
    name: str
    wallet_address: str = Field(index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)


class EpochParticipantRow(SQLModel, table=True):
    __tablename__ = "epoch_participants"

    epoch_id: str = Field(foreign_key="epochs.id", primary_key=True)
    scanner_id: str = Field(foreign_key="scanners.id", primary_key=True)

    total_calls: int = Field(default=0)
    winning_calls: int = Field(default=0)
    win_rate: float = Field(default=0.0)
    avg_return: float = Field(default=0.0)

    updated_at: datetime = Field(default_factory=utc_now, index=True)
