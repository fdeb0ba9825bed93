"""Epoch lifecycle table."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EpochRow(SQLModel, table=True):
    __tablename__ = "epochs"
    __table_args__ = (
        # At most one ACTIVE epoch.
        Index(
            "uq_epochs_single_active", "status", unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id: str = Field(primary_key=True)
    name: str
    sequence: int = Field(unique=True, index=True)

    pool: Decimal = Field(max_digits=38, decimal_places=18)
    base_allocation: Decimal = Field(max_digits=38, decimal_places=18)

    start_at: datetime
    end_at: datetime

    status: str = Field(default="PENDING", index=True)
    distributed: bool = Field(default=False, index=True)
    distribution_timestamp: Optional[datetime] = Field(default=None)
    version: int = Field(default=0)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
