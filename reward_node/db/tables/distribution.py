"""Distribution runs and their append-only transfer results."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Column, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def jsonb_column() -> Column:
    return Column(JSON().with_variant(JSONB(), "postgresql"))


class DistributionRunRow(SQLModel, table=True):
    __tablename__ = "distribution_runs"

    id: str = Field(primary_key=True)
    epoch_id: str = Field(foreign_key="epochs.id", index=True)
    kind: str = Field(default="DISTRIBUTE")
    status: str = Field(index=True)
    abort_reason: Optional[str] = Field(default=None)

    capped: bool = Field(default=False)
    total_allocated: Decimal = Field(default=Decimal("0"), max_digits=38, decimal_places=18)
    allocation_root: Optional[str] = Field(default=None)
    allocations_jsonb: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=jsonb_column(),
    )
    detail: Optional[str] = Field(default=None)

    started_at: datetime = Field(default_factory=utc_now, index=True)
    finished_at: Optional[datetime] = Field(default=None)


class TransferResultRow(SQLModel, table=True):
    __tablename__ = "transfer_results"
    __table_args__ = (
        Index("ix_transfer_results_epoch_recipient", "epoch_id", "recipient_id"),
    )

    id: str = Field(primary_key=True)
    run_id: str = Field(foreign_key="distribution_runs.id", index=True)
    epoch_id: str = Field(index=True)
    recipient_id: str = Field(index=True)
    recipient_address: str
    position: int = Field(default=0)

    amount: Decimal = Field(max_digits=38, decimal_places=18)
    status: str = Field(index=True)
    tx_reference: Optional[str] = Field(default=None)
    error: Optional[str] = Field(default=None)
    attempts: int = Field(default=0)
    skip_reason: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, index=True)
