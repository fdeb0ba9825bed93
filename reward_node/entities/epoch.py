from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum


class EpochStatus(StrEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


# Forward-only lifecycle; each status may only move to the one listed.
EPOCH_TRANSITIONS: dict[EpochStatus, EpochStatus] = {
    EpochStatus.PENDING: EpochStatus.ACTIVE,
    EpochStatus.ACTIVE: EpochStatus.CLOSED,
}


@dataclass
class Epoch:
    """A scored competition window whose pool is paid out at most once."""
    id: str
    name: str
    sequence: int
    pool: Decimal
    base_allocation: Decimal
    start_at: datetime
    end_at: datetime
    status: EpochStatus = EpochStatus.PENDING
    distributed: bool = False
    distribution_timestamp: datetime | None = None
    version: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.start_at >= self.end_at:
            raise ValueError(
                f"epoch {self.id}: start_at {self.start_at.isoformat()} "
                f"must be before end_at {self.end_at.isoformat()}"
            )
        if self.distributed and self.distribution_timestamp is None:
            raise ValueError(f"epoch {self.id}: distributed without distribution_timestamp")

    @property
    def is_open(self) -> bool:
        return self.status == EpochStatus.ACTIVE

    def window_contains(self, moment: datetime) -> bool:
        return self.start_at <= moment < self.end_at
