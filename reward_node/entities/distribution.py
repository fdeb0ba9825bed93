from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum


class TransferStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RunKind(StrEnum):
    DISTRIBUTE = "DISTRIBUTE"
    RETRY = "RETRY"


class RunStatus(StrEnum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_FAILURES = "COMPLETED_WITH_FAILURES"
    ABORTED = "ABORTED"


class AbortReason(StrEnum):
    NO_PARTICIPANTS = "NO_PARTICIPANTS"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    CONFLICT = "CONFLICT"
    TIMEOUT = "TIMEOUT"
    BALANCE_UNAVAILABLE = "BALANCE_UNAVAILABLE"


@dataclass(frozen=True)
class Allocation:
    """Computed (recipient, amount) pair. Never persisted on its own."""
    scanner_id: str
    name: str
    wallet_address: str
    rank: int
    amount: Decimal
    weight: Decimal
    win_rate: float
    total_calls: int
    avg_return: float = 0.0


@dataclass
class AllocationPlan:
    allocations: list[Allocation]
    pool: Decimal
    target: Decimal              # pool, or the available balance when capped
    total: Decimal
    residual: Decimal            # rounding remainder credited to rank 1
    capped: bool = False


@dataclass
class TransferResult:
    """Outcome of one payment. Appended, never updated.

    ``error`` is set only for FAILED results; a SKIPPED result explains
    itself in ``skip_reason``.
    """
    recipient_id: str
    recipient_address: str
    amount: Decimal
    status: TransferStatus
    tx_reference: str | None = None
    error: str | None = None
    attempts: int = 0
    skip_reason: str | None = None
    epoch_id: str | None = None
    run_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DistributionResult:
    run_id: str
    epoch_id: str
    kind: RunKind = RunKind.DISTRIBUTE
    status: RunStatus = RunStatus.NOT_STARTED
    abort_reason: AbortReason | None = None
    allocations: list[Allocation] = field(default_factory=list)
    results: list[TransferResult] = field(default_factory=list)
    capped: bool = False
    total_allocated: Decimal = Decimal("0")
    allocation_root: str | None = None
    detail: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def _count(self, status: TransferStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(TransferStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(TransferStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(TransferStatus.SKIPPED)

    @property
    def total_transferred(self) -> Decimal:
        return sum(
            (r.amount for r in self.results if r.status == TransferStatus.SUCCESS),
            Decimal("0"),
        )

    @property
    def attempted(self) -> bool:
        """False when the run never reached the transfer phase."""
        return bool(self.results)

    @property
    def discarded(self) -> bool:
        return self.status == RunStatus.ABORTED and self.abort_reason == AbortReason.CONFLICT


@dataclass
class TreasuryStatus:
    account: str
    total_balance: Decimal
    allocated: Decimal
    distributed: Decimal
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def available(self) -> Decimal:
        return self.total_balance - self.allocated


@dataclass(frozen=True)
class Reservation:
    id: str
    amount: Decimal
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RecipientHistory:
    scanner_id: str
    results: list[TransferResult] = field(default_factory=list)

    @property
    def total_earned(self) -> Decimal:
        return sum(
            (r.amount for r in self.results if r.status == TransferStatus.SUCCESS),
            Decimal("0"),
        )
