"""Distribution engine: rank → allocate → reserve → execute for one epoch."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from reward_node.audit import ProofStep, allocation_leaves, generate_proof
from reward_node.entities.distribution import (
    AbortReason,
    Allocation,
    AllocationPlan,
    DistributionResult,
    RecipientHistory,
    RunKind,
    RunStatus,
    TransferResult,
    TransferStatus,
    TreasuryStatus,
)
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import (
    AllocationNotFound,
    BalanceUnavailable,
    DistributionConflict,
    DistributionNotFound,
    EpochNotClosed,
    EpochNotFound,
    InsufficientFunds,
    NoParticipants,
)
from reward_node.services.allocation import AllocationCalculator
from reward_node.services.executor import DistributionExecutor
from reward_node.services.interfaces.distribution_repository import DistributionRepository
from reward_node.services.interfaces.epoch_repository import EpochRepository
from reward_node.services.ranking import RankingService
from reward_node.services.treasury import TreasuryLedger


@dataclass
class AllocationProof:
    epoch_id: str
    scanner_id: str
    leaf_hash: str
    allocation_root: str
    path: list[ProofStep]


class DistributionEngine:
    def __init__(
        self,
        epoch_repository: EpochRepository,
        distribution_repository: DistributionRepository,
        ranking_service: RankingService,
        allocation_calculator: AllocationCalculator,
        treasury_ledger: TreasuryLedger,
        executor: DistributionExecutor,
        *,
        deadline_seconds: float | None = 300.0,
        cap_to_available: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.epoch_repository = epoch_repository
        self.distribution_repository = distribution_repository
        self.ranking_service = ranking_service
        self.allocation_calculator = allocation_calculator
        self.treasury_ledger = treasury_ledger
        self.executor = executor
        self.deadline_seconds = deadline_seconds
        self.cap_to_available = cap_to_available
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    # ── distribute ──

    async def distribute(self, epoch_id: str) -> DistributionResult:
        epoch = self._load(epoch_id)
        if epoch.distributed:
            self.logger.info(
                "epoch=%s already distributed at %s, returning recorded result",
                epoch_id, epoch.distribution_timestamp,
            )
            return self.get_distribution_history(epoch_id)
        if epoch.status != EpochStatus.CLOSED:
            raise EpochNotClosed(epoch_id, epoch.status)

        run_id = str(uuid.uuid4())
        deadline = self._deadline()
        paid = self.distribution_repository.paid_recipients(epoch_id)

        recorded = self._recorded_snapshot(epoch_id)
        if recorded is not None:
            allocations, capped = recorded.allocations, recorded.capped
            self.logger.info(
                "epoch=%s resuming run %s with its recorded allocations (%d already paid)",
                epoch_id, recorded.run_id, len(paid),
            )
        else:
            try:
                available = None
                if self.cap_to_available:
                    available = await asyncio.to_thread(self.treasury_ledger.available)
                plan = self._plan(epoch, available=available)
            except NoParticipants as exc:
                self.logger.warning("epoch=%s aborted: %s", epoch_id, exc)
                return self._aborted(run_id, epoch_id, AbortReason.NO_PARTICIPANTS, str(exc))
            except BalanceUnavailable as exc:
                self.logger.warning("epoch=%s aborted: %s", epoch_id, exc)
                return self._aborted(run_id, epoch_id, AbortReason.BALANCE_UNAVAILABLE, str(exc))
            allocations, capped = plan.allocations, plan.capped

        outstanding = sum(
            (a.amount for a in allocations if a.scanner_id not in paid), Decimal("0"),
        )

        try:
            reservation = await asyncio.to_thread(self.treasury_ledger.reserve, outstanding)
        except InsufficientFunds as exc:
            self.logger.warning("epoch=%s aborted: %s", epoch_id, exc)
            return self._aborted(run_id, epoch_id, AbortReason.INSUFFICIENT_FUNDS, str(exc), allocations)
        except BalanceUnavailable as exc:
            self.logger.warning("epoch=%s aborted: %s", epoch_id, exc)
            return self._aborted(run_id, epoch_id, AbortReason.BALANCE_UNAVAILABLE, str(exc), allocations)

        try:
            return await self.executor.execute(
                epoch_id,
                allocations,
                run_id=run_id,
                kind=RunKind.DISTRIBUTE,
                deadline=deadline,
                capped=capped,
            )
        except DistributionConflict as exc:
            self.logger.warning("epoch=%s run=%s discarded before transfers: %s", epoch_id, run_id, exc)
            return self._aborted(run_id, epoch_id, AbortReason.CONFLICT, str(exc), allocations)
        finally:
            self.treasury_ledger.release(reservation)

    async def retry_failed(self, epoch_id: str) -> DistributionResult:
        """Re-attempt only recipients of a distributed epoch that were never paid."""
        epoch = self._load(epoch_id)
        if not epoch.distributed:
            raise DistributionNotFound(epoch_id)

        history = self.get_distribution_history(epoch_id)
        paid = self.distribution_repository.paid_recipients(epoch_id)
        outstanding = [a for a in history.allocations if a.scanner_id not in paid and a.amount > 0]

        run_id = str(uuid.uuid4())
        if not outstanding:
            self.logger.info("epoch=%s retry requested but every recipient is paid", epoch_id)
            return DistributionResult(
                run_id=run_id,
                epoch_id=epoch_id,
                kind=RunKind.RETRY,
                status=RunStatus.COMPLETED,
                detail="nothing to retry",
                finished_at=datetime.now(timezone.utc),
            )

        amount = sum((a.amount for a in outstanding), Decimal("0"))
        try:
            reservation = await asyncio.to_thread(self.treasury_ledger.reserve, amount)
        except InsufficientFunds as exc:
            self.logger.warning("epoch=%s retry aborted: %s", epoch_id, exc)
            return self._aborted(
                run_id, epoch_id, AbortReason.INSUFFICIENT_FUNDS, str(exc), outstanding, kind=RunKind.RETRY,
            )
        except BalanceUnavailable as exc:
            self.logger.warning("epoch=%s retry aborted: %s", epoch_id, exc)
            return self._aborted(
                run_id, epoch_id, AbortReason.BALANCE_UNAVAILABLE, str(exc), outstanding, kind=RunKind.RETRY,
            )

        try:
            return await self.executor.execute(
                epoch_id,
                outstanding,
                run_id=run_id,
                kind=RunKind.RETRY,
                deadline=self._deadline(),
                finalize=False,
            )
        finally:
            self.treasury_ledger.release(reservation)

    # ── read side ──

    def preview(self, epoch_id: str) -> AllocationPlan:
        """Allocations computed from current performance; nothing is reserved or sent."""
        epoch = self._load(epoch_id)
        available = self.treasury_ledger.available() if self.cap_to_available else None
        return self._plan(epoch, available=available)

    def get_treasury_status(self) -> TreasuryStatus:
        return self.treasury_ledger.status()

    def get_distribution_history(self, epoch_id: str) -> DistributionResult:
        """The epoch's distribution as recorded, with later retries folded in.

        Discarded runs (lost a distribution race) are ignored. The latest
        DISTRIBUTE run is the base; each recipient shows its most decisive
        outcome across runs (a SUCCESS anywhere wins, a skip never hides a
        real attempt).
        """
        runs = [r for r in self.distribution_repository.find_runs(epoch_id) if not r.discarded]
        if not runs:
            raise DistributionNotFound(epoch_id)

        base = next((r for r in reversed(runs) if r.kind == RunKind.DISTRIBUTE), runs[-1])
        if len(runs) == 1:
            return base

        outcomes: dict[str, TransferResult] = {}
        for run in runs:
            for transfer in run.results:
                current = outcomes.get(transfer.recipient_id)
                if current is not None and current.status == TransferStatus.SUCCESS:
                    continue
                if current is not None and transfer.status == TransferStatus.SKIPPED:
                    continue
                outcomes[transfer.recipient_id] = transfer

        merged = replace(
            base,
            results=[outcomes[a.scanner_id] for a in base.allocations if a.scanner_id in outcomes],
        )
        if merged.status in (RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_FAILURES):
            merged.status = (
                RunStatus.COMPLETED_WITH_FAILURES if merged.failed else RunStatus.COMPLETED
            )
        return merged

    def list_runs(self, epoch_id: str) -> list[DistributionResult]:
        return self.distribution_repository.find_runs(epoch_id)

    def recipient_history(self, scanner_id: str) -> RecipientHistory:
        return RecipientHistory(
            scanner_id=scanner_id,
            results=self.distribution_repository.find_results(recipient_id=scanner_id),
        )

    def allocation_proof(self, epoch_id: str, scanner_id: str) -> AllocationProof:
        history = self.get_distribution_history(epoch_id)
        ordered = sorted(history.allocations, key=lambda a: a.rank)
        index = next((i for i, a in enumerate(ordered) if a.scanner_id == scanner_id), None)
        if index is None or history.allocation_root is None:
            raise AllocationNotFound(epoch_id, scanner_id)

        leaves = allocation_leaves(epoch_id, ordered)
        return AllocationProof(
            epoch_id=epoch_id,
            scanner_id=scanner_id,
            leaf_hash=leaves[index],
            allocation_root=history.allocation_root,
            path=generate_proof(leaves, index),
        )

    # ── helpers ──

    def _load(self, epoch_id: str) -> Epoch:
        epoch = self.epoch_repository.get(epoch_id)
        if epoch is None:
            raise EpochNotFound(epoch_id)
        return epoch

    def _deadline(self) -> float | None:
        if self.deadline_seconds is None:
            return None
        return self._clock() + self.deadline_seconds

    def _recorded_snapshot(self, epoch_id: str) -> DistributionResult | None:
        """Latest recorded DISTRIBUTE run; its allocations are fixed for the epoch."""
        for run in reversed(self.distribution_repository.find_runs(epoch_id)):
            if run.kind == RunKind.DISTRIBUTE and not run.discarded and run.allocations:
                return run
        return None

    def _plan(self, epoch: Epoch, *, available: Decimal | None = None) -> AllocationPlan:
        ranked = self.ranking_service.rank(epoch.id)
        plan = self.allocation_calculator.calculate(
            ranked, epoch.pool, epoch.base_allocation, available=available,
        )
        if plan.capped:
            self.logger.warning(
                "epoch=%s allocation capped to available balance %s (pool %s)",
                epoch.id, plan.target, plan.pool,
            )
        return plan

    @staticmethod
    def _aborted(
        run_id: str,
        epoch_id: str,
        reason: AbortReason,
        detail: str,
        allocations: list[Allocation] | None = None,
        *,
        kind: RunKind = RunKind.DISTRIBUTE,
    ) -> DistributionResult:
        allocations = list(allocations or [])
        return DistributionResult(
            run_id=run_id,
            epoch_id=epoch_id,
            kind=kind,
            status=RunStatus.ABORTED,
            abort_reason=reason,
            allocations=allocations,
            total_allocated=sum((a.amount for a in allocations), Decimal("0")),
            detail=detail,
            finished_at=datetime.now(timezone.utc),
        )
