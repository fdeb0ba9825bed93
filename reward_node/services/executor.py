"""Distribution executor: pay a batch of allocations as independent transfers.

Transfers fan out over a bounded pool (``max_concurrency``); each blocking
provider call runs in a worker thread. Transient failures are retried with
exponential backoff, permanent ones are recorded immediately. Once every
transfer has resolved the epoch is finalised with a compare-and-set, and the
run is appended to the distribution repository whatever the outcome.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable

from reward_node.audit import allocation_root
from reward_node.entities.distribution import (
    AbortReason,
    Allocation,
    DistributionResult,
    RunKind,
    RunStatus,
    TransferResult,
    TransferStatus,
)
from reward_node.errors import (
    DistributionConflict,
    EpochNotFound,
    PermanentTransferError,
    TransientTransferError,
)
from reward_node.services.interfaces.distribution_repository import DistributionRepository
from reward_node.services.interfaces.epoch_repository import EpochRepository
from reward_node.services.interfaces.wallet import TransferProvider

ALREADY_PAID = "already paid in an earlier run"
ZERO_AMOUNT = "zero amount"
DEADLINE_EXCEEDED = "deadline exceeded before attempt"


def transfer_reference(epoch_id: str, recipient_id: str) -> str:
    """Stable per-(epoch, recipient) key handed to the wallet for deduplication."""
    return f"epoch:{epoch_id}:recipient:{recipient_id}"


class DistributionExecutor:
    def __init__(
        self,
        epoch_repository: EpochRepository,
        distribution_repository: DistributionRepository,
        transfer_provider: TransferProvider,
        *,
        max_concurrency: int = 5,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.epoch_repository = epoch_repository
        self.distribution_repository = distribution_repository
        self.transfer_provider = transfer_provider
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        epoch_id: str,
        allocations: list[Allocation],
        *,
        run_id: str | None = None,
        kind: RunKind = RunKind.DISTRIBUTE,
        deadline: float | None = None,
        capped: bool = False,
        finalize: bool = True,
    ) -> DistributionResult:
        """Attempt every allocation and record the run.

        ``deadline`` is a ``clock()`` value after which no new attempt starts.
        ``finalize`` marks the epoch distributed once all transfers resolve;
        operator retries of an already-distributed epoch pass ``False``.
        """
        result = DistributionResult(
            run_id=run_id or str(uuid.uuid4()),
            epoch_id=epoch_id,
            kind=kind,
            status=RunStatus.IN_PROGRESS,
            allocations=list(allocations),
            capped=capped,
            total_allocated=sum((a.amount for a in allocations), Decimal("0")),
            allocation_root=allocation_root(epoch_id, allocations),
        )

        if finalize:
            epoch = self.epoch_repository.get(epoch_id)
            if epoch is None:
                raise EpochNotFound(epoch_id)
            if epoch.distributed:
                raise DistributionConflict(epoch_id)

        paid = self.distribution_repository.paid_recipients(epoch_id)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        self.logger.info(
            "run=%s epoch=%s executing %d transfers (total=%s, concurrency=%d)",
            result.run_id, epoch_id, len(allocations), result.total_allocated, self.max_concurrency,
        )

        async def resolve(allocation: Allocation) -> tuple[TransferResult, bool]:
            if allocation.scanner_id in paid:
                return self._skipped(result, allocation, ALREADY_PAID), False
            if allocation.amount <= 0:
                return self._skipped(result, allocation, ZERO_AMOUNT), False
            return await self._pay(result, allocation, semaphore, deadline)

        outcomes = await asyncio.gather(*(resolve(a) for a in allocations))
        result.results = [transfer for transfer, _ in outcomes]
        timed_out = any(hit for _, hit in outcomes)

        try:
            self._finalize(result, timed_out=timed_out, finalize=finalize)
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self.distribution_repository.append(result)

        self.logger.info(
            "run=%s epoch=%s %s%s: %d succeeded, %d failed, %d skipped (transferred=%s)",
            result.run_id, epoch_id, result.status,
            f"/{result.abort_reason}" if result.abort_reason else "",
            result.succeeded, result.failed, result.skipped, result.total_transferred,
        )
        return result

    def _finalize(self, result: DistributionResult, *, timed_out: bool, finalize: bool) -> None:
        if timed_out:
            result.status = RunStatus.ABORTED
            result.abort_reason = AbortReason.TIMEOUT
            result.detail = "deadline exceeded; unattempted transfers can be resumed"
            return

        if finalize:
            try:
                self.epoch_repository.mark_distributed(result.epoch_id, datetime.now(timezone.utc))
            except DistributionConflict:
                self.logger.warning(
                    "run=%s epoch=%s lost the distribution race; discarding run",
                    result.run_id, result.epoch_id,
                )
                result.status = RunStatus.ABORTED
                result.abort_reason = AbortReason.CONFLICT
                result.detail = "epoch was marked distributed by another run"
                return
            except Exception as exc:
                result.detail = f"finalization failed: {exc}"
                raise

        result.status = RunStatus.COMPLETED_WITH_FAILURES if result.failed else RunStatus.COMPLETED

    async def _pay(
        self,
        run: DistributionResult,
        allocation: Allocation,
        semaphore: asyncio.Semaphore,
        deadline: float | None,
    ) -> tuple[TransferResult, bool]:
        reference = transfer_reference(run.epoch_id, allocation.scanner_id)
        attempts = 0
        last_error = ""

        async with semaphore:
            while True:
                if deadline is not None and self._clock() >= deadline:
                    if attempts == 0:
                        return self._skipped(run, allocation, DEADLINE_EXCEEDED), True
                    return self._failed(
                        run, allocation, f"{last_error} (deadline exceeded before retry)", attempts,
                    ), True

                attempts += 1
                try:
                    tx_reference = await asyncio.to_thread(
                        self.transfer_provider.transfer,
                        allocation.wallet_address,
                        allocation.amount,
                        reference=reference,
                    )
                except TransientTransferError as exc:
                    last_error = str(exc) or type(exc).__name__
                    if attempts > self.max_retries:
                        self.logger.warning(
                            "transfer to %s failed after %d attempts: %s",
                            allocation.scanner_id, attempts, last_error,
                        )
                        return self._failed(run, allocation, last_error, attempts), False
                    delay = self.backoff_seconds * (self.backoff_multiplier ** (attempts - 1))
                    self.logger.info(
                        "transient transfer error for %s (attempt %d), retrying in %.2fs: %s",
                        allocation.scanner_id, attempts, delay, last_error,
                    )
                    await self._sleep(delay)
                    continue
                except PermanentTransferError as exc:
                    self.logger.warning("transfer to %s rejected: %s", allocation.scanner_id, exc)
                    return self._failed(run, allocation, str(exc) or type(exc).__name__, attempts), False
                except Exception as exc:
                    # Outcome unknown; not retried so a sent payment is never repeated.
                    self.logger.exception("unexpected error paying %s", allocation.scanner_id)
                    return self._failed(run, allocation, f"unexpected error: {exc}", attempts), False

                if not tx_reference:
                    return self._failed(run, allocation, "empty transaction reference", attempts), False

                self.logger.info(
                    "paid %s to %s (%s) tx=%s",
                    allocation.amount, allocation.scanner_id, allocation.wallet_address, tx_reference,
                )
                return TransferResult(
                    recipient_id=allocation.scanner_id,
                    recipient_address=allocation.wallet_address,
                    amount=allocation.amount,
                    status=TransferStatus.SUCCESS,
                    tx_reference=str(tx_reference),
                    attempts=attempts,
                    epoch_id=run.epoch_id,
                    run_id=run.run_id,
                ), False

    @staticmethod
    def _failed(run: DistributionResult, allocation: Allocation, error: str, attempts: int) -> TransferResult:
        return TransferResult(
            recipient_id=allocation.scanner_id,
            recipient_address=allocation.wallet_address,
            amount=allocation.amount,
            status=TransferStatus.FAILED,
            error=error,
            attempts=attempts,
            epoch_id=run.epoch_id,
            run_id=run.run_id,
        )

    @staticmethod
    def _skipped(run: DistributionResult, allocation: Allocation, reason: str) -> TransferResult:
        return TransferResult(
            recipient_id=allocation.scanner_id,
            recipient_address=allocation.wallet_address,
            amount=allocation.amount,
            status=TransferStatus.SKIPPED,
            skip_reason=reason,
            epoch_id=run.epoch_id,
            run_id=run.run_id,
        )
