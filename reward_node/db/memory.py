"""Process-local repositories for tests and single-process dev runs.

Both honour the same contracts as the SQL repositories, including the
compare-and-set on ``mark_distributed`` and the single-ACTIVE rule.
"""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from reward_node.entities.distribution import DistributionResult, TransferResult, TransferStatus
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import (
    ActiveEpochExists,
    DistributionConflict,
    EpochNotFound,
    InvalidEpochTransition,
)
from reward_node.services.interfaces.distribution_repository import DistributionRepository
from reward_node.services.interfaces.epoch_repository import EpochRepository


class InMemoryEpochRepository(EpochRepository):
    def __init__(self, epochs: list[Epoch] | None = None):
        self._lock = threading.Lock()
        self._epochs: dict[str, Epoch] = {}
        for epoch in epochs or []:
            self._epochs[epoch.id] = replace(epoch)

    def get(self, epoch_id: str) -> Epoch | None:
        with self._lock:
            epoch = self._epochs.get(epoch_id)
            return replace(epoch) if epoch else None

    def save(self, epoch: Epoch) -> None:
        with self._lock:
            existing = self._epochs.get(epoch.id)
            if existing is None:
                self._epochs[epoch.id] = replace(epoch)
                return
            self._epochs[epoch.id] = replace(
                existing,
                name=epoch.name,
                sequence=epoch.sequence,
                pool=epoch.pool,
                base_allocation=epoch.base_allocation,
                start_at=epoch.start_at,
                end_at=epoch.end_at,
                updated_at=datetime.now(timezone.utc),
            )

    def find(
        self,
        *,
        status: EpochStatus | None = None,
        distributed: bool | None = None,
        limit: int | None = None,
    ) -> list[Epoch]:
        with self._lock:
            epochs = [replace(e) for e in self._epochs.values()]
        if status is not None:
            epochs = [e for e in epochs if e.status == status]
        if distributed is not None:
            epochs = [e for e in epochs if e.distributed == distributed]
        epochs.sort(key=lambda e: e.sequence, reverse=True)
        if limit is not None:
            epochs = epochs[:max(1, int(limit))]
        return epochs

    def get_active(self) -> Epoch | None:
        active = self.find(status=EpochStatus.ACTIVE)
        return active[0] if active else None

    def next_sequence(self) -> int:
        with self._lock:
            return max((e.sequence for e in self._epochs.values()), default=0) + 1

    def transition(self, epoch_id: str, from_status: EpochStatus, to_status: EpochStatus) -> Epoch:
        with self._lock:
            epoch = self._epochs.get(epoch_id)
            if epoch is None:
                raise EpochNotFound(epoch_id)
            if epoch.status != from_status:
                raise InvalidEpochTransition(epoch_id, epoch.status, to_status)
            if to_status == EpochStatus.ACTIVE:
                for other in self._epochs.values():
                    if other.id != epoch_id and other.status == EpochStatus.ACTIVE:
                        raise ActiveEpochExists(other.id)
            updated = replace(
                epoch,
                status=to_status,
                version=epoch.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._epochs[epoch_id] = updated
            return replace(updated)

    def mark_distributed(self, epoch_id: str, timestamp: datetime) -> Epoch:
        with self._lock:
            epoch = self._epochs.get(epoch_id)
            if epoch is None:
                raise EpochNotFound(epoch_id)
            if epoch.distributed:
                raise DistributionConflict(epoch_id)
            updated = replace(
                epoch,
                distributed=True,
                distribution_timestamp=timestamp,
                version=epoch.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            self._epochs[epoch_id] = updated
            return replace(updated)


class InMemoryDistributionRepository(DistributionRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._runs: list[DistributionResult] = []

    def append(self, result: DistributionResult) -> None:
        with self._lock:
            self._runs.append(replace(
                result,
                allocations=list(result.allocations),
                results=[replace(r, epoch_id=result.epoch_id, run_id=result.run_id) for r in result.results],
            ))

    def find_runs(self, epoch_id: str) -> list[DistributionResult]:
        with self._lock:
            return [
                replace(run, allocations=list(run.allocations), results=list(run.results))
                for run in self._runs
                if run.epoch_id == epoch_id
            ]

    def paid_recipients(self, epoch_id: str) -> set[str]:
        with self._lock:
            return {
                r.recipient_id
                for run in self._runs if run.epoch_id == epoch_id
                for r in run.results if r.status == TransferStatus.SUCCESS
            }

    def find_results(self, *, recipient_id: str) -> list[TransferResult]:
        with self._lock:
            results = [
                r for run in self._runs for r in run.results if r.recipient_id == recipient_id
            ]
        return sorted(results, key=lambda r: r.created_at, reverse=True)

    def total_distributed(self) -> Decimal:
        with self._lock:
            return sum(
                (r.amount for run in self._runs for r in run.results if r.status == TransferStatus.SUCCESS),
                Decimal("0"),
            )
