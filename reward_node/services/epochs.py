"""Epoch lifecycle: creation and forward-only PENDING → ACTIVE → CLOSED moves."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from reward_node.entities.epoch import EPOCH_TRANSITIONS, Epoch, EpochStatus
from reward_node.errors import ActiveEpochExists, EpochNotFound, InvalidEpochTransition
from reward_node.services.interfaces.epoch_repository import EpochRepository

DEFAULT_POOL = Decimal("1000")
DEFAULT_BASE_ALLOCATION = Decimal("200")


class EpochService:
    def __init__(self, epoch_repository: EpochRepository):
        self.epoch_repository = epoch_repository
        self.logger = logging.getLogger(__name__)

    def create(
        self,
        name: str,
        start_at: datetime,
        end_at: datetime,
        pool: Decimal = DEFAULT_POOL,
        base_allocation: Decimal = DEFAULT_BASE_ALLOCATION,
    ) -> Epoch:
        if Decimal(pool) < 0:
            raise ValueError(f"pool must be >= 0, got {pool}")
        if Decimal(base_allocation) <= 0:
            raise ValueError(f"base_allocation must be > 0, got {base_allocation}")

        epoch = Epoch(
            id=f"EPOCH_{uuid.uuid4().hex[:12]}",
            name=name,
            sequence=self.epoch_repository.next_sequence(),
            pool=Decimal(pool),
            base_allocation=Decimal(base_allocation),
            start_at=start_at,
            end_at=end_at,
        )
        self.epoch_repository.save(epoch)
        self.logger.info(
            "created epoch %s #%d (%s → %s, pool=%s)",
            epoch.id, epoch.sequence, start_at.isoformat(), end_at.isoformat(), epoch.pool,
        )
        return epoch

    def get(self, epoch_id: str) -> Epoch:
        epoch = self.epoch_repository.get(epoch_id)
        if epoch is None:
            raise EpochNotFound(epoch_id)
        return epoch

    def get_active(self) -> Epoch | None:
        return self.epoch_repository.get_active()

    def list_epochs(self, limit: int | None = None, status: EpochStatus | None = None) -> list[Epoch]:
        """Newest first."""
        return self.epoch_repository.find(status=status, limit=limit)

    def activate(self, epoch_id: str) -> Epoch:
        active = self.epoch_repository.get_active()
        if active is not None and active.id != epoch_id:
            raise ActiveEpochExists(active.id)
        return self._advance(epoch_id, EpochStatus.ACTIVE)

    def close(self, epoch_id: str) -> Epoch:
        return self._advance(epoch_id, EpochStatus.CLOSED)

    def tick(self, now: datetime | None = None) -> list[Epoch]:
        """Apply time-driven transitions; returns the epochs that changed."""
        now = now or datetime.now(timezone.utc)
        changed: list[Epoch] = []

        active = self.epoch_repository.get_active()
        if active is not None and now >= active.end_at:
            changed.append(self.close(active.id))
            active = None

        if active is None:
            pending = self.epoch_repository.find(status=EpochStatus.PENDING)
            due = sorted(
                (e for e in pending if e.start_at <= now < e.end_at),
                key=lambda e: (e.start_at, e.sequence),
            )
            if due:
                changed.append(self.activate(due[0].id))

        return changed

    def _advance(self, epoch_id: str, target: EpochStatus) -> Epoch:
        epoch = self.get(epoch_id)
        if EPOCH_TRANSITIONS.get(epoch.status) != target:
            raise InvalidEpochTransition(epoch_id, epoch.status, target)
        updated = self.epoch_repository.transition(epoch_id, epoch.status, target)
        self.logger.info("epoch %s %s → %s", epoch_id, epoch.status, target)
        return updated
