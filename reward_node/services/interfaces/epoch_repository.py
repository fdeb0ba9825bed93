from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from reward_node.entities.epoch import Epoch, EpochStatus


class EpochRepository(ABC):
    @abstractmethod
    def get(self, epoch_id: str) -> Epoch | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, epoch: Epoch) -> None:
        raise NotImplementedError

    @abstractmethod
    def find(
        self,
        *,
        status: EpochStatus | None = None,
        distributed: bool | None = None,
        limit: int | None = None,
    ) -> list[Epoch]:
        raise NotImplementedError

    @abstractmethod
    def get_active(self) -> Epoch | None:
        raise NotImplementedError

    @abstractmethod
    def next_sequence(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def transition(self, epoch_id: str, from_status: EpochStatus, to_status: EpochStatus) -> Epoch:
        """Move an epoch between statuses only if it is still in ``from_status``."""
        raise NotImplementedError

    @abstractmethod
    def mark_distributed(self, epoch_id: str, timestamp: datetime) -> Epoch:
        """Compare-and-set ``distributed`` from false to true.

        Raises ``DistributionConflict`` when the flag is already set.
        """
        raise NotImplementedError
