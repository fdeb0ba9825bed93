from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from reward_node.entities.distribution import DistributionResult, TransferResult


class DistributionRepository(ABC):
    """Append-only storage of distribution runs and their transfer results."""

    @abstractmethod
    def append(self, result: DistributionResult) -> None:
        raise NotImplementedError

    @abstractmethod
    def find_runs(self, epoch_id: str) -> list[DistributionResult]:
        """All runs for an epoch, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def paid_recipients(self, epoch_id: str) -> set[str]:
        """Recipient ids holding a SUCCESS result for the epoch."""
        raise NotImplementedError

    @abstractmethod
    def find_results(self, *, recipient_id: str) -> list[TransferResult]:
        raise NotImplementedError

    @abstractmethod
    def total_distributed(self) -> Decimal:
        raise NotImplementedError
