from __future__ import annotations

from abc import ABC, abstractmethod

from reward_node.entities.scanner import ScannerPerformance


class PerformanceProvider(ABC):
    @abstractmethod
    def get_scanner_performance(self, epoch_id: str) -> list[ScannerPerformance]:
        raise NotImplementedError
