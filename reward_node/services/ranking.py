"""Ranking service: order an epoch's scanners for reward allocation."""
from __future__ import annotations

import logging

from reward_node.entities.scanner import ScannerPerformance
from reward_node.errors import NoParticipants
from reward_node.services.interfaces.performance_provider import PerformanceProvider


def ranking_key(performance: ScannerPerformance) -> tuple[float, int, str]:
    # win rate desc, then call volume desc, then id for a total order
    return (-performance.win_rate, -performance.total_calls, performance.scanner_id)


class RankingService:
    def __init__(self, performance_provider: PerformanceProvider):
        self.performance_provider = performance_provider
        self.logger = logging.getLogger(__name__)

    def rank(self, epoch_id: str) -> list[ScannerPerformance]:
        performances = self.performance_provider.get_scanner_performance(epoch_id)

        participants = [p for p in performances if p.participated]
        excluded = len(performances) - len(participants)
        if excluded:
            self.logger.info("epoch=%s excluded %d scanners with no calls", epoch_id, excluded)

        if not participants:
            raise NoParticipants(epoch_id)

        ranked = sorted(participants, key=ranking_key)
        self.logger.info(
            "epoch=%s ranked %d scanners (leader=%s win_rate=%.4f calls=%d)",
            epoch_id, len(ranked), ranked[0].scanner_id, ranked[0].win_rate, ranked[0].total_calls,
        )
        return ranked
