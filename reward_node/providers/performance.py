from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlmodel import Session, select

from reward_node.db.tables import EpochParticipantRow, ScannerRow
from reward_node.entities.scanner import ScannerPerformance
from reward_node.services.interfaces.performance_provider import PerformanceProvider

logger = logging.getLogger(__name__)


class DBPerformanceProvider(PerformanceProvider):
    """Reads per-epoch statistics from ``epoch_participants`` joined to ``scanners``."""

    def __init__(self, session: Session):
        self._session = session

    def get_scanner_performance(self, epoch_id: str) -> list[ScannerPerformance]:
        rows = self._session.exec(
            select(EpochParticipantRow, ScannerRow)
            .join(ScannerRow, ScannerRow.id == EpochParticipantRow.scanner_id)
            .where(EpochParticipantRow.epoch_id == epoch_id)
        ).all()

        return _parse_records(
            (
                {
                    "scanner_id": scanner.id,
                    "name": scanner.name,
                    "wallet_address": scanner.wallet_address,
                    "total_calls": participant.total_calls,
                    "win_rate": participant.win_rate,
                    "avg_return": participant.avg_return,
                }
                for participant, scanner in rows
            ),
            epoch_id,
        )

    def rollback(self) -> None:
        self._session.rollback()


class StaticPerformanceProvider(PerformanceProvider):
    """Fixed per-epoch records, for tests and offline dry runs."""

    def __init__(self, records: Mapping[str, Iterable[Mapping[str, Any] | ScannerPerformance]] | None = None):
        self._records: dict[str, list[Mapping[str, Any] | ScannerPerformance]] = {
            epoch_id: list(items) for epoch_id, items in (records or {}).items()
        }

    def set(self, epoch_id: str, records: Iterable[Mapping[str, Any] | ScannerPerformance]) -> None:
        self._records[epoch_id] = list(records)

    def get_scanner_performance(self, epoch_id: str) -> list[ScannerPerformance]:
        items = self._records.get(epoch_id, [])
        ready = [item for item in items if isinstance(item, ScannerPerformance)]
        raw = [item for item in items if not isinstance(item, ScannerPerformance)]
        return ready + _parse_records(raw, epoch_id)


def _parse_records(records: Iterable[Mapping[str, Any]], epoch_id: str) -> list[ScannerPerformance]:
    parsed: list[ScannerPerformance] = []
    for record in records:
        try:
            parsed.append(ScannerPerformance.from_record(record))
        except (TypeError, ValueError) as exc:
            logger.warning("epoch=%s skipping invalid performance record: %s", epoch_id, exc)
    return parsed
