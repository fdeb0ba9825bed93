from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class ScannerPerformance:
    """Per-epoch performance of one scanner, as reported by the stats pipeline."""
    scanner_id: str
    name: str
    wallet_address: str
    total_calls: int
    win_rate: float
    avg_return: float = 0.0  # conviction metric, carried into allocations

    def __post_init__(self) -> None:
        if not self.scanner_id:
            raise ValueError("scanner_id is required")
        if not self.wallet_address:
            raise ValueError(f"scanner {self.scanner_id}: wallet_address is required")
        if self.total_calls < 0:
            raise ValueError(f"scanner {self.scanner_id}: total_calls must be >= 0")
        if not 0.0 <= self.win_rate <= 1.0:
            raise ValueError(f"scanner {self.scanner_id}: win_rate {self.win_rate} outside [0, 1]")

    @property
    def participated(self) -> bool:
        return self.total_calls > 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ScannerPerformance":
        """Build from a loosely-shaped stats record.

        Missing-field policy:
        - ``total_calls`` missing → 0, so the scanner is excluded from ranking
        - ``win_rate`` / ``avg_return`` missing → 0.0
        - ``name`` missing → the scanner id
        - ``scanner_id`` / ``wallet_address`` missing → ValueError
        """
        scanner_id = record.get("scanner_id")
        wallet_address = record.get("wallet_address")
        if not scanner_id:
            raise ValueError(f"performance record without scanner_id: {dict(record)!r}")
        if not wallet_address:
            raise ValueError(f"scanner {scanner_id}: performance record without wallet_address")

        return cls(
            scanner_id=str(scanner_id),
            name=str(record.get("name") or scanner_id),
            wallet_address=str(wallet_address),
            total_calls=int(record.get("total_calls") or 0),
            win_rate=float(record.get("win_rate") or 0.0),
            avg_return=float(record.get("avg_return") or 0.0),
        )
