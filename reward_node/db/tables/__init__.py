from reward_node.db.tables.epochs import EpochRow
from reward_node.db.tables.scanners import EpochParticipantRow, ScannerRow
from reward_node.db.tables.distribution import DistributionRunRow, TransferResultRow

__all__ = [
    "EpochRow",
    "ScannerRow", "EpochParticipantRow",
    "DistributionRunRow", "TransferResultRow",
]
