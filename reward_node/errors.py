"""Domain errors raised by the reward distribution engine.

Engine-level aborts (``NoParticipants``, ``InsufficientFunds``,
``DistributionConflict``) are turned into structured run results by
``DistributionEngine``; transfer errors never leave the executor.
"""
from __future__ import annotations

from decimal import Decimal


class RewardNodeError(Exception):
    """Base class for all reward node errors."""


class EpochNotFound(RewardNodeError):
    def __init__(self, epoch_id: str):
        super().__init__(f"Epoch {epoch_id} not found")
        self.epoch_id = epoch_id


class EpochNotClosed(RewardNodeError):
    def __init__(self, epoch_id: str, status: str):
        super().__init__(f"Epoch {epoch_id} is {status}, expected CLOSED")
        self.epoch_id = epoch_id
        self.status = status


class InvalidEpochTransition(RewardNodeError):
    def __init__(self, epoch_id: str, current: str, requested: str):
        super().__init__(f"Cannot transition epoch {epoch_id} from {current} to {requested}")
        self.epoch_id = epoch_id
        self.current = current
        self.requested = requested


class ActiveEpochExists(RewardNodeError):
    def __init__(self, active_epoch_id: str | None):
        super().__init__(f"Epoch {active_epoch_id} is already ACTIVE")
        self.active_epoch_id = active_epoch_id


class NoParticipants(RewardNodeError):
    def __init__(self, epoch_id: str):
        super().__init__(f"No scanners with calls in epoch {epoch_id}")
        self.epoch_id = epoch_id


class InsufficientFunds(RewardNodeError):
    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(f"Insufficient treasury balance: {available} available < {required} needed")
        self.required = required
        self.available = available


class DistributionConflict(RewardNodeError):
    def __init__(self, epoch_id: str):
        super().__init__(f"Epoch {epoch_id} already distributed")
        self.epoch_id = epoch_id


class DistributionNotFound(RewardNodeError):
    def __init__(self, epoch_id: str):
        super().__init__(f"No distribution recorded for epoch {epoch_id}")
        self.epoch_id = epoch_id


class TransferError(RewardNodeError):
    """Raised by transfer providers for a single failed payment."""


class TransientTransferError(TransferError):
    """Network-class failure; the transfer may be retried."""


class PermanentTransferError(TransferError):
    """The transfer can never succeed as requested (bad recipient, rejected...)."""


class AllocationNotFound(RewardNodeError):
    def __init__(self, epoch_id: str, scanner_id: str):
        super().__init__(f"Scanner {scanner_id} has no allocation in epoch {epoch_id}")
        self.epoch_id = epoch_id
        self.scanner_id = scanner_id


class BalanceUnavailable(RewardNodeError):
    """The treasury balance could not be read; no distribution can be planned."""

    def __init__(self, account: str, reason: str):
        super().__init__(f"Balance of {account} unavailable: {reason}")
        self.account = account
        self.reason = reason
