from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal


class TransferProvider(ABC):
    @abstractmethod
    def transfer(self, recipient_address: str, amount: Decimal, *, reference: str | None = None) -> str:
        """Send ``amount`` from the treasury and return the on-chain reference.

        Raises ``TransientTransferError`` or ``PermanentTransferError``.
        ``reference`` is a stable key the wallet may use to deduplicate retries.
        """
        raise NotImplementedError


class BalanceProvider(ABC):
    @abstractmethod
    def get_balance(self, account: str) -> Decimal:
        raise NotImplementedError
