"""Treasury ledger: balance reporting and all-or-nothing reservations."""
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from reward_node.entities.distribution import Reservation, TreasuryStatus
from reward_node.errors import BalanceUnavailable, InsufficientFunds
from reward_node.services.interfaces.distribution_repository import DistributionRepository
from reward_node.services.interfaces.wallet import BalanceProvider


class ReservationBook:
    """Outstanding reservations of this process.

    One book is shared by every ledger built in a process so that runs
    triggered from different requests see each other's claims.
    """

    def __init__(self):
        self._reservations: dict[str, Reservation] = {}
        self._lock = threading.Lock()

    def total(self) -> Decimal:
        with self._lock:
            return sum((r.amount for r in self._reservations.values()), Decimal("0"))

    def claim(self, amount: Decimal, balance: Decimal) -> tuple[Reservation, Decimal]:
        """Record a reservation if ``balance`` covers it; returns it with the prior availability."""
        with self._lock:
            allocated = sum((r.amount for r in self._reservations.values()), Decimal("0"))
            available = balance - allocated
            if available < amount:
                raise InsufficientFunds(required=amount, available=available)
            reservation = Reservation(id=str(uuid.uuid4()), amount=amount)
            self._reservations[reservation.id] = reservation
            return reservation, available

    def pop(self, reservation_id: str) -> Reservation | None:
        with self._lock:
            return self._reservations.pop(reservation_id, None)


class TreasuryLedger:
    """Tracks what the treasury holds versus what running batches have claimed.

    ``allocated`` is the sum of reservations held by in-flight distribution
    runs; it is released once a run's transfers resolve, at which point the
    wallet balance reflects what was actually paid.
    """

    def __init__(
        self,
        balance_provider: BalanceProvider,
        treasury_account: str,
        distribution_repository: DistributionRepository | None = None,
        reservations: ReservationBook | None = None,
    ):
        self.balance_provider = balance_provider
        self.treasury_account = treasury_account
        self.distribution_repository = distribution_repository
        self.reservations = reservations or ReservationBook()
        self.logger = logging.getLogger(__name__)

    @property
    def allocated(self) -> Decimal:
        return self.reservations.total()

    def read_balance(self) -> Decimal:
        """Current treasury balance; any provider failure is ``BalanceUnavailable``."""
        try:
            return Decimal(self.balance_provider.get_balance(self.treasury_account))
        except BalanceUnavailable:
            raise
        except Exception as exc:
            raise BalanceUnavailable(self.treasury_account, str(exc) or type(exc).__name__) from exc

    def available(self) -> Decimal:
        """Balance not yet claimed by a running batch."""
        return self.read_balance() - self.allocated

    def status(self) -> TreasuryStatus:
        balance = self.read_balance()
        distributed = (
            self.distribution_repository.total_distributed()
            if self.distribution_repository is not None
            else Decimal("0")
        )
        return TreasuryStatus(
            account=self.treasury_account,
            total_balance=balance,
            allocated=self.allocated,
            distributed=distributed,
            updated_at=datetime.now(timezone.utc),
        )

    def reserve(self, amount: Decimal) -> Reservation:
        amount = Decimal(amount)
        if amount < 0:
            raise ValueError(f"cannot reserve a negative amount: {amount}")

        balance = self.read_balance()
        reservation, available = self.reservations.claim(amount, balance)

        self.logger.info(
            "reserved %s from %s (available before=%s)", amount, self.treasury_account, available,
        )
        return reservation

    def release(self, reservation: Reservation) -> None:
        if self.reservations.pop(reservation.id) is None:
            self.logger.warning("release of unknown reservation %s", reservation.id)
