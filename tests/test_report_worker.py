from __future__ import annotations

import threading
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient

from reward_node.db.memory import InMemoryDistributionRepository, InMemoryEpochRepository
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import PermanentTransferError
from reward_node.providers.performance import StaticPerformanceProvider
from reward_node.services.allocation import AllocationCalculator
from reward_node.services.distribution import DistributionEngine
from reward_node.services.epochs import EpochService
from reward_node.services.executor import DistributionExecutor
from reward_node.services.interfaces.wallet import BalanceProvider, TransferProvider
from reward_node.services.ranking import RankingService
from reward_node.services.treasury import TreasuryLedger
from reward_node.workers.report_worker import (
    app,
    get_close_notifier,
    get_distribution_engine,
    get_epoch_service,
)

START = datetime(2026, 3, 1, tzinfo=timezone.utc)


class InMemoryWallet(TransferProvider, BalanceProvider):
    def __init__(self, balance: str = "1000", reject: set[str] | None = None):
        self.balance = Decimal(balance)
        self.reject = set(reject or ())
        self.balance_error: Exception | None = None
        self._lock = threading.Lock()
        self._count = 0

    def get_balance(self, account):
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    def transfer(self, recipient_address, amount, *, reference=None):
        if recipient_address in self.reject:
            raise PermanentTransferError("unknown address")
        with self._lock:
            self._count += 1
            self.balance -= Decimal(amount)
            return f"tx-{self._count}"


def _epoch(epoch_id: str, status: EpochStatus, sequence: int = 1) -> Epoch:
    return Epoch(
        id=epoch_id,
        name=f"Epoch {sequence}",
        sequence=sequence,
        pool=Decimal("100"),
        base_allocation=Decimal("10"),
        start_at=START,
        end_at=START + timedelta(days=7),
        status=status,
    )


class ReportWorkerTestCase(unittest.TestCase):
    def setUp(self):
        self.epochs = InMemoryEpochRepository([
            _epoch("E1", EpochStatus.CLOSED, 1),
            _epoch("E2", EpochStatus.ACTIVE, 2),
        ])
        self.distributions = InMemoryDistributionRepository()
        self.wallet = InMemoryWallet()
        self.performance = StaticPerformanceProvider({
            "E1": [
                {"scanner_id": "alpha", "wallet_address": "w-alpha", "total_calls": 40, "win_rate": 0.8},
                {"scanner_id": "beta", "wallet_address": "w-beta", "total_calls": 20, "win_rate": 0.5},
            ],
        })
        executor = DistributionExecutor(self.epochs, self.distributions, self.wallet)
        self.engine = DistributionEngine(
            self.epochs,
            self.distributions,
            RankingService(self.performance),
            AllocationCalculator(token_decimals=6),
            TreasuryLedger(self.wallet, "treasury", self.distributions),
            executor,
        )
        self.closed: list[str] = []

        app.dependency_overrides[get_epoch_service] = lambda: EpochService(self.epochs)
        app.dependency_overrides[get_distribution_engine] = lambda: self.engine
        app.dependency_overrides[get_close_notifier] = lambda: self.closed.append
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()


class TestEpochEndpoints(ReportWorkerTestCase):
    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_list_epochs_newest_first(self):
        resp = self.client.get("/epochs")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([e["id"] for e in resp.json()], ["E2", "E1"])

    def test_list_epochs_by_status(self):
        resp = self.client.get("/epochs", params={"status": "CLOSED"})
        self.assertEqual([e["id"] for e in resp.json()], ["E1"])

    def test_get_epoch_serialises_amounts_as_strings(self):
        body = self.client.get("/epochs/E1").json()
        self.assertEqual(body["pool"], "100")
        self.assertEqual(body["status"], "CLOSED")
        self.assertFalse(body["distributed"])

    def test_unknown_epoch_is_404(self):
        resp = self.client.get("/epochs/NOPE")
        self.assertEqual(resp.status_code, 404)
        self.assertIn("NOPE", resp.json()["detail"])

    def test_active_epoch(self):
        self.assertEqual(self.client.get("/epochs/active").json()["id"], "E2")

    def test_no_active_epoch_is_404(self):
        self.client.post("/epochs/E2/close")
        self.assertEqual(self.client.get("/epochs/active").status_code, 404)

    def test_create_epoch(self):
        resp = self.client.post("/epochs", json={
            "name": "April",
            "start_at": "2026-04-01T00:00:00+00:00",
            "end_at": "2026-04-08T00:00:00+00:00",
        })
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["status"], "PENDING")
        self.assertEqual(body["sequence"], 3)
        self.assertEqual(Decimal(body["pool"]), Decimal("1000"))
        self.assertEqual(Decimal(body["base_allocation"]), Decimal("200"))

    def test_create_epoch_with_inverted_window_is_422(self):
        resp = self.client.post("/epochs", json={
            "name": "Backwards",
            "start_at": "2026-04-08T00:00:00+00:00",
            "end_at": "2026-04-01T00:00:00+00:00",
        })
        self.assertEqual(resp.status_code, 422)

    def test_create_epoch_rejects_negative_pool(self):
        resp = self.client.post("/epochs", json={
            "name": "Bad",
            "start_at": "2026-04-01T00:00:00+00:00",
            "end_at": "2026-04-08T00:00:00+00:00",
            "pool": "-1",
        })
        self.assertEqual(resp.status_code, 422)

    def test_activate_while_another_is_active_is_409(self):
        self.epochs.save(_epoch("E3", EpochStatus.PENDING, 3))
        resp = self.client.post("/epochs/E3/activate")
        self.assertEqual(resp.status_code, 409)

    def test_close_notifies_worker(self):
        resp = self.client.post("/epochs/E2/close")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "CLOSED")
        self.assertEqual(self.closed, ["E2"])

    def test_closing_twice_is_409(self):
        resp = self.client.post("/epochs/E1/close")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.closed, [])


class TestDistributionEndpoints(ReportWorkerTestCase):
    def test_preview_allocations(self):
        body = self.client.get("/epochs/E1/allocations").json()
        self.assertEqual([a["scanner_id"] for a in body["allocations"]], ["alpha", "beta"])
        self.assertEqual(Decimal(body["total"]), Decimal("100"))
        self.assertEqual(self.wallet.balance, Decimal("1000"))

    def test_distribute(self):
        resp = self.client.post("/epochs/E1/distribute")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "COMPLETED")
        self.assertEqual(body["succeeded"], 2)
        self.assertEqual(Decimal(body["total_transferred"]), Decimal("100"))
        self.assertIsNotNone(body["allocation_root"])
        self.assertTrue(self.client.get("/epochs/E1").json()["distributed"])

    def test_distribute_open_epoch_is_409(self):
        self.assertEqual(self.client.post("/epochs/E2/distribute").status_code, 409)

    def test_distribute_without_participants_returns_aborted_result(self):
        self.client.post("/epochs/E2/close")
        body = self.client.post("/epochs/E2/distribute").json()
        self.assertEqual(body["status"], "ABORTED")
        self.assertEqual(body["abort_reason"], "NO_PARTICIPANTS")

    def test_distribution_before_distribute_is_404(self):
        self.assertEqual(self.client.get("/epochs/E1/distribution").status_code, 404)

    def test_distribution_and_runs(self):
        self.client.post("/epochs/E1/distribute")
        history = self.client.get("/epochs/E1/distribution").json()
        self.assertEqual(len(history["results"]), 2)
        runs = self.client.get("/epochs/E1/distribution/runs").json()
        self.assertEqual([r["kind"] for r in runs], ["DISTRIBUTE"])

    def test_retry_failed(self):
        self.wallet.reject = {"w-beta"}
        first = self.client.post("/epochs/E1/distribute").json()
        self.assertEqual(first["status"], "COMPLETED_WITH_FAILURES")

        self.wallet.reject = set()
        retry = self.client.post("/epochs/E1/retry-failed").json()
        self.assertEqual(retry["kind"], "RETRY")
        self.assertEqual(retry["succeeded"], 1)

        history = self.client.get("/epochs/E1/distribution").json()
        self.assertEqual(history["status"], "COMPLETED")

    def test_retry_before_distribute_is_404(self):
        self.assertEqual(self.client.post("/epochs/E1/retry-failed").status_code, 404)

    def test_proof(self):
        self.client.post("/epochs/E1/distribute")
        body = self.client.get("/epochs/E1/distribution/proof/beta").json()
        self.assertEqual(body["scanner_id"], "beta")
        self.assertEqual(len(body["path"]), 1)
        self.assertEqual(body["path"][0]["position"], "left")

    def test_proof_for_unknown_scanner_is_404(self):
        self.client.post("/epochs/E1/distribute")
        resp = self.client.get("/epochs/E1/distribution/proof/gamma")
        self.assertEqual(resp.status_code, 404)

    def test_scanner_allocations(self):
        self.client.post("/epochs/E1/distribute")
        body = self.client.get("/scanners/alpha/allocations").json()
        self.assertEqual(len(body["results"]), 1)
        self.assertEqual(body["results"][0]["status"], "SUCCESS")
        self.assertGreater(Decimal(body["total_earned"]), Decimal("50"))

    def test_treasury_status(self):
        self.client.post("/epochs/E1/distribute")
        body = self.client.get("/treasury/status").json()
        self.assertEqual(body["account"], "treasury")
        self.assertEqual(Decimal(body["total_balance"]), Decimal("900"))
        self.assertEqual(Decimal(body["distributed"]), Decimal("100"))
        self.assertEqual(Decimal(body["allocated"]), Decimal("0"))

    def test_unreadable_treasury_is_503(self):
        self.wallet.balance_error = ConnectionError("wallet service down")
        resp = self.client.get("/treasury/status")
        self.assertEqual(resp.status_code, 503)
        self.assertIn("treasury", resp.json()["detail"])

    def test_distribute_with_unreadable_treasury_aborts(self):
        self.wallet.balance_error = ConnectionError("wallet service down")
        resp = self.client.post("/epochs/E1/distribute")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "ABORTED")
        self.assertEqual(body["abort_reason"], "BALANCE_UNAVAILABLE")
        self.assertEqual(body["succeeded"], 0)
        self.assertFalse(self.client.get("/epochs/E1").json()["distributed"])


if __name__ == "__main__":
    unittest.main()
