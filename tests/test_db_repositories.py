"""SQLModel repositories against an in-memory SQLite engine."""
from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from reward_node.db.repositories import DBDistributionRepository, DBEpochRepository
from reward_node.db.tables import (
    DistributionRunRow,
    EpochParticipantRow,
    EpochRow,
    ScannerRow,
    TransferResultRow,
)
from reward_node.entities.distribution import (
    AbortReason,
    Allocation,
    DistributionResult,
    RunKind,
    RunStatus,
    TransferResult,
    TransferStatus,
)
from reward_node.entities.epoch import Epoch, EpochStatus
from reward_node.errors import (
    ActiveEpochExists,
    DistributionConflict,
    EpochNotFound,
    InvalidEpochTransition,
)
from reward_node.providers.performance import DBPerformanceProvider

T0 = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine, tables=[
        EpochRow.__table__,
        ScannerRow.__table__,
        EpochParticipantRow.__table__,
        DistributionRunRow.__table__,
        TransferResultRow.__table__,
    ])
    return engine


def _epoch(epoch_id: str, sequence: int) -> Epoch:
    start = T0 + timedelta(days=7 * (sequence - 1))
    return Epoch(
        id=epoch_id,
        name=f"Week {sequence}",
        sequence=sequence,
        pool=Decimal("1000"),
        base_allocation=Decimal("200"),
        start_at=start,
        end_at=start + timedelta(days=7),
    )


class TestDBEpochRepository(unittest.TestCase):
    def setUp(self):
        self.engine = _engine()
        self.session = Session(self.engine)
        self.repo = DBEpochRepository(self.session)
        self.repo.save(_epoch("E1", 1))
        self.repo.save(_epoch("E2", 2))

    def tearDown(self):
        self.session.close()

    def test_round_trip_keeps_amounts_and_utc(self):
        epoch = self.repo.get("E1")
        self.assertEqual(epoch.pool, Decimal("1000"))
        self.assertEqual(epoch.base_allocation, Decimal("200"))
        self.assertEqual(epoch.start_at, T0)
        self.assertEqual(epoch.status, EpochStatus.PENDING)
        self.assertIsNone(self.repo.get("nope"))

    def test_find_and_next_sequence(self):
        self.assertEqual([e.id for e in self.repo.find()], ["E2", "E1"])
        self.assertEqual([e.id for e in self.repo.find(limit=1)], ["E2"])
        self.assertEqual(self.repo.next_sequence(), 3)

    def test_transition_requires_expected_status(self):
        active = self.repo.transition("E1", EpochStatus.PENDING, EpochStatus.ACTIVE)
        self.assertEqual(active.status, EpochStatus.ACTIVE)
        self.assertEqual(active.version, 1)
        self.assertEqual(self.repo.get_active().id, "E1")

        with self.assertRaises(InvalidEpochTransition):
            self.repo.transition("E1", EpochStatus.PENDING, EpochStatus.ACTIVE)
        with self.assertRaises(EpochNotFound):
            self.repo.transition("nope", EpochStatus.PENDING, EpochStatus.ACTIVE)

    def test_database_rejects_a_second_active_epoch(self):
        self.repo.transition("E1", EpochStatus.PENDING, EpochStatus.ACTIVE)
        with self.assertRaises(ActiveEpochExists) as ctx:
            self.repo.transition("E2", EpochStatus.PENDING, EpochStatus.ACTIVE)
        self.assertEqual(ctx.exception.active_epoch_id, "E1")
        self.assertEqual(self.repo.get("E2").status, EpochStatus.PENDING)

    def test_mark_distributed_is_compare_and_set(self):
        other = DBEpochRepository(Session(self.engine))

        marked = self.repo.mark_distributed("E1", T0)
        self.assertTrue(marked.distributed)
        self.assertEqual(marked.distribution_timestamp, T0)

        with self.assertRaises(DistributionConflict):
            other.mark_distributed("E1", T0 + timedelta(seconds=1))
        self.assertEqual(self.repo.get("E1").distribution_timestamp, T0)

        with self.assertRaises(EpochNotFound):
            self.repo.mark_distributed("nope", T0)

    def test_save_does_not_touch_distribution_flag(self):
        self.repo.mark_distributed("E1", T0)
        epoch = self.repo.get("E1")
        epoch.name = "Renamed"
        epoch.distributed = False
        epoch.distribution_timestamp = None
        self.repo.save(epoch)

        reloaded = self.repo.get("E1")
        self.assertEqual(reloaded.name, "Renamed")
        self.assertTrue(reloaded.distributed)


class TestDBDistributionRepository(unittest.TestCase):
    def setUp(self):
        self.engine = _engine()
        self.session = Session(self.engine)
        DBEpochRepository(self.session).save(_epoch("E1", 1))
        self.repo = DBDistributionRepository(self.session)

    def tearDown(self):
        self.session.close()

    def _run(self, run_id: str, kind: RunKind, results: list[TransferResult], **kwargs) -> DistributionResult:
        allocations = [
            Allocation("s1", "One", "w1", 1, Decimal("60"), Decimal("200"), 0.9, 40),
            Allocation("s2", "Two", "w2", 2, Decimal("40"), Decimal("100"), 0.8, 30),
        ]
        return DistributionResult(
            run_id=run_id,
            epoch_id="E1",
            kind=kind,
            allocations=allocations,
            results=results,
            total_allocated=Decimal("100"),
            allocation_root="ab" * 32,
            **kwargs,
        )

    def test_append_and_find_runs(self):
        self.repo.append(self._run("r1", RunKind.DISTRIBUTE, [
            TransferResult("s1", "w1", Decimal("60"), TransferStatus.SUCCESS, tx_reference="tx1", attempts=1),
            TransferResult("s2", "w2", Decimal("40"), TransferStatus.FAILED, error="rejected", attempts=1),
        ], status=RunStatus.COMPLETED_WITH_FAILURES))

        runs = self.repo.find_runs("E1")
        self.assertEqual(len(runs), 1)
        run = runs[0]
        self.assertEqual(run.status, RunStatus.COMPLETED_WITH_FAILURES)
        self.assertEqual([a.scanner_id for a in run.allocations], ["s1", "s2"])
        self.assertEqual(run.allocations[0].amount, Decimal("60"))
        self.assertEqual([r.recipient_id for r in run.results], ["s1", "s2"])
        self.assertEqual(run.results[0].run_id, "r1")
        self.assertEqual(run.results[1].error, "rejected")
        self.assertEqual(self.repo.find_runs("other"), [])

    def test_skip_reason_round_trips(self):
        self.repo.append(self._run("r1", RunKind.DISTRIBUTE, [
            TransferResult("s1", "w1", Decimal("60"), TransferStatus.SKIPPED, skip_reason="zero amount"),
        ], status=RunStatus.COMPLETED))

        skipped = self.repo.find_runs("E1")[0].results[0]
        self.assertEqual(skipped.skip_reason, "zero amount")
        self.assertIsNone(skipped.error)

    def test_paid_recipients_and_totals_span_runs(self):
        self.repo.append(self._run("r1", RunKind.DISTRIBUTE, [
            TransferResult("s1", "w1", Decimal("60"), TransferStatus.SUCCESS, tx_reference="tx1"),
            TransferResult("s2", "w2", Decimal("40"), TransferStatus.FAILED, error="timeout"),
        ], status=RunStatus.COMPLETED_WITH_FAILURES))
        self.repo.append(self._run("r2", RunKind.RETRY, [
            TransferResult("s2", "w2", Decimal("40"), TransferStatus.SUCCESS, tx_reference="tx2"),
        ], status=RunStatus.COMPLETED))

        self.assertEqual(self.repo.paid_recipients("E1"), {"s1", "s2"})
        self.assertEqual(self.repo.total_distributed(), Decimal("100"))
        self.assertEqual(
            [r.status for r in self.repo.find_results(recipient_id="s2")],
            [TransferStatus.SUCCESS, TransferStatus.FAILED],
        )

    def test_discarded_runs_round_trip(self):
        self.repo.append(self._run(
            "r1", RunKind.DISTRIBUTE, [],
            status=RunStatus.ABORTED, abort_reason=AbortReason.CONFLICT,
        ))
        self.assertTrue(self.repo.find_runs("E1")[0].discarded)

    def test_total_distributed_is_zero_without_results(self):
        self.assertEqual(self.repo.total_distributed(), Decimal("0"))


class TestDBPerformanceProvider(unittest.TestCase):
    def test_joins_participants_with_scanners(self):
        engine = _engine()
        with Session(engine) as session:
            DBEpochRepository(session).save(_epoch("E1", 1))
            session.add(ScannerRow(id="s1", name="Alpha", wallet_address="w1"))
            session.add(ScannerRow(id="s2", name="Beta", wallet_address="w2"))
            session.commit()
            session.add(EpochParticipantRow(epoch_id="E1", scanner_id="s1", total_calls=12, win_rate=0.75))
            session.add(EpochParticipantRow(epoch_id="E1", scanner_id="s2", total_calls=0, win_rate=0.0))
            session.commit()

            performances = DBPerformanceProvider(session).get_scanner_performance("E1")

        by_id = {p.scanner_id: p for p in performances}
        self.assertEqual(set(by_id), {"s1", "s2"})
        self.assertEqual(by_id["s1"].wallet_address, "w1")
        self.assertEqual(by_id["s1"].total_calls, 12)
        self.assertFalse(by_id["s2"].participated)


if __name__ == "__main__":
    unittest.main()
