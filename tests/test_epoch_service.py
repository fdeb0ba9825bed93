from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from reward_node.db.memory import InMemoryEpochRepository
from reward_node.entities.epoch import EpochStatus
from reward_node.errors import ActiveEpochExists, EpochNotFound, InvalidEpochTransition
from reward_node.services.epochs import DEFAULT_BASE_ALLOCATION, DEFAULT_POOL, EpochService

T0 = datetime(2026, 5, 4, tzinfo=timezone.utc)
WEEK = timedelta(days=7)


class TestEpochService(unittest.TestCase):
    def setUp(self):
        self.repository = InMemoryEpochRepository()
        self.service = EpochService(self.repository)

    def test_create_assigns_sequence_and_defaults(self):
        first = self.service.create("Week 1", T0, T0 + WEEK)
        second = self.service.create("Week 2", T0 + WEEK, T0 + 2 * WEEK)

        self.assertEqual((first.sequence, second.sequence), (1, 2))
        self.assertEqual(first.status, EpochStatus.PENDING)
        self.assertEqual(first.pool, DEFAULT_POOL)
        self.assertEqual(first.base_allocation, DEFAULT_BASE_ALLOCATION)
        self.assertFalse(first.distributed)
        self.assertTrue(first.id.startswith("EPOCH_"))

    def test_create_rejects_bad_window_and_amounts(self):
        with self.assertRaises(ValueError):
            self.service.create("Backwards", T0 + WEEK, T0)
        with self.assertRaises(ValueError):
            self.service.create("Negative", T0, T0 + WEEK, pool=Decimal("-5"))
        with self.assertRaises(ValueError):
            self.service.create("Weightless", T0, T0 + WEEK, base_allocation=Decimal("0"))

    def test_lifecycle_moves_forward_only(self):
        epoch = self.service.create("Week 1", T0, T0 + WEEK)
        self.assertEqual(self.service.activate(epoch.id).status, EpochStatus.ACTIVE)
        self.assertEqual(self.service.close(epoch.id).status, EpochStatus.CLOSED)

        with self.assertRaises(InvalidEpochTransition):
            self.service.activate(epoch.id)
        with self.assertRaises(InvalidEpochTransition):
            self.service.close(epoch.id)

    def test_pending_epoch_cannot_be_closed(self):
        epoch = self.service.create("Week 1", T0, T0 + WEEK)
        with self.assertRaises(InvalidEpochTransition):
            self.service.close(epoch.id)

    def test_only_one_active_epoch(self):
        first = self.service.create("Week 1", T0, T0 + WEEK)
        second = self.service.create("Week 2", T0 + WEEK, T0 + 2 * WEEK)
        self.service.activate(first.id)

        with self.assertRaises(ActiveEpochExists) as ctx:
            self.service.activate(second.id)
        self.assertEqual(ctx.exception.active_epoch_id, first.id)
        self.assertEqual(self.service.get_active().id, first.id)

    def test_unknown_epoch(self):
        with self.assertRaises(EpochNotFound):
            self.service.get("EPOCH_missing")
        with self.assertRaises(EpochNotFound):
            self.service.close("EPOCH_missing")

    def test_tick_closes_expired_and_opens_next(self):
        first = self.service.create("Week 1", T0, T0 + WEEK)
        second = self.service.create("Week 2", T0 + WEEK, T0 + 2 * WEEK)

        changed = self.service.tick(T0 + timedelta(hours=1))
        self.assertEqual([(e.id, e.status) for e in changed], [(first.id, EpochStatus.ACTIVE)])

        changed = self.service.tick(T0 + WEEK + timedelta(minutes=1))
        self.assertEqual(
            [(e.id, e.status) for e in changed],
            [(first.id, EpochStatus.CLOSED), (second.id, EpochStatus.ACTIVE)],
        )

    def test_tick_before_any_window_is_a_no_op(self):
        self.service.create("Week 1", T0, T0 + WEEK)
        self.assertEqual(self.service.tick(T0 - timedelta(days=1)), [])

    def test_list_epochs_newest_first_with_filter(self):
        first = self.service.create("Week 1", T0, T0 + WEEK)
        second = self.service.create("Week 2", T0 + WEEK, T0 + 2 * WEEK)
        self.service.activate(first.id)

        self.assertEqual([e.id for e in self.service.list_epochs()], [second.id, first.id])
        self.assertEqual([e.id for e in self.service.list_epochs(limit=1)], [second.id])
        self.assertEqual(
            [e.id for e in self.service.list_epochs(status=EpochStatus.ACTIVE)], [first.id],
        )


if __name__ == "__main__":
    unittest.main()
