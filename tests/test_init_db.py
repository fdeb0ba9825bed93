from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from reward_node.db.init_db import migrations_dir, tables_to_reset
from reward_node.db.tables import (
    DistributionRunRow,
    EpochParticipantRow,
    EpochRow,
    ScannerRow,
    TransferResultRow,
)


class TestResetOrder(unittest.TestCase):
    def test_covers_every_reward_table(self):
        tables = tables_to_reset()
        for row in (EpochRow, ScannerRow, EpochParticipantRow, DistributionRunRow, TransferResultRow):
            self.assertIn(row.__tablename__, tables)
        self.assertIn("alembic_version", tables)

    def test_children_dropped_before_parents(self):
        tables = tables_to_reset()
        self.assertLess(tables.index("transfer_results"), tables.index("distribution_runs"))
        self.assertLess(tables.index("distribution_runs"), tables.index("epochs"))
        self.assertLess(tables.index("epoch_participants"), tables.index("scanners"))


class TestMigrationsDir(unittest.TestCase):
    def test_repo_alembic_dir_found_by_default(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("ALEMBIC_DIR", None)
            found = migrations_dir()
        self.assertIsNotNone(found)
        self.assertTrue((found / "versions").is_dir())

    def test_env_override(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "versions").mkdir()
            (root / "env.py").write_text("")
            with patch.dict(os.environ, {"ALEMBIC_DIR": tmp}):
                self.assertEqual(migrations_dir(), root)

    def test_invalid_override_falls_back_to_repo(self):
        with patch.dict(os.environ, {"ALEMBIC_DIR": "/nonexistent/alembic"}):
            found = migrations_dir()
        self.assertIsNotNone(found)
        self.assertNotEqual(found, Path("/nonexistent/alembic"))


if __name__ == "__main__":
    unittest.main()
