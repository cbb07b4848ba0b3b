"""Tests for the command line (tkeep.__main__)."""

import contextlib
import importlib.util
import io
import json
import shutil
import tempfile
import unittest
from pathlib import Path


class TestCommandLine(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self._tmppath = Path(self.tmpdir)
        self.data_path = self._tmppath / "events.log"
        self.settings_path = self._tmppath / "settings.json"
        self.settings_path.write_text(json.dumps({
            "meta": {"schema_version": 1},
            "data_file": str(self.data_path),
            "num_timers": 6,
        }), encoding="utf-8")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def tkeep(self, *argv):
        from tkeep.__main__ import main
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(["--settings", str(self.settings_path), *argv])
        return code, out.getvalue(), err.getvalue()

    def test_status_shows_seeded_timers(self):
        code, out, _ = self.tkeep("status")
        self.assertEqual(code, 0)
        self.assertIn("Rest time", out)
        self.assertIn("[Project Strawberry]", out)
        self.assertIn("stopped", out)
        # Only looking doesn't create the data file
        self.assertFalse(self.data_path.exists())

    def test_changes_are_stored(self):
        self.assertEqual(self.tkeep("describe", "3", "Code review")[0], 0)
        self.assertEqual(self.tkeep("set", "3", "1:30")[0], 0)
        self.assertEqual(self.tkeep("add", "3", "15m")[0], 0)
        code, out, _ = self.tkeep("status")
        self.assertEqual(code, 0)
        self.assertIn("1:45  Code review", out)

    def test_activate_and_pause_all(self):
        self.tkeep("activate", "2")
        _, out, _ = self.tkeep("status")
        self.assertIn("running: timer 2", out)
        _, out, _ = self.tkeep("pause-all")
        self.assertIn("Paused: 2", out)

    def test_refused_and_invalid_input(self):
        code, _, err = self.tkeep("add", "1", "-10m")
        self.assertEqual(code, 1)
        self.assertIn("would become negative", err)

        code, _, err = self.tkeep("set", "1", "soon")
        self.assertEqual(code, 2)
        self.assertIn("Error:", err)

        code, _, err = self.tkeep("run", "8")
        self.assertEqual(code, 2)
        self.assertIn("out of range", err)

    @unittest.skipIf(importlib.util.find_spec("PySide6") is None, "PySide6 is not installed")
    def test_watch_prints_changed_timers(self):
        self.tkeep("describe", "3", "Code review")
        code, out, _ = self.tkeep("watch", "--seconds", "0.5")
        self.assertEqual(code, 0)
        self.assertIn(" 3 ", out)
        self.assertIn("changed:", out)

    def test_totals(self):
        self.tkeep("add", "2", "1h")
        code, out, _ = self.tkeep("totals", "--raw")
        self.assertEqual(code, 0)
        self.assertIn("Grand total: 1:00", out)


if __name__ == "__main__":
    unittest.main()
