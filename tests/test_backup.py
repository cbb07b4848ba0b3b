"""Tests for the best-effort backup mirroring (tkeep.core.backup)."""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch


class TestBackupRequest(unittest.TestCase):

    def test_appends_concatenate(self):
        from tkeep.core.backup import BackupRequest
        merged = BackupRequest("a\n", True).merge(BackupRequest("b\n", True))
        self.assertEqual(merged, BackupRequest("a\nb\n", True))

    def test_rewrite_supersedes(self):
        from tkeep.core.backup import BackupRequest
        merged = BackupRequest("a\n", True).merge(BackupRequest("full\n", False))
        self.assertEqual(merged, BackupRequest("full\n", False))

    def test_append_onto_rewrite_stays_rewrite(self):
        from tkeep.core.backup import BackupRequest
        merged = BackupRequest("full\n", False).merge(BackupRequest("more\n", True))
        self.assertEqual(merged, BackupRequest("full\nmore\n", False))


class TestBackupWorker(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = Path(self.tmpdir) / "share" / "events.log"

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_synchronous_rewrite_and_append(self):
        from tkeep.core.backup import BackupWorker
        worker = BackupWorker(self.path, background=False)
        self.assertFalse(worker.is_background)
        worker.submit("one\n")
        worker.submit("two\n", append=True)
        self.assertEqual(self.path.read_text(encoding="utf-8"), "one\ntwo\n")
        worker.submit("fresh\n")
        self.assertEqual(self.path.read_text(encoding="utf-8"), "fresh\n")
        worker.close()

    def test_background_never_loses_appended_lines(self):
        from tkeep.core.backup import BackupWorker
        worker = BackupWorker(self.path)
        self.assertTrue(worker.is_background)
        worker.submit("start\n")
        for i in range(200):
            worker.submit(f"{i}\n", append=True)
        worker.flush()
        expected = "start\n" + "".join(f"{i}\n" for i in range(200))
        self.assertEqual(self.path.read_text(encoding="utf-8"), expected)
        worker.close()

    def test_close_drains_and_is_idempotent(self):
        from tkeep.core.backup import BackupWorker
        worker = BackupWorker(self.path)
        worker.submit("last words\n")
        worker.close()
        worker.close()
        self.assertEqual(self.path.read_text(encoding="utf-8"), "last words\n")
        # After closing, submissions are written directly
        worker.submit("after\n", append=True)
        self.assertEqual(self.path.read_text(encoding="utf-8"), "last words\nafter\n")

    def test_close_removes_exit_hook(self):
        from tkeep.core.backup import BackupWorker
        with patch("atexit.register") as register, patch("atexit.unregister") as unregister:
            worker = BackupWorker(self.path, background=False)
            register.assert_called_once_with(worker.close)
            worker.close()
            worker.close()
        # Only the first close unregisters, so closed workers aren't kept alive until exit
        unregister.assert_called_once_with(worker.close)

    def test_write_failure_is_logged_not_raised(self):
        from tkeep.core.backup import BackupWorker
        self.path.mkdir(parents=True)  # a directory can't be opened as the backup file
        worker = BackupWorker(self.path, background=False)
        with self.assertLogs("timekeeper", level="WARNING") as logs:
            worker.submit("data\n")
        self.assertTrue(any("Failed to write backup" in line for line in logs.output))
        worker.close()

    def test_falls_back_to_synchronous_without_thread(self):
        from tkeep.core.backup import BackupWorker
        with patch("threading.Thread.start", side_effect=RuntimeError("can't start new thread")):
            with self.assertLogs("timekeeper", level="WARNING"):
                worker = BackupWorker(self.path)
        self.assertFalse(worker.is_background)
        worker.submit("sync\n")
        self.assertEqual(self.path.read_text(encoding="utf-8"), "sync\n")
        worker.close()


if __name__ == "__main__":
    unittest.main()
