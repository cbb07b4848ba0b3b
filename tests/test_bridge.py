"""Tests for the Qt change notifications (tkeep.ui.bridge)."""

import shutil
import tempfile
import unittest
from pathlib import Path

try:
    from PySide6.QtCore import QCoreApplication
except ImportError:
    QCoreApplication = None

T0 = 1_700_000_000


@unittest.skipIf(QCoreApplication is None, "PySide6 is not installed")
class TestChangeBridge(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.app = QCoreApplication.instance() or QCoreApplication([])

    def setUp(self):
        from tkeep.core.storage import Storage
        self.tmpdir = tempfile.mkdtemp()
        self.now = T0
        self.storage = Storage(Path(self.tmpdir) / "events.log", clock=lambda: self.now)

    def tearDown(self):
        self.storage.close()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_poll_emits_changed_timers(self):
        from tkeep.core.changes import ChangeField
        from tkeep.ui.bridge import ChangeBridge
        bridge = ChangeBridge(self.storage)
        received = []
        bridge.timers_changed.connect(received.append)

        # Loading the seed marks every timer
        self.storage.refresh()
        first = bridge.poll()
        self.assertEqual([timer for timer, _ in first], [0, 1, 2, 3, 4, 5])
        self.assertEqual(received, [first])

        self.storage.set_description(3, "Review")
        self.assertEqual(bridge.poll(), [(3, frozenset({ChangeField.DESCRIPTION}))])
        self.assertEqual(len(received), 2)

    def test_nothing_changed_emits_nothing(self):
        from tkeep.ui.bridge import ChangeBridge
        bridge = ChangeBridge(self.storage)
        bridge.poll()
        received = []
        bridge.timers_changed.connect(received.append)
        self.assertEqual(bridge.poll(), [])
        self.assertEqual(received, [])

    def test_running_timer_changes_every_tick(self):
        from tkeep.core.changes import ChangeField
        from tkeep.core.tracker import Tracker
        from tkeep.ui.bridge import ChangeBridge
        tracker = Tracker(self.storage)
        tracker.activate(2)
        bridge = ChangeBridge(self.storage, tracker=tracker, clock=lambda: self.now)
        bridge.poll()

        self.now += 1
        self.assertEqual(bridge.poll(), [(2, frozenset({ChangeField.TIME}))])

    def test_watch_runs_until_the_duration_ends(self):
        from tkeep.core.tracker import Tracker
        from tkeep.ui.bridge import watch
        tracker = Tracker(self.storage)
        received = []

        code = watch(self.storage, tracker, interval=10, duration=0.2, on_change=received.append)
        self.assertEqual(code, 0)
        # The first tick drains the seeded timers
        self.assertEqual([timer for timer, _ in received[0]], [0, 1, 2, 3, 4, 5])

    def test_start_stop(self):
        from tkeep.ui.bridge import ChangeBridge
        bridge = ChangeBridge(self.storage, interval=50)
        self.assertFalse(bridge.is_active)
        bridge.start()
        self.assertTrue(bridge.is_active)
        bridge.stop()
        self.assertFalse(bridge.is_active)


if __name__ == "__main__":
    unittest.main()
