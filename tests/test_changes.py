"""Tests for the change notification set (tkeep.core.changes)."""

import threading
import unittest


class TestChangeSet(unittest.TestCase):

    def test_mark_and_peek(self):
        from tkeep.core.changes import ChangeField, ChangeSet
        changes = ChangeSet()
        self.assertFalse(changes)
        changes.mark(3, ChangeField.TIME)
        changes.mark([1, 3], ChangeField.DESCRIPTION, "G")
        self.assertTrue(changes)
        self.assertEqual(changes.peek(), [
            (1, frozenset({ChangeField.DESCRIPTION, ChangeField.GROUP})),
            (3, frozenset({ChangeField.TIME, ChangeField.DESCRIPTION, ChangeField.GROUP})),
        ])
        # Peeking doesn't clear
        self.assertEqual(len(changes.peek()), 2)

    def test_drain_clears(self):
        from tkeep.core.changes import ChangeField, ChangeSet
        changes = ChangeSet()
        changes.mark(2, ChangeField.TIME)
        self.assertEqual(changes.drain(), [(2, frozenset({ChangeField.TIME}))])
        self.assertEqual(changes.drain(), [])
        self.assertFalse(changes)

    def test_sorted_by_timer_key(self):
        from tkeep.core.changes import ChangeSet
        changes = ChangeSet()
        changes.mark(["notes", 10, 2, "alpha"], "T")
        self.assertEqual([timer for timer, _ in changes.drain()], [2, 10, "alpha", "notes"])

    def test_unknown_field_rejected(self):
        from tkeep.core.changes import ChangeSet
        with self.assertRaises(ValueError):
            ChangeSet().mark(1, "X")

    def test_no_mark_lost_while_draining(self):
        """Marks racing with drains end up in exactly one of the drained results."""
        from tkeep.core.changes import ChangeSet
        changes = ChangeSet()
        count = 2000
        seen = []

        def producer():
            for i in range(count):
                changes.mark(i, "T")

        thread = threading.Thread(target=producer)
        thread.start()
        while thread.is_alive():
            seen.extend(timer for timer, _ in changes.drain())
        thread.join()
        seen.extend(timer for timer, _ in changes.drain())
        self.assertEqual(sorted(seen), list(range(count)))


if __name__ == "__main__":
    unittest.main()
