"""Tests for the retention-window compaction of the event log (tkeep.core.compactor)."""

import unittest

DAY = 24 * 60 * 60


def _events(*specs):
    from tkeep.core.events import Event, EventKind
    return [Event(ts, timer, EventKind.from_code(code), tuple(args)) for ts, timer, code, *args in specs]


class TestCompact(unittest.TestCase):

    def test_superseded_description_dropped_with_zero_keep_days(self):
        from tkeep.core.compactor import compact
        events = _events(
            (10, 1, "D", "first", "ID1"),
            (20, 1, "r"),
            (50, 1, "D", "second", "ID2"),
            (100, 1, "D", "final", "ID3"),
        )
        kept, dropped = compact(events, keep_days=0, now=200)
        self.assertEqual(dropped, 2)
        self.assertEqual(kept, [events[1], events[3]])

    def test_events_inside_the_window_are_kept(self):
        from tkeep.core.compactor import compact
        now = 10 * DAY
        events = _events(
            (now - 3 * DAY, 1, "D", "a", "ID1"),
            (now - 2 * DAY, 1, "D", "b", "ID2"),
            (now - DAY, 1, "D", "c", "ID3"),
        )
        kept, dropped = compact(events, keep_days=7, now=now)
        self.assertEqual(dropped, 0)
        self.assertEqual(kept, events)

    def test_anchor_below_boundary_drops_only_older(self):
        from tkeep.core.compactor import compact
        now = 10 * DAY
        events = _events(
            (now - 9 * DAY, 1, "T", 100, "ID1"),
            (now - 8 * DAY, 1, "i", 50),
            (now - 7 * DAY - 1, 1, "T", 0, "ID2"),
            (now - 7 * DAY + 1, 1, "T", 10, "ID3"),
            (now - DAY, 1, "i", 5),
        )
        kept, dropped = compact(events, keep_days=7, now=now)
        self.assertEqual(dropped, 2)
        self.assertEqual(kept, events[2:])

    def test_relative_events_are_never_anchors(self):
        from tkeep.core.compactor import compact
        events = _events((10, 1, "r"), (20, 1, "i", 30), (30, 1, "p"))
        kept, dropped = compact(events, keep_days=0, now=100)
        self.assertEqual((kept, dropped), (events, 0))

    def test_extra_info_names_are_separate_items(self):
        from tkeep.core.compactor import compact
        events = _events(
            (10, "notes", "E", "ticket", "A"),
            (20, "notes", "E", "url", "x"),
            (30, "notes", "E", "ticket", "B"),
        )
        kept, dropped = compact(events, keep_days=0, now=100)
        self.assertEqual(dropped, 1)
        self.assertEqual(kept, events[1:])

    def test_replay_from_window_is_unchanged(self):
        """The compacted log replays to the same values as the full one."""
        from tkeep.core.compactor import compact
        from tkeep.core.replay import replay
        now = DAY + 100
        events = _events(
            (0, 1, "D", "a", "ID"),
            (0, 1, "G", "g", "0", "ID"),
            (10, 1, "r"),
            (50, 1, "p"),
            (60, 1, "T", 500, "ID"),
            (60, 1, "p"),
            (70, 2, "r"),
            (80, 2, "i", 30),
            (90, 1, "D", "b", "ID"),
            (95, "x", "E", "k", "v1"),
            (98, "x", "E", "k", "v2"),
            (150, 1, "r"),
            (170, 2, "p"),
            (180, 1, "i", 20),
        )
        kept, dropped = compact(events, keep_days=1, now=now)
        self.assertEqual(dropped, 4)

        full = replay(events, now)
        compacted = replay(kept, now)
        self.assertEqual(compacted.times, full.times)
        self.assertEqual(compacted.running, full.running)
        self.assertEqual(compacted.descriptions, full.descriptions)
        self.assertEqual(compacted.group_names, full.group_names)
        self.assertEqual(compacted.group_types, full.group_types)
        self.assertEqual(compacted.extra_history("x", "k")[-1], full.extra_history("x", "k")[-1])
        self.assertEqual(full.times[1], 500 + (now - 150) + 20)


if __name__ == "__main__":
    unittest.main()
