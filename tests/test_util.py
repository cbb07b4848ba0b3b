"""Tests for the helpers in tkeep.util: rounding, timestamps and time expressions."""

import calendar
import unittest


# ──────────────────────────────────────────────────────────────────────────
# Rounding
# ──────────────────────────────────────────────────────────────────────────

class TestRoundTo(unittest.TestCase):

    def test_halves_round_away_from_zero(self):
        from tkeep.util import round_to
        self.assertEqual(round_to(2.5), 3)
        self.assertEqual(round_to(-2.5), -3)
        self.assertEqual(round_to(0.5), 1)
        self.assertEqual(round_to(2.4), 2)

    def test_rounds_to_multiple_of_step(self):
        from tkeep.util import round_to
        self.assertEqual(round_to(149, 100), 100)
        self.assertEqual(round_to(150, 100), 200)
        self.assertEqual(round_to(7, 5), 5)
        self.assertEqual(round_to(-150, 100), -200)
        self.assertEqual(round_to(1000, 300), 900)

    def test_returns_int(self):
        from tkeep.util import round_to
        self.assertIsInstance(round_to(12.7, 1), int)


# ──────────────────────────────────────────────────────────────────────────
# Timestamps
# ──────────────────────────────────────────────────────────────────────────

class TestTimestamps(unittest.TestCase):

    def test_format_tz(self):
        from tkeep.util import format_tz
        self.assertEqual(format_tz(0), "+0000")
        self.assertEqual(format_tz(3600), "+0100")
        self.assertEqual(format_tz(-19800), "-0530")

    def test_format_with_explicit_offset(self):
        from tkeep.util import format_datetime_iso
        self.assertEqual(format_datetime_iso(0, 0), "1970-01-01 00:00:00 +0000")
        self.assertEqual(format_datetime_iso(25 * 3600 + 61, 3600), "1970-01-02 02:01:01 +0100")

    def test_parse_with_offset(self):
        from tkeep.util import parse_datetime
        self.assertEqual(parse_datetime("1970-01-02 02:01:01 +0100"), 25 * 3600 + 61)
        self.assertEqual(parse_datetime("1970-01-01 00:00:00 -0530"), 19800)
        self.assertEqual(parse_datetime("1970-01-01 01:00:00 +01:00"), 0)

    def test_parse_utc_markers_and_no_zone(self):
        from tkeep.util import parse_datetime
        expected = calendar.timegm((2024, 3, 1, 12, 0, 0))
        self.assertEqual(parse_datetime("2024-03-01 12:00:00 UTC"), expected)
        self.assertEqual(parse_datetime("2024-03-01 12:00:00Z"), expected)
        self.assertEqual(parse_datetime("2024-03-01 12:00:00"), expected)

    def test_parse_bare_integer(self):
        from tkeep.util import parse_datetime
        self.assertEqual(parse_datetime("1700000000"), 1700000000)
        self.assertEqual(parse_datetime(" 42 "), 42)

    def test_parse_rejects_garbage(self):
        from tkeep.util import parse_datetime
        for text in ("yesterday", "", "2024-03-01", "12:00:00"):
            with self.assertRaises(ValueError, msg=text):
                parse_datetime(text)

    def test_local_format_parses_back(self):
        """Written in local time, the offset makes it read back as the same instant."""
        from tkeep.util import format_datetime_iso, parse_datetime
        for ts in (0, 1700000000, 1711846800):
            self.assertEqual(parse_datetime(format_datetime_iso(ts)), ts)


# ──────────────────────────────────────────────────────────────────────────
# Time expressions
# ──────────────────────────────────────────────────────────────────────────

class TestTimeExpressions(unittest.TestCase):

    def test_empty_is_zero(self):
        from tkeep.util import parse_time_expression
        self.assertEqual(parse_time_expression(""), 0)
        self.assertEqual(parse_time_expression("   "), 0)

    def test_clock_notation(self):
        from tkeep.util import parse_time_expression
        self.assertEqual(parse_time_expression("1:30"), 5400)
        self.assertEqual(parse_time_expression("1:02:03"), 3723)
        self.assertEqual(parse_time_expression("0:05"), 300)

    def test_unit_notation(self):
        from tkeep.util import parse_time_expression
        self.assertEqual(parse_time_expression("1h30m"), 5400)
        self.assertEqual(parse_time_expression("90m"), 5400)
        self.assertEqual(parse_time_expression("45s"), 45)
        self.assertEqual(parse_time_expression("2H"), 7200)
        self.assertEqual(parse_time_expression("1h 30m"), 5400)

    def test_bare_seconds(self):
        from tkeep.util import parse_time_expression
        self.assertEqual(parse_time_expression("120"), 120)

    def test_sums_and_differences(self):
        from tkeep.util import parse_time_expression
        self.assertEqual(parse_time_expression("1h - 15m"), 2700)
        self.assertEqual(parse_time_expression("1:00 + 30m"), 5400)
        self.assertEqual(parse_time_expression("-15m"), -900)
        self.assertEqual(parse_time_expression("+10"), 10)

    def test_invalid_expressions(self):
        from tkeep.util import parse_time_expression
        for expr in ("abc", "5 5", "1h 2", "1:", "--5", "1x"):
            with self.assertRaises(ValueError, msg=expr):
                parse_time_expression(expr)

    def test_format_duration(self):
        from tkeep.util import format_duration
        self.assertEqual(format_duration(5400), "1:30")
        self.assertEqual(format_duration(59), "0:00")
        self.assertEqual(format_duration(-900), "-0:15")
        self.assertEqual(format_duration(36000), "10:00")


if __name__ == "__main__":
    unittest.main()
