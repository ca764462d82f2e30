"""
Unit tests for shared/utils.py

Tests market timezone handling, timestamp and time-of-day parsing, and
summary printing.
"""

import unittest
from datetime import datetime, time, timezone
from unittest.mock import patch

from shared.utils import (
    market_timezone,
    parse_time_of_day,
    parse_timestamp,
    print_summary,
    to_local,
)


class TestMarketTimezone(unittest.TestCase):
    """Tests for market_timezone() and to_local()."""

    def test_default_timezone(self):
        with patch.dict("os.environ", {}, clear=True):
            self.assertEqual(str(market_timezone()), "America/New_York")

    def test_timezone_from_env(self):
        with patch.dict("os.environ", {"MARKET_TIMEZONE": "America/Chicago"}):
            self.assertEqual(str(market_timezone()), "America/Chicago")

    def test_naive_value_is_market_wall_time(self):
        result = to_local(datetime(2026, 3, 10, 9, 0))

        self.assertEqual(result.hour, 9)
        self.assertEqual(result.tzinfo, market_timezone())

    def test_aware_value_converted(self):
        result = to_local(datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc))

        # EDT starts 2026-03-08
        self.assertEqual(result.hour, 10)


class TestParseTimestamp(unittest.TestCase):
    """Tests for parse_timestamp()."""

    def test_iso_string(self):
        result = parse_timestamp("2026-03-10T09:00:00")

        self.assertEqual(result.isoformat(), "2026-03-10T09:00:00-04:00")

    def test_offset_string(self):
        result = parse_timestamp("2026-03-10T13:00:00+00:00")

        self.assertEqual(result.hour, 9)

    def test_us_format(self):
        self.assertEqual(parse_timestamp("03/10/2026").day, 10)

    def test_missing_values(self):
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp(""))

    def test_invalid_returns_none(self):
        self.assertIsNone(parse_timestamp("not a date at all"))


class TestParseTimeOfDay(unittest.TestCase):
    """Tests for parse_time_of_day()."""

    def test_hours_and_minutes(self):
        self.assertEqual(parse_time_of_day("22:00"), time(22, 0))

    def test_with_seconds(self):
        self.assertEqual(parse_time_of_day("06:30:15"), time(6, 30, 15))

    def test_time_passthrough(self):
        self.assertEqual(parse_time_of_day(time(7, 0)), time(7, 0))

    def test_falls_back_to_default(self):
        self.assertEqual(parse_time_of_day(None, "06:00"), time(6, 0))
        self.assertEqual(parse_time_of_day("late", "06:00"), time(6, 0))


class TestPrintSummary(unittest.TestCase):
    """Tests for print_summary() function."""

    @patch("builtins.print")
    def test_prints_counts(self, mock_print):
        print_summary("Queue Processing Complete", {"processed": 10, "sent": 7, "failed": 1})

        printed_output = " ".join(str(call[0][0]) for call in mock_print.call_args_list)
        self.assertIn("Queue Processing Complete", printed_output)
        self.assertIn("Processed:", printed_output)
        self.assertIn("10", printed_output)
        self.assertIn("Failed:", printed_output)


if __name__ == "__main__":
    unittest.main()
