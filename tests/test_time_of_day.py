from __future__ import annotations

import unittest
from datetime import datetime, time

from paintconnect.services.reminders import is_within_window
from paintconnect.services.time_of_day import TimeOfDay, parse_time_of_day


class TimeOfDayTests(unittest.TestCase):
    def test_parse_accepts_minutes_and_seconds_forms(self) -> None:
        self.assertEqual(TimeOfDay.parse("08:00").minute_of_day, 480)
        self.assertEqual(TimeOfDay.parse("16:30:45").minute_of_day, 16 * 60 + 30)
        self.assertEqual(TimeOfDay.parse(" 7:05 ").minute_of_day, 7 * 60 + 5)
        self.assertEqual(str(TimeOfDay.parse("7:05")), "07:05")

    def test_parse_rejects_malformed_values(self) -> None:
        for raw in ("", "8h00", "24:00", "12:60", "12", "ab:cd", "10:00:61", "-1:30"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    TimeOfDay.parse(raw)

    def test_parse_time_of_day_returns_none_for_missing_or_invalid(self) -> None:
        self.assertIsNone(parse_time_of_day(None))
        self.assertIsNone(parse_time_of_day("   "))
        self.assertIsNone(parse_time_of_day("later"))
        self.assertEqual(parse_time_of_day("06:45"), TimeOfDay(405))

    def test_from_time_truncates_seconds(self) -> None:
        self.assertEqual(TimeOfDay.from_time(time(8, 2, 59)), TimeOfDay(482))
        self.assertEqual(TimeOfDay.from_time(datetime(2026, 10, 19, 23, 59, 30)), TimeOfDay(1439))

    def test_minutes_since_does_not_wrap_midnight(self) -> None:
        self.assertEqual(TimeOfDay.parse("08:04").minutes_since(TimeOfDay.parse("08:00")), 4)
        self.assertEqual(TimeOfDay.parse("07:59").minutes_since(TimeOfDay.parse("08:00")), -1)
        self.assertEqual(TimeOfDay.parse("00:01").minutes_since(TimeOfDay.parse("23:58")), -1437)

    def test_shifted_wraps_modulo_day(self) -> None:
        self.assertEqual(str(TimeOfDay.parse("23:58").shifted(5)), "00:03")
        self.assertEqual(str(TimeOfDay.parse("00:02").shifted(-5)), "23:57")

    def test_out_of_range_value_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TimeOfDay(1440)

    def test_window_check(self) -> None:
        start = TimeOfDay.parse("08:00")
        self.assertTrue(is_within_window(TimeOfDay.parse("08:00"), start, 5))
        self.assertTrue(is_within_window(TimeOfDay.parse("08:04"), start, 5))
        self.assertFalse(is_within_window(TimeOfDay.parse("08:05"), start, 5))
        self.assertFalse(is_within_window(TimeOfDay.parse("07:59"), start, 5))
        # Windows that cross midnight never open after it.
        self.assertFalse(is_within_window(TimeOfDay.parse("00:01"), TimeOfDay.parse("23:58"), 5))


if __name__ == "__main__":
    unittest.main()
