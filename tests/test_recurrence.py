import unittest
from datetime import datetime, timedelta

from focusminder.schemas import Reminder, RepeatType
from focusminder.services.recurrence import (
    clamp_day,
    is_due,
    js_weekday,
    latest_occurrence,
    next_occurrence,
)


class NextOccurrenceTestCase(unittest.TestCase):
    def test_one_off_only_before_its_date(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0))
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 1, 12, 0)), datetime(2026, 3, 2, 9, 0))
        self.assertIsNone(next_occurrence(reminder, datetime(2026, 3, 2, 9, 0)))
        self.assertIsNone(next_occurrence(reminder, datetime(2026, 3, 5)))

    def test_daily_keeps_anchor_time(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 30), repeat_type="daily")
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 10, 8, 0)), datetime(2026, 3, 10, 9, 30))
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 10, 10, 0)), datetime(2026, 3, 11, 9, 30))
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 10, 9, 30)), datetime(2026, 3, 10, 9, 30))

    def test_daily_never_before_anchor(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 30), repeat_type="day")
        self.assertEqual(reminder.repeat_type, RepeatType.DAILY)
        self.assertEqual(next_occurrence(reminder, datetime(2026, 2, 1)), datetime(2026, 3, 2, 9, 30))

    def test_weekly_day_set(self) -> None:
        # Monday 2026-03-02, anchor 09:00
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0), repeat_type="weekly", days=[1, 3, 5])
        tuesday = datetime(2026, 3, 3, 10, 0)
        self.assertEqual(next_occurrence(reminder, tuesday), datetime(2026, 3, 4, 9, 0))

    def test_weekly_day_set_wraps_to_next_week(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0), repeat_type="weekly", days=[1])
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 2, 9, 1)), datetime(2026, 3, 9, 9, 0))

    def test_weekly_without_days_steps_from_anchor(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 4, 18, 0), repeat_type="week")
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 5)), datetime(2026, 3, 11, 18, 0))
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 11, 18, 0)), datetime(2026, 3, 11, 18, 0))

    def test_weekly_out_of_range_days_fall_back_to_anchor_weekday(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 4, 18, 0), repeat_type="weekly", days=[7, -1])
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 5)), datetime(2026, 3, 11, 18, 0))

    def test_monthly_clamps_to_end_of_february(self) -> None:
        reminder = Reminder(date=datetime(2026, 1, 31, 8, 0), repeat_type="monthly", days=[31])
        self.assertEqual(next_occurrence(reminder, datetime(2026, 2, 28)), datetime(2026, 2, 28, 8, 0))

    def test_monthly_clamps_to_leap_day(self) -> None:
        reminder = Reminder(date=datetime(2028, 1, 31, 8, 0), repeat_type="monthly", days=[31])
        self.assertEqual(next_occurrence(reminder, datetime(2028, 2, 20)), datetime(2028, 2, 29, 8, 0))

    def test_monthly_day_set(self) -> None:
        reminder = Reminder(date=datetime(2026, 1, 1, 7, 0), repeat_type="monthly", days=[15, 1])
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 2)), datetime(2026, 3, 15, 7, 0))
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 16)), datetime(2026, 4, 1, 7, 0))

    def test_monthly_without_days_uses_anchor_day_each_month(self) -> None:
        reminder = Reminder(date=datetime(2026, 1, 31, 8, 0), repeat_type="month")
        self.assertEqual(next_occurrence(reminder, datetime(2026, 2, 1)), datetime(2026, 2, 28, 8, 0))
        # Clamping in February does not carry over to March
        self.assertEqual(next_occurrence(reminder, datetime(2026, 3, 1)), datetime(2026, 3, 31, 8, 0))

    def test_monthly_crosses_year_end(self) -> None:
        reminder = Reminder(date=datetime(2026, 1, 10, 8, 0), repeat_type="monthly")
        self.assertEqual(next_occurrence(reminder, datetime(2026, 12, 11)), datetime(2027, 1, 10, 8, 0))


class DueTestCase(unittest.TestCase):
    def test_one_off_fires_once(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0))
        self.assertFalse(is_due(reminder, datetime(2026, 3, 2, 8, 59), None))
        self.assertTrue(is_due(reminder, datetime(2026, 3, 2, 9, 0), None))

        fired_at = datetime(2026, 3, 2, 9, 0)
        for seconds in (1, 30, 3600, 86400 * 3):
            self.assertFalse(is_due(reminder, fired_at + timedelta(seconds=seconds), fired_at))

    def test_daily_fires_once_per_day(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0), repeat_type="daily")
        first = datetime(2026, 3, 2, 9, 0, 1)
        self.assertTrue(is_due(reminder, first, None))
        self.assertFalse(is_due(reminder, datetime(2026, 3, 2, 21, 0), first))
        self.assertTrue(is_due(reminder, datetime(2026, 3, 3, 9, 0), first))

    def test_latest_occurrence(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2, 9, 0), repeat_type="weekly", days=[1, 3, 5])
        self.assertIsNone(latest_occurrence(reminder, datetime(2026, 3, 1)))
        self.assertEqual(latest_occurrence(reminder, datetime(2026, 3, 3, 12, 0)), datetime(2026, 3, 2, 9, 0))
        self.assertEqual(latest_occurrence(reminder, datetime(2026, 3, 7)), datetime(2026, 3, 6, 9, 0))


class ReminderParsingTestCase(unittest.TestCase):
    def test_epoch_millis_date(self) -> None:
        anchor = datetime(2026, 3, 2, 9, 0)
        reminder = Reminder(date=int(anchor.timestamp() * 1000))
        self.assertEqual(reminder.date, anchor)

    def test_malformed_days_are_dropped(self) -> None:
        reminder = Reminder(date=datetime(2026, 3, 2), repeat_type="weekly", days=[3, "5", "x", None, 3])
        self.assertEqual(reminder.days, [3, 5])
        self.assertEqual(Reminder(date=datetime(2026, 3, 2), days="1,2").days, [])

    def test_helpers(self) -> None:
        self.assertEqual(js_weekday(datetime(2026, 3, 1).date()), 0)  # Sunday
        self.assertEqual(js_weekday(datetime(2026, 3, 2).date()), 1)  # Monday
        self.assertEqual(clamp_day(2026, 4, 31).day, 30)


if __name__ == "__main__":
    unittest.main()
