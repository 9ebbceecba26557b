"""
Reminder recurrence: when a reminder is next due, and whether it is due now.

Occurrences always carry the time of day of the reminder's original
anchor ``date``. Stepping is done on calendar dates (days, weeks, months)
and only then combined with that time of day, so wall-clock times do not
drift across month or DST boundaries.

Day selections are read permissively: entries outside the valid range
for the repeat type are ignored, and an empty selection means the
anchor's own weekday or day of month.
"""
import calendar
from datetime import date, datetime, timedelta
from typing import Iterator

from focusminder.schemas import Reminder, RepeatType

# Longest gap between two occurrences of any rule, with margin
_LOOKBACK = timedelta(days=62)


def js_weekday(day: date) -> int:
    """Weekday with Sunday as 0, as stored in reminder day selections."""
    return (day.weekday() + 1) % 7


def clamp_day(year: int, month: int, day: int) -> date:
    """Day ``day`` of the month, or the month's last day when it is shorter."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def selected_days(reminder: Reminder) -> list[int]:
    if reminder.repeat_type == RepeatType.WEEKLY:
        return [d for d in reminder.days if 0 <= d <= 6]
    if reminder.repeat_type == RepeatType.MONTHLY:
        return [d for d in reminder.days if 1 <= d <= 31]
    return []


def _candidate_dates(reminder: Reminder, start: date) -> Iterator[date]:
    """Occurrence dates on or after ``start``, ascending, for a repeating reminder."""
    anchor = reminder.date.date()
    days = selected_days(reminder)

    if reminder.repeat_type == RepeatType.DAILY:
        current = start
        while True:
            yield current
            current += timedelta(days=1)

    elif reminder.repeat_type == RepeatType.WEEKLY:
        if days:
            current = start
            while True:
                if js_weekday(current) in days:
                    yield current
                current += timedelta(days=1)
        else:
            weeks = max(0, -(-(start - anchor).days // 7))
            current = anchor + timedelta(weeks=weeks)
            while True:
                yield current
                current += timedelta(weeks=1)

    elif reminder.repeat_type == RepeatType.MONTHLY:
        year, month = start.year, start.month
        wanted = days or [anchor.day]
        while True:
            for candidate in sorted({clamp_day(year, month, d) for d in wanted}):
                if candidate >= start:
                    yield candidate
            year, month = add_months(year, month, 1)


def iter_occurrences(reminder: Reminder, after: datetime) -> Iterator[datetime]:
    """All occurrences at or after ``after`` (and never before the anchor)."""
    anchor = reminder.date
    if reminder.repeat_type == RepeatType.NONE:
        if after <= anchor:
            yield anchor
        return

    floor = max(after, anchor)
    for day in _candidate_dates(reminder, floor.date()):
        instant = datetime.combine(day, anchor.time())
        if instant >= floor:
            yield instant


def next_occurrence(reminder: Reminder, after: datetime) -> datetime | None:
    """
    The next instant the reminder fires at or after ``after``.

    A one-off reminder only has its own date, and only while ``after`` is
    still before it; afterwards there is no further occurrence.
    """
    if reminder.repeat_type == RepeatType.NONE:
        return reminder.date if after < reminder.date else None
    return next(iter_occurrences(reminder, after), None)


def latest_occurrence(reminder: Reminder, now: datetime) -> datetime | None:
    """The most recent occurrence at or before ``now``."""
    if now < reminder.date:
        return None
    if reminder.repeat_type == RepeatType.NONE:
        return reminder.date

    latest = None
    for instant in iter_occurrences(reminder, now - _LOOKBACK):
        if instant > now:
            break
        latest = instant
    return latest


def is_due(reminder: Reminder, now: datetime, last_fired: datetime | None) -> bool:
    """
    True when the reminder should fire at ``now``.

    One-off reminders fire once, the first time ``now`` reaches their date.
    Repeating reminders fire once per occurrence: when the latest
    occurrence has not been fired yet.
    """
    if now < reminder.date:
        return False
    if reminder.repeat_type == RepeatType.NONE:
        return last_fired is None
    latest = latest_occurrence(reminder, now)
    if latest is None:
        return False
    return last_fired is None or last_fired < latest
