from datetime import datetime, timedelta

from focusminder.schemas import PausePeriod


def format_duration(seconds: int) -> str:
    """Format seconds as HH:MM:SS"""
    hours, remainder = divmod(abs(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    sign = "-" if seconds < 0 else ""
    return f"{sign}{int(hours):02d}:{int(minutes):02d}:{int(secs):02d}"


def format_minutes(minutes: float) -> str:
    """Human readable minutes, e.g. '1h 30m' or '5m'"""
    total = int(round(minutes))
    hours, mins = divmod(total, 60)
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"


def minutes(value: float) -> timedelta:
    return timedelta(minutes=value)


def calculate_pause_seconds(
    pauses: list[PausePeriod], now: datetime, since: datetime | None = None
) -> float:
    """
    Total paused time in seconds inside the window [since, now].

    An open pause counts up to ``now``. Without ``since`` every pause
    counts from its start.
    """
    total = 0.0
    for pause in pauses:
        start = pause.pause_start if since is None else max(pause.pause_start, since)
        end = min(pause.pause_end or now, now)
        if end > start:
            total += (end - start).total_seconds()
    return total


def seconds_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()
