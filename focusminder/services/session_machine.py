"""
Work/break cycle of a single work session.

Every function takes the current session (or None when idle), the settings
and ``now``, and returns new objects; nothing here touches storage or the
clock. Transitions that do not apply are no-ops rather than errors.

Pausing freezes the session clock: ``end_time`` stays where it was set at
start, and time spent paused is subtracted from every elapsed-time
calculation instead.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from focusminder.schemas import BreakPeriod, PausePeriod, WorkSession, WorkSessionSettings
from focusminder.services.calculations import calculate_pause_seconds, minutes, seconds_between


class SessionEvent(str, Enum):
    BREAK_STARTED = "break_started"
    WORK_RESUMED = "work_resumed"
    SESSION_COMPLETED = "session_completed"


@dataclass
class TickResult:
    session: WorkSession | None
    events: list[SessionEvent] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.events)


def start_session(settings: WorkSessionSettings, now: datetime, session_id: str) -> WorkSession:
    """Idle -> working. Callers must make sure no session is active."""
    return WorkSession(
        id=session_id,
        start_time=now,
        end_time=now + minutes(settings.total_duration),
        breaks=[],
        pauses=[],
        is_paused=False,
        current_phase="work",
    )


def pause_session(session: WorkSession | None, now: datetime) -> WorkSession | None:
    if session is None or session.is_paused:
        return session
    pauses = session.pauses + [PausePeriod(pause_start=now)]
    return session.model_copy(update={"is_paused": True, "pauses": pauses})


def resume_session(session: WorkSession | None, now: datetime) -> WorkSession | None:
    if session is None or not session.is_paused:
        return session
    pauses = [
        p.model_copy(update={"pause_end": now}) if p.pause_end is None else p
        for p in session.pauses
    ]
    return session.model_copy(update={"is_paused": False, "pauses": pauses})


def end_session(session: WorkSession | None) -> None:
    return None


def current_break(session: WorkSession) -> BreakPeriod | None:
    if session.current_phase != "break" or not session.breaks:
        return None
    return session.breaks[-1]


def start_break(
    session: WorkSession | None, settings: WorkSessionSettings, now: datetime
) -> WorkSession | None:
    if session is None or session.current_phase == "break":
        return session
    new_break = BreakPeriod(start_time=now, end_time=now + minutes(settings.break_duration))
    return session.model_copy(
        update={"breaks": session.breaks + [new_break], "current_phase": "break"}
    )


def end_break(session: WorkSession | None, now: datetime) -> WorkSession | None:
    """Close the running break at ``now`` and go back to work."""
    if session is None or current_break(session) is None:
        return session
    return _close_break(session, now)


def _close_break(session: WorkSession, closed_at: datetime) -> WorkSession:
    last = session.breaks[-1].model_copy(update={"end_time": closed_at})
    return session.model_copy(
        update={"breaks": session.breaks[:-1] + [last], "current_phase": "work"}
    )


def total_pause_seconds(session: WorkSession, now: datetime) -> float:
    return calculate_pause_seconds(session.pauses, now)


def total_remaining_seconds(session: WorkSession, now: datetime) -> float:
    return seconds_between(now, session.end_time) + total_pause_seconds(session, now)


def elapsed_work_seconds(session: WorkSession, now: datetime) -> float:
    """Unpaused time since start, breaks included."""
    elapsed = seconds_between(session.start_time, now) - total_pause_seconds(session, now)
    total = seconds_between(session.start_time, session.end_time)
    return min(max(0.0, elapsed), total)


def work_anchor(session: WorkSession) -> datetime:
    """Start of the current work segment: end of the last break, or session start."""
    return session.breaks[-1].end_time if session.breaks else session.start_time


def next_break_in_seconds(
    session: WorkSession, settings: WorkSessionSettings, now: datetime
) -> float | None:
    if session.current_phase != "work":
        return None
    anchor = work_anchor(session)
    worked = seconds_between(anchor, now) - calculate_pause_seconds(session.pauses, now, since=anchor)
    return settings.break_interval * 60 - worked


def break_remaining_seconds(session: WorkSession, now: datetime) -> float | None:
    running = current_break(session)
    if running is None:
        return None
    paused = calculate_pause_seconds(session.pauses, now, since=running.start_time)
    return seconds_between(now, running.end_time) + paused


def tick(session: WorkSession | None, settings: WorkSessionSettings, now: datetime) -> TickResult:
    """
    Re-evaluate the session at ``now``.

    The total budget is checked first: once it is spent the session ends
    whatever the current phase. Otherwise at most one phase transition
    happens per tick. Calling tick again without crossing a boundary
    returns the session unchanged.
    """
    if session is None or session.is_paused:
        return TickResult(session)

    if total_remaining_seconds(session, now) <= 0:
        return TickResult(None, [SessionEvent.SESSION_COMPLETED])

    if session.current_phase == "work":
        if next_break_in_seconds(session, settings, now) <= 0:
            return TickResult(start_break(session, settings, now), [SessionEvent.BREAK_STARTED])
        return TickResult(session)

    left = break_remaining_seconds(session, now)
    if left is not None and left <= 0 and settings.auto_start_after_break:
        # Close at the boundary the break actually reached, not at the
        # tick time, so the next work segment does not drift.
        running = session.breaks[-1]
        paused = calculate_pause_seconds(session.pauses, now, since=running.start_time)
        effective_end = min(now, running.end_time + timedelta(seconds=paused))
        return TickResult(_close_break(session, effective_end), [SessionEvent.WORK_RESUMED])
    return TickResult(session)
