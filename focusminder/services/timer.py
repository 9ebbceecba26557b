import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from pydantic import TypeAdapter

from focusminder import config
from focusminder.notifications import NotificationDispatcher
from focusminder.schemas import (
    ActionResponse,
    NotificationRecord,
    SessionInfo,
    StatusResponse,
    WorkSession,
    WorkSessionSettings,
    WorkSessionSettingsUpdate,
)
from focusminder.services import session_machine as machine
from focusminder.services.calculations import format_duration, format_minutes
from focusminder.services.session_machine import SessionEvent
from focusminder.storage import (
    CURRENT_SESSION_KEY,
    SETTINGS_KEY,
    WRITE_ATTEMPTS,
    ConcurrentUpdateError,
    KeyValueStore,
    load_or_default,
    read_record,
    save_record,
    save_record_if,
    update_record,
)

logger = logging.getLogger(__name__)

_settings_adapter = TypeAdapter(WorkSessionSettings)
_session_adapter = TypeAdapter(WorkSession | None)


@dataclass
class _Transition:
    """A new session record plus the notification changes that go with it"""

    session: WorkSession | None
    response: ActionResponse | None
    cancel: list[str] = field(default_factory=list)
    schedule: list[NotificationRecord] = field(default_factory=list)
    log: str = ""


def default_settings() -> WorkSessionSettings:
    return WorkSessionSettings(
        total_duration=config.DEFAULT_TOTAL_DURATION,
        break_interval=config.DEFAULT_BREAK_INTERVAL,
        break_duration=config.DEFAULT_BREAK_DURATION,
        auto_start_after_break=config.DEFAULT_AUTO_START,
        sound_enabled=config.DEFAULT_SOUND_ENABLED,
    )


def load_settings(store: KeyValueStore) -> WorkSessionSettings:
    return load_or_default(store, SETTINGS_KEY, _settings_adapter, default_settings())


def save_settings(store: KeyValueStore, settings: WorkSessionSettings) -> None:
    save_record(store, SETTINGS_KEY, _settings_adapter, settings)


def update_settings(store: KeyValueStore, changes: WorkSessionSettingsUpdate) -> WorkSessionSettings:
    """Merge the given fields into the current settings"""
    return update_record(
        store,
        SETTINGS_KEY,
        _settings_adapter,
        default_settings(),
        lambda current: WorkSessionSettings.model_validate(
            {**current.model_dump(), **changes.model_dump(exclude_none=True)}
        ),
    )


def load_session(store: KeyValueStore) -> WorkSession | None:
    return load_or_default(store, CURRENT_SESSION_KEY, _session_adapter, None)


def status_label(session: WorkSession | None) -> str:
    if session is None:
        return "idle"
    return "paused" if session.is_paused else "running"


def get_status(store: KeyValueStore, now: datetime) -> StatusResponse:
    """Current session snapshot; read only, the scheduler does the transitions"""
    settings = load_settings(store)
    session = load_session(store)

    if not session:
        return StatusResponse(status="idle", session=None, settings=settings)

    remaining = max(0, int(machine.total_remaining_seconds(session, now)))
    elapsed = int(machine.elapsed_work_seconds(session, now))
    next_break = machine.next_break_in_seconds(session, settings, now)
    break_left = machine.break_remaining_seconds(session, now)

    session_info = SessionInfo(
        id=session.id,
        start_time=session.start_time,
        end_time=session.end_time,
        current_time=now,
        phase=session.current_phase,
        is_paused=session.is_paused,
        total_remaining_seconds=remaining,
        total_remaining_formatted=format_duration(remaining),
        next_break_in_seconds=max(0, int(next_break)) if next_break is not None else None,
        break_remaining_seconds=max(0, int(break_left)) if break_left is not None else None,
        elapsed_work_seconds=elapsed,
        elapsed_work_formatted=format_duration(elapsed),
        break_count=len(session.breaks),
        pause_count=len(session.pauses),
        total_pause_seconds=int(machine.total_pause_seconds(session, now)),
    )
    return StatusResponse(status=status_label(session), session=session_info, settings=settings)


def start_timer(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """Start a new work session"""
    session_id = uuid.uuid4().hex

    def start(session: WorkSession | None, settings: WorkSessionSettings):
        if session:
            return ActionResponse(
                success=False,
                message="Session already running",
                status=status_label(session),
            )
        started, notices = _plan_boundary(machine.start_session(settings, now, session_id), settings, now)
        return _Transition(
            started,
            ActionResponse(success=True, message="Session started", status="running"),
            schedule=notices,
            log=f"Started work session {session_id} until {started.end_time.isoformat()}",
        )

    return _transition(store, notifier, start)


def pause_timer(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """Pause the current session"""

    def pause(session: WorkSession | None, settings: WorkSessionSettings):
        if not session:
            return ActionResponse(success=False, message="No active session", status="idle")
        if session.is_paused:
            return ActionResponse(success=False, message="Session already paused", status="paused")
        # Boundary notifications would fire at the wrong time while the clock is frozen
        return _Transition(
            machine.pause_session(_without_notifications(session), now),
            ActionResponse(success=True, message="Session paused", status="paused"),
            cancel=session.notification_ids,
            log=f"Paused work session {session.id}",
        )

    return _transition(store, notifier, pause)


def continue_timer(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """Resume from pause"""

    def resume(session: WorkSession | None, settings: WorkSessionSettings):
        if not session:
            return ActionResponse(success=False, message="No active session", status="idle")
        if not session.is_paused:
            return ActionResponse(success=False, message="Session not paused", status="running")
        resumed, notices = _plan_boundary(machine.resume_session(session, now), settings, now)
        return _Transition(
            resumed,
            ActionResponse(success=True, message="Session resumed", status="running"),
            schedule=notices,
            log=f"Resumed work session {session.id}",
        )

    return _transition(store, notifier, resume)


def start_break(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """Take a break before the interval is up"""

    def take_break(session: WorkSession | None, settings: WorkSessionSettings):
        if not session:
            return ActionResponse(success=False, message="No active session", status="idle")
        if session.current_phase == "break":
            return ActionResponse(success=False, message="Already on a break", status=status_label(session))
        on_break = machine.start_break(_without_notifications(session), settings, now)
        notices = []
        if not on_break.is_paused:
            on_break, notices = _plan_boundary(on_break, settings, now)
        return _Transition(
            on_break,
            ActionResponse(success=True, message="Break started", status=status_label(on_break)),
            cancel=session.notification_ids,
            schedule=notices,
            log=f"Break started in session {session.id}",
        )

    return _transition(store, notifier, take_break)


def end_break(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """Cut the current break short and go back to work"""

    def back_to_work(session: WorkSession | None, settings: WorkSessionSettings):
        if not session:
            return ActionResponse(success=False, message="No active session", status="idle")
        if session.current_phase != "break":
            return ActionResponse(success=False, message="Not on a break", status=status_label(session))
        working = machine.end_break(_without_notifications(session), now)
        notices = []
        if not working.is_paused:
            working, notices = _plan_boundary(working, settings, now)
        return _Transition(
            working,
            ActionResponse(success=True, message="Back to work", status=status_label(working)),
            cancel=session.notification_ids,
            schedule=notices,
            log=f"Break ended in session {session.id}",
        )

    return _transition(store, notifier, back_to_work)


def stop_timer(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> ActionResponse:
    """End the current session early"""

    def stop(session: WorkSession | None, settings: WorkSessionSettings):
        if not session:
            return ActionResponse(success=False, message="No active session", status="idle")
        return _Transition(
            machine.end_session(session),
            ActionResponse(success=True, message="Session stopped", status="idle"),
            cancel=session.notification_ids,
            log=f"Stopped work session {session.id}",
        )

    return _transition(store, notifier, stop)


def advance_session(
    store: KeyValueStore, notifier: NotificationDispatcher, now: datetime
) -> list[SessionEvent]:
    """
    One scheduler tick for the active session. Returns the transitions that happened.

    A tick that loses the write to a user action is dropped; the next tick
    looks at the session again.
    """
    session, raw = _read_session(store)
    if session is None or session.is_paused:
        return []

    settings = load_settings(store)
    result = machine.tick(session, settings, now)
    if not result.changed:
        return []

    if SessionEvent.SESSION_COMPLETED in result.events:
        transition = _Transition(
            result.session,
            None,
            cancel=session.notification_ids,
            schedule=[
                NotificationRecord(
                    id=f"complete_{session.id}",
                    title="Work session complete",
                    body=f"You finished {format_minutes(settings.total_duration)} of work.",
                    fire_at=now,
                    sound_id="default" if settings.sound_enabled else None,
                )
            ],
            log=f"Work session {session.id} completed",
        )
    else:
        advanced, notices = _plan_boundary(result.session, settings, now)
        transition = _Transition(
            advanced,
            None,
            schedule=notices,
            log=f"Work session {session.id}: {', '.join(event.value for event in result.events)}",
        )

    if not save_record_if(store, CURRENT_SESSION_KEY, _session_adapter, transition.session, raw):
        logger.info("Work session %s changed during the tick; skipping it", session.id)
        return []
    _dispatch(notifier, transition)
    return result.events


def _read_session(store: KeyValueStore) -> tuple[WorkSession | None, str | None]:
    return read_record(store, CURRENT_SESSION_KEY, _session_adapter, None)


def _transition(
    store: KeyValueStore,
    notifier: NotificationDispatcher,
    step: Callable[[WorkSession | None, WorkSessionSettings], _Transition | ActionResponse],
) -> ActionResponse:
    """
    Apply ``step`` to the stored session with compare-and-set.

    When another writer (usually the scheduler tick) saved the session in
    between, ``step`` runs again on the fresh record. Notifications are only
    touched once the new record is stored, so a lost attempt leaves none behind.
    """
    for _ in range(WRITE_ATTEMPTS):
        session, raw = _read_session(store)
        settings = load_settings(store)
        outcome = step(session, settings)
        if isinstance(outcome, ActionResponse):
            return outcome
        if save_record_if(store, CURRENT_SESSION_KEY, _session_adapter, outcome.session, raw):
            _dispatch(notifier, outcome)
            return outcome.response
        logger.debug("Work session changed concurrently, retrying")
    raise ConcurrentUpdateError(CURRENT_SESSION_KEY)


def _dispatch(notifier: NotificationDispatcher, transition: _Transition) -> None:
    for notification_id in transition.cancel:
        notifier.cancel(notification_id)
    for notice in transition.schedule:
        notifier.schedule(
            notice.id,
            notice.title,
            notice.body,
            notice.fire_at,
            repeat_rule=notice.repeat_rule,
            sound_id=notice.sound_id,
        )
    if transition.log:
        logger.info(transition.log)


def _plan_boundary(
    session: WorkSession,
    settings: WorkSessionSettings,
    now: datetime,
) -> tuple[WorkSession, list[NotificationRecord]]:
    """The notification for the next phase change, if one is wanted, and the session tracking it."""
    if not settings.sound_enabled:
        return session, []

    number = len(session.notification_ids)
    if session.current_phase == "work":
        seconds = machine.next_break_in_seconds(session, settings, now)
        notice = NotificationRecord(
            id=f"break_{session.id}_{number}",
            title="Break time",
            body=f"Take a {format_minutes(settings.break_duration)} break.",
            fire_at=now + timedelta(seconds=max(0.0, seconds)),
            sound_id="default",
        )
    elif settings.auto_start_after_break:
        seconds = machine.break_remaining_seconds(session, now) or 0.0
        notice = NotificationRecord(
            id=f"work_{session.id}_{number}",
            title="Back to work",
            body="Your break is over. Time to get back to work.",
            fire_at=now + timedelta(seconds=max(0.0, seconds)),
            sound_id="default",
        )
    else:
        return session, []

    tracked = session.model_copy(
        update={"notification_ids": session.notification_ids + [notice.id]}
    )
    return tracked, [notice]


def _without_notifications(session: WorkSession) -> WorkSession:
    return session.model_copy(update={"notification_ids": []})
