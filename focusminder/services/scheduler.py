import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Protocol

from focusminder.notifications import NotificationDispatcher
from focusminder.schemas import TickReport
from focusminder.services import tasks, timer
from focusminder.storage import KeyValueStore

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now()


class ManualClock:
    """Clock that only moves when told to"""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now


def run_tick(store: KeyValueStore, notifier: NotificationDispatcher, now: datetime) -> TickReport:
    """
    Evaluate everything time-driven once.

    The work session and the reminders touch disjoint records, so their
    order does not matter.
    """
    events = timer.advance_session(store, notifier, now)
    fired = tasks.fire_due_reminders(store, notifier, now)
    return TickReport(session_events=[event.value for event in events], fired_reminders=fired)


class PollingScheduler:
    """
    Calls ``tick`` every ``interval`` seconds until stopped.

    Each tick runs in a worker thread so blocking storage calls do not hold
    up the event loop. Ticks never overlap: the next sleep starts once the
    previous tick has returned. A tick that raises is logged and skipped.
    """

    def __init__(self, tick: Callable[[], object], interval: float):
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.tick = tick
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> bool:
        try:
            self.tick()
        except Exception:
            logger.exception("Scheduler tick failed")
            return False
        return True

    async def run(self) -> None:
        while True:
            await asyncio.to_thread(self.run_once)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info("Polling scheduler started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Polling scheduler stopped")
