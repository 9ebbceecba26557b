import asyncio
import threading
import unittest
from datetime import datetime, timedelta

from focusminder.schemas import Reminder, TaskCreate, WorkSessionSettings
from focusminder.services import tasks, timer
from focusminder.services.scheduler import ManualClock, PollingScheduler, run_tick
from tests.fakes import MemoryStore, RecordingDispatcher

START = datetime(2026, 3, 2, 9, 0, 0)


class RunTickTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()
        self.notifier = RecordingDispatcher()
        self.clock = ManualClock(START)
        timer.save_settings(
            self.store,
            WorkSessionSettings(
                total_duration=60,
                break_interval=25,
                break_duration=5,
                auto_start_after_break=True,
                sound_enabled=False,
            ),
        )

    def tick(self):
        return run_tick(self.store, self.notifier, self.clock.now())

    def test_manual_clock(self) -> None:
        self.assertEqual(self.clock.advance(minutes=5), START + timedelta(minutes=5))
        self.assertEqual(self.clock.advance(timedelta(seconds=30)), START + timedelta(minutes=5, seconds=30))
        self.clock.set(START)
        self.assertEqual(self.clock.now(), START)

    def test_drives_session_and_reminders(self) -> None:
        task = tasks.add_task(
            self.store,
            self.notifier,
            TaskCreate(title="Check mail", reminder=Reminder(date=START + timedelta(minutes=25))),
            START,
        )
        timer.start_timer(self.store, self.notifier, START)

        seen = []
        for _ in range(60):
            self.clock.advance(minutes=1)
            report = self.tick()
            if report.session_events or report.fired_reminders:
                seen.append((self.clock.now() - START, report.session_events, report.fired_reminders))

        self.assertEqual(seen[0], (timedelta(minutes=25), ["break_started"], [task.id]))
        self.assertEqual(seen[1], (timedelta(minutes=30), ["work_resumed"], []))
        self.assertEqual(seen[-1], (timedelta(minutes=60), ["session_completed"], []))

    def test_paused_session_is_skipped(self) -> None:
        timer.start_timer(self.store, self.notifier, START)
        timer.pause_timer(self.store, self.notifier, START)
        self.clock.advance(hours=2)
        self.assertEqual(self.tick().session_events, [])
        self.assertIsNotNone(timer.load_session(self.store))


class PollingSchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    def test_rejects_non_positive_interval(self) -> None:
        with self.assertRaises(ValueError):
            PollingScheduler(lambda: None, 0)

    def test_failing_tick_is_skipped(self) -> None:
        def boom():
            raise RuntimeError("storage down")

        scheduler = PollingScheduler(boom, 1)
        with self.assertLogs("focusminder.services.scheduler", level="ERROR"):
            self.assertFalse(scheduler.run_once())

    async def test_runs_until_stopped(self) -> None:
        calls = []
        scheduler = PollingScheduler(lambda: calls.append(1), 0.01)

        scheduler.start()
        self.assertTrue(scheduler.running)
        await asyncio.sleep(0.05)
        await scheduler.stop()

        self.assertFalse(scheduler.running)
        # A tick already handed to its thread may still finish
        await asyncio.sleep(0.01)
        count = len(calls)
        self.assertGreaterEqual(count, 2)
        await asyncio.sleep(0.03)
        self.assertEqual(len(calls), count)

    async def test_ticks_run_off_the_event_loop(self) -> None:
        threads = []
        scheduler = PollingScheduler(lambda: threads.append(threading.get_ident()), 0.01)

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        self.assertTrue(threads)
        self.assertNotIn(threading.get_ident(), threads)

    async def test_keeps_running_after_failure(self) -> None:
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        scheduler = PollingScheduler(flaky, 0.01)
        with self.assertLogs("focusminder.services.scheduler", level="ERROR"):
            scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()
        self.assertGreaterEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
