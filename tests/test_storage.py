import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import TypeAdapter
from sqlalchemy.orm import sessionmaker

from focusminder.database import Base, make_engine
from focusminder.notifications import SqlNotificationDispatcher
from focusminder.schemas import WorkSessionSettings
from focusminder.storage import (
    ConcurrentUpdateError,
    SqlKeyValueStore,
    StoredStateError,
    load_or_default,
    load_record,
    save_record,
    update_record,
)
from tests.fakes import InterleavingStore, MemoryStore

NOW = datetime(2026, 3, 2, 9, 0, 0)

settings_adapter = TypeAdapter(WorkSessionSettings)

SETTINGS = WorkSessionSettings(total_duration=30, break_interval=10, break_duration=2)


class StorageTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmp_dir.name) / "test.db"
        self.engine = make_engine(self.db_path)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        Base.metadata.create_all(bind=self.engine)
        self.db = self.SessionLocal()
        self.store = SqlKeyValueStore(self.db)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self.tmp_dir.cleanup()

    def test_engine_allows_concurrent_readers(self) -> None:
        with self.engine.connect() as connection:
            self.assertEqual(connection.exec_driver_sql("PRAGMA journal_mode").scalar(), "wal")

    def test_set_overwrites(self) -> None:
        self.assertIsNone(self.store.get("k"))
        self.store.set("k", "one")
        self.store.set("k", "two")
        self.assertEqual(self.store.get("k"), "two")

    def test_record_envelope(self) -> None:
        settings = WorkSessionSettings(total_duration=30, break_interval=10, break_duration=2)
        save_record(self.store, "settings", settings_adapter, settings)

        self.assertIn('"version":1', self.store.get("settings"))
        self.assertEqual(load_record(self.store, "settings", settings_adapter), settings)
        self.assertIsNone(load_record(self.store, "absent", settings_adapter))

    def test_unreadable_records_raise_typed_error(self) -> None:
        for blob in ("{broken", '{"total_duration": 5}', '{"version": 9, "data": {}}', '{"version": 1, "data": {"total_duration": -1}}'):
            self.store.set("settings", blob)
            with self.assertRaises(StoredStateError) as context:
                load_record(self.store, "settings", settings_adapter)
            self.assertEqual(context.exception.key, "settings")

    def test_load_or_default_logs_and_falls_back(self) -> None:
        self.store.set("settings", "{broken")
        default = WorkSessionSettings(total_duration=1, break_interval=1, break_duration=1)
        with self.assertLogs("focusminder.storage", level="WARNING"):
            self.assertEqual(load_or_default(self.store, "settings", settings_adapter, default), default)

    def test_compare_and_set(self) -> None:
        self.assertTrue(self.store.compare_and_set("k", None, "one"))
        self.assertFalse(self.store.compare_and_set("k", None, "other"))
        self.assertFalse(self.store.compare_and_set("k", "stale", "other"))
        self.assertEqual(self.store.get("k"), "one")

        self.assertTrue(self.store.compare_and_set("k", "one", "two"))
        self.assertEqual(self.store.get("k"), "two")

    def test_reads_see_writes_from_other_sessions(self) -> None:
        self.store.set("k", "one")
        other_db = self.SessionLocal()
        self.addCleanup(other_db.close)

        SqlKeyValueStore(other_db).set("k", "two")
        self.assertEqual(self.store.get("k"), "two")

    def test_update_record_retries_after_concurrent_write(self) -> None:
        save_record(self.store, "settings", settings_adapter, SETTINGS)
        other_db = self.SessionLocal()
        self.addCleanup(other_db.close)
        other = SqlKeyValueStore(other_db)
        racing = InterleavingStore(
            self.store,
            "settings",
            lambda: save_record(
                other, "settings", settings_adapter, SETTINGS.model_copy(update={"total_duration": 45})
            ),
        )
        seen = []

        def longer(current: WorkSessionSettings) -> WorkSessionSettings:
            seen.append(current.total_duration)
            return current.model_copy(update={"total_duration": current.total_duration + 5})

        updated = update_record(racing, "settings", settings_adapter, SETTINGS, longer)

        self.assertEqual(seen, [30, 45])
        self.assertEqual(updated.total_duration, 50)
        self.assertEqual(load_record(self.store, "settings", settings_adapter), updated)

    def test_update_record_gives_up_when_always_outrun(self) -> None:
        store = MemoryStore()
        store.compare_and_set = lambda key, expected, blob: False

        with self.assertRaises(ConcurrentUpdateError) as context:
            update_record(store, "settings", settings_adapter, SETTINGS, lambda current: current)
        self.assertEqual(context.exception.key, "settings")

    def test_update_record_without_change_writes_nothing(self) -> None:
        self.assertIsNone(update_record(self.store, "settings", settings_adapter, SETTINGS, lambda current: None))
        self.assertIsNone(self.store.get("settings"))


class SqlNotificationDispatcherTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.engine = make_engine(Path(self.tmp_dir.name) / "test.db")
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)()
        self.now = NOW
        self.notifier = SqlNotificationDispatcher(self.db, lambda: self.now)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self.tmp_dir.cleanup()

    def test_schedule_replaces_same_id(self) -> None:
        self.notifier.schedule("a", "First", "", NOW + timedelta(minutes=5))
        self.notifier.schedule("a", "Second", "body", NOW + timedelta(minutes=10), sound_id="bell")

        pending = self.notifier.list_pending()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].title, "Second")
        self.assertEqual(pending[0].fire_at, NOW + timedelta(minutes=10))
        self.assertEqual(pending[0].sound_id, "bell")

    def test_pending_excludes_fired_one_offs(self) -> None:
        self.notifier.schedule("past", "Past", "", NOW - timedelta(minutes=1))
        self.notifier.schedule("daily", "Daily", "", NOW - timedelta(days=1), repeat_rule="daily")
        self.notifier.schedule("future", "Future", "", NOW + timedelta(minutes=1))

        self.assertEqual([n.id for n in self.notifier.list_pending()], ["daily", "future"])

    def test_cancel(self) -> None:
        self.notifier.schedule("a", "A", "", NOW + timedelta(minutes=1))
        self.notifier.schedule("b", "B", "", NOW + timedelta(minutes=2))

        self.notifier.cancel("a")
        self.notifier.cancel("unknown")
        self.assertEqual([n.id for n in self.notifier.list_pending()], ["b"])

        self.notifier.cancel_all()
        self.assertEqual(self.notifier.list_pending(), [])


if __name__ == "__main__":
    unittest.main()
