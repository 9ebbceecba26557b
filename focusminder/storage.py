"""Key-value persistence of versioned JSON blobs.

Every record is wrapped in an envelope ``{"version": N, "data": ...}`` so a
blob written by an incompatible build is reported instead of being parsed
into a silently wrong object.

The scheduler and the API handlers write the same records from different
threads, so read-modify-write goes through ``compare_and_set``: a write
only lands when the record still holds the blob it was computed from.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Protocol, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from focusminder.models import KeyValue

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = 1

# How often a read-modify-write is retried after losing to another writer
WRITE_ATTEMPTS = 5

# Storage keys
SETTINGS_KEY = "work_session:settings"
CURRENT_SESSION_KEY = "work_session:current"
PRESETS_KEY = "work_session:presets"
TASKS_KEY = "todos"
LAST_FIRED_KEY = "reminders:last_fired"
FILTER_PRESETS_KEY = "notifications:filter_presets"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, blob: str) -> None: ...

    def compare_and_set(self, key: str, expected: str | None, blob: str) -> bool:
        """Store ``blob`` only if the key still holds ``expected`` (None: absent)."""
        ...


class StoredStateError(Exception):
    """A stored blob could not be read back."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Unreadable record {key!r}: {reason}")
        self.key = key
        self.reason = reason


class ConcurrentUpdateError(Exception):
    """A record kept changing underneath every write attempt."""

    def __init__(self, key: str):
        super().__init__(f"Record {key!r} is being changed concurrently")
        self.key = key


class _Envelope(BaseModel):
    version: int
    data: Any = None


class SqlKeyValueStore:
    """KeyValueStore backed by the ``kv_store`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> str | None:
        # Column query so a row cached in the session never hides a newer write
        return self.db.query(KeyValue.value).filter(KeyValue.key == key).scalar()

    def set(self, key: str, blob: str) -> None:
        row = self.db.query(KeyValue).filter(KeyValue.key == key).first()
        if row:
            row.value = blob
        else:
            self.db.add(KeyValue(key=key, value=blob))
        self.db.commit()

    def compare_and_set(self, key: str, expected: str | None, blob: str) -> bool:
        if expected is None:
            try:
                self.db.execute(
                    insert(KeyValue).values(key=key, value=blob, updated_at=datetime.now())
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return False
            return True

        rows_updated = (
            self.db.query(KeyValue)
            .filter(KeyValue.key == key, KeyValue.value == expected)
            .update(
                {KeyValue.value: blob, KeyValue.updated_at: datetime.now()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return rows_updated == 1


def _decode(key: str, raw: str, adapter: TypeAdapter[T]) -> T:
    try:
        envelope = _Envelope.model_validate_json(raw)
    except ValidationError as exc:
        raise StoredStateError(key, "not a versioned record") from exc
    if envelope.version != SCHEMA_VERSION:
        raise StoredStateError(key, f"unsupported version {envelope.version}")
    try:
        return adapter.validate_python(envelope.data)
    except ValidationError as exc:
        raise StoredStateError(key, str(exc)) from exc


def _encode(adapter: TypeAdapter[T], value: T) -> str:
    envelope = _Envelope(version=SCHEMA_VERSION, data=adapter.dump_python(value, mode="json"))
    return envelope.model_dump_json()


def load_record(store: KeyValueStore, key: str, adapter: TypeAdapter[T]) -> T | None:
    """Read and validate the record under ``key``; None when nothing is stored."""
    raw = store.get(key)
    if raw is None:
        return None
    return _decode(key, raw, adapter)


def read_record(
    store: KeyValueStore, key: str, adapter: TypeAdapter[T], default: T
) -> tuple[T, str | None]:
    """
    Like ``load_or_default``, but also returns the raw blob the value came
    from, to be passed to ``save_record_if`` later.
    """
    raw = store.get(key)
    if raw is None:
        return default, None
    try:
        value = _decode(key, raw, adapter)
    except StoredStateError as exc:
        logger.warning("%s; falling back to defaults", exc)
        return default, raw
    return (default if value is None else value), raw


def load_or_default(store: KeyValueStore, key: str, adapter: TypeAdapter[T], default: T) -> T:
    return read_record(store, key, adapter, default)[0]


def save_record(store: KeyValueStore, key: str, adapter: TypeAdapter[T], value: T) -> None:
    store.set(key, _encode(adapter, value))


def save_record_if(
    store: KeyValueStore, key: str, adapter: TypeAdapter[T], value: T, expected: str | None
) -> bool:
    """Save ``value`` unless the record moved on from ``expected`` since it was read."""
    return store.compare_and_set(key, expected, _encode(adapter, value))


def update_record(
    store: KeyValueStore,
    key: str,
    adapter: TypeAdapter[T],
    default: T,
    change: Callable[[T], T | None],
) -> T | None:
    """
    Read-modify-write the record under ``key``.

    ``change`` receives the current value and returns the new one, or None
    to leave the record untouched. It is called again on a fresh read when
    another writer got in first, so it must not have side effects. Returns
    the value that was stored, or None when nothing changed.
    """
    for _ in range(WRITE_ATTEMPTS):
        current, raw = read_record(store, key, adapter, default)
        updated = change(current)
        if updated is None:
            return None
        if save_record_if(store, key, adapter, updated, raw):
            return updated
        logger.debug("Record %r changed while updating it, retrying", key)
    raise ConcurrentUpdateError(key)
