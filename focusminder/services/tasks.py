import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from pydantic import TypeAdapter

from focusminder.notifications import NotificationDispatcher
from focusminder.schemas import Reminder, RepeatType, Task, TaskCreate, TaskUpdate, WorkTime
from focusminder.services.recurrence import is_due, next_occurrence
from focusminder.storage import (
    LAST_FIRED_KEY,
    TASKS_KEY,
    KeyValueStore,
    load_or_default,
    read_record,
    save_record_if,
    update_record,
)

logger = logging.getLogger(__name__)

_tasks_adapter = TypeAdapter(list[Task])
_last_fired_adapter = TypeAdapter(dict[str, datetime])

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
PRIORITY_CYCLE = ("low", "medium", "high")

REMINDER_TITLE = "TODO Reminder"

# Changing any of these moves or cancels the pending reminder notification
RESCHEDULE_FIELDS = {"reminder", "completed", "title"}


def load_tasks(store: KeyValueStore) -> list[Task]:
    return load_or_default(store, TASKS_KEY, _tasks_adapter, [])


def reminder_notification_id(task_id: str) -> str:
    return f"reminder_{task_id}"


def list_tasks(
    store: KeyValueStore,
    category: str | None = None,
    priority: str | None = None,
    completed: bool | None = None,
    query: str | None = None,
    sort_by: str | None = None,
) -> list[Task]:
    """Filter and sort the task list. Unknown sort keys keep insertion order."""
    tasks = load_tasks(store)
    if category:
        tasks = [t for t in tasks if t.category == category]
    if priority:
        tasks = [t for t in tasks if t.priority == priority]
    if completed is not None:
        tasks = [t for t in tasks if t.completed == completed]
    if query:
        needle = query.strip().lower()
        tasks = [t for t in tasks if needle in t.title.lower()]

    if sort_by == "priority":
        tasks.sort(key=lambda t: PRIORITY_ORDER[t.priority], reverse=True)
    elif sort_by == "date":
        tasks.sort(key=lambda t: t.created_at, reverse=True)
    elif sort_by == "category":
        tasks.sort(key=lambda t: t.category)
    return tasks


def get_task(store: KeyValueStore, task_id: str) -> Task | None:
    return next((t for t in load_tasks(store) if t.id == task_id), None)


def add_task(
    store: KeyValueStore, notifier: NotificationDispatcher, data: TaskCreate, now: datetime
) -> Task:
    task = Task(
        id=uuid.uuid4().hex,
        title=data.title.strip(),
        completed=False,
        priority=data.priority,
        category=data.category,
        created_at=now,
        reminder=data.reminder,
        work_time=data.work_time,
    )
    update_record(store, TASKS_KEY, _tasks_adapter, [], lambda tasks: tasks + [task])
    if task.reminder:
        _schedule_reminder(notifier, task, now)
    logger.info("Added task %s", task.id)
    return task


def update_task(
    store: KeyValueStore,
    notifier: NotificationDispatcher,
    task_id: str,
    changes: TaskUpdate,
    now: datetime,
) -> Task | None:
    return _replace_task(
        store, notifier, task_id, now, lambda task: changes.model_dump(exclude_none=True)
    )


def toggle_task(
    store: KeyValueStore, notifier: NotificationDispatcher, task_id: str, now: datetime
) -> Task | None:
    return _replace_task(
        store, notifier, task_id, now, lambda task: {"completed": not task.completed}
    )


def cycle_priority(
    store: KeyValueStore, notifier: NotificationDispatcher, task_id: str, now: datetime
) -> Task | None:
    """low -> medium -> high -> low"""

    def next_priority(task: Task) -> dict:
        index = PRIORITY_CYCLE.index(task.priority)
        return {"priority": PRIORITY_CYCLE[(index + 1) % len(PRIORITY_CYCLE)]}

    return _replace_task(store, notifier, task_id, now, next_priority)


def remove_task(store: KeyValueStore, notifier: NotificationDispatcher, task_id: str) -> bool:
    def without_task(tasks: list[Task]) -> list[Task] | None:
        remaining = [t for t in tasks if t.id != task_id]
        return None if len(remaining) == len(tasks) else remaining

    if update_record(store, TASKS_KEY, _tasks_adapter, [], without_task) is None:
        return False
    notifier.cancel(reminder_notification_id(task_id))
    _forget_fired(store, task_id)
    logger.info("Removed task %s", task_id)
    return True


def set_reminder(
    store: KeyValueStore,
    notifier: NotificationDispatcher,
    task_id: str,
    reminder: Reminder,
    now: datetime,
) -> Task | None:
    """Attach a reminder to the task, replacing any previous one"""
    task = _replace_task(store, notifier, task_id, now, lambda task: {"reminder": reminder})
    if task is not None:
        _forget_fired(store, task_id)
    return task


def remove_reminder(
    store: KeyValueStore, notifier: NotificationDispatcher, task_id: str, now: datetime
) -> Task | None:
    task = _replace_task(store, notifier, task_id, now, lambda task: {"reminder": None})
    if task is not None:
        _forget_fired(store, task_id)
    return task


def add_work_time(store: KeyValueStore, task_id: str, minutes: int) -> Task | None:
    """Add minutes actually worked on the task"""

    def with_minutes(task: Task) -> Task:
        work_time = task.work_time or WorkTime(estimated=0)
        work_time = work_time.model_copy(update={"actual": (work_time.actual or 0) + minutes})
        return task.model_copy(update={"work_time": work_time})

    return _modify_task(store, task_id, with_minutes)


def fire_due_reminders(
    store: KeyValueStore, notifier: NotificationDispatcher, now: datetime
) -> list[str]:
    """
    Dispatch every reminder that became due, once per occurrence.

    Returns the ids of the tasks whose reminder fired. The fire time is
    stored before anything is dispatched, so a reminder does not fire again
    within the same due window. When a reminder is edited while the tick
    runs, the tick fires nothing and the next one starts over.
    """
    last_fired, raw = read_record(store, LAST_FIRED_KEY, _last_fired_adapter, {})
    due = [
        task
        for task in load_tasks(store)
        if not task.completed
        and task.reminder is not None
        and is_due(task.reminder, now, last_fired.get(task.id))
    ]
    if not due:
        return []

    fired_at = {**last_fired, **{task.id: now for task in due}}
    if not save_record_if(store, LAST_FIRED_KEY, _last_fired_adapter, fired_at, raw):
        logger.info("Reminders changed during the tick; firing them on the next one")
        return []

    for task in due:
        notifier.schedule(
            f"{reminder_notification_id(task.id)}_due",
            REMINDER_TITLE,
            f"It's time for \"{task.title}\"",
            now,
            sound_id=task.reminder.sound_type,
        )
        # The occurrence at ``now`` has been handled; look strictly past it
        _schedule_reminder(notifier, task, now + timedelta(microseconds=1))
        logger.info("Reminder fired for task %s", task.id)
    return [task.id for task in due]


def _modify_task(
    store: KeyValueStore, task_id: str, change: Callable[[Task], Task]
) -> Task | None:
    changed: Task | None = None

    def replace(tasks: list[Task]) -> list[Task] | None:
        nonlocal changed
        for index, task in enumerate(tasks):
            if task.id == task_id:
                changed = change(task)
                return tasks[:index] + [changed] + tasks[index + 1:]
        return None

    if update_record(store, TASKS_KEY, _tasks_adapter, [], replace) is None:
        return None
    return changed


def _replace_task(
    store: KeyValueStore,
    notifier: NotificationDispatcher,
    task_id: str,
    now: datetime,
    updates_for: Callable[[Task], dict],
) -> Task | None:
    """Apply the field updates ``updates_for`` computes from the stored task"""
    touched: set[str] = set()

    def apply(task: Task) -> Task:
        updates = updates_for(task)
        touched.update(updates)
        return Task.model_validate({**task.model_dump(), **updates})

    updated = _modify_task(store, task_id, apply)
    if updated is not None and RESCHEDULE_FIELDS & touched:
        _schedule_reminder(notifier, updated, now)
    return updated


def _schedule_reminder(notifier: NotificationDispatcher, task: Task, now: datetime) -> None:
    """Keep the task's pending notification in line with its next occurrence"""
    notification_id = reminder_notification_id(task.id)
    reminder = task.reminder
    upcoming = next_occurrence(reminder, now) if reminder and not task.completed else None
    if upcoming is None:
        notifier.cancel(notification_id)
        return
    notifier.schedule(
        notification_id,
        REMINDER_TITLE,
        task.title,
        upcoming,
        repeat_rule=None if reminder.repeat_type == RepeatType.NONE else reminder.repeat_type.value,
        sound_id=reminder.sound_type,
    )


def _forget_fired(store: KeyValueStore, task_id: str) -> None:
    def without_task(last_fired: dict[str, datetime]) -> dict[str, datetime] | None:
        if task_id not in last_fired:
            return None
        return {key: value for key, value in last_fired.items() if key != task_id}

    update_record(store, LAST_FIRED_KEY, _last_fired_adapter, {}, without_task)
