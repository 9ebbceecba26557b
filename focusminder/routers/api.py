from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from focusminder.database import get_db
from focusminder.notifications import NotificationDispatcher, SqlNotificationDispatcher
from focusminder.schemas import (
    ActionResponse,
    Category,
    FilterPreset,
    FilterPresetCreate,
    NotificationFilter,
    NotificationRecord,
    PresetCreate,
    Priority,
    Reminder,
    StatusResponse,
    Task,
    TaskCreate,
    TaskUpdate,
    VersionResponse,
    WorkSessionPreset,
    WorkSessionSettings,
    WorkSessionSettingsUpdate,
    WorkTimeEntry,
)
from focusminder.services import notification_filters, presets, tasks, timer
from focusminder.services.scheduler import Clock, SystemClock
from focusminder.storage import KeyValueStore, SqlKeyValueStore
from focusminder.version import PROJECT_NAME, get_version

router = APIRouter(prefix="/api", tags=["api"])

_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


def get_store(db: Session = Depends(get_db)) -> KeyValueStore:
    return SqlKeyValueStore(db)


def get_notifier(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> NotificationDispatcher:
    return SqlNotificationDispatcher(db, clock.now)


def _found(task: Task | None) -> Task:
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get("/version", response_model=VersionResponse)
def get_version_info():
    return VersionResponse(name=PROJECT_NAME, version=get_version())


# ---- Work session ----


@router.get("/status", response_model=StatusResponse)
def get_status(store: KeyValueStore = Depends(get_store), clock: Clock = Depends(get_clock)):
    """Get the current work session status"""
    return timer.get_status(store, clock.now())


@router.post("/start", response_model=ActionResponse)
def start_timer(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Start a new work session"""
    return timer.start_timer(store, notifier, clock.now())


@router.post("/pause", response_model=ActionResponse)
def pause_timer(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Pause the current session"""
    return timer.pause_timer(store, notifier, clock.now())


@router.post("/continue", response_model=ActionResponse)
def continue_timer(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Resume from pause"""
    return timer.continue_timer(store, notifier, clock.now())


@router.post("/break/start", response_model=ActionResponse)
def start_break(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Start a break now"""
    return timer.start_break(store, notifier, clock.now())


@router.post("/break/end", response_model=ActionResponse)
def end_break(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """End the current break"""
    return timer.end_break(store, notifier, clock.now())


@router.post("/stop", response_model=ActionResponse)
def stop_timer(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """End the session and cancel its notifications"""
    return timer.stop_timer(store, notifier, clock.now())


@router.get("/settings", response_model=WorkSessionSettings)
def get_settings(store: KeyValueStore = Depends(get_store)):
    return timer.load_settings(store)


@router.patch("/settings", response_model=WorkSessionSettings)
def update_settings(
    changes: WorkSessionSettingsUpdate, store: KeyValueStore = Depends(get_store)
):
    """Change some of the work session settings"""
    return timer.update_settings(store, changes)


# ---- Presets ----


@router.get("/presets", response_model=list[WorkSessionPreset])
def list_presets(store: KeyValueStore = Depends(get_store)):
    return presets.list_presets(store)


@router.post("/presets", response_model=WorkSessionPreset, status_code=201)
def add_preset(data: PresetCreate, store: KeyValueStore = Depends(get_store)):
    return presets.add_preset(store, data.name, data.settings)


@router.delete("/presets/{preset_id}", status_code=204)
def remove_preset(preset_id: str, store: KeyValueStore = Depends(get_store)):
    if not presets.remove_preset(store, preset_id):
        raise HTTPException(status_code=404, detail="Preset not found")
    return Response(status_code=204)


@router.post("/presets/{preset_id}/apply", response_model=WorkSessionSettings)
def apply_preset(preset_id: str, store: KeyValueStore = Depends(get_store)):
    """Replace the current settings with the preset's"""
    settings = presets.apply_preset(store, preset_id)
    if settings is None:
        raise HTTPException(status_code=404, detail="Preset not found")
    return settings


# ---- Tasks ----


@router.get("/tasks", response_model=list[Task])
def list_tasks(
    category: Category | None = None,
    priority: Priority | None = None,
    completed: bool | None = None,
    q: str | None = None,
    sort: Literal["priority", "date", "category"] | None = None,
    store: KeyValueStore = Depends(get_store),
):
    return tasks.list_tasks(store, category, priority, completed, q, sort)


@router.post("/tasks", response_model=Task, status_code=201)
def add_task(
    data: TaskCreate,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    return tasks.add_task(store, notifier, data, clock.now())


@router.get("/tasks/{task_id}", response_model=Task)
def get_task(task_id: str, store: KeyValueStore = Depends(get_store)):
    return _found(tasks.get_task(store, task_id))


@router.patch("/tasks/{task_id}", response_model=Task)
def update_task(
    task_id: str,
    changes: TaskUpdate,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    return _found(tasks.update_task(store, notifier, task_id, changes, clock.now()))


@router.post("/tasks/{task_id}/toggle", response_model=Task)
def toggle_task(
    task_id: str,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Flip the completed flag"""
    return _found(tasks.toggle_task(store, notifier, task_id, clock.now()))


@router.post("/tasks/{task_id}/priority", response_model=Task)
def cycle_priority(
    task_id: str,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Move the task to the next priority"""
    return _found(tasks.cycle_priority(store, notifier, task_id, clock.now()))


@router.delete("/tasks/{task_id}", status_code=204)
def remove_task(
    task_id: str,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    if not tasks.remove_task(store, notifier, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return Response(status_code=204)


@router.put("/tasks/{task_id}/reminder", response_model=Task)
def set_reminder(
    task_id: str,
    reminder: Reminder,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Set the task's reminder, replacing the previous one"""
    return _found(tasks.set_reminder(store, notifier, task_id, reminder, clock.now()))


@router.delete("/tasks/{task_id}/reminder", response_model=Task)
def remove_reminder(
    task_id: str,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    return _found(tasks.remove_reminder(store, notifier, task_id, clock.now()))


@router.post("/tasks/{task_id}/work-time", response_model=Task)
def add_work_time(task_id: str, entry: WorkTimeEntry, store: KeyValueStore = Depends(get_store)):
    """Log minutes worked on the task"""
    return _found(tasks.add_work_time(store, task_id, entry.minutes))


# ---- Notifications ----


@router.get("/notifications", response_model=list[NotificationRecord])
def list_notifications(
    start: datetime | None = None,
    end: datetime | None = None,
    sound_id: str | None = None,
    repeat_rule: str | None = None,
    preset: str | None = None,
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Notifications that have not fired yet, narrowed by the given filter or saved filter preset"""
    if preset:
        saved = notification_filters.get_filter_preset(store, preset)
        if saved is None:
            raise HTTPException(status_code=404, detail="Filter preset not found")
        condition = saved.condition
    else:
        try:
            condition = NotificationFilter(
                start=start, end=end, sound_id=sound_id, repeat_rule=repeat_rule
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=422, detail=[error["msg"] for error in exc.errors()]
            ) from exc
    return notification_filters.filter_notifications(notifier.list_pending(), condition)


@router.delete("/notifications", response_model=ActionResponse)
def cancel_notifications(
    store: KeyValueStore = Depends(get_store),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Cancel every scheduled notification"""
    notifier.cancel_all()
    return ActionResponse(
        success=True,
        message="All notifications cancelled",
        status=timer.status_label(timer.load_session(store)),
    )


# ---- Notification filter presets ----


@router.get("/notification-filters", response_model=list[FilterPreset])
def list_filter_presets(store: KeyValueStore = Depends(get_store)):
    return notification_filters.list_filter_presets(store)


@router.post("/notification-filters", response_model=FilterPreset, status_code=201)
def add_filter_preset(
    data: FilterPresetCreate,
    store: KeyValueStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """Save a notification filter under a name"""
    return notification_filters.add_filter_preset(store, data.name, data.condition, clock.now())


@router.delete("/notification-filters/{preset_id}", status_code=204)
def remove_filter_preset(preset_id: str, store: KeyValueStore = Depends(get_store)):
    if not notification_filters.remove_filter_preset(store, preset_id):
        raise HTTPException(status_code=404, detail="Filter preset not found")
    return Response(status_code=204)
