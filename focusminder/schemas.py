from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Phase = Literal["work", "break"]
Priority = Literal["low", "medium", "high"]
Category = Literal["work", "personal", "shopping", "other"]
SoundType = Literal["default", "bell", "chime", "glass"]


class RepeatType(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Short spellings used by older clients
REPEAT_ALIASES = {
    "": "none",
    "day": "daily",
    "week": "weekly",
    "month": "monthly",
}


# ---- Work sessions ----


class WorkSessionSettings(BaseModel):
    total_duration: float = Field(gt=0)  # minutes of work budget
    break_interval: float = Field(gt=0)  # minutes between breaks
    break_duration: float = Field(gt=0)  # minutes per break
    auto_start_after_break: bool = True
    sound_enabled: bool = True


class WorkSessionSettingsUpdate(BaseModel):
    total_duration: float | None = Field(default=None, gt=0)
    break_interval: float | None = Field(default=None, gt=0)
    break_duration: float | None = Field(default=None, gt=0)
    auto_start_after_break: bool | None = None
    sound_enabled: bool | None = None


class BreakPeriod(BaseModel):
    start_time: datetime
    end_time: datetime


class PausePeriod(BaseModel):
    pause_start: datetime
    pause_end: datetime | None = None


class WorkSession(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime  # start_time + total_duration, never moved
    breaks: list[BreakPeriod] = Field(default_factory=list)
    pauses: list[PausePeriod] = Field(default_factory=list)
    is_paused: bool = False
    current_phase: Phase = "work"
    notification_ids: list[str] = Field(default_factory=list)


class WorkSessionPreset(BaseModel):
    id: str
    name: str
    settings: WorkSessionSettings


class PresetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    settings: WorkSessionSettings


# ---- Tasks and reminders ----


class Reminder(BaseModel):
    date: datetime
    repeat_type: RepeatType = RepeatType.NONE
    days: list[int] = Field(default_factory=list)  # weekdays 0-6 (Sunday=0) or month days 1-31
    sound_type: SoundType = "default"

    @field_validator("date", mode="before")
    @classmethod
    def _epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000)
        return value

    @field_validator("date")
    @classmethod
    def _local_naive(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    @field_validator("repeat_type", mode="before")
    @classmethod
    def _repeat_alias(cls, value: Any) -> Any:
        if value is None:
            return RepeatType.NONE
        if isinstance(value, str):
            value = value.strip().lower()
            return REPEAT_ALIASES.get(value, value)
        return value

    @field_validator("days", mode="before")
    @classmethod
    def _loose_days(cls, value: Any) -> list[int]:
        """Keep whatever looks like a day number; range checks happen per repeat type."""
        if not isinstance(value, (list, tuple, set)):
            return []
        days = set()
        for item in value:
            if isinstance(item, bool):
                continue
            try:
                days.add(int(item))
            except (TypeError, ValueError):
                continue
        return sorted(days)


class WorkTime(BaseModel):
    estimated: int = Field(ge=0)  # minutes
    actual: int | None = Field(default=None, ge=0)


class Task(BaseModel):
    id: str
    title: str
    completed: bool = False
    priority: Priority = "medium"
    category: Category = "other"
    created_at: datetime
    reminder: Reminder | None = None
    work_time: WorkTime | None = None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    priority: Priority = "medium"
    category: Category = "other"
    reminder: Reminder | None = None
    work_time: WorkTime | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    completed: bool | None = None
    priority: Priority | None = None
    category: Category | None = None
    work_time: WorkTime | None = None


class WorkTimeEntry(BaseModel):
    minutes: int = Field(gt=0)


# ---- Notifications ----


class NotificationRecord(BaseModel):
    id: str
    title: str
    body: str
    fire_at: datetime
    repeat_rule: str | None = None
    sound_id: str | None = None


class NotificationFilter(BaseModel):
    """
    Conditions a notification has to meet to be listed.

    Every condition is optional. ``start``/``end`` bound ``fire_at``
    inclusively; ``repeat_rule="none"`` selects one-off notifications.
    """

    start: datetime | None = None
    end: datetime | None = None
    sound_id: SoundType | None = None
    repeat_rule: RepeatType | None = None

    @field_validator("repeat_rule", mode="before")
    @classmethod
    def _repeat_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if not value:
                return None
            return REPEAT_ALIASES.get(value, value)
        return value

    @model_validator(mode="after")
    def _ordered_range(self) -> "NotificationFilter":
        if self.start and self.end and self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class FilterPreset(BaseModel):
    id: str
    name: str
    condition: NotificationFilter
    created_at: datetime


class FilterPresetCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    condition: NotificationFilter


# ---- API responses ----


class SessionInfo(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime
    current_time: datetime
    phase: Phase
    is_paused: bool
    total_remaining_seconds: int
    total_remaining_formatted: str
    next_break_in_seconds: int | None
    break_remaining_seconds: int | None
    elapsed_work_seconds: int
    elapsed_work_formatted: str
    break_count: int
    pause_count: int
    total_pause_seconds: int


class StatusResponse(BaseModel):
    status: str  # "idle", "running", "paused"
    session: SessionInfo | None
    settings: WorkSessionSettings


class ActionResponse(BaseModel):
    success: bool
    message: str
    status: str


class TickReport(BaseModel):
    session_events: list[str] = Field(default_factory=list)
    fired_reminders: list[str] = Field(default_factory=list)


class VersionResponse(BaseModel):
    name: str
    version: str
