import logging
import uuid
from datetime import datetime

from pydantic import TypeAdapter

from focusminder.schemas import FilterPreset, NotificationFilter, NotificationRecord, RepeatType
from focusminder.storage import FILTER_PRESETS_KEY, KeyValueStore, load_or_default, update_record

logger = logging.getLogger(__name__)

_filter_presets_adapter = TypeAdapter(list[FilterPreset])


def matches(record: NotificationRecord, condition: NotificationFilter) -> bool:
    if condition.start and record.fire_at < condition.start:
        return False
    if condition.end and record.fire_at > condition.end:
        return False
    if condition.sound_id and record.sound_id != condition.sound_id:
        return False
    if condition.repeat_rule == RepeatType.NONE:
        return record.repeat_rule is None
    if condition.repeat_rule and record.repeat_rule != condition.repeat_rule.value:
        return False
    return True


def filter_notifications(
    records: list[NotificationRecord], condition: NotificationFilter
) -> list[NotificationRecord]:
    return [record for record in records if matches(record, condition)]


def list_filter_presets(store: KeyValueStore) -> list[FilterPreset]:
    return load_or_default(store, FILTER_PRESETS_KEY, _filter_presets_adapter, [])


def get_filter_preset(store: KeyValueStore, preset_id: str) -> FilterPreset | None:
    return next((p for p in list_filter_presets(store) if p.id == preset_id), None)


def add_filter_preset(
    store: KeyValueStore, name: str, condition: NotificationFilter, now: datetime
) -> FilterPreset:
    """Save a named filter so it can be loaded again later"""
    preset = FilterPreset(id=uuid.uuid4().hex, name=name.strip(), condition=condition, created_at=now)
    update_record(store, FILTER_PRESETS_KEY, _filter_presets_adapter, [], lambda presets: presets + [preset])
    logger.info("Saved notification filter %s (%s)", preset.id, preset.name)
    return preset


def remove_filter_preset(store: KeyValueStore, preset_id: str) -> bool:
    def without_preset(presets: list[FilterPreset]) -> list[FilterPreset] | None:
        remaining = [p for p in presets if p.id != preset_id]
        return None if len(remaining) == len(presets) else remaining

    if update_record(store, FILTER_PRESETS_KEY, _filter_presets_adapter, [], without_preset) is None:
        return False
    logger.info("Removed notification filter %s", preset_id)
    return True
