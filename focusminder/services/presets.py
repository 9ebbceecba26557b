import logging
import uuid

from pydantic import TypeAdapter

from focusminder.schemas import WorkSessionPreset, WorkSessionSettings
from focusminder.services.timer import save_settings
from focusminder.storage import PRESETS_KEY, KeyValueStore, load_or_default, update_record

logger = logging.getLogger(__name__)

_presets_adapter = TypeAdapter(list[WorkSessionPreset])

DEFAULT_PRESETS = [
    WorkSessionPreset(
        id="pomodoro",
        name="Pomodoro",
        settings=WorkSessionSettings(
            total_duration=240,  # 4 hours
            break_interval=25,
            break_duration=5,
            auto_start_after_break=True,
            sound_enabled=True,
        ),
    ),
    WorkSessionPreset(
        id="long-focus",
        name="Long focus",
        settings=WorkSessionSettings(
            total_duration=480,  # 8 hours
            break_interval=90,
            break_duration=15,
            auto_start_after_break=True,
            sound_enabled=True,
        ),
    ),
    WorkSessionPreset(
        id="short-sprint",
        name="Short sprint",
        settings=WorkSessionSettings(
            total_duration=120,  # 2 hours
            break_interval=30,
            break_duration=5,
            auto_start_after_break=True,
            sound_enabled=True,
        ),
    ),
]


def list_presets(store: KeyValueStore) -> list[WorkSessionPreset]:
    """Saved presets, or the built-in ones when nothing was saved yet"""
    return load_or_default(store, PRESETS_KEY, _presets_adapter, list(DEFAULT_PRESETS))


def get_preset(store: KeyValueStore, preset_id: str) -> WorkSessionPreset | None:
    return next((p for p in list_presets(store) if p.id == preset_id), None)


def add_preset(store: KeyValueStore, name: str, settings: WorkSessionSettings) -> WorkSessionPreset:
    preset = WorkSessionPreset(id=uuid.uuid4().hex, name=name.strip(), settings=settings)
    update_record(
        store, PRESETS_KEY, _presets_adapter, list(DEFAULT_PRESETS), lambda presets: presets + [preset]
    )
    logger.info("Saved preset %s (%s)", preset.id, preset.name)
    return preset


def remove_preset(store: KeyValueStore, preset_id: str) -> bool:
    def without_preset(presets: list[WorkSessionPreset]) -> list[WorkSessionPreset] | None:
        remaining = [p for p in presets if p.id != preset_id]
        return None if len(remaining) == len(presets) else remaining

    if update_record(store, PRESETS_KEY, _presets_adapter, list(DEFAULT_PRESETS), without_preset) is None:
        return False
    logger.info("Removed preset %s", preset_id)
    return True


def apply_preset(store: KeyValueStore, preset_id: str) -> WorkSessionSettings | None:
    """Overwrite the current settings with the preset's; no merging"""
    preset = get_preset(store, preset_id)
    if preset is None:
        return None
    save_settings(store, preset.settings)
    logger.info("Applied preset %s", preset_id)
    return preset.settings
