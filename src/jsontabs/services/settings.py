"""Settings dataclass and key-value persistence helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Mapping

from .schemas import SETTINGS_SCHEMA, SETTINGS_SCHEMA_VERSION, record_problems
from .storage import KeyValueStore

__all__ = ["Settings", "SettingsStore", "SETTINGS_KEY", "FONT_SIZE_CHOICES", "CDN_CHOICES"]

LOGGER = logging.getLogger(__name__)
SETTINGS_KEY = "settings"
FONT_SIZE_CHOICES: tuple[str, ...] = ("small", "medium", "large")
CDN_CHOICES: tuple[str, ...] = ("local", "cdn")
_ENV_OVERRIDES: Mapping[str, str] = {
    "JSONTABS_FONT_SIZE": "font_size",
    "JSONTABS_MONACO_EDITOR_CDN": "monaco_editor_cdn",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "JSONTABS_DARK_MODE": "dark_mode",
    "JSONTABS_EDIT_DATA_SAVE_LOCAL": "edit_data_save_local",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "JSONTABS_HISTORY_LIMIT": "history_limit",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "JSONTABS_HISTORY_DEBOUNCE_SECONDS": "history_debounce_seconds",
}
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    dark_mode: bool = False
    font_size: str = "medium"
    edit_data_save_local: bool = True
    expand_tabs: bool = False
    expand_sidebar: bool = False
    monaco_editor_cdn: str = "local"
    history_limit: int = 200
    history_debounce_seconds: float = 2.0


class SettingsStore:
    """Persistence adapter for :class:`Settings`.

    The store owns the single :class:`Settings` instance handed to the rest of
    the application. Updates mutate that instance in place so every holder of
    the reference observes them; each update re-persists the whole record.
    """

    def __init__(self, store: KeyValueStore, *, key: str = SETTINGS_KEY) -> None:
        self._store = store
        self._key = key
        self._settings = Settings()

    @property
    def settings(self) -> Settings:
        return self._settings

    async def load(self) -> Settings:
        """Load settings from the store, falling back to defaults per field."""

        payload = await self._store.get_item(self._key)
        loaded = Settings()
        if isinstance(payload, Mapping):
            version = payload.get("version")
            if isinstance(version, int) and version > SETTINGS_SCHEMA_VERSION:
                LOGGER.warning(
                    "Settings record version %s is newer than supported version %s; merging known fields",
                    version,
                    SETTINGS_SCHEMA_VERSION,
                )
            loaded = replace(loaded, **_filter_fields(payload))
        elif payload is not None:
            LOGGER.warning("Ignoring settings record of type %s", type(payload).__name__)
        loaded = self._apply_env_overrides(loaded)
        self._assign(loaded)
        LOGGER.debug("Settings loaded: %s", asdict(self._settings))
        return self._settings

    async def update(self, key: str, value: Any) -> Settings:
        """Set ``key`` to ``value`` and persist the whole record.

        The write happens first; a failed write leaves the in-memory settings
        untouched and propagates :class:`~jsontabs.errors.StorageError`.
        """

        allowed = {item.name for item in fields(Settings)}
        if key not in allowed:
            raise KeyError(f"Unknown setting: {key}")
        problems = record_problems({key: value}, SETTINGS_SCHEMA)
        if problems:
            raise ValueError(f"Invalid value for {key}: {'; '.join(problems)}")
        candidate = replace(self._settings, **{key: value})
        await self._store.set_item(self._key, self._serialize(candidate))
        setattr(self._settings, key, value)
        LOGGER.debug("Setting %s updated", key)
        return self._settings

    update_setting = update

    async def save(self) -> None:
        await self._store.set_item(self._key, self._serialize(self._settings))

    def _assign(self, source: Settings) -> None:
        for item in fields(Settings):
            setattr(self._settings, item.name, getattr(source, item.name))

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        data["version"] = SETTINGS_SCHEMA_VERSION
        return data

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower()
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            valid = _filter_fields(overrides)
            LOGGER.debug("Applying environment settings overrides: %s", sorted(valid))
            settings = replace(settings, **valid)
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep known fields whose values match the settings schema."""

    allowed = {item.name for item in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        problems = record_problems({key: value}, SETTINGS_SCHEMA)
        if problems:
            LOGGER.warning("Ignoring invalid setting %s=%r: %s", key, value, "; ".join(problems))
            continue
        result[key] = value
    return result
