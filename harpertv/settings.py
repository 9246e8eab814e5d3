"""
Persistent application and engine settings.

Settings live in a YAML document with two sections: ``app`` holds player
preferences, ``engine`` holds option/value pairs forwarded to the engine
verbatim.  Observers are told which section changed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

LOG = logging.getLogger(__name__)

EngineValue = Union[bool, int, float, str]
SettingsCallback = Callable[[str], None]

APP_SECTION = "app"
ENGINE_SECTION = "engine"

DEFAULT_ENGINE_SETTINGS: Dict[str, EngineValue] = {
    "vo": "libmpv",
    "hwdec": "auto",
    "audio-channels": "auto",
    "audio-device": "auto",
    "cache": True,
    "cache-secs": 10,
    "network-timeout": 5,
    "user-agent": "HarperTV/1.0",
}


def _coerce_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"{field} must be a number, got {value!r}") from exc


class AppSettingsModel(BaseModel):
    volume: int = 100
    last_channel_index: int = 0
    channels_file: str = "channels.json"

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    @field_validator("volume", mode="before")
    @classmethod
    def _clamp_volume(cls, value: Any) -> int:
        return max(0, min(100, _coerce_int(value, "volume")))

    @field_validator("last_channel_index", mode="before")
    @classmethod
    def _non_negative_index(cls, value: Any) -> int:
        return max(0, _coerce_int(value, "last_channel_index"))


class SettingsDocument(BaseModel):
    app: AppSettingsModel = Field(default_factory=AppSettingsModel)
    engine: Dict[str, EngineValue] = Field(default_factory=lambda: dict(DEFAULT_ENGINE_SETTINGS))

    @field_validator("engine", mode="before")
    @classmethod
    def _engine_defaults(cls, value: Any) -> Dict[str, Any]:
        if value is None:
            return dict(DEFAULT_ENGINE_SETTINGS)
        if not isinstance(value, dict):
            raise ValueError("engine settings must be a mapping")
        return {**DEFAULT_ENGINE_SETTINGS, **{str(key): item for key, item in value.items()}}


class Settings:
    """Settings store backed by an optional YAML file."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._document = SettingsDocument()
        self._observer_counter = 0
        self._observers: Dict[int, SettingsCallback] = {}
        if self.path is not None:
            self.load()

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: SettingsCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    # ------------------------------------------------------------------ app section

    def value(self, key: str, default: Any = None) -> Any:
        return self._document.app.model_dump().get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        try:
            setattr(self._document.app, key, value)
        except ValidationError as exc:
            raise ValueError(f"Invalid value for setting '{key}': {exc}") from exc
        self._notify(APP_SECTION)

    def app_settings(self) -> Dict[str, Any]:
        return self._document.app.model_dump()

    # ------------------------------------------------------------------ engine section

    def engine_value(self, key: str, default: Optional[EngineValue] = None) -> Optional[EngineValue]:
        return self._document.engine.get(key, default)

    def set_engine_value(self, key: str, value: EngineValue) -> None:
        self.update_engine({key: value})

    def update_engine(self, values: Dict[str, EngineValue]) -> None:
        if not values:
            return
        for key, value in values.items():
            if not isinstance(value, (bool, int, float, str)):
                raise ValueError(f"Unsupported value type for engine option '{key}': {type(value).__name__}")
        self._document.engine.update({str(key): value for key, value in values.items()})
        self._notify(ENGINE_SECTION)

    def engine_settings(self) -> Dict[str, EngineValue]:
        return dict(self._document.engine)

    # ------------------------------------------------------------------ lifecycle

    def reset_to_defaults(self) -> None:
        self._document = SettingsDocument()
        self._notify(APP_SECTION)
        self._notify(ENGINE_SECTION)

    def load(self) -> None:
        if self.path is None:
            return
        if not self.path.exists():
            LOG.info("Settings file %s not found; using defaults.", self.path)
            return
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            LOG.warning("Failed to read settings from %s: %s", self.path, exc)
            return
        try:
            self._document = SettingsDocument.model_validate(data)
        except ValidationError as exc:
            LOG.warning("Ignoring invalid settings in %s: %s", self.path, exc)
            return
        LOG.debug("Loaded settings from %s", self.path)
        self._notify(APP_SECTION)
        self._notify(ENGINE_SECTION)

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            APP_SECTION: self._document.app.model_dump(),
            ENGINE_SECTION: dict(self._document.engine),
        }
        with self.path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False, allow_unicode=True)
        LOG.debug("Saved settings to %s", self.path)

    def _notify(self, section: str) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(section)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Settings observer %s failed.", token)
