"""
Channel list storage.

Channels persist as a JSON array of ``{"name": ..., "url": ...}`` objects.
Loading is lenient towards individual records (bad entries are skipped) but
strict about the document itself.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

LOG = logging.getLogger(__name__)

ChannelCallback = Callable[[str, Dict[str, object]], None]
PathLike = Union[str, Path]


class ChannelLoadError(RuntimeError):
    """Raised when a channel document cannot be read or is not a JSON array."""


class Channel(BaseModel):
    name: StrictStr
    url: StrictStr

    model_config = ConfigDict(frozen=True)

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "url": self.url}


def parse_channels(document: object) -> List[Channel]:
    if not isinstance(document, list):
        raise ChannelLoadError("channel document must be a JSON array")

    channels: List[Channel] = []
    for index, record in enumerate(document):
        if not isinstance(record, dict):
            LOG.debug("Skipping channel record %d: not an object", index)
            continue
        try:
            channels.append(Channel.model_validate(record))
        except ValidationError as exc:
            LOG.debug("Skipping channel record %d: %s", index, exc.errors())
    return channels


def load_channels(path: PathLike) -> List[Channel]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ChannelLoadError(f"Failed to read channel file {path}: {exc}") from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ChannelLoadError(f"Channel file {path} is not valid JSON: {exc}") from exc
    return parse_channels(document)


def dump_channels(channels: Sequence[Channel]) -> str:
    return json.dumps([channel.to_dict() for channel in channels], indent=2, ensure_ascii=False)


def save_channels(channels: Sequence[Channel], path: PathLike) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_channels(channels) + "\n", encoding="utf-8")


class ChannelManager:
    """
    In-memory channel list with a current selection.

    Observers receive ``(event_name, payload)`` where the name is one of
    ``channels-loaded``, ``channel-list-changed`` or ``current-channel-changed``.
    """

    def __init__(self, channels: Optional[Sequence[Channel]] = None) -> None:
        self._channels: List[Channel] = list(channels or [])
        self._current_index = 0 if self._channels else -1
        self._observer_counter = 0
        self._observers: Dict[int, ChannelCallback] = {}

    def __len__(self) -> int:
        return len(self._channels)

    @property
    def channels(self) -> List[Channel]:
        return list(self._channels)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_channel(self) -> Optional[Channel]:
        if 0 <= self._current_index < len(self._channels):
            return self._channels[self._current_index]
        return None

    def channel(self, index: int) -> Optional[Channel]:
        if 0 <= index < len(self._channels):
            return self._channels[index]
        return None

    def subscribe(self, callback: ChannelCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    # ------------------------------------------------------------------ persistence

    def load_from_file(self, path: PathLike) -> bool:
        try:
            channels = load_channels(path)
        except ChannelLoadError as exc:
            LOG.warning("%s", exc)
            return False

        self._channels = channels
        self._current_index = 0 if channels else -1
        LOG.info("Loaded %d channels from %s", len(channels), path)
        self._emit("channels-loaded", {"count": len(channels)})
        self._emit("channel-list-changed", {"count": len(channels)})
        return True

    def save_to_file(self, path: PathLike) -> bool:
        try:
            save_channels(self._channels, path)
        except OSError as exc:
            LOG.warning("Failed to save channels to %s: %s", path, exc)
            return False
        LOG.info("Saved %d channels to %s", len(self._channels), path)
        return True

    # ------------------------------------------------------------------ editing

    def set_current_index(self, index: int) -> bool:
        if not 0 <= index < len(self._channels):
            return False
        if index != self._current_index:
            self._current_index = index
            self._emit("current-channel-changed", {"index": index})
        return True

    def add_channel(self, channel: Channel) -> None:
        self._channels.append(channel)
        if self._current_index < 0:
            self._current_index = 0
        self._emit("channel-list-changed", {"count": len(self._channels)})

    def remove_channel(self, index: int) -> bool:
        if not 0 <= index < len(self._channels):
            return False
        del self._channels[index]
        previous = self._current_index
        if not self._channels:
            self._current_index = -1
        elif index < self._current_index or self._current_index >= len(self._channels):
            self._current_index -= 1
        self._emit("channel-list-changed", {"count": len(self._channels)})
        if self._current_index != previous:
            self._emit("current-channel-changed", {"index": self._current_index})
        return True

    def update_channel(self, index: int, channel: Channel) -> bool:
        if not 0 <= index < len(self._channels):
            return False
        self._channels[index] = channel
        self._emit("channel-list-changed", {"count": len(self._channels)})
        return True

    def _emit(self, event: str, payload: Dict[str, object]) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(event, payload)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Channel observer %s failed.", token)
