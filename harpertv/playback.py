"""
Playback state projection and transport commands.

:class:`PlaybackController` keeps a :class:`PlaybackState` in sync purely by
folding the dispatcher's ``PropertyChanged`` events.  It never assumes
``time-pos`` or ``duration`` can be read before the engine reported them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from .runtime.events import ErrorOccurred, Event, PlaybackFinished, PropertyChanged
from .runtime.handle import EngineHandle
from .runtime.marshal import Value

LOG = logging.getLogger(__name__)

PlaybackCallback = Callable[[str, Dict[str, object]], None]

DEFAULT_SEEK_STEP = 10.0


def clamp_volume(value: float) -> int:
    return max(0, min(100, int(round(float(value)))))


def _as_float(value: Value, default: float = 0.0) -> float:
    if value is None or isinstance(value, (list, dict)):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Immutable snapshot of the player transport."""

    playing: bool = False
    position: float = 0.0
    duration: float = 0.0
    volume: int = 100
    muted: bool = False

    def to_dict(self) -> dict:
        return {
            "playing": bool(self.playing),
            "position": float(self.position),
            "duration": float(self.duration),
            "volume": int(self.volume),
            "muted": bool(self.muted),
        }


class PlaybackController:
    """
    Transport commands plus a state cache driven by engine events.

    Observers receive ``(event_name, payload)`` with one of the names
    ``position-changed``, ``duration-changed``, ``playback-state-changed``,
    ``volume-changed``, ``mute-changed``, ``playback-finished`` or ``error``.
    """

    def __init__(self, handle: EngineHandle) -> None:
        self._handle = handle
        self._observer_counter = 0
        self._observers: Dict[int, PlaybackCallback] = {}
        self._state = self._initial_state()
        self._subscription: Optional[int] = handle.dispatcher.subscribe(self._on_event)
        LOG.debug("Playback controller initialised with %s", self._state)

    @property
    def state(self) -> PlaybackState:
        return self._state

    def close(self) -> None:
        if self._subscription is not None:
            self._handle.dispatcher.unsubscribe(self._subscription)
            self._subscription = None

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: PlaybackCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    # ------------------------------------------------------------------ commands

    def play(self) -> None:
        self._handle.set_property_async("pause", False)

    def pause(self) -> None:
        self._handle.set_property_async("pause", True)

    def toggle_play_pause(self) -> None:
        paused = self._handle.get_property("pause")
        if paused is None:
            paused = not self._state.playing
        self._handle.set_property_async("pause", not bool(paused))

    def stop(self) -> None:
        self._handle.stop()

    def seek(self, seconds: float) -> None:
        target = max(0.0, float(seconds))
        if target != self._state.position:
            self._handle.set_property_async("time-pos", target)

    def seek_forward(self, seconds: float = DEFAULT_SEEK_STEP) -> None:
        target = self._state.position + float(seconds)
        if self._state.duration > 0:
            target = min(target, self._state.duration)
        self.seek(target)

    def seek_backward(self, seconds: float = DEFAULT_SEEK_STEP) -> None:
        self.seek(max(0.0, self._state.position - float(seconds)))

    def set_volume(self, volume: float) -> None:
        clamped = clamp_volume(volume)
        if clamped == self._state.volume:
            return
        self._state = replace(self._state, volume=clamped)
        self._handle.set_property_async("volume", clamped)
        self._emit("volume-changed", {"volume": clamped})
        if clamped > 0 and self._state.muted:
            self.set_mute(False)

    def set_mute(self, muted: bool) -> None:
        muted = bool(muted)
        if muted == self._state.muted:
            return
        self._state = replace(self._state, muted=muted)
        self._handle.set_property_async("mute", muted)
        self._emit("mute-changed", {"muted": muted})

    def toggle_mute(self) -> None:
        self.set_mute(not self._state.muted)

    # ------------------------------------------------------------------ helpers

    def _initial_state(self) -> PlaybackState:
        paused = self._handle.get_property("pause")
        volume = self._handle.get_property("volume")
        muted = self._handle.get_property("mute")
        return PlaybackState(
            playing=not bool(paused) if paused is not None else False,
            position=_as_float(self._handle.get_property("time-pos")),
            duration=_as_float(self._handle.get_property("duration")),
            volume=clamp_volume(_as_float(volume, 100.0)),
            muted=bool(muted) if muted is not None else False,
        )

    def _on_event(self, event: Event) -> None:
        if isinstance(event, PropertyChanged):
            self._on_property_changed(event.name, event.value)
        elif isinstance(event, PlaybackFinished):
            self._state = replace(self._state, playing=False)
            self._emit("playback-state-changed", {"playing": False})
            self._emit("playback-finished", {})
        elif isinstance(event, ErrorOccurred):
            self._emit("error", {"message": event.message})

    def _on_property_changed(self, name: str, value: Value) -> None:
        if name == "time-pos":
            position = _as_float(value)
            self._state = replace(self._state, position=position)
            self._emit("position-changed", {"position": position})
        elif name == "duration":
            duration = _as_float(value)
            self._state = replace(self._state, duration=duration)
            self._emit("duration-changed", {"duration": duration})
        elif name == "pause" and value is not None:
            playing = not bool(value)
            self._state = replace(self._state, playing=playing)
            self._emit("playback-state-changed", {"playing": playing})
        elif name == "volume" and value is not None:
            volume = clamp_volume(_as_float(value, self._state.volume))
            self._state = replace(self._state, volume=volume)
            self._emit("volume-changed", {"volume": volume})
        elif name == "mute" and value is not None:
            muted = bool(value)
            self._state = replace(self._state, muted=muted)
            self._emit("mute-changed", {"muted": muted})

    def _emit(self, event: str, payload: Dict[str, object]) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(event, payload)
            except Exception:  # pragma: no cover - observer failures should not break playback
                LOG.exception("Playback observer %s failed.", token)
