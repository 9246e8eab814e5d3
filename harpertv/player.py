"""
Media player facade.

Wires the settings store into an engine handle, owns the playback controller
and decides how media is opened (network streams get the engine cache).
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

from .channels import Channel
from .playback import PlaybackCallback, PlaybackController
from .runtime.dispatcher import EventDispatcher, OwnerThreadScheduler
from .runtime.handle import EngineHandle
from .runtime.libmpv import LibMpv
from .settings import APP_SECTION, ENGINE_SECTION, Settings

LOG = logging.getLogger(__name__)

NETWORK_SCHEMES = frozenset({"http", "https", "rtmp", "rtsp", "mms", "rtp"})

# Options the engine only accepts before initialisation.
STARTUP_ONLY_OPTIONS = frozenset({"vo"})


def is_network_url(path: str) -> bool:
    scheme = urlsplit(path.strip()).scheme.lower()
    return scheme in NETWORK_SCHEMES


class MediaPlayer:
    """
    High level player used by the control surface.

    Observers registered with :meth:`subscribe` receive every playback event
    plus ``media-loaded`` with ``{"path": ...}``.
    """

    def __init__(
        self,
        settings: Settings,
        lib: LibMpv,
        scheduler: OwnerThreadScheduler,
        *,
        handle_factory: Callable[[LibMpv, EventDispatcher], EngineHandle] = EngineHandle,
    ) -> None:
        self._settings = settings
        self.dispatcher = EventDispatcher(scheduler)
        self.handle = handle_factory(lib, self.dispatcher)
        self.controller: Optional[PlaybackController] = None
        self._current_media = ""
        self._is_network_stream = False
        self._settings_token: Optional[int] = None
        self._controller_token: Optional[int] = None
        self._observer_counter = 0
        self._observers: Dict[int, PlaybackCallback] = {}

    # ------------------------------------------------------------------ lifecycle

    def initialize(self) -> None:
        """Start the engine with the stored engine settings as startup options."""

        self.handle.initialize(self._settings.engine_settings())
        self.controller = PlaybackController(self.handle)
        self._controller_token = self.controller.subscribe(self._emit)
        self._settings_token = self._settings.subscribe(self._on_settings_changed)
        self.apply_settings()
        LOG.info("Media player initialised.")

    def shutdown(self) -> None:
        if self._settings_token is not None:
            self._settings.unsubscribe(self._settings_token)
            self._settings_token = None
        if self.controller is not None:
            if self._controller_token is not None:
                self.controller.unsubscribe(self._controller_token)
                self._controller_token = None
            self.controller.close()
        self.handle.terminate()

    @property
    def is_initialized(self) -> bool:
        return self.controller is not None and self.handle.is_alive

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

    # ------------------------------------------------------------------ media

    @property
    def current_media(self) -> str:
        return self._current_media

    @property
    def is_network_stream(self) -> bool:
        return self._is_network_stream

    def load_media(self, path: str) -> bool:
        if not path or not path.strip():
            return False

        self._current_media = path
        self._is_network_stream = is_network_url(path)
        if self._is_network_stream:
            self.handle.set_property_async("cache", True)
            cache_secs = self._settings.engine_value("cache-secs", 10)
            self.handle.set_property_async("cache-secs", cache_secs)
        else:
            self.handle.set_property_async("cache", False)

        self.handle.load_file(path)
        LOG.info("Loading %s%s", path, " (network stream)" if self._is_network_stream else "")
        self._emit("media-loaded", {"path": path})
        return True

    def load_channel(self, channel: Channel) -> bool:
        return self.load_media(channel.url)

    # ------------------------------------------------------------------ settings

    def apply_settings(self) -> None:
        self._apply_app_settings()
        self._apply_engine_settings()

    def _apply_app_settings(self) -> None:
        if self.controller is None:
            return
        self.controller.set_volume(self._settings.value("volume", 100))

    def _apply_engine_settings(self) -> None:
        for name, value in self._settings.engine_settings().items():
            if name in STARTUP_ONLY_OPTIONS:
                continue
            self.handle.set_property_async(name, value)

    def _on_settings_changed(self, section: str) -> None:
        if section == APP_SECTION:
            self._apply_app_settings()
        elif section == ENGINE_SECTION:
            self._apply_engine_settings()

    def _emit(self, event: str, payload: Dict[str, object]) -> None:
        if event == "error":
            LOG.warning("Engine error: %s", payload.get("message"))
        for token, callback in list(self._observers.items()):
            try:
                callback(event, payload)
            except Exception:  # pragma: no cover - defensive
                LOG.exception("Player observer %s failed.", token)
