"""
Lifecycle and property/command traffic for a single libmpv instance.

All methods except :meth:`EngineHandle.surface_error` must be called on the
owner thread, the same thread the dispatcher drains on.  The handle does no
locking of its own.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Mapping, Optional, Sequence

from .dispatcher import EventDispatcher
from .events import ErrorOccurred
from .libmpv import (
    MPV_ERROR_PROPERTY_UNAVAILABLE,
    EngineClosedError,
    EngineCreationFailed,
    EngineError,
    EngineInitFailed,
    LibMpv,
    MpvEvent,
    MpvNode,
)
from .marshal import MarshalError, NodeMarshaler, Value, decode_node
from .render import RenderBridge

LOG = logging.getLogger(__name__)

BASELINE_OPTIONS = (
    ("video-sync", "display-resample"),
    ("hwdec", "auto"),
    ("vo", "libmpv"),
    ("keep-open", "yes"),
)

OBSERVED_PROPERTIES = ("pause", "time-pos", "duration", "volume", "mute", "eof-reached")

# Unavailable until a file is loaded; absence is expected.
TRANSIENT_PROPERTIES = frozenset({"duration", "time-pos"})

ENGINE_LOG_LEVEL = "warn"

_NEEDS_QUOTING = re.compile(r"[\s\"'\\#;]")


def quote_argument(arg: str) -> str:
    """Quote one argument for mpv's string command syntax."""

    if arg and not _NEEDS_QUOTING.search(arg):
        return arg
    escaped = (
        arg.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def format_command(args: Sequence[str]) -> str:
    return " ".join(quote_argument(str(arg)) for arg in args)


def _option_text(value: object) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


class EngineHandle:
    """
    Owns one ``mpv_handle``.

    The handle is created by :meth:`initialize` and destroyed exactly once by
    :meth:`terminate`; every other call after termination raises
    :class:`EngineClosedError`.
    """

    def __init__(
        self,
        lib: LibMpv,
        dispatcher: EventDispatcher,
        *,
        marshaler: Optional[NodeMarshaler] = None,
    ) -> None:
        self._lib = lib
        self._dispatcher = dispatcher
        self._marshaler = marshaler if marshaler is not None else NodeMarshaler()
        self._handle: Optional[int] = None
        self._terminated = False
        self._reply_counter = 0
        self._observed: Dict[str, int] = {}
        self._load_replies: Dict[int, str] = {}
        self._current_path: Optional[str] = None
        self._renderer: Optional[RenderBridge] = None

    # ------------------------------------------------------------------ state

    @property
    def is_alive(self) -> bool:
        return self._handle is not None

    @property
    def lib(self) -> LibMpv:
        return self._lib

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def marshaler(self) -> NodeMarshaler:
        return self._marshaler

    @property
    def native_handle(self) -> int:
        return self._require()

    @property
    def observed_properties(self) -> Sequence[str]:
        return tuple(self._observed)

    @property
    def current_path(self) -> Optional[str]:
        return self._current_path

    # -------------------------------------------------------------- lifecycle

    def initialize(self, options: Optional[Mapping[str, object]] = None) -> None:
        if self._terminated:
            raise EngineClosedError("engine handle has already been terminated")
        if self._handle is not None:
            raise EngineError("engine handle is already initialised")

        handle = self._lib.create()
        if not handle:
            raise EngineCreationFailed("Failed to create mpv instance")

        try:
            for name, value in BASELINE_OPTIONS:
                self._set_option(handle, name, value)
            for name, value in (options or {}).items():
                self._set_option(handle, str(name), _option_text(value))

            result = self._lib.request_log_messages(handle, ENGINE_LOG_LEVEL)
            if result < 0:
                LOG.warning("Failed to enable engine log messages: %s", self._lib.error_string(result))

            self._dispatcher.bind(self)
            self._lib.set_wakeup_callback(handle, self._dispatcher.wakeup)

            result = self._lib.initialize(handle)
            if result < 0:
                raise EngineInitFailed(
                    result,
                    f"Failed to initialize mpv: {self._lib.error_string(result)}",
                )
        except BaseException:
            self._dispatcher.bind(None)
            self._lib.set_wakeup_callback(handle, None)
            self._lib.terminate_destroy(handle)
            raise

        self._handle = handle
        for name in OBSERVED_PROPERTIES:
            self.observe(name)
        LOG.info("Engine initialised.")
        # Events queued before the handle was marked alive.
        self._dispatcher.wakeup()

    def terminate(self) -> None:
        """Release the render context, then the engine instance.  Idempotent."""

        self._terminated = True
        handle = self._handle
        if handle is None:
            return

        renderer = self._renderer
        self._renderer = None
        if renderer is not None:
            renderer.release()

        self._handle = None
        self._lib.set_wakeup_callback(handle, None)
        self._lib.terminate_destroy(handle)
        self._dispatcher.bind(None)
        self._observed.clear()
        self._load_replies.clear()
        self._current_path = None
        LOG.info("Engine terminated.")

    def __enter__(self) -> "EngineHandle":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.terminate()

    def create_renderer(self, on_update: Optional[Callable[[], None]] = None) -> RenderBridge:
        """
        Return the render bridge tied to this handle.

        Repeated calls return the same bridge.  Passing an ``on_update`` other
        than the one the bridge already holds raises :class:`ValueError`.
        The bridge is released by :meth:`terminate` before the engine itself.
        """

        self._require()
        if self._renderer is None:
            self._renderer = RenderBridge(self, on_update=on_update)
        elif on_update is not None and on_update is not self._renderer.on_update:
            raise ValueError("render bridge already exists with a different update callback")
        return self._renderer

    # --------------------------------------------------------------- commands

    def load_file(self, path: str) -> int:
        """
        Queue ``loadfile`` without waiting for it.

        Returns the reply id; the outcome arrives later as events.
        """

        handle = self._require()
        reply_id = self._next_reply_id()
        self._load_replies[reply_id] = path
        self._current_path = path
        result = self._lib.command_async(handle, reply_id, ["loadfile", path])
        if result < 0:
            self._load_replies.pop(reply_id, None)
            message = f"Failed to load '{path}': {self._lib.error_string(result)}"
            LOG.warning(message)
            self._dispatcher.post_event(ErrorOccurred(message=message))
        return reply_id

    def stop(self) -> bool:
        ok = self.command(["stop"])
        self._current_path = None
        return ok

    def command(self, args: Sequence[str]) -> bool:
        handle = self._require()
        if not args:
            raise ValueError("command requires at least one argument")
        text = format_command(args)
        result = self._lib.command_string(handle, text)
        if result < 0:
            message = f"Command '{args[0]}' failed: {self._lib.error_string(result)}"
            LOG.warning(message)
            self._dispatcher.post_event(ErrorOccurred(message=message))
            return False
        return True

    def accepts_command_reply(self, reply_id: int) -> bool:
        """
        Whether a command reply should still be surfaced.

        Replies to a ``loadfile`` for a path that has since been replaced are
        stale and rejected; replies to any other command are accepted.
        """

        path = self._load_replies.pop(int(reply_id), None)
        if path is None:
            return True
        return path == self._current_path

    # ------------------------------------------------------------- properties

    def set_property_async(self, name: str, value: Value) -> bool:
        handle = self._require()
        try:
            node = self._marshaler.encode(value)
        except MarshalError as exc:
            LOG.warning("Failed to convert value for property '%s': %s", name, exc)
            return False

        try:
            result = self._lib.set_property_async(handle, 0, name, node)
        finally:
            self._marshaler.free(node)

        if result < 0:
            LOG.warning("Failed to set property '%s': %s", name, self._lib.error_string(result))
            return False
        return True

    def get_property(self, name: str) -> Optional[Value]:
        handle = self._require()
        node = MpvNode()
        result = self._lib.get_property(handle, name, node)
        if result < 0:
            if result == MPV_ERROR_PROPERTY_UNAVAILABLE and name in TRANSIENT_PROPERTIES:
                LOG.debug("Property not yet available: %s", name)
            else:
                LOG.warning("Failed to get property '%s': %s", name, self._lib.error_string(result))
            return None
        try:
            return decode_node(node)
        finally:
            self._lib.free_node_contents(node)

    def observe(self, name: str) -> None:
        handle = self._require()
        if name in self._observed:
            return
        reply_id = self._next_reply_id()
        result = self._lib.observe_property(handle, reply_id, name)
        if result < 0:
            LOG.warning("Failed to observe property '%s': %s", name, self._lib.error_string(result))
            return
        self._observed[name] = reply_id

    # ------------------------------------------------------------------ misc

    def wait_event(self, timeout: float = 0.0) -> MpvEvent:
        return self._lib.wait_event(self._require(), timeout)

    def error_string(self, code: int) -> str:
        return self._lib.error_string(code)

    def surface_error(self, message: str) -> None:
        """Report a recoverable failure from any thread."""

        self._dispatcher.post_event(ErrorOccurred(message=message))

    def _set_option(self, handle: int, name: str, value: str) -> None:
        result = self._lib.set_option_string(handle, name, value)
        if result < 0:
            LOG.warning(
                "Engine rejected option %s=%s: %s",
                name,
                value,
                self._lib.error_string(result),
            )

    def _next_reply_id(self) -> int:
        self._reply_counter += 1
        return self._reply_counter

    def _require(self) -> int:
        if self._handle is None:
            if self._terminated:
                raise EngineClosedError("engine handle has been terminated")
            raise EngineError("engine handle is not initialised")
        return self._handle
