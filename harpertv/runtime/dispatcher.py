"""
Owner-thread event dispatch for the engine handle.

libmpv calls the wakeup callback from one of its internal threads.  The
dispatcher never reads the event queue there: it posts a single "drain"
request onto the owner thread through an :class:`OwnerThreadScheduler` and
drains the queue only when that request runs.
"""

from __future__ import annotations

import asyncio
import ctypes
import logging
import queue
import threading
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .events import (
    CommandReply,
    ErrorOccurred,
    Event,
    FileLoaded,
    LogMessage,
    PlaybackFinished,
    PropertyChanged,
)
from .libmpv import (
    MPV_EVENT_COMMAND_REPLY,
    MPV_EVENT_FILE_LOADED,
    MPV_EVENT_LOG_MESSAGE,
    MPV_EVENT_NONE,
    MPV_EVENT_PROPERTY_CHANGE,
    MPV_EVENT_SET_PROPERTY_REPLY,
    MPV_EVENT_SHUTDOWN,
    MPV_FORMAT_NODE,
    MpvEvent,
    MpvEventLogMessage,
    MpvEventProperty,
    MpvNode,
)
from .marshal import decode_node

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .handle import EngineHandle

LOG = logging.getLogger(__name__)
ENGINE_LOG = logging.getLogger("harpertv.runtime.engine")

EventCallback = Callable[[Event], None]

_ENGINE_LOG_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "v": logging.DEBUG,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


class OwnerThreadScheduler:
    """
    Base class for run loops that execute callables on the owner thread.

    :meth:`post` may be called from any thread and must not block.
    """

    def post(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def is_owner_thread(self) -> bool:
        raise NotImplementedError


class QueueScheduler(OwnerThreadScheduler):
    """
    Thread-safe queue pumped explicitly by the owner thread.

    The thread that constructs the scheduler is the owner unless another
    thread is named via ``owner``.
    """

    def __init__(self, owner: Optional[threading.Thread] = None) -> None:
        self._queue: "queue.SimpleQueue[Callable[[], None]]" = queue.SimpleQueue()
        self._owner_ident = (owner or threading.current_thread()).ident

    def post(self, callback: Callable[[], None]) -> None:
        self._queue.put(callback)

    def is_owner_thread(self) -> bool:
        return threading.get_ident() == self._owner_ident

    def run_pending(self, timeout: Optional[float] = None) -> int:
        """
        Run queued callables until the queue is empty.

        With ``timeout`` the first callable is awaited for up to that many
        seconds.  Returns the number of callables executed.
        """

        if not self.is_owner_thread():
            raise RuntimeError("run_pending() must be called on the owner thread")
        executed = 0
        block = timeout is not None
        while True:
            try:
                callback = self._queue.get(block=block, timeout=timeout) if block else self._queue.get_nowait()
            except queue.Empty:
                return executed
            block = False
            try:
                callback()
            except Exception:
                LOG.exception("Owner-thread callback %r failed.", callback)
            executed += 1


class AsyncioScheduler(OwnerThreadScheduler):
    """Post callables onto an asyncio event loop with ``call_soon_threadsafe``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._owner_ident: Optional[int] = None
        if loop is None:
            self._owner_ident = threading.get_ident()

    def post(self, callback: Callable[[], None]) -> None:
        if self._loop.is_closed():
            LOG.debug("Event loop closed; dropping owner-thread callback %r.", callback)
            return
        self._loop.call_soon_threadsafe(callback)

    def is_owner_thread(self) -> bool:
        if self._owner_ident is None:
            try:
                return asyncio.get_running_loop() is self._loop
            except RuntimeError:
                return False
        return threading.get_ident() == self._owner_ident


class DispatcherState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


class EventDispatcher:
    """
    Drains the engine event queue on the owner thread and republishes typed
    events in the order the engine produced them.
    """

    def __init__(self, scheduler: OwnerThreadScheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional["EngineHandle"] = None
        self._state = DispatcherState.IDLE
        self._drain_lock = threading.Lock()
        self._drain_pending = False
        self._eof_reached = False
        self._observer_counter = 0
        self._observers: Dict[int, EventCallback] = {}

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def scheduler(self) -> OwnerThreadScheduler:
        return self._scheduler

    def bind(self, handle: Optional["EngineHandle"]) -> None:
        self._handle = handle
        self._eof_reached = False

    # ------------------------------------------------------------------ public API

    def subscribe(self, callback: EventCallback) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    def wakeup(self) -> None:
        """
        Engine wakeup callback; safe on any thread.

        At most one drain request is outstanding at a time.
        """

        with self._drain_lock:
            if self._drain_pending:
                return
            self._drain_pending = True
        self._scheduler.post(self.drain)

    def post_event(self, event: Event) -> None:
        """Publish ``event`` on the owner thread, whichever thread calls this."""

        if self._scheduler.is_owner_thread():
            self._publish(event)
        else:
            self._scheduler.post(lambda: self._publish(event))

    def drain(self) -> int:
        """
        Pull events until the engine reports an empty queue.

        Returns the number of engine events consumed.
        """

        if not self._scheduler.is_owner_thread():
            raise RuntimeError("EventDispatcher.drain() must run on the owner thread")
        with self._drain_lock:
            self._drain_pending = False

        handle = self._handle
        if handle is None or not handle.is_alive:
            return 0

        consumed = 0
        self._state = DispatcherState.DRAINING
        try:
            while handle.is_alive:
                event = handle.wait_event(0.0)
                if event.event_id == MPV_EVENT_NONE:
                    break
                consumed += 1
                if event.event_id == MPV_EVENT_SHUTDOWN:
                    LOG.info("Engine reported shutdown.")
                    break
                for typed in self._translate(handle, event):
                    self._publish(typed)
        finally:
            self._state = DispatcherState.IDLE
        return consumed

    # ------------------------------------------------------------------ helpers

    def _translate(self, handle: "EngineHandle", event: MpvEvent) -> List[Event]:
        event_id = event.event_id
        if event_id == MPV_EVENT_PROPERTY_CHANGE:
            return self._translate_property(event)
        if event_id == MPV_EVENT_FILE_LOADED:
            return [FileLoaded()]
        if event_id == MPV_EVENT_LOG_MESSAGE:
            return self._translate_log(event)
        if event_id == MPV_EVENT_COMMAND_REPLY:
            if not handle.accepts_command_reply(event.reply_userdata):
                LOG.debug("Ignoring stale command reply %s.", event.reply_userdata)
                return []
            code = int(event.error)
            events: List[Event] = [CommandReply(error_code=code)]
            if code < 0:
                events.append(ErrorOccurred(message=handle.error_string(code)))
            return events
        if event_id == MPV_EVENT_SET_PROPERTY_REPLY:
            if event.error < 0:
                LOG.warning("Asynchronous property set failed: %s", handle.error_string(event.error))
            return []
        LOG.debug("Unhandled engine event %s.", event_id)
        return []

    def _translate_property(self, event: MpvEvent) -> List[Event]:
        if not event.data:
            return []
        prop = ctypes.cast(event.data, ctypes.POINTER(MpvEventProperty)).contents
        name = prop.name.decode("utf-8", errors="replace") if prop.name else ""
        value = None
        if prop.format == MPV_FORMAT_NODE and prop.data:
            value = decode_node(ctypes.cast(prop.data, ctypes.POINTER(MpvNode)).contents)

        events: List[Event] = [PropertyChanged(name=name, value=value)]
        if name == "eof-reached":
            reached = bool(value)
            if reached and not self._eof_reached:
                events.append(PlaybackFinished())
            self._eof_reached = reached
        return events

    def _translate_log(self, event: MpvEvent) -> List[Event]:
        if not event.data:
            return []
        message = ctypes.cast(event.data, ctypes.POINTER(MpvEventLogMessage)).contents
        prefix = _text(message.prefix)
        level = _text(message.level)
        text = _text(message.text).rstrip("\n")
        ENGINE_LOG.log(_ENGINE_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", prefix, text)

        events: List[Event] = [LogMessage(level=level, text=text, prefix=prefix)]
        if level == "error":
            events.append(ErrorOccurred(message=text))
        return events

    def _publish(self, event: Event) -> None:
        for token, callback in list(self._observers.items()):
            try:
                callback(event)
            except Exception:  # pragma: no cover - observer failures must not stop the drain
                LOG.exception("Event observer %s failed.", token)


def _text(raw: Optional[bytes]) -> str:
    return raw.decode("utf-8", errors="replace") if raw else ""
