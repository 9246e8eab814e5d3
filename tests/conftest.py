from __future__ import annotations

import ctypes
import shlex
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import pytest

from harpertv.runtime.dispatcher import EventDispatcher, QueueScheduler
from harpertv.runtime.handle import EngineHandle
from harpertv.runtime.libmpv import (
    MPV_ERROR_PROPERTY_UNAVAILABLE,
    MPV_EVENT_COMMAND_REPLY,
    MPV_EVENT_FILE_LOADED,
    MPV_EVENT_LOG_MESSAGE,
    MPV_EVENT_NONE,
    MPV_EVENT_PROPERTY_CHANGE,
    MPV_EVENT_SET_PROPERTY_REPLY,
    MPV_EVENT_SHUTDOWN,
    MPV_FORMAT_NODE,
    MPV_FORMAT_NONE,
    MPV_RENDER_PARAM_FLIP_Y,
    MPV_RENDER_PARAM_INVALID,
    MPV_RENDER_PARAM_OPENGL_FBO,
    MpvEvent,
    MpvEventLogMessage,
    MpvEventProperty,
    MpvNode,
    MpvOpenGLFbo,
)
from harpertv.runtime.marshal import NodeAllocator, NodeMarshaler, Value, decode_node

ERROR_STRINGS = {
    -4: "invalid parameter",
    -5: "option not found",
    -8: "property not found",
    -10: "property unavailable",
    -12: "error running command",
    -13: "loading failed",
    -15: "vo initialization failed",
}


class FakeLibMpv:
    """
    In-process stand-in for :class:`harpertv.runtime.libmpv.LibMpv`.

    Nodes cross the boundary as real ctypes structures.  Values returned by
    ``get_property`` are allocated from :attr:`allocator`, so a balanced
    ``outstanding`` count proves the handle freed them.
    """

    HANDLE = 0x1000
    RENDER_CONTEXT = 0x2000

    def __init__(self) -> None:
        self.create_result: Optional[int] = self.HANDLE
        self.init_result = 0
        self.command_result = 0
        self.command_async_result = 0
        self.set_result = 0
        self.render_create_result = 0
        self.render_result = 0
        self.option_results: Dict[str, int] = {}
        self.get_errors: Dict[str, int] = {}

        self.allocator = NodeAllocator()
        self._property_marshaler = NodeMarshaler(self.allocator)
        self._event_marshaler = NodeMarshaler()

        self.properties: Dict[str, Value] = {
            "pause": True,
            "volume": 100.0,
            "mute": False,
            "eof-reached": False,
        }
        self.calls: List[str] = []
        self.options: Dict[str, str] = {}
        self.log_level: Optional[str] = None
        self.wakeup: Optional[Callable[[], None]] = None
        self.destroyed: List[int] = []
        self.commands: List[List[str]] = []
        self.async_commands: List[Tuple[int, List[str]]] = []
        self.set_calls: List[Tuple[str, Value]] = []
        self.get_calls: List[str] = []
        self.observed: List[Tuple[int, str]] = []

        self.render_params: List[Tuple[int, Optional[int]]] = []
        self.update_callback: Optional[Callable[[], None]] = None
        self.rendered: List[Tuple[int, int, int, bool]] = []
        self.freed_contexts: List[int] = []

        self._events: Deque[Tuple[int, int, int, object]] = deque()
        self._current: List[object] = []
        self._current_node: Optional[MpvNode] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ scripting

    def push_property(self, name: str, value: Value, *, wake: bool = True) -> None:
        self._push((MPV_EVENT_PROPERTY_CHANGE, 0, 0, (name, value)), wake)

    def push_file_loaded(self, *, wake: bool = True) -> None:
        self._push((MPV_EVENT_FILE_LOADED, 0, 0, None), wake)

    def push_log(self, level: str, text: str, prefix: str = "cplayer", *, wake: bool = True) -> None:
        self._push((MPV_EVENT_LOG_MESSAGE, 0, 0, (prefix, level, text)), wake)

    def push_command_reply(self, reply_id: int, error: int = 0, *, wake: bool = True) -> None:
        self._push((MPV_EVENT_COMMAND_REPLY, error, reply_id, None), wake)

    def push_set_property_reply(self, error: int, *, wake: bool = True) -> None:
        self._push((MPV_EVENT_SET_PROPERTY_REPLY, error, 0, None), wake)

    def push_shutdown(self, *, wake: bool = True) -> None:
        self._push((MPV_EVENT_SHUTDOWN, 0, 0, None), wake)

    def pending_events(self) -> int:
        return len(self._events)

    def _push(self, entry: Tuple[int, int, int, object], wake: bool) -> None:
        with self._lock:
            self._events.append(entry)
        if wake and self.wakeup is not None:
            self.wakeup()

    # ------------------------------------------------------------------ client API

    def create(self) -> Optional[int]:
        self.calls.append("create")
        return self.create_result

    def initialize(self, handle: int) -> int:
        self.calls.append("initialize")
        return self.init_result

    def terminate_destroy(self, handle: int) -> None:
        self.calls.append("terminate_destroy")
        self.destroyed.append(handle)
        self._release_current()

    def error_string(self, code: int) -> str:
        return ERROR_STRINGS.get(int(code), f"error {code}")

    def set_option_string(self, handle: int, name: str, value: str) -> int:
        self.options[name] = value
        return self.option_results.get(name, 0)

    def request_log_messages(self, handle: int, min_level: str) -> int:
        self.log_level = min_level
        return 0

    def set_wakeup_callback(self, handle: int, callback: Optional[Callable[[], None]]) -> None:
        self.calls.append("set_wakeup_callback")
        self.wakeup = callback

    def command_string(self, handle: int, command: str) -> int:
        self.commands.append(shlex.split(command))
        return self.command_result

    def command_async(self, handle: int, reply_userdata: int, args) -> int:
        self.async_commands.append((int(reply_userdata), list(args)))
        return self.command_async_result

    def set_property_async(self, handle: int, reply_userdata: int, name: str, node: MpvNode) -> int:
        value = decode_node(node)
        self.set_calls.append((name, value))
        if self.set_result < 0:
            return self.set_result
        self.properties[name] = value
        if name in {observed for _, observed in self.observed}:
            self.push_property(name, value)
        return 0

    def get_property(self, handle: int, name: str, node: MpvNode) -> int:
        self.get_calls.append(name)
        if name in self.get_errors:
            return self.get_errors[name]
        if name not in self.properties:
            return MPV_ERROR_PROPERTY_UNAVAILABLE
        filled = self._property_marshaler.encode(self.properties[name])
        ctypes.memmove(ctypes.addressof(node), ctypes.addressof(filled), ctypes.sizeof(MpvNode))
        return 0

    def free_node_contents(self, node: MpvNode) -> None:
        self._property_marshaler.free(node)

    def observe_property(self, handle: int, reply_userdata: int, name: str) -> int:
        self.observed.append((int(reply_userdata), name))
        # The engine reports the current value right after registration.
        self.push_property(name, self.properties.get(name))
        return 0

    def wait_event(self, handle: int, timeout: float) -> MpvEvent:
        self._release_current()
        with self._lock:
            entry = self._events.popleft() if self._events else None
        event = MpvEvent()
        self._current = [event]
        if entry is None:
            event.event_id = MPV_EVENT_NONE
            return event

        event_id, error, reply_userdata, payload = entry
        event.event_id = event_id
        event.error = error
        event.reply_userdata = reply_userdata
        if event_id == MPV_EVENT_PROPERTY_CHANGE:
            name, value = payload
            prop = MpvEventProperty(name=name.encode("utf-8"))
            if value is None:
                prop.format = MPV_FORMAT_NONE
            else:
                node = self._event_marshaler.encode(value)
                self._current_node = node
                prop.format = MPV_FORMAT_NODE
                prop.data = ctypes.addressof(node)
            self._current.append(prop)
            event.data = ctypes.addressof(prop)
        elif event_id == MPV_EVENT_LOG_MESSAGE:
            prefix, level, text = payload
            message = MpvEventLogMessage(
                prefix=prefix.encode("utf-8"),
                level=level.encode("utf-8"),
                text=(text + "\n").encode("utf-8"),
            )
            self._current.append(message)
            event.data = ctypes.addressof(message)
        return event

    def _release_current(self) -> None:
        if self._current_node is not None:
            self._event_marshaler.free(self._current_node)
            self._current_node = None
        self._current = []

    # ------------------------------------------------------------------ render API

    def render_context_create(self, handle: int, params) -> Tuple[int, Optional[int]]:
        self.calls.append("render_context_create")
        self.render_params = []
        for param in params:
            if param.type == MPV_RENDER_PARAM_INVALID:
                break
            self.render_params.append((param.type, param.data))
        if self.render_create_result < 0:
            return self.render_create_result, None
        return 0, self.RENDER_CONTEXT

    def render_context_set_update_callback(self, context: int, callback: Optional[Callable[[], None]]) -> None:
        self.update_callback = callback

    def render_context_render(self, context: int, params) -> int:
        fbo = None
        flip = True
        for param in params:
            if param.type == MPV_RENDER_PARAM_INVALID:
                break
            if param.type == MPV_RENDER_PARAM_OPENGL_FBO:
                fbo = ctypes.cast(param.data, ctypes.POINTER(MpvOpenGLFbo)).contents
            elif param.type == MPV_RENDER_PARAM_FLIP_Y:
                flip = bool(ctypes.cast(param.data, ctypes.POINTER(ctypes.c_int)).contents.value)
        assert fbo is not None
        self.rendered.append((fbo.fbo, fbo.w, fbo.h, flip))
        return self.render_result

    def render_context_free(self, context: int) -> None:
        self.calls.append("render_context_free")
        self.freed_contexts.append(context)


@pytest.fixture
def lib() -> FakeLibMpv:
    return FakeLibMpv()


@pytest.fixture
def scheduler() -> QueueScheduler:
    return QueueScheduler()


@pytest.fixture
def dispatcher(scheduler: QueueScheduler) -> EventDispatcher:
    return EventDispatcher(scheduler)


@pytest.fixture
def handle(lib: FakeLibMpv, dispatcher: EventDispatcher):
    engine = EngineHandle(lib, dispatcher)
    engine.initialize()
    yield engine
    engine.terminate()
