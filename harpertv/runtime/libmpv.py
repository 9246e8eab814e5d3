"""
ctypes bindings for the subset of the libmpv client and render API the player
uses.

The structures mirror ``mpv/client.h`` and ``mpv/render_gl.h``.  String
pointers inside nodes are declared as ``c_void_p`` rather than ``c_char_p`` so
that reading them yields the raw address; ctypes would otherwise copy the
bytes and hide which allocation the pointer refers to.

:class:`LibMpv` is a thin facade with one method per ABI entry point.  The
engine handle only ever talks to that facade, which keeps the native library
swappable with an in-process double in the tests.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import sys
from typing import Callable, Dict, Optional, Sequence, Tuple

LOG = logging.getLogger(__name__)

# mpv_format
MPV_FORMAT_NONE = 0
MPV_FORMAT_STRING = 1
MPV_FORMAT_OSD_STRING = 2
MPV_FORMAT_FLAG = 3
MPV_FORMAT_INT64 = 4
MPV_FORMAT_DOUBLE = 5
MPV_FORMAT_NODE = 6
MPV_FORMAT_NODE_ARRAY = 7
MPV_FORMAT_NODE_MAP = 8
MPV_FORMAT_BYTE_ARRAY = 9

# mpv_event_id
MPV_EVENT_NONE = 0
MPV_EVENT_SHUTDOWN = 1
MPV_EVENT_LOG_MESSAGE = 2
MPV_EVENT_GET_PROPERTY_REPLY = 3
MPV_EVENT_SET_PROPERTY_REPLY = 4
MPV_EVENT_COMMAND_REPLY = 5
MPV_EVENT_START_FILE = 6
MPV_EVENT_END_FILE = 7
MPV_EVENT_FILE_LOADED = 8
MPV_EVENT_CLIENT_MESSAGE = 16
MPV_EVENT_VIDEO_RECONFIG = 17
MPV_EVENT_AUDIO_RECONFIG = 18
MPV_EVENT_SEEK = 20
MPV_EVENT_PLAYBACK_RESTART = 21
MPV_EVENT_PROPERTY_CHANGE = 22
MPV_EVENT_QUEUE_OVERFLOW = 24

# mpv_error
MPV_ERROR_SUCCESS = 0
MPV_ERROR_EVENT_QUEUE_FULL = -1
MPV_ERROR_NOMEM = -2
MPV_ERROR_UNINITIALIZED = -3
MPV_ERROR_INVALID_PARAMETER = -4
MPV_ERROR_OPTION_NOT_FOUND = -5
MPV_ERROR_OPTION_FORMAT = -6
MPV_ERROR_OPTION_ERROR = -7
MPV_ERROR_PROPERTY_NOT_FOUND = -8
MPV_ERROR_PROPERTY_FORMAT = -9
MPV_ERROR_PROPERTY_UNAVAILABLE = -10
MPV_ERROR_PROPERTY_ERROR = -11
MPV_ERROR_COMMAND = -12
MPV_ERROR_LOADING_FAILED = -13
MPV_ERROR_AO_INIT_FAILED = -14
MPV_ERROR_VO_INIT_FAILED = -15
MPV_ERROR_NOTHING_TO_PLAY = -16
MPV_ERROR_UNKNOWN_FORMAT = -17
MPV_ERROR_UNSUPPORTED = -18
MPV_ERROR_NOT_IMPLEMENTED = -19
MPV_ERROR_GENERIC = -20

# mpv_render_param_type
MPV_RENDER_PARAM_INVALID = 0
MPV_RENDER_PARAM_API_TYPE = 1
MPV_RENDER_PARAM_OPENGL_INIT_PARAMS = 2
MPV_RENDER_PARAM_OPENGL_FBO = 3
MPV_RENDER_PARAM_FLIP_Y = 4
MPV_RENDER_PARAM_ADVANCED_CONTROL = 10

MPV_RENDER_API_TYPE_OPENGL = b"opengl"


class EngineError(RuntimeError):
    """Base class for engine bridge failures."""


class LibraryUnavailableError(EngineError):
    """Raised when the libmpv shared library cannot be located or loaded."""


class EngineCreationFailed(EngineError):
    """Raised when ``mpv_create`` does not return an instance."""


class EngineInitFailed(EngineError):
    """Raised when ``mpv_initialize`` reports an error."""

    def __init__(self, code: int, message: str = "") -> None:
        self.code = int(code)
        super().__init__(message or f"mpv_initialize failed with code {code}")


class EngineClosedError(EngineError):
    """Raised when an operation is attempted after the handle was terminated."""


class MpvNodeList(ctypes.Structure):
    pass


class _MpvNodeUnion(ctypes.Union):
    _fields_ = [
        ("string", ctypes.c_void_p),
        ("flag", ctypes.c_int),
        ("int64", ctypes.c_int64),
        ("double_", ctypes.c_double),
        ("list", ctypes.POINTER(MpvNodeList)),
        ("ba", ctypes.c_void_p),
    ]


class MpvNode(ctypes.Structure):
    _fields_ = [("u", _MpvNodeUnion), ("format", ctypes.c_int)]


MpvNodeList._fields_ = [
    ("num", ctypes.c_int),
    ("values", ctypes.POINTER(MpvNode)),
    ("keys", ctypes.POINTER(ctypes.c_void_p)),
]


class MpvEvent(ctypes.Structure):
    _fields_ = [
        ("event_id", ctypes.c_int),
        ("error", ctypes.c_int),
        ("reply_userdata", ctypes.c_uint64),
        ("data", ctypes.c_void_p),
    ]


class MpvEventProperty(ctypes.Structure):
    _fields_ = [
        ("name", ctypes.c_char_p),
        ("format", ctypes.c_int),
        ("data", ctypes.c_void_p),
    ]


class MpvEventLogMessage(ctypes.Structure):
    _fields_ = [
        ("prefix", ctypes.c_char_p),
        ("level", ctypes.c_char_p),
        ("text", ctypes.c_char_p),
        ("log_level", ctypes.c_int),
    ]


class MpvRenderParam(ctypes.Structure):
    _fields_ = [("type", ctypes.c_int), ("data", ctypes.c_void_p)]


GetProcAddressFn = ctypes.CFUNCTYPE(ctypes.c_void_p, ctypes.c_void_p, ctypes.c_char_p)
WakeupFn = ctypes.CFUNCTYPE(None, ctypes.c_void_p)


class MpvOpenGLInitParams(ctypes.Structure):
    _fields_ = [
        ("get_proc_address", GetProcAddressFn),
        ("get_proc_address_ctx", ctypes.c_void_p),
    ]


class MpvOpenGLFbo(ctypes.Structure):
    _fields_ = [
        ("fbo", ctypes.c_int),
        ("w", ctypes.c_int),
        ("h", ctypes.c_int),
        ("internal_format", ctypes.c_int),
    ]


def render_param_array(params: Sequence[Tuple[int, Optional[int]]]) -> ctypes.Array:
    """Build a ``MPV_RENDER_PARAM_INVALID`` terminated parameter array."""

    array = (MpvRenderParam * (len(params) + 1))()
    for index, (param_type, data) in enumerate(params):
        array[index].type = param_type
        array[index].data = data
    array[len(params)].type = MPV_RENDER_PARAM_INVALID
    array[len(params)].data = None
    return array


def _candidate_library_names() -> Sequence[str]:
    if sys.platform == "win32":
        return ("mpv-2", "libmpv-2", "mpv-1", "mpv")
    return ("mpv",)


class LibMpv:
    """
    Facade over the libmpv shared library.

    Every method takes and returns plain Python values or the ctypes
    structures declared above; the callers never touch ``ctypes.CDLL``
    directly.
    """

    def __init__(self, library: Optional[str] = None) -> None:
        path = library
        if path is None:
            for name in _candidate_library_names():
                path = ctypes.util.find_library(name)
                if path:
                    break
        if not path:
            raise LibraryUnavailableError(
                "libmpv shared library not found. Install mpv/libmpv or pass an explicit path."
            )
        try:
            self._lib = ctypes.CDLL(path)
        except OSError as exc:
            raise LibraryUnavailableError(f"Failed to load libmpv from '{path}': {exc}") from exc
        self.path = path
        # ctypes callbacks must outlive the native registration.
        self._callbacks: Dict[Tuple[str, int], object] = {}
        self._declare()
        LOG.debug("Loaded libmpv from %s", path)

    def _declare(self) -> None:
        lib = self._lib
        handle_p = ctypes.c_void_p

        lib.mpv_create.restype = handle_p
        lib.mpv_create.argtypes = []
        lib.mpv_initialize.restype = ctypes.c_int
        lib.mpv_initialize.argtypes = [handle_p]
        lib.mpv_terminate_destroy.restype = None
        lib.mpv_terminate_destroy.argtypes = [handle_p]
        lib.mpv_error_string.restype = ctypes.c_char_p
        lib.mpv_error_string.argtypes = [ctypes.c_int]
        lib.mpv_set_option_string.restype = ctypes.c_int
        lib.mpv_set_option_string.argtypes = [handle_p, ctypes.c_char_p, ctypes.c_char_p]
        lib.mpv_request_log_messages.restype = ctypes.c_int
        lib.mpv_request_log_messages.argtypes = [handle_p, ctypes.c_char_p]
        lib.mpv_set_wakeup_callback.restype = None
        lib.mpv_set_wakeup_callback.argtypes = [handle_p, WakeupFn, ctypes.c_void_p]
        lib.mpv_command_string.restype = ctypes.c_int
        lib.mpv_command_string.argtypes = [handle_p, ctypes.c_char_p]
        lib.mpv_command_async.restype = ctypes.c_int
        lib.mpv_command_async.argtypes = [
            handle_p,
            ctypes.c_uint64,
            ctypes.POINTER(ctypes.c_char_p),
        ]
        lib.mpv_set_property_async.restype = ctypes.c_int
        lib.mpv_set_property_async.argtypes = [
            handle_p,
            ctypes.c_uint64,
            ctypes.c_char_p,
            ctypes.c_int,
            ctypes.c_void_p,
        ]
        lib.mpv_get_property.restype = ctypes.c_int
        lib.mpv_get_property.argtypes = [handle_p, ctypes.c_char_p, ctypes.c_int, ctypes.c_void_p]
        lib.mpv_free_node_contents.restype = None
        lib.mpv_free_node_contents.argtypes = [ctypes.POINTER(MpvNode)]
        lib.mpv_observe_property.restype = ctypes.c_int
        lib.mpv_observe_property.argtypes = [handle_p, ctypes.c_uint64, ctypes.c_char_p, ctypes.c_int]
        lib.mpv_wait_event.restype = ctypes.POINTER(MpvEvent)
        lib.mpv_wait_event.argtypes = [handle_p, ctypes.c_double]

        lib.mpv_render_context_create.restype = ctypes.c_int
        lib.mpv_render_context_create.argtypes = [
            ctypes.POINTER(ctypes.c_void_p),
            handle_p,
            ctypes.POINTER(MpvRenderParam),
        ]
        lib.mpv_render_context_set_update_callback.restype = None
        lib.mpv_render_context_set_update_callback.argtypes = [
            ctypes.c_void_p,
            WakeupFn,
            ctypes.c_void_p,
        ]
        lib.mpv_render_context_render.restype = ctypes.c_int
        lib.mpv_render_context_render.argtypes = [ctypes.c_void_p, ctypes.POINTER(MpvRenderParam)]
        lib.mpv_render_context_free.restype = None
        lib.mpv_render_context_free.argtypes = [ctypes.c_void_p]

    # ------------------------------------------------------------ client API

    def create(self) -> Optional[int]:
        return self._lib.mpv_create()

    def initialize(self, handle: int) -> int:
        return self._lib.mpv_initialize(handle)

    def terminate_destroy(self, handle: int) -> None:
        self._lib.mpv_terminate_destroy(handle)
        self._callbacks.pop(("wakeup", handle), None)

    def error_string(self, code: int) -> str:
        raw = self._lib.mpv_error_string(int(code))
        return raw.decode("utf-8", errors="replace") if raw else f"error {code}"

    def set_option_string(self, handle: int, name: str, value: str) -> int:
        return self._lib.mpv_set_option_string(handle, name.encode("utf-8"), value.encode("utf-8"))

    def request_log_messages(self, handle: int, min_level: str) -> int:
        return self._lib.mpv_request_log_messages(handle, min_level.encode("utf-8"))

    def set_wakeup_callback(self, handle: int, callback: Optional[Callable[[], None]]) -> None:
        if callback is None:
            self._lib.mpv_set_wakeup_callback(handle, WakeupFn(), None)
            self._callbacks.pop(("wakeup", handle), None)
            return

        def _trampoline(_userdata: Optional[int]) -> None:
            callback()

        native = WakeupFn(_trampoline)
        self._callbacks[("wakeup", handle)] = native
        self._lib.mpv_set_wakeup_callback(handle, native, None)

    def command_string(self, handle: int, command: str) -> int:
        return self._lib.mpv_command_string(handle, command.encode("utf-8"))

    def command_async(self, handle: int, reply_userdata: int, args: Sequence[str]) -> int:
        argv = (ctypes.c_char_p * (len(args) + 1))()
        for index, arg in enumerate(args):
            argv[index] = arg.encode("utf-8")
        argv[len(args)] = None
        return self._lib.mpv_command_async(handle, reply_userdata, argv)

    def set_property_async(self, handle: int, reply_userdata: int, name: str, node: MpvNode) -> int:
        return self._lib.mpv_set_property_async(
            handle,
            reply_userdata,
            name.encode("utf-8"),
            MPV_FORMAT_NODE,
            ctypes.addressof(node),
        )

    def get_property(self, handle: int, name: str, node: MpvNode) -> int:
        return self._lib.mpv_get_property(
            handle,
            name.encode("utf-8"),
            MPV_FORMAT_NODE,
            ctypes.addressof(node),
        )

    def free_node_contents(self, node: MpvNode) -> None:
        self._lib.mpv_free_node_contents(ctypes.byref(node))

    def observe_property(self, handle: int, reply_userdata: int, name: str) -> int:
        return self._lib.mpv_observe_property(handle, reply_userdata, name.encode("utf-8"), MPV_FORMAT_NODE)

    def wait_event(self, handle: int, timeout: float) -> MpvEvent:
        return self._lib.mpv_wait_event(handle, float(timeout)).contents

    # ------------------------------------------------------------ render API

    def render_context_create(self, handle: int, params: ctypes.Array) -> Tuple[int, Optional[int]]:
        context = ctypes.c_void_p()
        result = self._lib.mpv_render_context_create(ctypes.byref(context), handle, params)
        return result, context.value

    def render_context_set_update_callback(
        self,
        context: int,
        callback: Optional[Callable[[], None]],
    ) -> None:
        if callback is None:
            self._lib.mpv_render_context_set_update_callback(context, WakeupFn(), None)
            self._callbacks.pop(("render-update", context), None)
            return

        def _trampoline(_userdata: Optional[int]) -> None:
            callback()

        native = WakeupFn(_trampoline)
        self._callbacks[("render-update", context)] = native
        self._lib.mpv_render_context_set_update_callback(context, native, None)

    def render_context_render(self, context: int, params: ctypes.Array) -> int:
        return self._lib.mpv_render_context_render(context, params)

    def render_context_free(self, context: int) -> None:
        self._lib.mpv_render_context_free(context)
        self._callbacks.pop(("render-update", context), None)
