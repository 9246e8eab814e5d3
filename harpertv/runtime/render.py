"""
OpenGL render context bridge.

The render context is driven from the render thread, which owns the GL
surface, and never from the owner thread that carries property and event
traffic.  :meth:`RenderBridge.release` must only run once the paint loop has
stopped issuing :meth:`RenderBridge.render_frame` calls.
"""

from __future__ import annotations

import ctypes
import logging
from typing import TYPE_CHECKING, Callable, List, Optional

from .libmpv import (
    MPV_RENDER_API_TYPE_OPENGL,
    MPV_RENDER_PARAM_ADVANCED_CONTROL,
    MPV_RENDER_PARAM_API_TYPE,
    MPV_RENDER_PARAM_FLIP_Y,
    MPV_RENDER_PARAM_OPENGL_FBO,
    MPV_RENDER_PARAM_OPENGL_INIT_PARAMS,
    GetProcAddressFn,
    MpvOpenGLFbo,
    MpvOpenGLInitParams,
    render_param_array,
)

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .handle import EngineHandle

LOG = logging.getLogger(__name__)

ProcAddressResolver = Callable[[str], Optional[int]]


class RenderBridge:
    """
    Owns the ``mpv_render_context`` of an :class:`EngineHandle`.

    A bridge whose context was never created renders nothing, which keeps
    audio-only playback working when no GL surface is available.
    """

    def __init__(self, handle: "EngineHandle", *, on_update: Optional[Callable[[], None]] = None) -> None:
        self._handle = handle
        self._on_update = on_update
        self._context: Optional[int] = None
        # Keeps the ctypes objects referenced by the native context alive.
        self._keepalive: List[object] = []

    @property
    def on_update(self) -> Optional[Callable[[], None]]:
        return self._on_update

    @property
    def is_active(self) -> bool:
        return self._context is not None

    def initialize_renderer(self, get_proc_address: ProcAddressResolver) -> bool:
        """
        Create the render context for the GL context current on this thread.

        ``get_proc_address`` maps a GL function name to its address.  Failure
        is reported as a warning and leaves the bridge inactive.
        """

        if not self._handle.is_alive:
            LOG.warning("Render context requested before the engine was initialised.")
            return False
        if self._context is not None:
            self.release()

        lib = self._handle.lib

        def _resolve(_ctx: Optional[int], name: bytes) -> Optional[int]:
            try:
                address = get_proc_address(name.decode("ascii"))
            except Exception:
                LOG.debug("GL proc lookup for %s raised.", name, exc_info=True)
                return None
            if not address:
                LOG.debug("GL function not available: %s", name)
            return address or None

        resolver = GetProcAddressFn(_resolve)
        init_params = MpvOpenGLInitParams(get_proc_address=resolver, get_proc_address_ctx=None)
        api_type = ctypes.create_string_buffer(MPV_RENDER_API_TYPE_OPENGL)
        advanced_control = ctypes.c_int(1)
        params = render_param_array(
            [
                (MPV_RENDER_PARAM_API_TYPE, ctypes.addressof(api_type)),
                (MPV_RENDER_PARAM_OPENGL_INIT_PARAMS, ctypes.addressof(init_params)),
                (MPV_RENDER_PARAM_ADVANCED_CONTROL, ctypes.addressof(advanced_control)),
            ]
        )

        result, context = lib.render_context_create(self._handle.native_handle, params)
        if result < 0 or not context:
            reason = lib.error_string(result) if result < 0 else "no context returned"
            LOG.warning("Failed to create render context: %s", reason)
            self._handle.surface_error(f"OpenGL rendering not available: {reason}")
            return False

        self._keepalive = [resolver, init_params, api_type, advanced_control]
        self._context = context
        if self._on_update is not None:
            lib.render_context_set_update_callback(context, self._on_update)
        LOG.info("Render context created.")
        return True

    def render_frame(self, fbo: int, width: int, height: int, *, flip_y: bool = True) -> None:
        """Render one frame into ``fbo``; does nothing without a render context."""

        context = self._context
        if context is None:
            return
        target = MpvOpenGLFbo(fbo=int(fbo), w=int(width), h=int(height), internal_format=0)
        flip = ctypes.c_int(1 if flip_y else 0)
        params = render_param_array(
            [
                (MPV_RENDER_PARAM_OPENGL_FBO, ctypes.addressof(target)),
                (MPV_RENDER_PARAM_FLIP_Y, ctypes.addressof(flip)),
            ]
        )
        result = self._handle.lib.render_context_render(context, params)
        if result < 0:
            LOG.warning("Error rendering frame: %s", self._handle.lib.error_string(result))

    def release(self) -> None:
        context = self._context
        if context is None:
            return
        self._context = None
        lib = self._handle.lib
        if self._on_update is not None:
            lib.render_context_set_update_callback(context, None)
        lib.render_context_free(context)
        self._keepalive = []
        LOG.info("Render context released.")
