"""
Bridge between the player and the libmpv media engine.
"""

from __future__ import annotations

from .dispatcher import (
    AsyncioScheduler,
    DispatcherState,
    EventDispatcher,
    OwnerThreadScheduler,
    QueueScheduler,
)
from .events import (
    CommandReply,
    ErrorOccurred,
    Event,
    FileLoaded,
    LogMessage,
    PlaybackFinished,
    PropertyChanged,
)
from .handle import EngineHandle, format_command, quote_argument
from .libmpv import (
    EngineClosedError,
    EngineCreationFailed,
    EngineError,
    EngineInitFailed,
    LibMpv,
    LibraryUnavailableError,
)
from .marshal import DoubleFreeError, MarshalError, NodeAllocator, NodeMarshaler, Value, decode_node
from .render import RenderBridge

__all__ = [
    "AsyncioScheduler",
    "CommandReply",
    "DispatcherState",
    "DoubleFreeError",
    "EngineClosedError",
    "EngineCreationFailed",
    "EngineError",
    "EngineHandle",
    "EngineInitFailed",
    "ErrorOccurred",
    "Event",
    "EventDispatcher",
    "FileLoaded",
    "LibMpv",
    "LibraryUnavailableError",
    "LogMessage",
    "MarshalError",
    "NodeAllocator",
    "NodeMarshaler",
    "OwnerThreadScheduler",
    "PlaybackFinished",
    "PropertyChanged",
    "QueueScheduler",
    "RenderBridge",
    "Value",
    "decode_node",
    "format_command",
    "quote_argument",
]
