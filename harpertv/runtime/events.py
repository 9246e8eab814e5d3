"""
Typed events republished by :class:`~harpertv.runtime.dispatcher.EventDispatcher`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .marshal import Value


@dataclass(frozen=True, slots=True)
class PropertyChanged:
    name: str
    value: Value


@dataclass(frozen=True, slots=True)
class FileLoaded:
    pass


@dataclass(frozen=True, slots=True)
class PlaybackFinished:
    pass


@dataclass(frozen=True, slots=True)
class LogMessage:
    level: str
    text: str
    prefix: str = ""


@dataclass(frozen=True, slots=True)
class CommandReply:
    error_code: int


@dataclass(frozen=True, slots=True)
class ErrorOccurred:
    """User-visible failure surfaced by the bridge."""

    message: str


Event = Union[PropertyChanged, FileLoaded, PlaybackFinished, LogMessage, CommandReply, ErrorOccurred]
