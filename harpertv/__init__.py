"""
HarperTV player package.

The interesting part lives in :mod:`harpertv.runtime`, the bridge to the
libmpv media engine.  Channel storage, settings and the HTTP control surface
sit on top of it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

__all__ = [
    "PlayerConfig",
]


class PlayerConfig:
    """Top level player configuration resolved from the command line."""

    def __init__(
        self,
        settings_path: Optional[Union[str, Path]] = None,
        channels_path: Optional[Union[str, Path]] = None,
        library: Optional[str] = None,
    ) -> None:
        self.settings_path = Path(settings_path) if settings_path is not None else None
        self.channels_path = Path(channels_path) if channels_path is not None else None
        self.library = library
