"""Quick headless demo for the engine bridge.

Plays one file or stream without the HTTP server.  The main thread is the
owner thread: it pumps a :class:`QueueScheduler` and prints every playback
event.  No video output is shown since no render context is created.

Examples
--------
Play a local file::

    python scripts/demo_player.py /path/to/video.mp4

Play a stream for 30 seconds at half volume::

    python scripts/demo_player.py https://example.com/live.m3u8 --duration 30 --volume 50

Press Ctrl+C to terminate playback.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import Iterable

from harpertv.player import MediaPlayer
from harpertv.runtime import QueueScheduler
from harpertv.runtime.libmpv import EngineError, LibMpv
from harpertv.settings import Settings
from harpertv.utils.logging import configure_logging


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HarperTV engine bridge demo")
    parser.add_argument("media", help="file path or stream URL to play")
    parser.add_argument("--volume", type=int, default=100, help="initial volume 0..100")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Optional duration in seconds; 0 means run until playback finishes.",
    )
    parser.add_argument("--library", default=None, help="explicit path to the libmpv shared library")
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    settings = Settings()
    settings.set_value("volume", args.volume)
    # No render context is created, so let the engine pick its own output.
    settings.set_engine_value("vo", "null")
    scheduler = QueueScheduler()
    try:
        player = MediaPlayer(settings, LibMpv(args.library), scheduler)
        player.initialize()
    except EngineError as exc:
        print(f"Engine unavailable: {exc}", file=sys.stderr)
        return 1

    finished = False

    def _on_event(event: str, payload: dict) -> None:
        nonlocal finished
        if event == "position-changed":
            return
        print(f"{event}: {payload}")
        if event == "playback-finished":
            finished = True

    player.subscribe(_on_event)

    stop_requested = False

    def _handle_signal(signum, frame):  # type: ignore[override]
        nonlocal stop_requested
        stop_requested = True

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        player.load_media(args.media)
        player.controller.play()
        start_time = time.monotonic()
        while not stop_requested and not finished:
            scheduler.run_pending(timeout=0.1)
            if args.duration > 0 and time.monotonic() - start_time >= args.duration:
                break
    finally:
        player.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
