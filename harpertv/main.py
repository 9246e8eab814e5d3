"""
Player process entrypoint.

Resolves configuration, initialises logging, starts the engine on the asyncio
loop thread and serves the control API with uvicorn.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from . import PlayerConfig
from .api.server import create_app
from .channels import ChannelManager
from .player import MediaPlayer
from .runtime.dispatcher import AsyncioScheduler
from .runtime.libmpv import EngineError, LibMpv
from .settings import Settings
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "harpertv" / "settings.yaml"


def load_channel_list(settings: Settings, config: PlayerConfig) -> ChannelManager:
    manager = ChannelManager()
    path = config.channels_path or Path(settings.value("channels_file", "channels.json"))
    config.channels_path = path
    if not path.exists():
        LOG.info("Channel file %s not found; starting with an empty list.", path)
        return manager
    if manager.load_from_file(path):
        manager.set_current_index(int(settings.value("last_channel_index", 0)))
    return manager


async def serve(config: PlayerConfig, host: str = "127.0.0.1", port: int = 8080) -> None:
    """
    Run the engine and the control API inside one asyncio loop.

    The loop thread is the engine's owner thread: engine events are drained
    there and every API handler runs there.
    """

    import uvicorn

    settings = Settings(config.settings_path)
    channels = load_channel_list(settings, config)
    player = MediaPlayer(settings, LibMpv(config.library), AsyncioScheduler())
    player.initialize()

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Player lifespan starting")
        try:
            yield
        finally:
            LOG.info("Player lifespan shutting down")
            player.shutdown()
            try:
                settings.save()
            except OSError:
                LOG.exception("Failed to save settings.")

    app = create_app(player=player, channels=channels, settings=settings, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)
    try:
        await server.serve()
    finally:
        # The lifespan never ran if uvicorn failed to bind.
        player.shutdown()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HarperTV player")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH), help="settings YAML file")
    parser.add_argument("--channels", default=None, help="channel list JSON file (overrides the settings)")
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    parser.add_argument("--port", type=int, default=8080, help="bind port for the API server")
    parser.add_argument("--log-level", default="INFO", help="root log level")
    parser.add_argument("--library", default=None, help="explicit path to the libmpv shared library")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = PlayerConfig(
        settings_path=args.settings,
        channels_path=args.channels,
        library=args.library,
    )

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port))
    except EngineError as exc:
        LOG.error("Player failed to start: %s", exc)
        return 1
    except KeyboardInterrupt:
        LOG.info("Player interrupted by user.")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
