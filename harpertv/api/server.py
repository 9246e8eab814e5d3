"""
FastAPI control surface for the HarperTV player.

Handlers touching the player must stay ``async def``: they then run on the
event loop thread, which owns the engine handle when the server drives the
engine through :class:`~harpertv.runtime.dispatcher.AsyncioScheduler`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .. import PlayerConfig
from ..channels import ChannelManager
from ..playback import PlaybackController
from ..player import MediaPlayer
from ..settings import Settings
from . import schemas

LOG = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


@dataclass
class _Subscriber:
    loop: asyncio.AbstractEventLoop
    queue: "asyncio.Queue[Dict[str, Any]]"
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EventHub:
    """Fan out player events to connected WebSocket clients."""

    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: Dict[str, _Subscriber] = {}

    @property
    def session_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: Dict[str, Any]) -> None:
        for subscriber in list(self._subscribers.values()):
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is subscriber.loop:
                self._offer(subscriber, message)
            elif not subscriber.loop.is_closed():
                subscriber.loop.call_soon_threadsafe(self._offer, subscriber, message)

    def _offer(self, subscriber: _Subscriber, message: Dict[str, Any]) -> None:
        try:
            subscriber.queue.put_nowait(message)
        except asyncio.QueueFull:
            LOG.warning("Dropping %s event for slow client %s", message.get("type"), subscriber.session_id[:8])

    async def run(self, websocket: WebSocket, initial: Callable[[], Dict[str, Any]]) -> None:
        await websocket.accept()
        subscriber = _Subscriber(loop=asyncio.get_running_loop(), queue=asyncio.Queue(maxsize=self.queue_size))
        logger = LOG.getChild(f"ws.{subscriber.session_id[:8]}")
        self._subscribers[subscriber.session_id] = subscriber
        receiver = asyncio.create_task(self._receive_until_closed(websocket))
        logger.debug("Client connected")
        try:
            await websocket.send_json(initial())
            while not receiver.done():
                getter = asyncio.create_task(subscriber.queue.get())
                done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    await websocket.send_json(getter.result())
                else:
                    getter.cancel()
        except WebSocketDisconnect:
            pass
        finally:
            self._subscribers.pop(subscriber.session_id, None)
            receiver.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await receiver
            logger.debug("Client disconnected")

    @staticmethod
    async def _receive_until_closed(websocket: WebSocket) -> None:
        # Client frames carry no commands; reading detects the disconnect.
        while True:
            await websocket.receive_text()


def create_app(
    *,
    player: MediaPlayer,
    channels: ChannelManager,
    settings: Settings,
    config: Optional[PlayerConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    player_config = config or PlayerConfig()
    hub = EventHub()
    player.subscribe(lambda event, payload: hub.publish({"type": event, "payload": dict(payload)}))

    app = FastAPI(title="HarperTV Player API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_controller() -> PlaybackController:
        controller = player.controller
        if controller is None or not player.handle.is_alive:
            raise HTTPException(status_code=503, detail="Player engine is not running")
        return controller

    def state_payload() -> Dict[str, Any]:
        controller = player.controller
        state = controller.state.to_dict() if controller is not None else schemas.PlaybackStateModel().model_dump()
        return {
            **state,
            "media": player.current_media,
            "network_stream": player.is_network_stream,
        }

    def channel_list() -> schemas.ChannelListModel:
        current = channels.current_index
        return schemas.ChannelListModel(
            current_index=current,
            channels=[
                schemas.ChannelModel(index=index, name=channel.name, url=channel.url, current=index == current)
                for index, channel in enumerate(channels.channels)
            ],
        )

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await hub.run(websocket, lambda: {"type": "state", "payload": state_payload()})

    @app.get("/healthz")
    async def healthz() -> dict:
        return {
            "status": "ok",
            "engine": "running" if player.is_initialized else "stopped",
            "channels_file": str(player_config.channels_path) if player_config.channels_path else None,
        }

    @app.get("/state")
    async def get_state() -> dict:
        return state_payload()

    @app.get("/channels", response_model=schemas.ChannelListModel)
    async def list_channels() -> schemas.ChannelListModel:
        return channel_list()

    @app.post("/channels/{index}/play")
    async def play_channel(index: int) -> dict:
        require_controller()
        channel = channels.channel(index)
        if channel is None:
            raise HTTPException(status_code=404, detail=f"Channel {index} not found")
        channels.set_current_index(index)
        player.load_channel(channel)
        settings.set_value("last_channel_index", index)
        return {"ok": True, "channel": channel.to_dict(), "index": index}

    @app.post("/media")
    async def load_media(payload: schemas.MediaRequest) -> dict:
        require_controller()
        if not player.load_media(payload.path):
            raise HTTPException(status_code=400, detail="Invalid media path")
        return {"ok": True, "media": player.current_media, "network_stream": player.is_network_stream}

    @app.post("/transport")
    async def apply_transport(payload: schemas.TransportCommandRequest) -> dict:
        controller = require_controller()
        if payload.op == "play":
            controller.play()
        elif payload.op == "pause":
            controller.pause()
        elif payload.op == "toggle":
            controller.toggle_play_pause()
        elif payload.op == "stop":
            controller.stop()
        elif payload.op == "seek":
            if payload.position is None:
                raise HTTPException(status_code=400, detail="seek requires a position")
            controller.seek(payload.position)
        return {"ok": True, "state": state_payload()}

    @app.post("/volume")
    async def set_volume(payload: schemas.VolumeRequest) -> dict:
        controller = require_controller()
        controller.set_volume(payload.volume)
        settings.set_value("volume", controller.state.volume)
        return {"ok": True, "volume": controller.state.volume, "muted": controller.state.muted}

    @app.post("/mute")
    async def set_mute(payload: schemas.MuteRequest) -> dict:
        controller = require_controller()
        controller.set_mute(payload.muted)
        return {"ok": True, "muted": controller.state.muted}

    @app.get("/settings", response_model=schemas.SettingsModel)
    async def get_settings() -> schemas.SettingsModel:
        return schemas.SettingsModel(app=settings.app_settings(), engine=settings.engine_settings())

    @app.put("/settings/engine", response_model=schemas.SettingsModel)
    async def update_engine_settings(payload: schemas.EngineSettingsRequest) -> schemas.SettingsModel:
        try:
            settings.update_engine(payload.values)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        settings.save()
        return schemas.SettingsModel(app=settings.app_settings(), engine=settings.engine_settings())

    return app
