from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from harpertv.api.server import create_app
from harpertv.channels import Channel, ChannelManager
from harpertv.player import MediaPlayer
from harpertv.settings import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def channels() -> ChannelManager:
    return ChannelManager(
        [
            Channel(name="News", url="http://example.com/news.m3u8"),
            Channel(name="Local", url="/srv/media/local.mp4"),
        ]
    )


@pytest.fixture
def player(settings, lib, scheduler):
    media_player = MediaPlayer(settings, lib, scheduler)
    media_player.initialize()
    scheduler.run_pending()
    yield media_player
    media_player.shutdown()


@pytest.fixture
def client(player, channels, settings):
    app = create_app(player=player, channels=channels, settings=settings)
    with TestClient(app) as test_client:
        yield test_client


def test_healthz(client) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["engine"] == "running"


def test_state(client) -> None:
    state = client.get("/state").json()
    assert state["playing"] is False
    assert state["volume"] == 100
    assert state["media"] == ""


def test_list_channels(client) -> None:
    payload = client.get("/channels").json()
    assert payload["current_index"] == 0
    assert [channel["name"] for channel in payload["channels"]] == ["News", "Local"]
    assert payload["channels"][0]["current"] is True


def test_play_channel(client, lib, channels, settings) -> None:
    response = client.post("/channels/1/play")
    assert response.status_code == 200
    assert response.json()["channel"] == {"name": "Local", "url": "/srv/media/local.mp4"}
    assert lib.async_commands[-1][1] == ["loadfile", "/srv/media/local.mp4"]
    assert channels.current_index == 1
    assert settings.value("last_channel_index") == 1


def test_play_unknown_channel(client) -> None:
    assert client.post("/channels/7/play").status_code == 404


def test_load_media(client, lib) -> None:
    response = client.post("/media", json={"path": "rtsp://camera/stream"})
    assert response.status_code == 200
    assert response.json()["network_stream"] is True
    assert lib.async_commands[-1][1] == ["loadfile", "rtsp://camera/stream"]

    assert client.post("/media", json={"path": "  "}).status_code == 422


def test_transport(client, lib) -> None:
    assert client.post("/transport", json={"op": "play"}).status_code == 200
    assert ("pause", False) in lib.set_calls

    assert client.post("/transport", json={"op": "seek", "position": 12.5}).status_code == 200
    assert lib.set_calls[-1] == ("time-pos", 12.5)

    assert client.post("/transport", json={"op": "stop"}).status_code == 200
    assert lib.commands[-1] == ["stop"]

    assert client.post("/transport", json={"op": "seek"}).status_code == 400
    assert client.post("/transport", json={"op": "rewind"}).status_code == 422


def test_volume_and_mute(client, lib, settings) -> None:
    response = client.post("/volume", json={"volume": 35})
    assert response.json() == {"ok": True, "volume": 35, "muted": False}
    assert settings.value("volume") == 35

    response = client.post("/mute", json={"muted": True})
    assert response.json() == {"ok": True, "muted": True}
    assert ("mute", True) in lib.set_calls


def test_settings_endpoints(client, lib) -> None:
    payload = client.get("/settings").json()
    assert payload["engine"]["vo"] == "libmpv"
    assert payload["app"]["volume"] == 100

    response = client.put("/settings/engine", json={"values": {"hwdec": "no", "cache-secs": 30}})
    assert response.status_code == 200
    assert response.json()["engine"]["hwdec"] == "no"
    assert response.json()["engine"]["cache-secs"] == 30
    assert ("hwdec", "no") in lib.set_calls


def test_endpoints_require_running_engine(channels, settings, lib, scheduler) -> None:
    idle = MediaPlayer(settings, lib, scheduler)
    app = create_app(player=idle, channels=channels, settings=settings)
    with TestClient(app) as client:
        assert client.get("/healthz").json()["engine"] == "stopped"
        assert client.post("/transport", json={"op": "play"}).status_code == 503
        assert client.get("/state").json()["volume"] == 100


def test_websocket_sends_state_then_events(client) -> None:
    with client.websocket_connect("/ws") as websocket:
        initial = websocket.receive_json()
        assert initial["type"] == "state"
        assert initial["payload"]["volume"] == 100

        client.post("/mute", json={"muted": True})
        message = websocket.receive_json()
        assert message == {"type": "mute-changed", "payload": {"muted": True}}


def test_volume_requires_a_number(client, settings) -> None:
    assert client.post("/volume", json={"volume": None}).status_code == 422
    assert client.post("/volume", json={"volume": [10]}).status_code == 422
    assert client.post("/volume", json={"volume": "loud"}).status_code == 422
    assert settings.value("volume") == 100
