"""
Pydantic schemas mirroring the REST/WS contract.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

TRANSPORT_OPS = ("play", "pause", "toggle", "stop", "seek")


class PlaybackStateModel(BaseModel):
    playing: bool = False
    position: float = 0.0
    duration: float = 0.0
    volume: int = 100
    muted: bool = False


class ChannelModel(BaseModel):
    index: int
    name: str
    url: str
    current: bool = False


class ChannelListModel(BaseModel):
    current_index: int = -1
    channels: List[ChannelModel] = Field(default_factory=list)


class MediaRequest(BaseModel):
    path: str

    @field_validator("path", mode="before")
    @classmethod
    def _require_path(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("path is required")
        return result


class TransportCommandRequest(BaseModel):
    op: str
    position: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("position", "pos", "seconds"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("op", mode="before")
    @classmethod
    def _normalise_op(cls, value: object) -> str:
        result = str(value or "").strip().lower()
        if result not in TRANSPORT_OPS:
            raise ValueError(f"op must be one of {', '.join(TRANSPORT_OPS)}")
        return result

    @field_validator("position")
    @classmethod
    def _non_negative_position(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return max(0.0, float(value))


class VolumeRequest(BaseModel):
    volume: float

    @field_validator("volume", mode="before")
    @classmethod
    def _clamp_volume(cls, value: Any) -> float:
        try:
            volume = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("volume must be a number") from exc
        return max(0.0, min(100.0, volume))


class MuteRequest(BaseModel):
    muted: bool


class EngineSettingsRequest(BaseModel):
    values: Dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)


class SettingsModel(BaseModel):
    app: Dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)
    engine: Dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)
