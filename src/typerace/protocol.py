"""Race room wire protocol: event names and payload models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class InboundEvent(str, Enum):
    """Events delivered by the broker to a client."""

    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GAME_START = "game_start"
    PLAYER_UPDATE = "player_update"
    PLAYER_FINISHED = "player_finished"
    GAME_OVER = "game_over"


class OutboundEvent(str, Enum):
    """Requests emitted by a client to the broker."""

    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    PLAYER_UPDATE = "player_update"
    PLAYER_FINISHED = "player_finished"


class Player(WireModel):
    """A race participant as seen by this client."""

    id: str
    username: str
    progress: float = 0.0
    wpm: float = 0
    is_finished: bool = False
    avatar_url: Optional[str] = None


# Inbound payloads


class RoomJoined(WireModel):
    room_id: str
    players: list[Player] = Field(default_factory=list)


class PlayerLeft(WireModel):
    player_id: str


class GameStart(WireModel):
    start_timestamp: float = Field(
        validation_alias=AliasChoices("startTimestamp", "startTime", "start_timestamp")
    )


class PlayerUpdate(WireModel):
    """Progress report for one player; also the outbound update shape."""

    player_id: str
    progress: float
    wpm: float
    room_id: Optional[str] = None


class PlayerFinished(WireModel):
    player_id: str
    wpm: float
    position: Optional[int] = None
    room_id: Optional[str] = None


class GameOver(WireModel):
    winner: Optional[Player] = None
    final_results: list[Player] = Field(default_factory=list)


# Outbound payloads


class JoinRoomRequest(WireModel):
    room_id: str
    player: Player


class LeaveRoomRequest(WireModel):
    room_id: str
    player_id: str


class ChannelEnvelope(BaseModel):
    """Transport framing for one event on a pub/sub channel."""

    event: str
    data: Any = None
