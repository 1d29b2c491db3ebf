"""Client-side race room synchronization."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from .channel import BaseChannel, ConnectionStatus
from .errors import ChannelError
from .protocol import (
    GameOver,
    GameStart,
    InboundEvent,
    JoinRoomRequest,
    LeaveRoomRequest,
    OutboundEvent,
    Player,
    PlayerFinished,
    PlayerLeft,
    PlayerUpdate,
    RoomJoined,
)

logger = logging.getLogger(__name__)

PODIUM_SIZE = 3


class GameState(str, Enum):
    """Phase of a race room."""

    WAITING = "waiting"
    COUNTDOWN = "countdown"
    RACING = "racing"
    FINISHED = "finished"


@dataclass(slots=True)
class Room:
    """This client's view of one race room."""

    room_id: str
    players: dict[str, Player] = field(default_factory=dict)
    game_state: GameState = GameState.WAITING
    start_timestamp: Optional[float] = None
    winner: Optional[Player] = None
    final_results: bool = False


@dataclass(frozen=True, slots=True)
class RankedPlayer:
    """A player with its 1-based on-screen position."""

    position: int
    player: Player


def _clamp_progress(progress: float) -> float:
    return min(100.0, max(0.0, float(progress)))


def _round_wpm(wpm: float) -> int:
    return int(math.floor(wpm + 0.5))


class RoomSynchronizer:
    """
    Reducer for the room state of one client.

    Inbound broker events are the only source of ``game_state`` transitions;
    the single client-local transition is countdown -> racing, scheduled
    ``countdown_seconds`` after ``game_start`` is received. Events that
    reference an unknown room or player are ignored.

    Local actions emit a request and, for progress and finish, update the
    cached self player before the broker echoes it back. Any later
    authoritative event for self replaces that cached copy.

    Usage:
        sync = RoomSynchronizer(channel, player_id="u1", username="alex")
        sync.attach()
        await sync.join_room("room_42")
    """

    def __init__(
        self,
        channel: BaseChannel,
        *,
        player_id: str,
        username: str,
        avatar_url: Optional[str] = None,
        countdown_seconds: float = 3.0,
    ):
        """
        Initialize synchronizer.

        Args:
            channel: Channel used for requests and inbound events
            player_id: Stable id of the local player
            username: Display name of the local player
            avatar_url: Optional avatar of the local player
            countdown_seconds: Delay between game_start and racing
        """
        self._channel = channel
        self.player_id = player_id
        self.username = username
        self.avatar_url = avatar_url
        self.countdown_seconds = countdown_seconds

        self._room: Optional[Room] = None
        self._current_player: Optional[Player] = None
        self._racing_handle: Optional[asyncio.TimerHandle] = None
        self._attached = False

    @property
    def room(self) -> Optional[Room]:
        return self._room

    @property
    def current_player(self) -> Optional[Player]:
        return self._current_player

    @property
    def game_state(self) -> Optional[GameState]:
        return self._room.game_state if self._room else None

    @property
    def is_connected(self) -> bool:
        return self._channel.is_connected

    def attach(self) -> None:
        """Start consuming channel events."""
        if self._attached:
            return
        self._attached = True
        self._channel.add_event_handler(self.handle_event)
        self._channel.add_status_handler(self._on_status)

    def detach(self) -> None:
        """Stop consuming channel events and drop the room view."""
        self._attached = False
        self._channel.remove_event_handler(self.handle_event)
        self._channel.remove_status_handler(self._on_status)
        self._clear_room()

    # Local actions

    def self_descriptor(self) -> Player:
        """The local player as announced on join."""
        return Player(
            id=self.player_id,
            username=self.username,
            avatar_url=self.avatar_url,
            progress=0,
            wpm=0,
            is_finished=False,
        )

    async def join_room(self, room_id: str) -> bool:
        """Request to join a room; membership arrives with room_joined."""
        request = JoinRoomRequest(room_id=room_id, player=self.self_descriptor())
        if not await self._emit(OutboundEvent.JOIN_ROOM, request.to_wire()):
            return False
        logger.info(
            "Join requested", extra={"room_id": room_id, "player_id": self.player_id}
        )
        return True

    async def leave_room(self) -> bool:
        """Request to leave the current room and drop it locally."""
        room = self._room
        if room is None:
            return False

        request = LeaveRoomRequest(room_id=room.room_id, player_id=self.player_id)
        sent = await self._emit(OutboundEvent.LEAVE_ROOM, request.to_wire())
        # Leaving is local even when the request could not be delivered.
        self._clear_room()
        logger.info(
            "Left room", extra={"room_id": room.room_id, "player_id": self.player_id}
        )
        return sent

    async def send_progress(self, progress: float, wpm: float) -> bool:
        """Report local progress and update the cached self player."""
        room = self._room
        if room is None:
            return False

        update = PlayerUpdate(
            room_id=room.room_id,
            player_id=self.player_id,
            progress=_clamp_progress(progress),
            wpm=_round_wpm(wpm),
        )
        if not await self._emit(OutboundEvent.PLAYER_UPDATE, update.to_wire()):
            return False

        if self._current_player is not None and self._room is room:
            self._current_player = self._current_player.model_copy(
                update={"progress": update.progress, "wpm": update.wpm}
            )
        return True

    async def mark_finished(self) -> bool:
        """Report that the local player completed the text."""
        room = self._room
        current = self._current_player
        if room is None or current is None:
            return False

        finished = PlayerFinished(
            room_id=room.room_id, player_id=self.player_id, wpm=current.wpm
        )
        if not await self._emit(
            OutboundEvent.PLAYER_FINISHED,
            finished.to_wire(),
        ):
            return False

        if self._current_player is not None and self._room is room:
            self._current_player = self._current_player.model_copy(
                update={"is_finished": True, "progress": 100.0}
            )
        logger.info(
            "Finished race",
            extra={"room_id": room.room_id, "player_id": self.player_id},
        )
        return True

    # Derived views

    def rankings(self) -> list[RankedPlayer]:
        """Players by progress, ties kept in join order."""
        if self._room is None:
            return []
        ordered = sorted(
            self._room.players.values(), key=lambda p: p.progress, reverse=True
        )
        return [
            RankedPlayer(position=index, player=player)
            for index, player in enumerate(ordered, start=1)
        ]

    def position_of(self, player_id: str) -> Optional[int]:
        for ranked in self.rankings():
            if ranked.player.id == player_id:
                return ranked.position
        return None

    def podium(self) -> list[Player]:
        """Top three of a finished race."""
        room = self._room
        if room is None or room.game_state is not GameState.FINISHED:
            return []
        if room.final_results:
            return list(room.players.values())[:PODIUM_SIZE]
        finishers = [p for p in room.players.values() if p.is_finished]
        finishers.sort(key=lambda p: p.wpm, reverse=True)
        return finishers[:PODIUM_SIZE]

    # Inbound events

    def handle_event(self, event: str, data: Any) -> None:
        """Apply one inbound broker event."""
        try:
            kind = InboundEvent(event)
        except ValueError:
            logger.debug("Ignoring unknown event", extra={"event": event})
            return

        try:
            match kind:
                case InboundEvent.ROOM_JOINED:
                    self._on_room_joined(RoomJoined.model_validate(data))
                case InboundEvent.ROOM_LEFT:
                    self._on_room_left()
                case InboundEvent.PLAYER_JOINED:
                    if isinstance(data, dict) and "player" in data:
                        data = data["player"]
                    self._on_player_joined(Player.model_validate(data))
                case InboundEvent.PLAYER_LEFT:
                    if isinstance(data, str):
                        data = {"playerId": data}
                    self._on_player_left(PlayerLeft.model_validate(data))
                case InboundEvent.GAME_START:
                    self._on_game_start(GameStart.model_validate(data))
                case InboundEvent.PLAYER_UPDATE:
                    self._on_player_update(PlayerUpdate.model_validate(data))
                case InboundEvent.PLAYER_FINISHED:
                    self._on_player_finished(PlayerFinished.model_validate(data))
                case InboundEvent.GAME_OVER:
                    self._on_game_over(GameOver.model_validate(data))
        except ValidationError as e:
            logger.warning(
                "Dropped invalid event",
                extra={"event": event, "errors": e.error_count()},
            )

    def _on_room_joined(self, payload: RoomJoined) -> None:
        if self._room is not None:
            logger.warning(
                "room_joined while already in a room",
                extra={"room_id": self._room.room_id, "new_room_id": payload.room_id},
            )
            return

        self._room = Room(
            room_id=payload.room_id,
            players={player.id: player for player in payload.players},
        )
        self._refresh_current_player()
        logger.info(
            "Joined room",
            extra={"room_id": payload.room_id, "players": len(payload.players)},
        )

    def _on_room_left(self) -> None:
        if self._room is None:
            return
        logger.info("Room left", extra={"room_id": self._room.room_id})
        self._clear_room()

    def _on_player_joined(self, player: Player) -> None:
        if self._room is None:
            return
        self._room.players[player.id] = player
        if player.id == self.player_id:
            self._refresh_current_player()
        logger.debug(
            "Player joined",
            extra={"room_id": self._room.room_id, "player_id": player.id},
        )

    def _on_player_left(self, payload: PlayerLeft) -> None:
        if self._room is None:
            return
        if self._room.players.pop(payload.player_id, None) is not None:
            logger.debug(
                "Player left",
                extra={"room_id": self._room.room_id, "player_id": payload.player_id},
            )

    def _on_game_start(self, payload: GameStart) -> None:
        room = self._room
        if room is None:
            return

        room.game_state = GameState.COUNTDOWN
        room.start_timestamp = payload.start_timestamp
        self._cancel_racing_timer()
        loop = asyncio.get_running_loop()
        self._racing_handle = loop.call_later(
            self.countdown_seconds, self._begin_racing, room
        )
        logger.info(
            "Game starting",
            extra={"room_id": room.room_id, "start_timestamp": payload.start_timestamp},
        )

    def _begin_racing(self, room: Room) -> None:
        self._racing_handle = None
        if self._room is not room or room.game_state is not GameState.COUNTDOWN:
            return
        room.game_state = GameState.RACING
        logger.info("Race started", extra={"room_id": room.room_id})

    def _on_player_update(self, payload: PlayerUpdate) -> None:
        room = self._room
        if room is None:
            return
        player = room.players.get(payload.player_id)
        if player is None:
            return

        room.players[player.id] = player.model_copy(
            update={
                "progress": _clamp_progress(payload.progress),
                "wpm": _round_wpm(payload.wpm),
            }
        )
        if player.id == self.player_id:
            self._refresh_current_player()

    def _on_player_finished(self, payload: PlayerFinished) -> None:
        room = self._room
        if room is None:
            return
        player = room.players.get(payload.player_id)
        if player is None:
            return

        room.players[player.id] = player.model_copy(
            update={
                "is_finished": True,
                "progress": 100.0,
                "wpm": _round_wpm(payload.wpm),
            }
        )
        if player.id == self.player_id:
            self._refresh_current_player()
        logger.info(
            "Player finished",
            extra={
                "room_id": room.room_id,
                "player_id": player.id,
                "position": payload.position,
            },
        )

    def _on_game_over(self, payload: GameOver) -> None:
        room = self._room
        if room is None:
            return

        self._cancel_racing_timer()
        room.game_state = GameState.FINISHED
        room.players = {player.id: player for player in payload.final_results}
        room.winner = payload.winner
        room.final_results = True
        if self.player_id in room.players:
            self._refresh_current_player()
        logger.info(
            "Game over",
            extra={
                "room_id": room.room_id,
                "winner": payload.winner.username if payload.winner else None,
            },
        )

    # Helpers

    def _on_status(self, status: ConnectionStatus) -> None:
        if status is ConnectionStatus.LOST and self._room is not None:
            logger.warning(
                "Connection lost, clearing room", extra={"room_id": self._room.room_id}
            )
            self._clear_room()

    async def _emit(self, event: OutboundEvent, data: dict[str, Any]) -> bool:
        try:
            await self._channel.emit(event.value, data)
        except ChannelError as e:
            logger.warning(
                "Request not sent",
                extra={"event": event.value, "error": e.message},
            )
            return False
        return True

    def _refresh_current_player(self) -> None:
        if self._room is None:
            return
        player = self._room.players.get(self.player_id)
        if player is not None:
            self._current_player = player.model_copy()

    def _cancel_racing_timer(self) -> None:
        if self._racing_handle is not None:
            self._racing_handle.cancel()
            self._racing_handle = None

    def _clear_room(self) -> None:
        self._cancel_racing_timer()
        self._room = None
        self._current_player = None
