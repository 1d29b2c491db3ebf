"""Typerace - timed typing tests with real-time multiplayer races."""

from .channel import BaseChannel, ConnectionStatus, MemoryChannel, RedisChannel
from .client import RaceClient
from .config import RaceSettings, load_settings
from .errors import ChannelError, ChannelNotConnectedError, TyperaceError
from .protocol import Player
from .relay import ProgressRelay
from .results import LeaderboardEntry, ResultStore
from .room import GameState, RankedPlayer, Room, RoomSynchronizer
from .scoring import DerivedStats, KeyResult, ScoringEngine, SessionStatus, TypingSession
from .timer import CountdownTimer
from .__version__ import __version__

__all__ = [
    "BaseChannel",
    "ConnectionStatus",
    "MemoryChannel",
    "RedisChannel",
    "RaceClient",
    "RaceSettings",
    "load_settings",
    "TyperaceError",
    "ChannelError",
    "ChannelNotConnectedError",
    "Player",
    "ProgressRelay",
    "LeaderboardEntry",
    "ResultStore",
    "GameState",
    "RankedPlayer",
    "Room",
    "RoomSynchronizer",
    "DerivedStats",
    "KeyResult",
    "ScoringEngine",
    "SessionStatus",
    "TypingSession",
    "CountdownTimer",
    "__version__",
]
