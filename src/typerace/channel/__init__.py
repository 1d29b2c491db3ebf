from .base import BaseChannel, ConnectionStatus, EventHandler, StatusHandler
from .memory import MemoryChannel
from .redis import RedisChannel

__all__ = [
    "BaseChannel",
    "ConnectionStatus",
    "EventHandler",
    "StatusHandler",
    "MemoryChannel",
    "RedisChannel",
]
