"""Race channel interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Connectivity of a channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    LOST = "lost"


EventHandler = Callable[[str, Any], None]
StatusHandler = Callable[[ConnectionStatus], None]


class BaseChannel(ABC):
    """
    Bidirectional event channel between a client and the room broker.

    Inbound events are handed to registered event handlers one at a time,
    in arrival order. Handlers run synchronously on the event loop and must
    not block. A channel is a scoped resource:

        async with MemoryChannel() as channel:
            await channel.emit("join_room", {...})
    """

    def __init__(self) -> None:
        self._event_handlers: list[EventHandler] = []
        self._status_handlers: list[StatusHandler] = []
        self._status = ConnectionStatus.DISCONNECTED

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    def add_event_handler(self, handler: EventHandler) -> None:
        if handler not in self._event_handlers:
            self._event_handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        if handler in self._event_handlers:
            self._event_handlers.remove(handler)

    def add_status_handler(self, handler: StatusHandler) -> None:
        if handler not in self._status_handlers:
            self._status_handlers.append(handler)

    def remove_status_handler(self, handler: StatusHandler) -> None:
        if handler in self._status_handlers:
            self._status_handlers.remove(handler)

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel. Failure is reported through ``status``."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel and release its resources."""
        pass

    @abstractmethod
    async def emit(self, event: str, data: dict[str, Any]) -> None:
        """
        Send one event to the broker.

        Raises:
            ChannelNotConnectedError: If the channel is not connected
            ChannelError: If the transport rejected the event
        """
        pass

    async def __aenter__(self) -> "BaseChannel":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        previous = self._status
        self._status = status
        logger.info(
            "Channel status changed",
            extra={"from_status": previous.value, "to_status": status.value},
        )
        for handler in list(self._status_handlers):
            try:
                handler(status)
            except Exception as e:
                logger.error("Status handler failed", exc_info=e)

    def _dispatch(self, event: str, data: Any) -> None:
        logger.debug("Channel event received", extra={"event": event})
        for handler in list(self._event_handlers):
            try:
                handler(event, data)
            except Exception as e:
                logger.error(
                    "Event handler failed", exc_info=e, extra={"event": event}
                )
