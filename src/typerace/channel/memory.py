import asyncio
import logging
from typing import Any, Optional

from ..errors import ChannelNotConnectedError
from .base import BaseChannel, ConnectionStatus

logger = logging.getLogger(__name__)


class MemoryChannel(BaseChannel):
    """In-memory channel for testing and local wiring.

    Outbound events are recorded in ``sent``; inbound events are injected
    with ``deliver()`` and dispatched in order by a receive loop.
    """

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self._inbox: Optional[asyncio.Queue[Optional[tuple[str, Any]]]] = None
        self._task: Optional[asyncio.Task[None]] = None

    async def connect(self) -> None:
        """Start the receive loop."""
        if self._task is not None:
            return
        self._set_status(ConnectionStatus.CONNECTING)
        self._inbox = asyncio.Queue()
        self._task = asyncio.create_task(self._receive_loop(self._inbox))
        self._set_status(ConnectionStatus.CONNECTED)
        logger.debug("MemoryChannel connected")

    async def disconnect(self) -> None:
        """Stop the receive loop after pending events are dispatched."""
        await self._stop()
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.debug("MemoryChannel disconnected")

    async def lose_connection(self) -> None:
        """Drop the connection as if reconnection had been exhausted."""
        await self._stop()
        self._set_status(ConnectionStatus.LOST)

    def interrupt(self) -> None:
        """Mark the connection as temporarily down."""
        self._set_status(ConnectionStatus.RECONNECTING)

    def restore(self) -> None:
        """Mark an interrupted connection as back up."""
        if self._task is not None:
            self._set_status(ConnectionStatus.CONNECTED)

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.is_connected:
            raise ChannelNotConnectedError(event)
        self.sent.append((event, data))

    async def deliver(self, event: str, data: Any = None) -> None:
        """Queue an inbound event as if the broker had sent it."""
        if self._inbox is None:
            raise ChannelNotConnectedError(event)
        await self._inbox.put((event, data))

    async def drain(self) -> None:
        """Wait until every delivered event has been dispatched."""
        if self._inbox is not None:
            await self._inbox.join()

    def sent_events(self, event: str) -> list[dict[str, Any]]:
        """Payloads of all outbound events with the given name."""
        return [data for name, data in self.sent if name == event]

    async def _stop(self) -> None:
        inbox, task = self._inbox, self._task
        self._inbox = None
        self._task = None
        if inbox is not None:
            await inbox.put(None)  # End of stream
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _receive_loop(self, inbox: asyncio.Queue[Optional[tuple[str, Any]]]) -> None:
        while True:
            item = await inbox.get()
            try:
                if item is None:
                    break
                event, data = item
                self._dispatch(event, data)
            finally:
                inbox.task_done()
