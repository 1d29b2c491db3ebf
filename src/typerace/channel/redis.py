"""Redis pub/sub race channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Optional

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import ChannelError, ChannelNotConnectedError
from ..protocol import ChannelEnvelope
from ..redis_types import AsyncPubSubProtocol, AsyncRedisProtocol
from .base import BaseChannel, ConnectionStatus

logger = logging.getLogger(__name__)

RedisFactory = Callable[[str], AsyncRedisProtocol]


def _default_factory(url: str) -> AsyncRedisProtocol:
    return Redis.from_url(url, decode_responses=True)


class RedisChannel(BaseChannel):
    """
    Race channel carried over Redis pub/sub.

    Outbound events are published to ``{prefix}.broker``; the broker answers
    on ``{prefix}.client.{client_id}``. Every message is a JSON envelope
    ``{"event": ..., "data": ...}``.

    A dropped connection is retried ``reconnect_attempts`` times with a fixed
    ``reconnect_delay``. When all attempts fail the status becomes ``LOST``
    and the channel stays closed until ``connect()`` is called again.
    Outbound events are never retried.
    """

    def __init__(
        self,
        client_id: str,
        *,
        redis_url: str = "redis://localhost:6379",
        channel_prefix: str = "typerace",
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        poll_timeout: float = 1.0,
        redis_factory: Optional[RedisFactory] = None,
    ):
        """
        Initialize channel.

        Args:
            client_id: Identifier of this client; selects the inbound channel
            redis_url: Redis connection URL
            channel_prefix: Prefix for pub/sub channel names
            reconnect_attempts: Attempts after a failure before giving up
            reconnect_delay: Seconds between attempts
            poll_timeout: Seconds a single receive poll may block
            redis_factory: Builds a client from a URL (stubs in tests)
        """
        super().__init__()
        self.client_id = client_id
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.poll_timeout = poll_timeout
        self._redis_factory = redis_factory or _default_factory

        self._redis: Optional[AsyncRedisProtocol] = None
        self._pubsub: Optional[AsyncPubSubProtocol] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def inbound_channel(self) -> str:
        return f"{self.channel_prefix}.client.{self.client_id}"

    @property
    def outbound_channel(self) -> str:
        return f"{self.channel_prefix}.broker"

    async def connect(self) -> None:
        """Open the connection and start receiving."""
        if self._running:
            return

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await self._open()
        except (RedisError, OSError) as e:
            logger.warning(
                "Channel connect failed",
                extra={"client_id": self.client_id, "error": str(e)},
            )
            await self._close_connection()
            if not await self._reconnect():
                return

        self._running = True
        self._set_status(ConnectionStatus.CONNECTED)
        self._task = asyncio.create_task(
            self._receive_loop(), name=f"channel_{self.client_id}"
        )
        logger.info(
            "Channel connected",
            extra={"client_id": self.client_id, "channel": self.inbound_channel},
        )

    async def disconnect(self) -> None:
        """Stop receiving and close the connection."""
        self._running = False

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self._close_connection()
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.info("Channel disconnected", extra={"client_id": self.client_id})

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.is_connected or self._redis is None:
            raise ChannelNotConnectedError(event)

        envelope = ChannelEnvelope(event=event, data=data)
        try:
            await self._redis.publish(self.outbound_channel, envelope.model_dump_json())
        except (RedisError, OSError) as e:
            raise ChannelError("publish_failed", event=event) from e

        logger.debug(
            "Event sent",
            extra={"client_id": self.client_id, "event": event},
        )

    async def _open(self) -> None:
        redis = self._redis_factory(self.redis_url)
        self._redis = redis
        await redis.ping()
        pubsub = redis.pubsub()
        self._pubsub = pubsub
        await pubsub.subscribe(self.inbound_channel)

    async def _close_connection(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        redis, self._redis = self._redis, None
        if pubsub is not None:
            try:
                await pubsub.unsubscribe()
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.debug("Pubsub close failed", exc_info=e)
        if redis is not None:
            try:
                await redis.aclose()
            except (RedisError, OSError) as e:
                logger.debug("Redis close failed", exc_info=e)

    async def _reconnect(self) -> bool:
        """Retry the connection; return False once attempts are exhausted."""
        self._set_status(ConnectionStatus.RECONNECTING)
        for attempt in range(1, self.reconnect_attempts + 1):
            await asyncio.sleep(self.reconnect_delay)
            try:
                await self._open()
            except (RedisError, OSError) as e:
                logger.warning(
                    "Reconnect attempt failed",
                    extra={
                        "client_id": self.client_id,
                        "attempt": attempt,
                        "error": str(e),
                    },
                )
                await self._close_connection()
                continue

            self._set_status(ConnectionStatus.CONNECTED)
            logger.info(
                "Channel reconnected",
                extra={"client_id": self.client_id, "attempt": attempt},
            )
            return True

        self._running = False
        self._set_status(ConnectionStatus.LOST)
        logger.error(
            "Channel lost",
            extra={"client_id": self.client_id, "attempts": self.reconnect_attempts},
        )
        return False

    async def _receive_loop(self) -> None:
        """Poll the inbound channel and dispatch events."""
        try:
            while self._running:
                pubsub = self._pubsub
                if pubsub is None:
                    return
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=self.poll_timeout
                    )
                except (RedisError, OSError) as e:
                    logger.warning(
                        "Channel connection dropped",
                        extra={"client_id": self.client_id, "error": str(e)},
                    )
                    await self._close_connection()
                    if await self._reconnect():
                        continue
                    return

                if message is None or message.get("type") != "message":
                    continue
                self._handle_raw(message["data"])
        except asyncio.CancelledError:
            pass

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            envelope = ChannelEnvelope.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Dropped malformed event",
                extra={"client_id": self.client_id, "error": str(e)},
            )
            return
        self._dispatch(envelope.event, envelope.data)
