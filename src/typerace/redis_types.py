"""Structural type for the subset of redis.asyncio used by typerace."""

from __future__ import annotations

from typing import Any, Protocol


class AsyncPubSubProtocol(Protocol):
    """Pub/sub handle returned by ``Redis.pubsub()``."""

    async def subscribe(self, *channels: str) -> Any: ...

    async def unsubscribe(self, *channels: str) -> Any: ...

    async def get_message(
        self, ignore_subscribe_messages: bool = False, timeout: float | None = 0.0
    ) -> dict[str, Any] | None: ...

    async def aclose(self) -> None: ...


class AsyncPipelineProtocol(Protocol):
    """Command buffer returned by ``Redis.pipeline()``.

    Commands are queued until ``execute()``. After ``watch()`` and before
    ``multi()`` commands run immediately and must be awaited.
    """

    def hset(self, name: str, *, mapping: dict[str, Any]) -> Any: ...

    def hgetall(self, name: str) -> Any: ...

    def expire(self, name: str, time: int) -> Any: ...

    def zadd(self, name: str, mapping: dict[str, float]) -> Any: ...

    async def watch(self, *names: str) -> Any: ...

    def multi(self) -> None: ...

    async def execute(self) -> list[Any]: ...

    async def reset(self) -> None: ...

    async def __aenter__(self) -> "AsyncPipelineProtocol": ...

    async def __aexit__(self, *exc_info: object) -> None: ...


class AsyncRedisProtocol(Protocol):
    """Redis commands used by channels and the result store."""

    def pubsub(self) -> AsyncPubSubProtocol: ...

    async def ping(self) -> Any: ...

    async def publish(self, channel: str, message: str) -> int: ...

    def pipeline(self, transaction: bool = True) -> AsyncPipelineProtocol: ...

    async def hgetall(self, name: str) -> dict[str, str]: ...

    async def zrevrange(self, name: str, start: int, end: int) -> list[str]: ...

    async def zrem(self, name: str, *values: str) -> int: ...

    async def aclose(self) -> None: ...
