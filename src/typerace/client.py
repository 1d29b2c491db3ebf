"""Composition of engine, timer, channel, synchronizer and relay."""

from __future__ import annotations

import logging
from typing import Optional

from redis.asyncio import Redis

from .channel import BaseChannel, MemoryChannel, RedisChannel
from .config import RaceSettings
from .relay import ProgressRelay
from .results import LeaderboardEntry, ResultStore, mode_for_duration
from .room import RoomSynchronizer
from .scoring import KeyResult, ScoringEngine, SessionStatus
from .timer import CountdownTimer

logger = logging.getLogger(__name__)


def _redis_from_settings(settings: RaceSettings, url: str) -> Redis:
    return Redis.from_url(
        url,
        decode_responses=settings.redis.decode_responses,
        socket_timeout=settings.redis.socket_timeout,
    )


def build_channel(settings: RaceSettings, client_id: str) -> BaseChannel:
    """Create the channel selected by ``settings.channel.backend``."""
    if settings.channel.backend == "memory":
        return MemoryChannel()

    redis_settings = settings.redis

    def factory(url: str) -> Redis:
        return _redis_from_settings(settings, url)

    return RedisChannel(
        client_id,
        redis_url=redis_settings.url,
        channel_prefix=settings.channel.channel_prefix,
        reconnect_attempts=settings.channel.reconnect_attempts,
        reconnect_delay=settings.channel.reconnect_delay,
        poll_timeout=settings.channel.poll_timeout,
        redis_factory=factory,
    )


def build_result_store(settings: RaceSettings) -> ResultStore:
    """Create a result store from ``settings.redis`` and ``settings.results``."""
    results = settings.results
    return ResultStore(
        _redis_from_settings(settings, settings.redis.url),
        key_prefix=results.key_prefix,
        ttl_seconds=results.ttl_seconds,
        leaderboard_limit=results.leaderboard_limit,
    )


class RaceClient:
    """
    One player's race client.

    Owns the channel as a scoped resource: it is connected on entry and
    disconnected on exit, and nothing outlives the client.

    Usage:
        async with RaceClient("user_1", "alex", target_text=text) as client:
            await client.join_room("room_42")
            client.handle_key("t")
    """

    def __init__(
        self,
        player_id: str,
        username: str,
        *,
        target_text: str = "",
        avatar_url: Optional[str] = None,
        settings: Optional[RaceSettings] = None,
        channel: Optional[BaseChannel] = None,
        results: Optional[ResultStore] = None,
    ):
        """
        Initialize client.

        Args:
            player_id: Stable id of the local player
            username: Display name of the local player
            target_text: Text for the first session
            avatar_url: Optional avatar of the local player
            settings: Client settings (loaded from the environment if omitted)
            channel: Channel to use instead of the configured one
            results: Result store used by ``submit_result`` (built from the
                settings when the channel backend is redis)
        """
        self.settings = settings or RaceSettings()
        self.player_id = player_id
        self.username = username

        race = self.settings.race
        self.channel = channel or build_channel(self.settings, player_id)
        self.engine = ScoringEngine(target_text, race.duration_seconds)
        self.timer = CountdownTimer(self.engine, interval=race.tick_seconds)
        self.sync = RoomSynchronizer(
            self.channel,
            player_id=player_id,
            username=username,
            avatar_url=avatar_url,
            countdown_seconds=race.countdown_seconds,
        )
        self.relay = ProgressRelay(
            self.engine, self.sync, min_interval=race.progress_interval
        )
        self._owns_results = results is None and self.settings.channel.backend == "redis"
        self.results = build_result_store(self.settings) if self._owns_results else results

    @property
    def is_connected(self) -> bool:
        return self.channel.is_connected

    async def start(self) -> None:
        """Connect the channel and start the local components."""
        self.sync.attach()
        await self.channel.connect()
        self.timer.start()
        await self.relay.start()
        logger.info(
            "Race client started",
            extra={"player_id": self.player_id, "connected": self.is_connected},
        )

    async def stop(self) -> None:
        """Leave any room and release every resource."""
        if self.sync.room is not None:
            await self.sync.leave_room()
        await self.relay.stop()
        await self.timer.stop()
        self.sync.detach()
        await self.channel.disconnect()
        if self._owns_results and self.results is not None:
            await self.results.close()
        logger.info("Race client stopped", extra={"player_id": self.player_id})

    async def __aenter__(self) -> "RaceClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def join_room(self, room_id: str) -> bool:
        return await self.sync.join_room(room_id)

    async def leave_room(self) -> bool:
        """Leave the room and reset the typing session."""
        left = await self.sync.leave_room()
        self.engine.reset()
        return left

    def handle_key(self, key: str) -> KeyResult:
        """Key input for the race view; ignored unless racing."""
        return self.relay.handle_key(key)

    def new_test(
        self, target_text: Optional[str] = None, duration_seconds: Optional[int] = None
    ) -> None:
        self.engine.reset(target_text, duration_seconds)

    async def submit_result(self) -> bool:
        """Store the finished session's score; False if unfinished or unsaved."""
        session = self.engine.current_state()
        if self.results is None or session.status is not SessionStatus.FINISHED:
            return False

        try:
            mode = mode_for_duration(session.duration_seconds)
        except ValueError:
            logger.warning(
                "No leaderboard for duration",
                extra={"duration_seconds": session.duration_seconds},
            )
            return False

        stats = session.stats()
        return await self.results.save_result(
            self.player_id,
            stats.wpm,
            stats.accuracy,
            mode,
            username=self.username,
        )

    async def leaderboard(self, mode: Optional[str] = None) -> list[LeaderboardEntry]:
        """Leaderboard for ``mode``, or for the current session's duration."""
        if self.results is None:
            return []
        if mode is None:
            try:
                mode = mode_for_duration(self.engine.current_state().duration_seconds)
            except ValueError:
                return []
        return await self.results.get_leaderboard(mode)
