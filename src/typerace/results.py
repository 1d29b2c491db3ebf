"""Redis-backed store for finished test results and the daily leaderboard."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any, Literal, Optional, get_args

from pydantic import BaseModel, Field, ValidationError, field_validator
from redis.exceptions import RedisError, WatchError

from .redis_types import AsyncRedisProtocol

__all__ = [
    "LeaderboardEntry",
    "ResultStore",
    "ResultSubmission",
    "ResultMode",
    "mode_for_duration",
]

logger = logging.getLogger(__name__)

ResultMode = Literal["15s", "30s", "60s", "90s", "120s"]
USERNAME_MAX_LENGTH = 20
DEFAULT_USERNAME = "Anonymous"
PERSONAL_BEST_RETRIES = 3


def mode_for_duration(duration_seconds: int) -> ResultMode:
    """Map a test duration to its leaderboard mode label."""
    mode = f"{duration_seconds}s"
    if mode not in get_args(ResultMode):
        raise ValueError(f"No leaderboard mode for {duration_seconds}s tests")
    return mode  # type: ignore[return-value]


class ResultSubmission(BaseModel):
    """A validated result ready to be stored."""

    user_id: str = Field(..., min_length=1)
    username: str = DEFAULT_USERNAME
    wpm: float = Field(..., ge=0, le=400)
    accuracy: float = Field(..., ge=0, le=100)
    mode: ResultMode

    @field_validator("username", mode="before")
    @classmethod
    def _normalize_username(cls, value: Any) -> str:
        name = str(value or "").strip()
        return name[:USERNAME_MAX_LENGTH] or DEFAULT_USERNAME


class LeaderboardEntry(BaseModel):
    """One leaderboard row."""

    username: str
    wpm: float
    accuracy: float
    timestamp: float


class ResultStore:
    """
    Persist results and serve a rolling 24 hour leaderboard per mode.

    Each result is a hash that expires after ``ttl_seconds``; a sorted set
    per mode indexes results by wpm. Index entries whose hash has expired
    are pruned while reading. A per-user personal best is kept alongside
    and only replaced, inside a WATCH transaction, by a faster result.

    Failures never propagate: ``save_result`` returns False and
    ``get_leaderboard`` returns an empty list.
    """

    def __init__(
        self,
        redis: AsyncRedisProtocol,
        *,
        key_prefix: str = "typerace",
        ttl_seconds: int = 86_400,
        leaderboard_limit: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize result store.

        Args:
            redis: Redis client instance
            key_prefix: Prefix for every key written
            ttl_seconds: Lifetime of a stored result
            leaderboard_limit: Default number of leaderboard rows
            clock: Wall clock used for result timestamps
        """
        self.redis: AsyncRedisProtocol = redis
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self.leaderboard_limit = leaderboard_limit
        self._clock = clock

    def _result_key(self, result_id: str) -> str:
        return f"{self.key_prefix}:result:{result_id}"

    def _leaderboard_key(self, mode: str) -> str:
        return f"{self.key_prefix}:leaderboard:{mode}"

    def _best_key(self, user_id: str) -> str:
        return f"{self.key_prefix}:best:{user_id}"

    async def close(self) -> None:
        await self.redis.aclose()

    async def save_result(
        self,
        user_id: str,
        wpm: float,
        accuracy: float,
        mode: str,
        *,
        username: Optional[str] = None,
    ) -> bool:
        """
        Store one finished test.

        Returns:
            True if the result was stored, False if it was invalid or the
            store was unavailable
        """
        try:
            submission = ResultSubmission(
                user_id=user_id,
                username=username,
                wpm=wpm,
                accuracy=accuracy,
                mode=mode,
            )
        except ValidationError as e:
            logger.warning(
                "Rejected result",
                extra={"user_id": user_id, "errors": e.error_count()},
            )
            return False

        result_id = uuid.uuid4().hex
        record = {
            "user_id": submission.user_id,
            "username": submission.username,
            "wpm": submission.wpm,
            "accuracy": submission.accuracy,
            "mode": submission.mode,
            "timestamp": self._clock(),
        }

        try:
            # Result hash and index entry are written together (MULTI/EXEC)
            key = self._result_key(result_id)
            index_key = self._leaderboard_key(submission.mode)
            pipe = self.redis.pipeline()
            pipe.hset(key, mapping=record)
            pipe.expire(key, self.ttl_seconds)
            pipe.zadd(index_key, {result_id: submission.wpm})
            pipe.expire(index_key, self.ttl_seconds)
            await pipe.execute()

            await self._update_personal_best(record)
        except (RedisError, OSError) as e:
            logger.error("Failed to save result", exc_info=e, extra={"user_id": user_id})
            return False

        logger.info(
            "Result saved",
            extra={"user_id": user_id, "mode": submission.mode, "wpm": submission.wpm},
        )
        return True

    async def _update_personal_best(self, record: dict[str, Any]) -> None:
        """Replace the stored best if ``record`` is faster (optimistic lock)."""
        key = self._best_key(record["user_id"])
        async with self.redis.pipeline() as pipe:
            for _ in range(PERSONAL_BEST_RETRIES):
                try:
                    await pipe.watch(key)
                    current = await pipe.hgetall(key)
                    if current and float(current.get("wpm", 0)) >= record["wpm"]:
                        return
                    pipe.multi()
                    pipe.hset(key, mapping=record)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug(
                        "Personal best changed concurrently, retrying",
                        extra={"user_id": record["user_id"]},
                    )
        logger.warning(
            "Personal best not updated", extra={"user_id": record["user_id"]}
        )

    async def personal_best(self, user_id: str) -> Optional[LeaderboardEntry]:
        """Return the best stored result for a user, if any."""
        try:
            data = await self.redis.hgetall(self._best_key(user_id))
        except (RedisError, OSError) as e:
            logger.error("Failed to read personal best", exc_info=e)
            return None
        if not data:
            return None
        try:
            return LeaderboardEntry.model_validate(data)
        except ValidationError:
            return None

    async def get_leaderboard(
        self, mode: str, limit: Optional[int] = None
    ) -> list[LeaderboardEntry]:
        """
        Top results of the last ``ttl_seconds`` for a mode.

        Ordered by wpm descending, earlier results first on ties. ``limit``
        defaults to ``leaderboard_limit``.
        """
        if limit is None:
            limit = self.leaderboard_limit
        index_key = self._leaderboard_key(mode)
        cutoff = self._clock() - self.ttl_seconds

        try:
            result_ids = await self.redis.zrevrange(index_key, 0, -1)
            if not result_ids:
                return []

            pipe = self.redis.pipeline(transaction=False)
            for result_id in result_ids:
                pipe.hgetall(self._result_key(result_id))
            rows = await pipe.execute()

            entries: list[LeaderboardEntry] = []
            stale: list[str] = []
            for result_id, data in zip(result_ids, rows):
                if not data:
                    stale.append(result_id)
                    continue
                try:
                    entry = LeaderboardEntry.model_validate(data)
                except ValidationError:
                    stale.append(result_id)
                    continue
                if entry.timestamp < cutoff:
                    stale.append(result_id)
                    continue
                entries.append(entry)

            if stale:
                await self.redis.zrem(index_key, *stale)
        except (RedisError, OSError) as e:
            logger.error("Failed to read leaderboard", exc_info=e, extra={"mode": mode})
            return []

        entries.sort(key=lambda entry: (-entry.wpm, entry.timestamp))
        return entries[:limit]
