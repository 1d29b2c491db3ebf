"""Bridge between the local typing session and the race room."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Optional

from .protocol import Player
from .room import GameState, RankedPlayer, Room, RoomSynchronizer
from .scoring import IGNORED, KeyResult, ScoringEngine, SessionStatus, TypingSession

logger = logging.getLogger(__name__)

_PROGRESS = "progress"
_FINISH = "finish"


class ProgressRelay:
    """
    Forwards local typing progress to the room and exposes peer rankings.

    The relay only reads the engine's state and calls the synchronizer's
    public actions. Outbound actions are queued and sent by one worker task,
    so a progress update and the finish report that follows it leave in
    order. A change that arrives inside the throttle interval is held and
    sent when the interval ends, so the last progress always reaches peers.

    Usage:
        relay = ProgressRelay(engine, sync)
        await relay.start()
        relay.handle_key("a")
        relay.rankings()
    """

    def __init__(
        self,
        engine: ScoringEngine,
        sync: RoomSynchronizer,
        *,
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize relay.

        Args:
            engine: Local scoring engine (read only)
            sync: Room synchronizer receiving progress and finish reports
            min_interval: Minimum seconds between two progress reports
            clock: Monotonic clock used for throttling
        """
        self._engine = engine
        self._sync = sync
        self._min_interval = min_interval
        self._clock = clock

        self._queue: Optional[asyncio.Queue[tuple[str, float, float] | None]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._last_sent: Optional[float] = None
        self._pending: Optional[tuple[float, float]] = None
        self._trailing: Optional[asyncio.TimerHandle] = None
        self._finished_in: Optional[Room] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Subscribe to the engine and start the send worker."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._send_loop(self._queue))
        self._engine.subscribe(self._on_session_change)

    async def stop(self) -> None:
        """Unsubscribe and stop after queued reports are sent."""
        self._engine.unsubscribe(self._on_session_change)
        self._cancel_pending()
        queue, worker = self._queue, self._worker
        self._queue = None
        self._worker = None
        if queue is not None:
            queue.put_nowait(None)
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)

    async def flush(self) -> None:
        """Wait until every queued report has been handed to the channel."""
        if self._queue is not None:
            await self._queue.join()

    def handle_key(self, key: str) -> KeyResult:
        """Forward a key to the engine while the race is running."""
        if self._sync.game_state is not GameState.RACING:
            return IGNORED
        return self._engine.handle_key(key)

    def rankings(self) -> list[RankedPlayer]:
        return self._sync.rankings()

    def podium(self) -> list[Player]:
        return self._sync.podium()

    def _on_session_change(self, previous: TypingSession, current: TypingSession) -> None:
        # A new session resets tracking even when it starts outside a room.
        if current.generation != previous.generation:
            self._last_sent = None
            self._finished_in = None
            self._cancel_pending()
            return

        room = self._sync.room
        if room is None or self._queue is None:
            return

        status_changed = current.status is not previous.status
        typed_changed = current.typed_text != previous.typed_text

        if room.game_state is GameState.RACING and (typed_changed or status_changed):
            report = (current.progress, float(current.stats().wpm))
            now = self._clock()
            wait = (
                self._min_interval - (now - self._last_sent)
                if self._last_sent is not None
                else 0.0
            )
            if status_changed or wait <= 0:
                self._cancel_pending()
                self._last_sent = now
                self._queue.put_nowait((_PROGRESS, *report))
            else:
                self._pending = report
                if self._trailing is None:
                    loop = asyncio.get_running_loop()
                    self._trailing = loop.call_later(wait, self._send_pending, room)

        if (
            status_changed
            and current.status is SessionStatus.FINISHED
            and self._finished_in is not room
        ):
            player = self._sync.current_player
            if player is not None and not player.is_finished:
                self._finished_in = room
                self._queue.put_nowait((_FINISH, 0.0, 0.0))

    def _send_pending(self, room: Room) -> None:
        self._trailing = None
        report, self._pending = self._pending, None
        if report is None or self._queue is None:
            return
        if self._sync.room is not room or room.game_state is not GameState.RACING:
            return
        self._last_sent = self._clock()
        self._queue.put_nowait((_PROGRESS, *report))

    def _cancel_pending(self) -> None:
        self._pending = None
        if self._trailing is not None:
            self._trailing.cancel()
            self._trailing = None

    async def _send_loop(self, queue: asyncio.Queue[tuple[str, float, float] | None]) -> None:
        while True:
            item = await queue.get()
            try:
                if item is None:
                    break
                action, progress, wpm = item
                if action == _FINISH:
                    await self._sync.mark_finished()
                else:
                    await self._sync.send_progress(progress, wpm)
            except Exception as e:
                logger.error("Progress report failed", exc_info=e)
            finally:
                queue.task_done()
