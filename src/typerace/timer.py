"""Countdown driver for the scoring engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .scoring import ScoringEngine, SessionStatus, TypingSession

logger = logging.getLogger(__name__)


class CountdownTimer:
    """
    Ticks a ScoringEngine once per interval while its session is running.

    The timer watches the engine: it starts on the idle -> running
    transition and stops when the session finishes or is reset. Every tick
    is bound to the session generation it was started for, so a tick that
    fires after a reset is dropped by the engine.

    Usage:
        timer = CountdownTimer(engine)
        timer.start()
        ...
        await timer.stop()
    """

    def __init__(self, engine: ScoringEngine, *, interval: float = 1.0):
        """
        Initialize timer.

        Args:
            engine: Engine to drive
            interval: Seconds between ticks
        """
        self._engine = engine
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None
        self._attached = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Attach to the engine; ticking begins on the first accepted key."""
        if self._attached:
            return
        self._attached = True
        self._engine.subscribe(self._on_change)

        session = self._engine.current_state()
        if session.status is SessionStatus.RUNNING:
            self._schedule(session.generation)

    async def stop(self) -> None:
        """Detach from the engine and cancel any pending tick."""
        self._attached = False
        self._engine.unsubscribe(self._on_change)

        task = self._cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _on_change(self, previous: TypingSession, current: TypingSession) -> None:
        if current.status is SessionStatus.RUNNING:
            if not self.running or previous.generation != current.generation:
                self._schedule(current.generation)
        else:
            self._cancel()

    def _schedule(self, generation: int) -> None:
        self._cancel()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run(generation), name=f"countdown_{generation}"
        )

    def _cancel(self) -> Optional[asyncio.Task[None]]:
        task = self._task
        self._task = None
        if task is None or task.done():
            return None
        # The tick loop may finish the session from inside itself.
        if task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _run(self, generation: int) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                session = self._engine.current_state()
                if (
                    session.generation != generation
                    or session.status is not SessionStatus.RUNNING
                ):
                    return
                self._engine.tick(generation)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Countdown tick failed", exc_info=e)
