"""Keystroke scoring state machine."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

logger = logging.getLogger(__name__)

BACKSPACE = "Backspace"
SPACE = " "
CHARS_PER_WORD = 5


class SessionStatus(str, Enum):
    """Lifecycle of a typing session."""

    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class KeyResult:
    """Outcome of a single key event."""

    accepted: bool
    prevent_default: bool = False


IGNORED = KeyResult(accepted=False)


@dataclass(frozen=True, slots=True)
class DerivedStats:
    """Metrics derived from a session; never stored."""

    wpm: int
    accuracy: int
    correct_chars: int
    error_chars: int


@dataclass(frozen=True, slots=True)
class TypingSession:
    """Immutable snapshot of one timed typing test."""

    target_text: str
    duration_seconds: int
    remaining_seconds: int
    typed_text: str = ""
    error_positions: frozenset[int] = frozenset()
    status: SessionStatus = SessionStatus.IDLE
    started_at: float | None = None
    generation: int = 0

    @classmethod
    def new(
        cls, target_text: str, duration_seconds: int, *, generation: int = 0
    ) -> TypingSession:
        """Create an idle session with the full duration remaining."""
        return cls(
            target_text=target_text,
            duration_seconds=duration_seconds,
            remaining_seconds=duration_seconds,
            generation=generation,
        )

    @property
    def elapsed_seconds(self) -> int:
        return self.duration_seconds - self.remaining_seconds

    @property
    def progress(self) -> float:
        """Percentage of the target text typed so far."""
        if not self.target_text:
            return 0.0
        return len(self.typed_text) / len(self.target_text) * 100

    def stats(self) -> DerivedStats:
        return compute_stats(self)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stats(session: TypingSession) -> DerivedStats:
    """
    Derive WPM and accuracy from a session.

    WPM counts every typed character, erroneous ones included, over the
    standard five characters per word.
    """
    typed = len(session.typed_text)
    errors = len(session.error_positions)
    correct = typed - errors
    elapsed = session.elapsed_seconds

    accuracy = _round_half_up(correct / typed * 100) if typed else 100
    wpm = _round_half_up(typed * 60 / (CHARS_PER_WORD * elapsed)) if elapsed > 0 else 0

    return DerivedStats(
        wpm=wpm, accuracy=accuracy, correct_chars=correct, error_chars=errors
    )


SessionListener = Callable[[TypingSession, TypingSession], None]


class ScoringEngine:
    """
    Turns key events into a typing session and its metrics.

    The engine performs no I/O and schedules nothing. Time advances only
    through ``tick()``, which ``CountdownTimer`` calls once per second
    while the session is running.

    Usage:
        engine = ScoringEngine("the quick brown fox", duration_seconds=30)
        engine.handle_key("t")
        engine.stats().accuracy
    """

    def __init__(
        self,
        target_text: str = "",
        duration_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize engine.

        Args:
            target_text: Text to type for the first session
            duration_seconds: Countdown length for the first session
            clock: Monotonic clock used for the start timestamp
        """
        self._clock = clock
        self._session = TypingSession.new(target_text, duration_seconds)
        self._listeners: list[SessionListener] = []

    def current_state(self) -> TypingSession:
        """Return the current session snapshot."""
        return self._session

    def stats(self) -> DerivedStats:
        """Return metrics for the current session."""
        return compute_stats(self._session)

    def subscribe(self, callback: SessionListener) -> None:
        """Call ``callback(previous, current)`` after every state change."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: SessionListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def handle_key(self, key: str) -> KeyResult:
        """
        Apply one key event.

        Args:
            key: Key value; a single character or the ``Backspace`` key name

        Returns:
            KeyResult; ``prevent_default`` is set for the space key
        """
        session = self._session
        if session.status is SessionStatus.FINISHED or not session.target_text:
            return IGNORED
        if len(key) != 1 and key != BACKSPACE:
            return IGNORED

        updated = session
        if updated.status is SessionStatus.IDLE:
            updated = replace(
                updated, status=SessionStatus.RUNNING, started_at=self._clock()
            )

        if key == BACKSPACE:
            if updated.typed_text:
                index = len(updated.typed_text) - 1
                updated = replace(
                    updated,
                    typed_text=updated.typed_text[:-1],
                    error_positions=updated.error_positions - {index},
                )
        elif len(updated.typed_text) < len(updated.target_text):
            index = len(updated.typed_text)
            errors = updated.error_positions
            if key != updated.target_text[index]:
                errors = errors | {index}
            status = updated.status
            if index + 1 == len(updated.target_text):
                status = SessionStatus.FINISHED
            updated = replace(
                updated,
                typed_text=updated.typed_text + key,
                error_positions=errors,
                status=status,
            )

        self._commit(updated)
        return KeyResult(accepted=True, prevent_default=key == SPACE)

    def tick(self, generation: int | None = None) -> None:
        """
        Advance the countdown by one second.

        A tick bound to a superseded session (``generation`` mismatch) or
        arriving while the session is not running is ignored.
        """
        session = self._session
        if generation is not None and generation != session.generation:
            return
        if session.status is not SessionStatus.RUNNING:
            return

        remaining = session.remaining_seconds - 1
        if remaining <= 0:
            self._commit(
                replace(session, remaining_seconds=0, status=SessionStatus.FINISHED)
            )
        else:
            self._commit(replace(session, remaining_seconds=remaining))

    def reset(
        self, target_text: str | None = None, duration_seconds: int | None = None
    ) -> None:
        """Discard the current session and start a fresh idle one."""
        previous = self._session
        self._commit(
            TypingSession.new(
                previous.target_text if target_text is None else target_text,
                previous.duration_seconds
                if duration_seconds is None
                else duration_seconds,
                generation=previous.generation + 1,
            )
        )

    def _commit(self, updated: TypingSession) -> None:
        previous = self._session
        if updated == previous:
            return
        self._session = updated

        if previous.status is not updated.status:
            logger.debug(
                "Session status changed",
                extra={
                    "from_status": previous.status.value,
                    "to_status": updated.status.value,
                    "generation": updated.generation,
                },
            )

        for callback in list(self._listeners):
            try:
                callback(previous, updated)
            except Exception as e:
                logger.error("Session listener failed", exc_info=e)
