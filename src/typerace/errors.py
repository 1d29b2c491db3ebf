"""Client-side error types."""

from __future__ import annotations


class TyperaceError(Exception):
    """Base exception for typerace errors."""


class ChannelError(TyperaceError):
    """Race channel failure."""

    def __init__(self, message: str, *, event: str | None = None):
        """Initialize error with the event that was being handled, if any."""
        super().__init__(message)
        self.message = message
        self.event = event


class ChannelNotConnectedError(ChannelError, RuntimeError):
    """Emit attempted on a channel that is not connected."""

    def __init__(self, event: str | None = None):
        """Initialize not-connected error."""
        super().__init__("channel_not_connected", event=event)
