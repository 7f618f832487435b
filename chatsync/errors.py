"""Engine error types."""

from __future__ import annotations


class ChatSyncError(Exception):
    """Base class for errors raised by the reconciliation engine."""


class EventValidationError(ChatSyncError, ValueError):
    """Raised when an inbound payload does not match any known event shape."""

    def __init__(self, channel: str, details: str) -> None:
        super().__init__(f"Invalid {channel} event: {details}")
        self.channel = channel
        self.details = details


class SendError(ChatSyncError):
    """Raised when the upstream acknowledges a send with an error status."""

    def __init__(self, summary: str, *, idempotency_key: str | None = None) -> None:
        super().__init__(summary)
        self.summary = summary
        self.idempotency_key = idempotency_key
