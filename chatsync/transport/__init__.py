"""Transport interface and the in-memory implementation."""

from .local import LocalTransport, RecordedRequest, TransportNotConnectedError
from .protocol import (
    CHANNEL_AGENT,
    CHANNEL_CHAT,
    CHANNEL_CONNECTION,
    EventHandler,
    Transport,
    Unsubscribe,
)

__all__ = [
    "CHANNEL_AGENT",
    "CHANNEL_CHAT",
    "CHANNEL_CONNECTION",
    "EventHandler",
    "LocalTransport",
    "RecordedRequest",
    "Transport",
    "TransportNotConnectedError",
    "Unsubscribe",
]
