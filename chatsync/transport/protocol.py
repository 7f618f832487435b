"""Transport protocol consumed by the engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

EventHandler = Callable[[Any], None]
Unsubscribe = Callable[[], None]

# Channels the engine subscribes to
CHANNEL_CHAT = "chat"
CHANNEL_AGENT = "agent"
CHANNEL_CONNECTION = "connection"


class Transport(Protocol):
    """Backend interface for the upstream agent connection.

    Connecting, authenticating and request/response correlation live behind
    this interface. ``send`` raises on transport failure and returns the
    decoded response payload otherwise.
    """

    @property
    def is_connected(self) -> bool: ...

    def on(self, channel: str, handler: EventHandler) -> Unsubscribe: ...

    async def send(self, method: str, params: dict[str, Any]) -> Any: ...
