"""In-memory transport used by trace replay and tests."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .protocol import CHANNEL_CONNECTION, EventHandler, Unsubscribe

logger = logging.getLogger(__name__)

RequestHandler = Callable[[dict[str, Any]], Any]


class TransportNotConnectedError(ConnectionError):
    """Raised by ``LocalTransport.send`` while disconnected."""


@dataclass(slots=True)
class RecordedRequest:
    """One request seen by ``LocalTransport.send``."""

    method: str
    params: dict[str, Any]


class LocalTransport:
    """Transport that delivers events synchronously to in-process handlers.

    Requests are answered by handlers registered per method; a method with no
    handler answers ``{}``. Every request is recorded in ``requests``.

    Usage::

        transport = LocalTransport()
        transport.handle("chat.history", lambda params: {"messages": []})
        transport.emit("agent", {"runId": "r1", "stream": "lifecycle", ...})
    """

    def __init__(self, *, connected: bool = True) -> None:
        self._connected = connected
        self._handlers: dict[str, list[EventHandler]] = {}
        self._request_handlers: dict[str, RequestHandler] = {}
        self.requests: list[RecordedRequest] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def on(self, channel: str, handler: EventHandler) -> Unsubscribe:
        handlers = self._handlers.setdefault(channel, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, []))

    def emit(self, channel: str, payload: Any) -> None:
        """Deliver one event to every handler registered for ``channel``."""
        for handler in list(self._handlers.get(channel, [])):
            handler(payload)

    def set_connected(self, connected: bool) -> None:
        """Flip the connection flag and announce it on the ``connection`` channel."""
        if self._connected == connected:
            return
        self._connected = connected
        logger.info("Local transport %s", "connected" if connected else "disconnected")
        self.emit(CHANNEL_CONNECTION, {"connected": connected})

    def handle(self, method: str, handler: RequestHandler) -> None:
        """Register the responder for ``method`` (replaces any previous one)."""
        self._request_handlers[method] = handler

    def requests_for(self, method: str) -> list[RecordedRequest]:
        return [req for req in self.requests if req.method == method]

    async def send(self, method: str, params: dict[str, Any]) -> Any:
        if not self._connected:
            raise TransportNotConnectedError(f"Not connected (cannot send {method})")
        self.requests.append(RecordedRequest(method=method, params=dict(params)))
        handler = self._request_handlers.get(method)
        if handler is None:
            return {}
        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return result
