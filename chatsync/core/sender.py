"""Outbound user messages: queuing, transmission, retry and queue draining."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import EngineConfig
from ..errors import SendError
from ..transport.protocol import Transport
from .models import (
    SEND_FAILED,
    SEND_SENDING,
    QueuedSend,
    idempotency_key_from_message_id,
)
from .registry import RunRegistry
from .scheduler import Scheduler
from .state import ChatEngineState

logger = logging.getLogger(__name__)

HistoryLoader = Callable[[str], Awaitable[Any]]


class MessageSender:
    """Sends user messages through the transport, queuing when it cannot.

    A send is queued instead of transmitted when the transport is disconnected
    or when any run is pending or streaming (one turn in flight at a time).
    Resends of a known idempotency key (retries and queue drains) skip the
    streaming check; the upstream deduplicates by key.
    """

    def __init__(
        self,
        transport: Transport,
        state: ChatEngineState,
        registry: RunRegistry,
        scheduler: Scheduler,
        config: EngineConfig,
        *,
        reload_history: HistoryLoader | None = None,
    ) -> None:
        self._transport = transport
        self._state = state
        self._registry = registry
        self._scheduler = scheduler
        self._config = config
        self._reload_history = reload_history
        self._counter = itertools.count(1)
        # Send options of failed transmissions, kept so a retry resends them
        self._failed: dict[str, QueuedSend] = {}

    def generate_idempotency_key(self) -> str:
        now_ms = int(self._scheduler.time() * 1000)
        return f"{self._config.idempotency_prefix}_{now_ms}_{next(self._counter)}"

    def is_reset_command(self, text: str) -> bool:
        """``/new`` or ``/reset``, alone or followed by a space and arguments."""
        trimmed = text.strip().lower()
        return any(
            trimmed == cmd or trimmed.startswith(f"{cmd} ") for cmd in self._config.reset_commands
        )

    async def send_message(
        self,
        session_key: str,
        text: str,
        *,
        thinking: str | None = None,
        timeout_ms: int | None = None,
        attachments: list[dict[str, Any]] | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        """Send ``text`` to ``session_key`` and return its idempotency key.

        Passing ``idempotency_key`` marks the call as a resend of an earlier
        message; the key is reused verbatim.

        Raises:
            SendError: The upstream acknowledged the send with an error status.
            Exception: Whatever the transport raised; the message is marked failed.
        """
        is_resend = idempotency_key is not None
        key = idempotency_key or self.generate_idempotency_key()
        item = QueuedSend(
            idempotency_key=key,
            session_key=session_key,
            content=text,
            created_at=int(self._scheduler.time() * 1000),
            thinking=thinking,
            timeout_ms=timeout_ms,
            attachments=list(attachments or []),
        )

        if not self._transport.is_connected:
            logger.info("Not connected, queuing message %s", key)
            self._queue(item)
            return key

        if self._registry.is_streaming and not is_resend:
            logger.info("Run in progress, queuing message %s", key)
            self._queue(item)
            return key

        await self._transmit(item)
        return key

    def _queue(self, item: QueuedSend) -> None:
        self._state.enqueue(item)
        self._state.mark_message_queued(item.message_id)

    async def _transmit(self, item: QueuedSend) -> None:
        message_id = item.message_id
        if self._state.find_message(message_id) is None:
            self._state.add_message(item.to_message(SEND_SENDING))
        else:
            self._state.mark_message_sending(message_id)

        self._registry.start(item.idempotency_key, item.session_key, reopen=True)

        params: dict[str, Any] = {
            "sessionKey": item.session_key,
            "message": item.content,
            "idempotencyKey": item.idempotency_key,
        }
        if item.thinking is not None:
            params["thinking"] = item.thinking
        if item.timeout_ms is not None:
            params["timeoutMs"] = item.timeout_ms
        if item.attachments:
            params["attachments"] = item.attachments

        logger.debug("Sending message to session %s", item.session_key)
        try:
            result = await self._transport.send("chat.send", params)
        except Exception as exc:
            logger.error("chat.send failed: %s", exc)
            self._record_failure(item, str(exc))
            raise

        if isinstance(result, dict) and result.get("status") == "error":
            summary = result.get("summary") or "Unknown error"
            logger.error("chat.send rejected: %s", summary)
            self._record_failure(item, summary)
            raise SendError(summary, idempotency_key=item.idempotency_key)

        self._failed.pop(item.idempotency_key, None)
        self._state.mark_message_sent(message_id)

        if self.is_reset_command(item.content):
            logger.info("Reset command detected, clearing messages for session %s", item.session_key)
            self._scheduler.call_later(
                self._config.reset_reload_delay, self._after_reset, item.session_key
            )

    def _record_failure(self, item: QueuedSend, error: str) -> None:
        self._failed[item.idempotency_key] = item
        self._registry.fail(item.idempotency_key, error)
        self._state.mark_message_failed(item.message_id, error)

    async def _after_reset(self, session_key: str) -> None:
        if not self._state.is_active_session(session_key):
            return
        self._state.clear_messages()
        if self._reload_history is None:
            return
        try:
            await self._reload_history(session_key)
        except Exception as exc:
            logger.warning("Failed to reload history after reset: %s", exc)

    async def _resend(self, item: QueuedSend) -> None:
        if not self._transport.is_connected and any(
            queued.idempotency_key == item.idempotency_key for queued in self._state.queue
        ):
            logger.info("Not connected, leaving message %s queued", item.idempotency_key)
            return
        self._state.dequeue(item.idempotency_key)
        await self.send_message(
            item.session_key,
            item.content,
            thinking=item.thinking,
            timeout_ms=item.timeout_ms,
            attachments=item.attachments,
            idempotency_key=item.idempotency_key,
        )

    async def retry_message(self, message_id: str) -> None:
        """Resend a queued message, or a transcript message whose send failed."""
        item = next((q for q in self._state.queue if q.message_id == message_id), None)

        if item is None:
            message = self._state.find_message(message_id)
            if message is None or message.status != SEND_FAILED:
                logger.warning("Cannot retry message - not found: %s", message_id)
                return
            key = idempotency_key_from_message_id(message_id)
            item = self._failed.get(key)
            if item is None:
                session_key = message.session_key or self._state.session_key
                if session_key is None:
                    logger.warning("Cannot retry message - missing session key: %s", message_id)
                    return
                item = QueuedSend(
                    idempotency_key=key,
                    session_key=session_key,
                    content=message.content,
                    created_at=message.timestamp,
                )

        await self._resend(item)

    async def process_next_queued(self, session_key: str) -> None:
        """Send the oldest queued message for a session once no run is active."""
        if self._registry.is_streaming:
            logger.debug("Still streaming, not processing queue")
            return

        item = self._state.next_queued(session_key)
        if item is None:
            logger.debug("No queued messages for session %s", session_key)
            return

        logger.info("Processing next queued message: %s", item.message_id)
        try:
            await self._resend(item)
        except Exception as exc:
            logger.error("Failed to send queued message: %s", exc)

    async def process_queue(self) -> None:
        """Send every queued message in order (called after reconnecting)."""
        queue = list(self._state.queue)
        if not queue:
            return

        logger.info("Processing %d queued messages", len(queue))
        for item in queue:
            try:
                await self._resend(item)
            except Exception as exc:
                logger.error("Failed to send queued message: %s", exc)

    async def abort(self, session_key: str, run_id: str | None = None) -> None:
        """Ask the upstream to abort the running turn. The result arrives as an event."""
        params: dict[str, Any] = {"sessionKey": session_key}
        if run_id is not None:
            params["runId"] = run_id
        await self._transport.send("chat.abort", params)
