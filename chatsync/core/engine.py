"""ChatEngine — wires the reconciliation components to a transport.

Usage::

    transport = LocalTransport()
    engine = ChatEngine(transport, scheduler=ManualScheduler())
    await engine.init_chat("main")
    await engine.send_message("Hello")

The engine owns one ``ChatEngineState``; UIs read it (``engine.messages``,
``engine.is_streaming``, ``engine.queue``) and register observers for change
notifications.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import EngineConfig
from ..errors import ChatSyncError
from ..transport.protocol import CHANNEL_CONNECTION, Transport, Unsubscribe
from .history import HistoryReconciler
from .models import Message, QueuedSend
from .registry import RunRegistry
from .router import EventRouter
from .scheduler import AsyncioScheduler, Scheduler
from .sender import MessageSender
from .state import CHANGE_RUNS, ChatEngineState, StateObserver

logger = logging.getLogger(__name__)


class ChatEngine:
    """Streaming conversation client for one transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        scheduler: Scheduler | None = None,
        config: EngineConfig | None = None,
        state: ChatEngineState | None = None,
    ) -> None:
        self.transport = transport
        self.scheduler = scheduler or AsyncioScheduler()
        self.config = config or EngineConfig()
        self.state = state or ChatEngineState(connected=transport.is_connected)

        self.registry = RunRegistry(
            self.scheduler, self.config, on_change=lambda: self.state.notify(CHANGE_RUNS)
        )
        self.history = HistoryReconciler(transport, self.state, self.scheduler, self.config)
        self.sender = MessageSender(
            transport,
            self.state,
            self.registry,
            self.scheduler,
            self.config,
            reload_history=self.history.load_history,
        )
        self.router = EventRouter(
            self.state,
            self.registry,
            self.scheduler,
            self.config,
            on_run_finished=self.sender.process_next_queued,
            refresh_history=self.history.load_history,
        )
        self._connection_unsubscribe: Unsubscribe | None = None

    # --- Read-only views ---

    @property
    def messages(self) -> list[Message]:
        return self.state.messages

    @property
    def queue(self) -> list[QueuedSend]:
        return self.state.queue

    @property
    def session_key(self) -> str | None:
        return self.state.session_key

    @property
    def is_streaming(self) -> bool:
        return self.registry.is_streaming

    @property
    def streaming_content(self) -> str:
        return self.registry.streaming_content

    def add_observer(self, observer: StateObserver) -> None:
        self.state.add_observer(observer)

    def remove_observer(self, observer: StateObserver) -> None:
        self.state.remove_observer(observer)

    # --- Lifecycle ---

    def start(self) -> None:
        """Subscribe to event channels. Safe to call more than once."""
        self.router.subscribe(self.transport)
        if self._connection_unsubscribe is None:
            self._connection_unsubscribe = self.transport.on(
                CHANNEL_CONNECTION, self._handle_connection
            )

    def stop(self) -> None:
        """Unsubscribe from every channel and forget compaction tracking."""
        self.router.unsubscribe()
        if self._connection_unsubscribe is not None:
            self._connection_unsubscribe()
            self._connection_unsubscribe = None

    async def init_chat(self, session_key: str) -> None:
        """Subscribe and load the transcript for ``session_key``."""
        self.state.set_session(session_key)
        self.start()
        await self.history.load_history(session_key)

    async def switch_session(self, session_key: str) -> None:
        """Show ``session_key``: cached transcript first, then fresh history."""
        dropped = self.registry.drop_other_sessions(session_key)
        if dropped:
            logger.debug("Stopped tracking %d runs from other sessions", len(dropped))
        self.state.set_session(session_key)
        await self.history.load_history(session_key)

    def cleanup(self) -> None:
        """Tear down subscriptions and clear displayed state."""
        self.stop()
        self.registry.clear()
        self.state.clear_messages()
        self.state.reset_compaction()

    # --- Actions ---

    def _require_session(self, session_key: str | None) -> str:
        key = session_key or self.state.session_key
        if key is None:
            raise ChatSyncError("No active session; call init_chat() first")
        return key

    async def send_message(
        self, text: str, *, session_key: str | None = None, **options: Any
    ) -> str:
        """Send a user message; returns its idempotency key."""
        return await self.sender.send_message(self._require_session(session_key), text, **options)

    async def retry_message(self, message_id: str) -> None:
        await self.sender.retry_message(message_id)

    async def abort_run(self, run_id: str | None = None, *, session_key: str | None = None) -> None:
        await self.sender.abort(self._require_session(session_key), run_id)

    async def load_history(
        self, session_key: str | None = None, limit: int | None = None
    ) -> list[Message]:
        return await self.history.load_history(self._require_session(session_key), limit)

    async def reload_history(self, session_key: str | None = None) -> list[Message]:
        return await self.history.reload_history(self._require_session(session_key))

    # --- Connection events ---

    def _handle_connection(self, payload: Any) -> None:
        connected = bool(payload.get("connected")) if isinstance(payload, dict) else False
        was_connected = self.state.connected
        self.state.set_connected(connected)
        if connected and not was_connected:
            logger.info("Reconnected; resyncing history and queued messages")
            self.scheduler.call_soon(self._resync)

    async def _resync(self) -> None:
        session_key = self.state.session_key
        if session_key is not None:
            try:
                await self.history.load_history(session_key)
            except Exception as exc:
                logger.warning("Failed to reload history after reconnect: %s", exc)
        await self.sender.process_queue()
