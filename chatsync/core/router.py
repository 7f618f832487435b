"""EventRouter — classifies inbound events and applies them to run state.

Two subscriptions feed the router: ``chat`` (turn results) and ``agent``
(lifecycle, assistant text, tool and compaction streams). Events are applied in
arrival order with no reorder buffer; correctness under duplication and loss
comes from idempotent merges plus three rules:

- Session isolation: events for a session other than the visible one are dropped.
- Compaction suppression: runs that belong to a compaction never reach the
  turn/tool/lifecycle handlers and never produce a message.
- Creation on demand: any event for an unknown (not retired) run creates it, so
  a reconnect mid-turn still has somewhere to land.

Tool starts are applied one scheduler tick late so a text delta delivered in
the same instant is merged first and the call's insertion offset is current.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import EngineConfig
from ..errors import EventValidationError
from ..transport.protocol import CHANNEL_AGENT, CHANNEL_CHAT, Transport, Unsubscribe
from .content import parse_message_content
from .detection import is_silent_reply
from .events import (
    AssistantEvent,
    ChatEvent,
    CompactionEvent,
    LifecycleEvent,
    ToolEvent,
    parse_agent_event,
    parse_chat_event,
)
from .models import Message, assistant_message_id
from .registry import Run, RunRegistry
from .scheduler import Scheduler
from .state import ChatEngineState
from .streaming import merge_delta_text

logger = logging.getLogger(__name__)

RunFinishedCallback = Callable[[str], Awaitable[None] | None]
HistoryLoader = Callable[[str], Awaitable[Any]]


class EventRouter:
    """Routes ``chat`` and ``agent`` channel events into the registry and state."""

    def __init__(
        self,
        state: ChatEngineState,
        registry: RunRegistry,
        scheduler: Scheduler,
        config: EngineConfig,
        *,
        on_run_finished: RunFinishedCallback | None = None,
        refresh_history: HistoryLoader | None = None,
    ) -> None:
        self._state = state
        self._registry = registry
        self._scheduler = scheduler
        self._config = config
        self._on_run_finished = on_run_finished
        self._refresh_history = refresh_history
        self._compaction_run_ids: set[str] = set()
        self._unsubscribers: list[Unsubscribe] = []

    # --- Subscription ---

    @property
    def subscribed(self) -> bool:
        return bool(self._unsubscribers)

    def subscribe(self, transport: Transport) -> None:
        """Subscribe to both channels (no-op if already subscribed)."""
        if self._unsubscribers:
            return
        logger.info("Subscribing to chat events")
        self._unsubscribers = [
            transport.on(CHANNEL_CHAT, self.handle_chat_payload),
            transport.on(CHANNEL_AGENT, self.handle_agent_payload),
        ]

    def unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._compaction_run_ids.clear()

    def is_compaction_run(self, run_id: str) -> bool:
        return run_id in self._compaction_run_ids

    # --- Helpers ---

    def _now(self) -> int:
        return int(self._scheduler.time() * 1000)

    def _ensure_run(self, run_id: str, session_key: str | None) -> Run | None:
        """Existing run, or a pending one created on the fly."""
        run = self._registry.get(run_id)
        if run is not None:
            return run
        key = session_key or self._state.session_key
        if key is None:
            logger.debug("Cannot create run %s without a session key", run_id)
            return None
        if self._registry.is_retired(run_id):
            logger.debug("Dropping event for retired run %s", run_id)
            return None
        logger.debug("Creating run on-the-fly: %s (session %s)", run_id, key)
        return self._registry.start(run_id, key)

    def _schedule_drain(self, session_key: str) -> None:
        if self._on_run_finished is not None:
            self._scheduler.call_later(
                self._config.queue_drain_delay, self._on_run_finished, session_key
            )

    def _schedule_history_refresh(self, session_key: str) -> None:
        if self._refresh_history is not None:
            self._scheduler.call_later(
                self._config.heartbeat_refresh_delay, self._refresh, session_key
            )

    async def _refresh(self, session_key: str) -> None:
        if self._refresh_history is None or not self._state.is_active_session(session_key):
            return
        try:
            await self._refresh_history(session_key)
        except Exception as exc:
            logger.warning("Failed to refresh history after heartbeat: %s", exc)

    def _promote(self, run: Run, message: Message | None) -> None:
        """Complete a run and append its message. Runs already finished are left alone."""
        if not self._registry.complete(run.run_id, message):
            logger.debug("Run %s already finalized; not promoting again", run.run_id)
            return
        if message is not None:
            self._state.add_message(message)
        self._schedule_drain(run.session_key)

    # --- agent channel ---

    def handle_agent_payload(self, payload: Any) -> None:
        """Entry point for raw ``agent`` channel payloads."""
        try:
            event = parse_agent_event(payload)
        except EventValidationError as exc:
            logger.warning("Dropping agent event: %s", exc)
            return
        if event is None:
            return
        if not self._state.is_active_session(event.session_key):
            return

        if isinstance(event, CompactionEvent):
            self._handle_compaction(event)
            return

        if isinstance(event, LifecycleEvent):
            if event.phase == "start":
                self._handle_lifecycle_start(event)
            else:
                self._handle_lifecycle_end(event)
            return

        if event.run_id in self._compaction_run_ids:
            return

        if isinstance(event, AssistantEvent):
            self._handle_assistant(event)
        elif isinstance(event, ToolEvent):
            self._handle_tool(event)

    def _handle_lifecycle_start(self, event: LifecycleEvent) -> None:
        if event.run_id in self._compaction_run_ids:
            return
        self._ensure_run(event.run_id, event.session_key)

    def _handle_lifecycle_end(self, event: LifecycleEvent) -> None:
        """Safety net for turns that never get a ``final`` chat event."""
        if event.run_id in self._compaction_run_ids:
            if self._state.is_compacting:
                logger.warning(
                    "Clearing stale compacting flag via lifecycle end for run %s", event.run_id
                )
                self._state.clear_stale_compaction()
            return

        run = self._registry.get(event.run_id)
        if run is None or not run.is_active:
            return

        logger.debug("Completing run via lifecycle %s: %s", event.phase, run.run_id)

        was_empty = not run.content and len(run.tool_calls) == 0
        if was_empty and event.phase == "error":
            # Nothing to keep; surface the failure on the run instead
            self._registry.fail(run.run_id, event.error or "Agent run failed")
            self._schedule_drain(run.session_key)
            self._schedule_history_refresh(run.session_key)
            return
        if was_empty:
            self._promote(run, None)
            # Heartbeat turns are injected server-side without being broadcast
            self._schedule_history_refresh(run.session_key)
            return
        if is_silent_reply(run.content, self._config.no_reply_sentinel):
            self._promote(run, None)
            self._schedule_history_refresh(run.session_key)
            return

        now = self._now()
        message = Message(
            id=assistant_message_id(run.run_id),
            role="assistant",
            content=run.content,
            tool_calls=run.tool_calls.finalize(now) or None,
            timestamp=now,
        )
        self._promote(run, message)

    def _handle_assistant(self, event: AssistantEvent) -> None:
        if not event.text:
            return
        run = self._ensure_run(event.run_id, event.session_key)
        if run is None or not run.is_active:
            return
        merged = merge_delta_text(run.content, event.text, run.last_block_start)
        self._registry.update_content(run.run_id, merged.content, merged.last_block_start)

    def _handle_tool(self, event: ToolEvent) -> None:
        run = self._ensure_run(event.run_id, event.session_key)
        if run is None or not run.is_active:
            return

        now = self._now()
        tool_call_id = event.tool_call_id or f"tool_{now}"
        name = event.name or "unknown"

        logger.debug(
            "Tool event %s %s (%s) run=%s content_len=%d",
            event.phase,
            tool_call_id,
            name,
            run.run_id,
            len(run.content),
        )

        if event.phase == "start":
            if tool_call_id in run.tool_calls:
                logger.debug("Tool start skipped - duplicate %s", tool_call_id)
                return
            self._scheduler.call_soon(
                self._apply_tool_start, run.run_id, tool_call_id, name, event.args
            )
            return

        if event.phase == "update":
            run.tool_calls.update(
                tool_call_id,
                event.partial_result,
                name=name,
                content_length=len(run.content),
                now=now,
            )
        else:
            run.tool_calls.complete(
                tool_call_id,
                event.result,
                event.is_error,
                name=name,
                content_length=len(run.content),
                now=now,
            )
        self._registry.touch(run.run_id)

    def _apply_tool_start(
        self,
        run_id: str,
        tool_call_id: str,
        name: str,
        args: dict[str, Any] | None,
    ) -> None:
        run = self._registry.get(run_id)
        if run is None or not run.is_active:
            logger.debug("Deferred tool start dropped - run %s gone or finished", run_id)
            return
        inserted = run.tool_calls.start(
            tool_call_id, name, args, len(run.content), now=self._now()
        )
        if not inserted:
            return
        logger.debug(
            "Tool start processed %s at content length %d", tool_call_id, len(run.content)
        )
        self._registry.touch(run_id)

    def _handle_compaction(self, event: CompactionEvent) -> None:
        logger.info("Compaction %s for run %s", event.phase, event.run_id)
        self._compaction_run_ids.add(event.run_id)

        if event.phase == "start":
            if event.run_id in self._registry:
                logger.debug("Removing ghost run created before compaction: %s", event.run_id)
            self._registry.remove(event.run_id)
            self._state.begin_compaction()
        else:
            self._state.end_compaction(event.summary)
            logger.info(
                "Compaction ended, marker at index %s", self._state.compaction_insert_index
            )

    # --- chat channel ---

    def handle_chat_payload(self, payload: Any) -> None:
        """Entry point for raw ``chat`` channel payloads."""
        try:
            event = parse_chat_event(payload)
        except EventValidationError as exc:
            logger.warning("Dropping chat event: %s", exc)
            return

        if event.run_id in self._compaction_run_ids:
            logger.debug("Skipping chat event for compaction run %s (%s)", event.run_id, event.state)
            return
        if not self._state.is_active_session(event.session_key):
            return

        logger.debug("Chat event %s run=%s session=%s", event.state, event.run_id, event.session_key)

        if event.state == "delta":
            self._handle_delta(event)
        elif event.state == "final":
            self._handle_final(event)
        elif event.state == "aborted":
            if self._registry.abort(event.run_id):
                self._schedule_drain(event.session_key)
        else:
            if self._registry.fail(event.run_id, event.error_message or "Unknown error"):
                self._schedule_drain(event.session_key)

    def _handle_delta(self, event: ChatEvent) -> None:
        """Tool-call supplement only; text comes from the faster assistant stream."""
        if event.message is None:
            return
        run = self._ensure_run(event.run_id, event.session_key)
        if run is None or not run.is_active:
            return
        parsed = parse_message_content(event.message.get("content"), now=self._now())
        if not parsed.tool_calls:
            return
        run.tool_calls.merge(parsed.tool_calls)
        self._registry.touch(run.run_id)

    def _handle_final(self, event: ChatEvent) -> None:
        run = self._ensure_run(event.run_id, event.session_key)
        if run is None:
            return
        if not run.is_active:
            logger.debug("Final for finished run %s ignored", run.run_id)
            return

        now = self._now()
        parsed = None
        if event.message is not None:
            parsed = parse_message_content(event.message.get("content"), now=now)

        if parsed is not None and parsed.text and is_silent_reply(
            parsed.text, self._config.no_reply_sentinel
        ):
            logger.debug("No-reply turn, completing run %s without a message", run.run_id)
            self._promote(run, None)
            return

        content = run.content
        if parsed is not None:
            if len(parsed.text) >= len(content):
                content = parsed.text
            elif parsed.text and parsed.text not in content:
                # A partial flush: fold it in rather than discard it
                logger.debug(
                    "Final merging partial text (%d < %d)", len(parsed.text), len(content)
                )
                content = merge_delta_text(content, parsed.text, run.last_block_start).content
            run.tool_calls.merge(parsed.tool_calls)

        if not content and len(run.tool_calls) == 0:
            self._promote(run, None)
            return
        if is_silent_reply(content, self._config.no_reply_sentinel):
            logger.debug("Streamed no-reply turn, completing run %s without a message", run.run_id)
            self._promote(run, None)
            return

        timestamp = event.message.get("timestamp") if event.message else None
        message = Message(
            id=assistant_message_id(run.run_id),
            role="assistant",
            content=content,
            tool_calls=run.tool_calls.finalize(now) or None,
            timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else now,
        )
        self._promote(run, message)
