"""Transcript loading from the durable history source.

The upstream stores one entry per model call, so a single user-visible turn can
span several assistant entries separated by ``toolResult`` entries. Loading
folds those back together so a reloaded transcript matches what live streaming
rendered:

1. ``toolResult`` entries are collected by tool-call id.
2. Every other entry becomes a ``Message`` with its tool results attached.
3. Adjacent assistant messages within the same-turn threshold are merged; text
   is joined by a blank line and merged tool-call offsets are shifted by the
   length of the text in front of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..config import EngineConfig
from ..transport.protocol import Transport
from .content import extract_tool_result_content, normalize_message
from .models import TOOL_COMPLETE, TOOL_ERROR, Message, ToolCall
from .scheduler import Scheduler
from .state import ChatEngineState

logger = logging.getLogger(__name__)

MERGE_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class ToolResult:
    content: Any
    is_error: bool = False


def collect_tool_results(raw_messages: list[dict[str, Any]]) -> dict[str, ToolResult]:
    """Map tool-call id to the result entry that answered it."""
    results: dict[str, ToolResult] = {}
    for raw in raw_messages:
        tool_call_id = raw.get("toolCallId")
        if raw.get("role") == "toolResult" and tool_call_id:
            results[tool_call_id] = ToolResult(
                content=extract_tool_result_content(raw.get("content")),
                is_error=bool(raw.get("isError", False)),
            )
    return results


def attach_tool_results(message: Message, results: dict[str, ToolResult], *, now: int) -> None:
    if not message.tool_calls:
        return
    for call in message.tool_calls:
        result = results.get(call.id)
        if result is None:
            continue
        call.result = result.content
        call.status = TOOL_ERROR if result.is_error else TOOL_COMPLETE
        call.completed_at = now


def should_merge(prev: Message, curr: Message, threshold_ms: int) -> bool:
    """True when two assistant messages belong to the same turn."""
    return (
        prev.role == "assistant"
        and curr.role == "assistant"
        and abs(curr.timestamp - prev.timestamp) < threshold_ms
    )


def merge_into_message(prev: Message, curr: Message) -> None:
    """Fold ``curr`` into ``prev`` in place."""
    prev_len = len(prev.content)
    separator = MERGE_SEPARATOR if prev.content and curr.content else ""

    if curr.tool_calls:
        shifted: list[ToolCall] = []
        for call in curr.tool_calls:
            moved = call.copy()
            if moved.inserted_at_content_length is not None:
                moved.inserted_at_content_length += prev_len + len(separator)
            shifted.append(moved)
        prev.tool_calls = [*(prev.tool_calls or []), *shifted]

    if curr.content:
        prev.content = f"{prev.content}{separator}{curr.content}" if prev.content else curr.content

    if curr.images:
        prev.images = [*(prev.images or []), *curr.images]

    prev.timestamp = max(prev.timestamp, curr.timestamp)


def reconcile_history(
    raw_messages: list[dict[str, Any]], *, now: int, threshold_ms: int
) -> list[Message]:
    """Turn raw history entries into the displayable transcript."""
    results = collect_tool_results(raw_messages)
    normalized: list[Message] = []

    for index, raw in enumerate(raw_messages):
        if not isinstance(raw, dict) or raw.get("role") == "toolResult":
            continue

        message = normalize_message(raw, f"hist_{index}_{now}", now=now)
        attach_tool_results(message, results, now=now)

        if normalized and should_merge(normalized[-1], message, threshold_ms):
            merge_into_message(normalized[-1], message)
            continue
        normalized.append(message)

    return normalized


class HistoryReconciler:
    """Loads ``chat.history`` and installs the reconciled transcript."""

    def __init__(
        self,
        transport: Transport,
        state: ChatEngineState,
        scheduler: Scheduler,
        config: EngineConfig,
    ) -> None:
        self._transport = transport
        self._state = state
        self._scheduler = scheduler
        self._config = config

    async def load_history(self, session_key: str, limit: int | None = None) -> list[Message]:
        """Fetch and install the transcript for ``session_key``.

        On failure ``history_error`` is set, the current transcript is left
        untouched and the transport's exception propagates.
        """
        limit = limit if limit is not None else self._config.history_limit
        self._state.begin_history_load()
        try:
            result = await self._transport.send(
                "chat.history", {"sessionKey": session_key, "limit": limit}
            )
        except Exception as exc:
            logger.warning("Failed to load history for %s: %s", session_key, exc)
            self._state.end_history_load(str(exc))
            raise

        result = result if isinstance(result, dict) else {}
        raw_messages = result.get("messages") or []
        messages = reconcile_history(
            [raw for raw in raw_messages if isinstance(raw, dict)],
            now=int(self._scheduler.time() * 1000),
            threshold_ms=self._config.same_turn_threshold_ms,
        )
        logger.debug("Loaded %d history entries as %d messages", len(raw_messages), len(messages))

        self._state.cache_messages(session_key, messages)
        if self._state.is_active_session(session_key):
            self._state.set_messages(messages)
            thinking_level = result.get("thinkingLevel")
            if isinstance(thinking_level, str) and thinking_level:
                self._state.thinking_level = thinking_level
        else:
            logger.debug("Session changed during history load; cached %s only", session_key)
        self._state.end_history_load()
        return messages

    async def reload_history(self, session_key: str) -> list[Message]:
        """Clear the transcript, then load it again."""
        self._state.clear_messages()
        return await self.load_history(session_key)
