"""Tool-call bookkeeping for a single run.

Tool events are delivered at least once and race with text deltas, so every
operation here is idempotent: replaying an event must not duplicate an entry or
move its insertion point. Position is first-writer-wins; status and result are
last-writer-wins, except that a terminal status is never rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from .models import TOOL_COMPLETE, TOOL_ERROR, TOOL_RUNNING, ToolCall

logger = logging.getLogger(__name__)


def extract_tool_result_content(result: Any) -> Any:
    """Unwrap text from the result shapes the upstream emits.

    Handles a bare list of content blocks (history format) and an object with a
    ``content`` block list (streaming format). Anything else is returned as-is.
    """
    if not result or not isinstance(result, (list, dict)):
        return result

    blocks: Any = result if isinstance(result, list) else result.get("content")
    if isinstance(blocks, list) and blocks:
        first = blocks[0]
        if isinstance(first, dict) and first.get("type") == "text" and isinstance(
            first.get("text"), str
        ):
            return first["text"]
    return result


class ToolCallTable:
    """Ordered, id-unique collection of a run's tool calls."""

    def __init__(self, calls: Iterable[ToolCall] | None = None) -> None:
        self._calls: dict[str, ToolCall] = {}
        if calls:
            self.merge(calls)

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self) -> Iterator[ToolCall]:
        return iter(self._calls.values())

    def __contains__(self, tool_call_id: object) -> bool:
        return tool_call_id in self._calls

    def get(self, tool_call_id: str) -> ToolCall | None:
        return self._calls.get(tool_call_id)

    def snapshot(self) -> list[ToolCall]:
        """Independent copies in insertion order."""
        return [tc.copy() for tc in self._calls.values()]

    def start(
        self,
        tool_call_id: str,
        name: str,
        args: dict[str, Any] | None,
        content_length: int,
        *,
        now: int,
    ) -> bool:
        """Insert a running entry. Returns False if the id was already known.

        A known id only has its name/args filled in when an earlier update or
        result had to synthesize the entry without them.
        """
        existing = self._calls.get(tool_call_id)
        if existing is not None:
            logger.debug("Tool start skipped - duplicate %s", tool_call_id)
            if existing.name == "unknown" and name:
                existing.name = name
            if existing.args is None and args is not None:
                existing.args = args
            return False
        self._calls[tool_call_id] = ToolCall(
            id=tool_call_id,
            name=name,
            args=args,
            status=TOOL_RUNNING,
            started_at=now,
            inserted_at_content_length=content_length,
        )
        return True

    def _ensure(self, tool_call_id: str, name: str, content_length: int, now: int) -> ToolCall:
        existing = self._calls.get(tool_call_id)
        if existing is not None:
            return existing
        logger.debug("Synthesizing missing tool call %s", tool_call_id)
        self.start(tool_call_id, name, None, content_length, now=now)
        return self._calls[tool_call_id]

    def update(
        self,
        tool_call_id: str,
        partial_result: Any,
        *,
        name: str = "unknown",
        content_length: int = 0,
        now: int,
    ) -> ToolCall:
        """Record a partial result without touching status."""
        call = self._ensure(tool_call_id, name, content_length, now)
        if call.is_terminal:
            return call
        call.result = extract_tool_result_content(partial_result)
        return call

    def complete(
        self,
        tool_call_id: str,
        result: Any,
        is_error: bool = False,
        *,
        name: str = "unknown",
        content_length: int = 0,
        now: int,
    ) -> ToolCall:
        """Mark a call finished, keeping the first completion time."""
        call = self._ensure(tool_call_id, name, content_length, now)
        call.status = TOOL_ERROR if is_error else TOOL_COMPLETE
        call.result = extract_tool_result_content(result)
        if call.completed_at is None:
            call.completed_at = now
        return call

    def merge(self, incoming: Iterable[ToolCall]) -> None:
        """Fold observations of calls (e.g. from another stream) into the table."""
        for obs in incoming:
            prev = self._calls.get(obs.id)
            if prev is None:
                self._calls[obs.id] = obs.copy()
                continue
            if obs.name and obs.name != "unknown":
                prev.name = obs.name
            if obs.args is not None:
                prev.args = obs.args
            if not (prev.is_terminal and not obs.is_terminal):
                prev.status = obs.status
                if obs.result is not None:
                    prev.result = obs.result
                if obs.completed_at is not None and prev.completed_at is None:
                    prev.completed_at = obs.completed_at
            if prev.started_at is None:
                prev.started_at = obs.started_at
            if prev.inserted_at_content_length is None:
                prev.inserted_at_content_length = obs.inserted_at_content_length

    def finalize(self, now: int) -> list[ToolCall]:
        """Frozen copies with unfinished calls forced to complete."""
        calls = self.snapshot()
        for call in calls:
            if not call.is_terminal:
                call.status = TOOL_COMPLETE
                call.completed_at = now
        return calls
