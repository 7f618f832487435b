"""Plain terminal rendering of a reconciled transcript."""

from __future__ import annotations

import json
from typing import Any

from rich.markup import escape

from ..core.detection import group_messages
from ..core.models import Message, ToolCall
from ..ui.theme import THEME
from .replay import ReplayResult
from .state import console, settings


def _markup(text: str, color: str) -> str:
    """Wrap text in Rich markup with the given color, escaping special chars."""
    return f"[{color}]{escape(text)}[/{color}]"


def _preview(value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    text = " ".join(text.split())
    limit = settings.result_preview_chars
    if limit > 0 and len(text) > limit:
        return text[:limit] + "..."
    return text


def format_tool_call(call: ToolCall) -> str:
    args = json.dumps(call.args, default=str) if call.args else ""
    label = f"  > {call.name}({args}) [{call.status}]"
    line = _markup(label, THEME.tool_status_color(call.status))
    preview = _preview(call.result)
    if preview:
        line += "\n" + _markup(f"    {preview}", THEME.tool_result)
    return line


def interleave(message: Message) -> list[tuple[str, Any]]:
    """Split message text at tool-call offsets.

    Returns ``("text", str)`` and ``("tool", ToolCall)`` parts in display order.
    Calls without an offset render after the text.
    """
    calls = message.tool_calls or []
    placed = sorted(
        (c for c in calls if c.inserted_at_content_length is not None),
        key=lambda c: c.inserted_at_content_length,
    )
    trailing = [c for c in calls if c.inserted_at_content_length is None]

    parts: list[tuple[str, Any]] = []
    cursor = 0
    for call in placed:
        offset = min(max(call.inserted_at_content_length, cursor), len(message.content))
        if offset > cursor:
            parts.append(("text", message.content[cursor:offset]))
            cursor = offset
        parts.append(("tool", call))
    if cursor < len(message.content):
        parts.append(("text", message.content[cursor:]))
    parts.extend(("tool", call) for call in trailing)
    return parts


def print_message(message: Message) -> None:
    label = message.role
    if message.status:
        label += f" ({message.status})"
    console.print(_markup(f"{label}:", THEME.role_color(message.role)))
    for kind, part in interleave(message):
        if kind == "text":
            if part.strip():
                console.print(escape(part.strip("\n")))
        else:
            console.print(format_tool_call(part))
    if message.error:
        console.print(_markup(f"  error: {message.error}", THEME.error))
    console.print()


def print_compaction_marker(summary: str | None) -> None:
    console.print(_markup("── context compacted ──", THEME.compaction))
    if summary:
        console.print(_markup(summary, THEME.muted))
    console.print()


def print_transcript(result: ReplayResult) -> None:
    """Render messages, heartbeat groups, compaction marker, run failures and queue."""
    state = result.engine.state
    marker_index = state.compaction_insert_index if state.show_completed_compaction else None

    index = 0
    for group in group_messages(state.messages):
        if marker_index is not None and index >= marker_index:
            print_compaction_marker(state.compaction_summary)
            marker_index = None
        if group.type == "heartbeat":
            console.print(_markup(f"[heartbeat x{len(group.messages)}]", THEME.muted))
            console.print()
        elif group.type == "compaction":
            console.print(_markup("[compaction summary]", THEME.compaction))
            console.print(_markup(_preview(group.messages[0].content), THEME.muted))
            console.print()
        else:
            print_message(group.messages[0])
        index += len(group.messages)

    if marker_index is not None:
        print_compaction_marker(state.compaction_summary)
    if state.is_compacting:
        console.print(_markup("compacting...", THEME.warning))

    for run in result.failed_runs:
        detail = f": {run.error}" if run.error else ""
        text = f"run {run.run_id} {run.status}{detail}"
        console.print(_markup(text, THEME.run_outcome_color(run.status)))

    streaming = result.engine.streaming_content
    if streaming:
        console.print(_markup("assistant (streaming):", THEME.assistant))
        console.print(escape(streaming))

    for item in state.queue:
        console.print(_markup(f"queued: {item.content}", THEME.muted))

    if state.history_error:
        console.print(_markup(f"history: {state.history_error}", THEME.muted))
