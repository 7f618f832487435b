"""Inbound protocol events, validated at the transport boundary.

Two channels feed the engine:

- ``chat``: turn results. One ``ChatEvent`` type whose ``state`` is one of
  ``delta``, ``final``, ``aborted`` or ``error``.
- ``agent``: lower-level agent activity, tagged by ``stream``:
  ``lifecycle`` (phase ``start``/``end``/``error``), ``assistant`` (block text),
  ``tool`` (phase ``start``/``update``/``result``) and ``compaction``
  (phase ``start``/``end``). The ``error`` and ``thinking`` streams are
  recognized but carry nothing the engine renders.

Payloads that do not match raise ``EventValidationError``; the router logs and
drops them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import EventValidationError

CHAT_STATES = ("delta", "final", "aborted", "error")
LIFECYCLE_PHASES = ("start", "end", "error")
TOOL_PHASES = ("start", "update", "result")
COMPACTION_PHASES = ("start", "end")
IGNORED_STREAMS = ("error", "thinking")


@dataclass(frozen=True)
class ChatEvent:
    """Turn-result event from the ``chat`` channel."""

    run_id: str
    session_key: str
    seq: int
    state: str  # "delta" | "final" | "aborted" | "error"
    message: dict[str, Any] | None = None
    error_message: str | None = None
    stop_reason: str | None = None


@dataclass(frozen=True)
class AgentEventBase:
    """Fields shared by every ``agent`` channel event."""

    run_id: str
    session_key: str | None
    seq: int
    ts: int


@dataclass(frozen=True)
class LifecycleEvent(AgentEventBase):
    phase: str  # "start" | "end" | "error"
    error: str | None = None


@dataclass(frozen=True)
class AssistantEvent(AgentEventBase):
    text: str | None = None  # accumulated text of the current block
    delta: str | None = None


@dataclass(frozen=True)
class ToolEvent(AgentEventBase):
    phase: str  # "start" | "update" | "result"
    tool_call_id: str | None = None
    name: str | None = None
    args: dict[str, Any] | None = None
    partial_result: Any = None
    result: Any = None
    is_error: bool = False


@dataclass(frozen=True)
class CompactionEvent(AgentEventBase):
    phase: str  # "start" | "end"
    summary: str | None = None


AgentEvent = LifecycleEvent | AssistantEvent | ToolEvent | CompactionEvent


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_chat_event(payload: Any) -> ChatEvent:
    """Validate a ``chat`` channel payload."""
    if not isinstance(payload, dict):
        raise EventValidationError("chat", "payload is not an object")
    run_id = payload.get("runId")
    session_key = payload.get("sessionKey")
    state = payload.get("state")
    if not isinstance(run_id, str) or not run_id:
        raise EventValidationError("chat", "missing runId")
    if not isinstance(session_key, str):
        raise EventValidationError("chat", "missing sessionKey")
    if not _is_int(payload.get("seq")):
        raise EventValidationError("chat", "missing seq")
    if state not in CHAT_STATES:
        raise EventValidationError("chat", f"unknown state {state!r}")

    message = payload.get("message")
    if message is not None and not isinstance(message, dict):
        raise EventValidationError("chat", "message is not an object")
    error_message = payload.get("errorMessage")
    stop_reason = payload.get("stopReason")
    return ChatEvent(
        run_id=run_id,
        session_key=session_key,
        seq=int(payload["seq"]),
        state=state,
        message=message,
        error_message=error_message if isinstance(error_message, str) else None,
        stop_reason=stop_reason if isinstance(stop_reason, str) else None,
    )


def parse_agent_event(payload: Any) -> AgentEvent | None:
    """Validate an ``agent`` channel payload.

    Returns None for recognized streams the engine does not render.
    """
    if not isinstance(payload, dict):
        raise EventValidationError("agent", "payload is not an object")
    run_id = payload.get("runId")
    stream = payload.get("stream")
    if not isinstance(run_id, str) or not run_id:
        raise EventValidationError("agent", "missing runId")
    if not _is_int(payload.get("seq")) or not _is_int(payload.get("ts")):
        raise EventValidationError("agent", "missing seq/ts")

    session_key = payload.get("sessionKey")
    if session_key is not None and not isinstance(session_key, str):
        raise EventValidationError("agent", "sessionKey is not a string")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise EventValidationError("agent", "data is not an object")

    base = {
        "run_id": run_id,
        "session_key": session_key,
        "seq": int(payload["seq"]),
        "ts": int(payload["ts"]),
    }
    phase = data.get("phase")

    if stream == "lifecycle":
        if phase not in LIFECYCLE_PHASES:
            raise EventValidationError("agent", f"unknown lifecycle phase {phase!r}")
        error = data.get("error")
        return LifecycleEvent(**base, phase=phase, error=error if isinstance(error, str) else None)

    if stream == "assistant":
        text = data.get("text")
        delta = data.get("delta")
        return AssistantEvent(
            **base,
            text=text if isinstance(text, str) else None,
            delta=delta if isinstance(delta, str) else None,
        )

    if stream == "tool":
        if phase not in TOOL_PHASES:
            raise EventValidationError("agent", f"unknown tool phase {phase!r}")
        tool_call_id = data.get("toolCallId")
        name = data.get("name")
        args = data.get("args")
        return ToolEvent(
            **base,
            phase=phase,
            tool_call_id=tool_call_id if isinstance(tool_call_id, str) else None,
            name=name if isinstance(name, str) else None,
            args=args if isinstance(args, dict) else None,
            partial_result=data.get("partialResult"),
            result=data.get("result"),
            is_error=bool(data.get("isError", False)),
        )

    if stream == "compaction":
        if phase not in COMPACTION_PHASES:
            raise EventValidationError("agent", f"unknown compaction phase {phase!r}")
        summary = data.get("summary")
        return CompactionEvent(
            **base, phase=phase, summary=summary if isinstance(summary, str) else None
        )

    if stream in IGNORED_STREAMS:
        return None

    raise EventValidationError("agent", f"unknown stream {stream!r}")
