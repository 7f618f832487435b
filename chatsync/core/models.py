"""Displayable conversation types shared by streaming and history.

The same ``Message``/``ToolCall`` shapes are produced by live reconciliation and
by history loading, so a transcript looks identical before and after a reload.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import Any

# Tool call statuses
TOOL_PENDING = "pending"
TOOL_RUNNING = "running"
TOOL_COMPLETE = "complete"
TOOL_ERROR = "error"
TOOL_TERMINAL = frozenset({TOOL_COMPLETE, TOOL_ERROR})

# User message send statuses
SEND_SENDING = "sending"
SEND_QUEUED = "queued"
SEND_SENT = "sent"
SEND_FAILED = "failed"


@dataclass
class ToolCall:
    """One tool invocation within a run."""

    id: str
    name: str
    args: dict[str, Any] | None = None
    status: str = TOOL_RUNNING  # "pending" | "running" | "complete" | "error"
    result: Any = None
    started_at: int | None = None  # epoch ms
    completed_at: int | None = None  # epoch ms
    # Offset into the owning run's text where this call renders
    inserted_at_content_length: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TOOL_TERMINAL

    def copy(self) -> ToolCall:
        return replace(self, args=deepcopy(self.args), result=deepcopy(self.result))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "args": self.args,
            "status": self.status,
            "result": self.result,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "inserted_at_content_length": self.inserted_at_content_length,
        }


@dataclass
class MessageImage:
    """Inline image attached to a message (data URL)."""

    url: str
    alt: str = "Image"


@dataclass
class Message:
    """A finalized, displayable turn.

    ``timestamp`` is epoch milliseconds, the unit used on the wire.
    """

    id: str
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: int
    tool_calls: list[ToolCall] | None = None
    images: list[MessageImage] | None = None
    status: str | None = None  # send status for user messages
    error: str | None = None
    session_key: str | None = None
    kind: str | None = None  # "compaction" for server-injected markers

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.images:
            data["images"] = [{"url": img.url, "alt": img.alt} for img in self.images]
        if self.status:
            data["status"] = self.status
        if self.error:
            data["error"] = self.error
        if self.session_key:
            data["session_key"] = self.session_key
        if self.kind:
            data["kind"] = self.kind
        return data


@dataclass
class QueuedSend:
    """A user message waiting for the transport or for the streaming gate."""

    idempotency_key: str
    session_key: str
    content: str
    created_at: int  # epoch ms
    thinking: str | None = None
    timeout_ms: int | None = None
    attachments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def message_id(self) -> str:
        return user_message_id(self.idempotency_key)

    def to_message(self, status: str) -> Message:
        """Build the local transcript entry for this send."""
        return Message(
            id=self.message_id,
            role="user",
            content=self.content,
            timestamp=self.created_at,
            images=attachments_to_images(self.attachments),
            status=status,
            session_key=self.session_key,
        )


def user_message_id(idempotency_key: str) -> str:
    return f"user_{idempotency_key}"


def idempotency_key_from_message_id(message_id: str) -> str:
    return message_id.removeprefix("user_")


def assistant_message_id(run_id: str) -> str:
    return f"assistant_{run_id}"


def attachments_to_images(attachments: list[dict[str, Any]] | None) -> list[MessageImage] | None:
    """Keep image attachments for local display; the upstream drops the rest."""
    if not attachments:
        return None
    images = [
        MessageImage(url=str(att.get("content", "")), alt=str(att.get("fileName") or "Image"))
        for att in attachments
        if att.get("type") == "image"
    ]
    return images or None
