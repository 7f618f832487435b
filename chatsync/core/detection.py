"""Detection of special messages (heartbeats, no-reply turns, compaction summaries)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..config import DEFAULT_NO_REPLY_SENTINEL
from .models import Message

HEARTBEAT_PROMPT_PATTERNS = (
    re.compile(r"read heartbeat\.md", re.IGNORECASE),
    re.compile(r"heartbeat poll", re.IGNORECASE),
    re.compile(r"if nothing needs attention.*reply.*heartbeat_ok", re.IGNORECASE | re.DOTALL),
)

HEARTBEAT_RESPONSE = re.compile(r"^\s*heartbeat_ok\s*$", re.IGNORECASE)

COMPACTION_PATTERNS = (
    re.compile(r"^<summary>", re.IGNORECASE),
    re.compile(r"the conversation.*compacted", re.IGNORECASE | re.DOTALL),
    re.compile(r"pre-compaction memory flush", re.IGNORECASE),
    re.compile(r"context was summarized", re.IGNORECASE),
)


def is_heartbeat_prompt(message: Message) -> bool:
    if message.role != "user":
        return False
    return any(p.search(message.content) for p in HEARTBEAT_PROMPT_PATTERNS)


def is_heartbeat_response(message: Message) -> bool:
    if message.role != "assistant":
        return False
    return bool(HEARTBEAT_RESPONSE.match(message.content))


def is_heartbeat_message(message: Message) -> bool:
    return is_heartbeat_prompt(message) or is_heartbeat_response(message)


def is_no_reply_content(text: str, sentinel: str = DEFAULT_NO_REPLY_SENTINEL) -> bool:
    """True when the agent deliberately produced no visible reply."""
    return bool(sentinel) and text.strip() == sentinel


def is_silent_reply(text: str, sentinel: str = DEFAULT_NO_REPLY_SENTINEL) -> bool:
    """No-reply sentinel or a bare heartbeat acknowledgement."""
    return is_no_reply_content(text, sentinel) or bool(HEARTBEAT_RESPONSE.match(text))


def is_compaction_summary(message: Message) -> bool:
    if message.role != "user":
        return False
    return any(p.search(message.content) for p in COMPACTION_PATTERNS)


@dataclass
class MessageGroup:
    """Display group: a single message, a heartbeat exchange, or a compaction summary."""

    type: str  # "message" | "heartbeat" | "compaction"
    messages: list[Message] = field(default_factory=list)


def group_messages(messages: list[Message]) -> list[MessageGroup]:
    """Collapse consecutive heartbeat messages and mark compaction summaries."""
    groups: list[MessageGroup] = []
    heartbeats: list[Message] = []

    def flush_heartbeats() -> None:
        nonlocal heartbeats
        if heartbeats:
            groups.append(MessageGroup("heartbeat", heartbeats))
            heartbeats = []

    for message in messages:
        if is_heartbeat_message(message):
            heartbeats.append(message)
        elif message.kind == "compaction" or is_compaction_summary(message):
            flush_heartbeats()
            groups.append(MessageGroup("compaction", [message]))
        else:
            flush_heartbeats()
            groups.append(MessageGroup("message", [message]))

    flush_heartbeats()
    return groups
