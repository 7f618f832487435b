"""Parsing of raw message payloads into displayable content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import (
    TOOL_COMPLETE,
    TOOL_PENDING,
    TOOL_RUNNING,
    Message,
    MessageImage,
    ToolCall,
)
from .tools import extract_tool_result_content

# Metadata key the upstream uses to tag injected transcript entries
MARKER_KEY = "__openclaw"


@dataclass
class ParsedContent:
    """Text, tool calls and images extracted from a raw message."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    images: list[MessageImage] = field(default_factory=list)


def _image_from_block(block: dict[str, Any]) -> MessageImage | None:
    source = block.get("source")
    if isinstance(source, dict) and source.get("type") == "base64" and source.get("data"):
        media_type = source.get("media_type") or "image/png"
        return MessageImage(url=f"data:{media_type};base64,{source['data']}")
    data = block.get("data")
    if isinstance(data, str) and data:
        if data.startswith("data:"):
            return MessageImage(url=data)
        mime_type = block.get("mimeType") or "image/png"
        return MessageImage(url=f"data:{mime_type};base64,{data}")
    return None


def parse_message_content(content: Any, *, now: int | None = None) -> ParsedContent:
    """Split raw content into text, tool calls and images.

    Accepts a plain string or a list of typed content blocks. Each tool call is
    tagged with the text length seen before it so it can be interleaved with
    the text when rendered. Text blocks are joined with a newline.
    """
    if isinstance(content, str):
        return ParsedContent(text=content)
    if not isinstance(content, list):
        return ParsedContent()

    text_parts: list[str] = []
    parsed = ParsedContent()
    text_length = 0

    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                if text_parts:
                    text_length += 1  # joining newline
                text_parts.append(text)
                text_length += len(text)

        elif block_type == "image":
            image = _image_from_block(block)
            if image is not None:
                parsed.images.append(image)

        elif block_type == "tool_use":
            parsed.tool_calls.append(
                ToolCall(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "unknown")),
                    args=block.get("input"),
                    status=TOOL_RUNNING,
                    started_at=now,
                    inserted_at_content_length=text_length,
                )
            )

        elif block_type == "toolCall":
            # History format uses "toolCall" with "arguments"
            parsed.tool_calls.append(
                ToolCall(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "unknown")),
                    args=block.get("arguments"),
                    status=TOOL_PENDING,
                    inserted_at_content_length=text_length,
                )
            )

        elif block_type == "tool_result":
            for call in parsed.tool_calls:
                if call.id == block.get("id"):
                    call.result = extract_tool_result_content(block.get("content"))
                    call.status = TOOL_COMPLETE
                    call.completed_at = now
                    break

        # "thinking" blocks are not displayed

    parsed.text = "\n".join(text_parts)
    return parsed


def normalize_message(raw: dict[str, Any], message_id: str, *, now: int) -> Message:
    """Convert a raw user/assistant/system entry into a Message.

    Tool-result entries are not passed here; they are attached to the calls
    they answer.
    """
    parsed = parse_message_content(raw.get("content"), now=now)
    role = raw.get("role")
    if role not in ("user", "assistant", "system"):
        role = "assistant"

    timestamp = raw.get("timestamp")
    message = Message(
        id=message_id,
        role=role,
        content=parsed.text,
        timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else now,
        tool_calls=parsed.tool_calls or None,
        images=parsed.images or None,
    )

    marker = raw.get(MARKER_KEY)
    if isinstance(marker, dict) and marker.get("kind") == "compaction":
        message.kind = "compaction"
    return message
