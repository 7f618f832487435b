"""Merging of streamed text deltas.

The upstream sends the full accumulated text of the *current* text block on
every delta, and the block resets to empty after each tool call. The merger
decides, per fragment, whether it grows the current block or starts a new one.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DeltaResult:
    """Merged content plus the offset where the current block begins."""

    content: str
    last_block_start: int


def merge_delta_text(
    existing: str,
    incoming: str,
    last_block_start: int | None = None,
) -> DeltaResult:
    """Merge an incoming block snapshot into accumulated content.

    - Empty fragment: no-op.
    - Fragment starts with the current block (text since ``last_block_start``):
      replace the block with the fragment. An exact repeat lands here too.
    - Fragment is a strict prefix of the current block: a stale delta that
      arrived late; keep what we have.
    - Anything else starts a new block, appended verbatim after the existing
      content, with ``last_block_start`` moved to the old content length.

    ``last_block_start`` outside ``[0, len(existing)]`` is treated as 0.
    """
    start = last_block_start if last_block_start is not None else 0
    if start < 0 or start > len(existing):
        start = 0

    if not incoming:
        return DeltaResult(existing, start)

    base = existing[:start]
    block = existing[start:]

    if incoming.startswith(block):
        return DeltaResult(base + incoming, start)

    if block.startswith(incoming):
        return DeltaResult(existing, start)

    return DeltaResult(existing + incoming, len(existing))
