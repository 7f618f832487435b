"""Shared CLI state: console, app, settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

import typer
from rich.console import Console

# Rich console for all output
console = Console()


@dataclass
class Settings:
    """Mutable CLI settings adjusted at startup."""

    result_preview_chars: int = field(
        default_factory=lambda: int(os.getenv("CHATSYNC_PREVIEW_CHARS", "120"))
    )


settings = Settings()

# Typer app
app = typer.Typer(
    name="chatsync",
    help="Replay and inspect streaming agent conversations.",
    epilog=(
        "Examples:\n"
        "  chatsync replay trace.jsonl\n"
        "  chatsync replay trace.jsonl --session main --history history.json\n"
        "  chatsync config --config ./chatsync.yaml"
    ),
    add_completion=False,
)
