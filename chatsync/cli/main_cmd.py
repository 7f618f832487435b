"""CLI commands: replay a recorded trace, show the effective config."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Annotated

import typer
import yaml
from dotenv import load_dotenv
from rich.logging import RichHandler

from ..config import EngineConfig
from ..ui.theme import THEME
from .errors import CliUsageError, InvalidConfigError
from .formatting import _markup, print_transcript
from .replay import load_history_file, load_trace, replay_trace
from .state import app, console

load_dotenv()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def configure_logging(level: str) -> None:
    """Route library logging through Rich at ``level``."""
    level = level.upper()
    if level not in LOG_LEVELS:
        raise CliUsageError(f"Invalid --log-level '{level}'. Allowed values: {', '.join(LOG_LEVELS)}.")
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # asyncio debug chatter is not useful in replay output
    logging.getLogger("asyncio").setLevel(max(getattr(logging, level), logging.WARNING))


def _load_config(config_path: str | None) -> EngineConfig:
    try:
        return EngineConfig.load(config_path)
    except FileNotFoundError as exc:
        raise InvalidConfigError(str(exc)) from exc
    except yaml.YAMLError as exc:
        raise InvalidConfigError(f"invalid YAML: {exc}") from exc
    except ValueError as exc:
        raise InvalidConfigError(str(exc)) from exc


@app.command()
def replay(
    trace: Annotated[
        str,
        typer.Argument(metavar="TRACE", help="JSONL trace of recorded chat/agent events"),
    ],
    session: Annotated[
        str,
        typer.Option("--session", "-s", help="Session key the trace belongs to"),
    ] = os.getenv("CHATSYNC_SESSION", "main"),
    history: Annotated[
        str | None,
        typer.Option("--history", help="JSON chat.history snapshot served to the engine"),
    ] = None,
    config: Annotated[
        str | None,
        typer.Option("--config", "-c", help="Engine config YAML file"),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    ] = os.getenv("CHATSYNC_LOG_LEVEL", "WARNING"),
) -> None:
    """Replay a recorded trace and print the reconciled transcript."""
    try:
        configure_logging(log_level)
        engine_config = _load_config(config)
        events = load_trace(trace)
        snapshot = load_history_file(history) if history else None
    except CliUsageError as exc:
        console.print(_markup(str(exc), THEME.error))
        raise typer.Exit(1) from exc

    result = asyncio.run(
        replay_trace(events, session_key=session, config=engine_config, history=snapshot)
    )

    if not result.engine.messages and not result.failed_runs:
        console.print(_markup("Transcript is empty.", THEME.muted))
    else:
        print_transcript(result)
    console.print(
        _markup(
            f"{result.events} events, {len(result.engine.messages)} messages, "
            f"{len(result.engine.queue)} queued",
            THEME.muted,
        )
    )


@app.command(name="config")
def show_config(
    config: Annotated[
        str | None,
        typer.Option("--config", "-c", help="Engine config YAML file"),
    ] = None,
) -> None:
    """Print the effective engine configuration as YAML."""
    try:
        engine_config = _load_config(config)
    except CliUsageError as exc:
        console.print(_markup(str(exc), THEME.error))
        raise typer.Exit(1) from exc

    console.print(yaml.safe_dump({"engine": engine_config.to_dict()}, sort_keys=False).rstrip())
