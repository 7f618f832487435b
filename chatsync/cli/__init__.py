"""CLI package for chatsync."""

from .errors import (
    CliUsageError,
    InvalidConfigError,
    InvalidHistoryFileError,
    InvalidTraceLineError,
    TraceFileNotFoundError,
)
from .state import app

# Import command modules so their @app.command() decorators register
from . import main_cmd as _main_cmd  # noqa: F401


def cli() -> None:
    """CLI entrypoint."""
    app(prog_name="chatsync")


__all__ = [
    "CliUsageError",
    "InvalidConfigError",
    "InvalidHistoryFileError",
    "InvalidTraceLineError",
    "TraceFileNotFoundError",
    "app",
    "cli",
]


if __name__ == "__main__":
    cli()
