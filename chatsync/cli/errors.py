"""User-facing CLI error types with actionable messages."""


class CliUsageError(ValueError):
    """Base class for user-facing CLI configuration and usage errors."""


class TraceFileNotFoundError(CliUsageError):
    """Raised when the trace or history file does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File not found: {path}. Pass the path to a recorded JSONL trace.")


class InvalidTraceLineError(CliUsageError):
    """Raised when a trace line is not a valid event record."""

    def __init__(self, path: str, line_no: int, details: str) -> None:
        super().__init__(
            f"Invalid trace line {line_no} in {path}: {details}. Each line must be a JSON "
            'object like {"channel": "agent", "payload": {...}, "at": 0.5}.'
        )


class InvalidHistoryFileError(CliUsageError):
    """Raised when a history snapshot cannot be loaded."""

    def __init__(self, path: str, details: str) -> None:
        super().__init__(
            f"Invalid history file {path}: {details}. Expected a JSON list of entries or "
            'an object with a "messages" list.'
        )


class InvalidConfigError(CliUsageError):
    """Raised when the engine config file cannot be loaded."""

    def __init__(self, details: str) -> None:
        super().__init__(f"Config error: {details}. Fix --config or CHATSYNC_CONFIG and retry.")
