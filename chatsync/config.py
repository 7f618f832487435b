"""Engine configuration — timing constants and limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "chatsync"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_RESET_COMMANDS = ("/new", "/reset")
DEFAULT_NO_REPLY_SENTINEL = "NO_REPLY"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _parse_commands_env(value: str) -> tuple[str, ...]:
    """Parse ``/new,/reset`` format from CHATSYNC_RESET_COMMANDS."""
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass
class EngineConfig:
    """Tunable timings and limits for the reconciliation engine.

    All delays are in seconds. Timestamps on the wire are epoch milliseconds;
    ``same_turn_threshold`` is converted when comparing them.

    Usage::

        config = EngineConfig.load()                 # env + default file
        config = EngineConfig.load("./chatsync.yaml")  # explicit file
        config = EngineConfig(run_error_cleanup_delay=1.0)
    """

    # Grace windows before a terminal run is dropped from the registry
    run_cleanup_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_RUN_CLEANUP_DELAY", 0.1)
    )
    run_abort_cleanup_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_RUN_ABORT_CLEANUP_DELAY", 1.0)
    )
    run_error_cleanup_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_RUN_ERROR_CLEANUP_DELAY", 5.0)
    )

    # Deferred follow-ups after a run completes
    queue_drain_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_QUEUE_DRAIN_DELAY", 0.1)
    )
    heartbeat_refresh_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_HEARTBEAT_REFRESH_DELAY", 0.5)
    )
    reset_reload_delay: float = field(
        default_factory=lambda: _env_float("CHATSYNC_RESET_RELOAD_DELAY", 0.1)
    )

    # History
    same_turn_threshold: float = field(
        default_factory=lambda: _env_float("CHATSYNC_SAME_TURN_THRESHOLD", 60.0)
    )
    history_limit: int = field(default_factory=lambda: _env_int("CHATSYNC_HISTORY_LIMIT", 200))

    # Sending
    reset_commands: tuple[str, ...] = field(
        default_factory=lambda: _parse_commands_env(
            os.getenv("CHATSYNC_RESET_COMMANDS", ",".join(DEFAULT_RESET_COMMANDS))
        )
    )
    idempotency_prefix: str = field(
        default_factory=lambda: os.getenv("CHATSYNC_IDEMPOTENCY_PREFIX", "chatsync")
    )

    # Reconciliation
    no_reply_sentinel: str = field(
        default_factory=lambda: os.getenv("CHATSYNC_NO_REPLY_SENTINEL", DEFAULT_NO_REPLY_SENTINEL)
    )
    tombstone_capacity: int = field(
        default_factory=lambda: _env_int("CHATSYNC_TOMBSTONE_CAPACITY", 1024)
    )

    _KNOWN_FIELDS = frozenset(
        {
            "run_cleanup_delay",
            "run_abort_cleanup_delay",
            "run_error_cleanup_delay",
            "queue_drain_delay",
            "heartbeat_refresh_delay",
            "reset_reload_delay",
            "same_turn_threshold",
            "history_limit",
            "reset_commands",
            "idempotency_prefix",
            "no_reply_sentinel",
            "tombstone_capacity",
        }
    )

    @property
    def same_turn_threshold_ms(self) -> int:
        return int(self.same_turn_threshold * 1000)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create config from a dictionary (e.g., parsed YAML).

        Accepts either a flat mapping or one nested under an ``engine`` key.
        Unknown keys are rejected so typos do not silently fall back to defaults.
        """
        engine_data = data.get("engine", data)
        if not isinstance(engine_data, dict):
            raise ValueError("Engine config must be a mapping")

        unknown = sorted(set(engine_data) - cls._KNOWN_FIELDS)
        if unknown:
            raise ValueError(f"Unknown engine config keys: {', '.join(unknown)}")

        known: dict[str, Any] = {}
        for key, value in engine_data.items():
            if key == "reset_commands":
                if isinstance(value, str):
                    value = _parse_commands_env(value)
                else:
                    value = tuple(str(cmd).strip().lower() for cmd in value)
            elif key in ("history_limit", "tombstone_capacity"):
                value = int(value)
            elif key in ("idempotency_prefix", "no_reply_sentinel"):
                value = str(value)
            else:
                value = float(value)
            known[key] = value
        return cls(**known)

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load config from YAML file."""
        path = Path(path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ValueError(f"Config file must contain a YAML mapping: {path}")
        return cls.from_dict(data or {})

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> EngineConfig:
        """Load config with precedence: explicit path > CHATSYNC_CONFIG > default file > env."""
        if config_path:
            return cls.from_yaml(config_path)

        env_path = os.getenv("CHATSYNC_CONFIG")
        if env_path:
            return cls.from_yaml(env_path)

        if DEFAULT_CONFIG_FILE.exists():
            return cls.from_yaml(DEFAULT_CONFIG_FILE)

        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_cleanup_delay": self.run_cleanup_delay,
            "run_abort_cleanup_delay": self.run_abort_cleanup_delay,
            "run_error_cleanup_delay": self.run_error_cleanup_delay,
            "queue_drain_delay": self.queue_drain_delay,
            "heartbeat_refresh_delay": self.heartbeat_refresh_delay,
            "reset_reload_delay": self.reset_reload_delay,
            "same_turn_threshold": self.same_turn_threshold,
            "history_limit": self.history_limit,
            "reset_commands": list(self.reset_commands),
            "idempotency_prefix": self.idempotency_prefix,
            "no_reply_sentinel": self.no_reply_sentinel,
            "tombstone_capacity": self.tombstone_capacity,
        }
