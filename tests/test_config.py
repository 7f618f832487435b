"""Tests for engine configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from chatsync import config as config_module
from chatsync.config import EngineConfig


def test_defaults() -> None:
    config = EngineConfig()
    assert config.run_cleanup_delay == 0.1
    assert config.run_abort_cleanup_delay == 1.0
    assert config.run_error_cleanup_delay == 5.0
    assert config.queue_drain_delay == 0.1
    assert config.heartbeat_refresh_delay == 0.5
    assert config.reset_reload_delay == 0.1
    assert config.same_turn_threshold_ms == 60_000
    assert config.history_limit == 200
    assert config.reset_commands == ("/new", "/reset")
    assert config.no_reply_sentinel == "NO_REPLY"


def test_env_overrides_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATSYNC_RUN_ERROR_CLEANUP_DELAY", "2.5")
    monkeypatch.setenv("CHATSYNC_HISTORY_LIMIT", "20")
    monkeypatch.setenv("CHATSYNC_RESET_COMMANDS", "/new, /clear")
    config = EngineConfig()
    assert config.run_error_cleanup_delay == 2.5
    assert config.history_limit == 20
    assert config.reset_commands == ("/new", "/clear")


def test_from_dict_accepts_nested_engine_section() -> None:
    config = EngineConfig.from_dict(
        {"engine": {"queue_drain_delay": "0.3", "history_limit": "10", "reset_commands": ["/NEW"]}}
    )
    assert config.queue_drain_delay == 0.3
    assert config.history_limit == 10
    assert config.reset_commands == ("/new",)


def test_from_dict_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="drain_delay"):
        EngineConfig.from_dict({"drain_delay": 1})


def test_from_yaml_and_to_dict_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "chatsync.yaml"
    path.write_text("engine:\n  same_turn_threshold: 30\n  no_reply_sentinel: SILENT\n")
    config = EngineConfig.from_yaml(path)
    assert config.same_turn_threshold_ms == 30_000
    assert config.no_reply_sentinel == "SILENT"
    assert EngineConfig.from_dict(config.to_dict()) == config


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        EngineConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        EngineConfig.from_yaml(path)


def test_load_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    explicit = tmp_path / "explicit.yaml"
    explicit.write_text("history_limit: 1\n")
    from_env = tmp_path / "env.yaml"
    from_env.write_text("history_limit: 2\n")
    default = tmp_path / "default.yaml"
    default.write_text("history_limit: 3\n")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_FILE", default)

    monkeypatch.setenv("CHATSYNC_CONFIG", str(from_env))
    assert EngineConfig.load(explicit).history_limit == 1
    assert EngineConfig.load().history_limit == 2

    monkeypatch.delenv("CHATSYNC_CONFIG")
    assert EngineConfig.load().history_limit == 3

    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_FILE", tmp_path / "absent.yaml")
    assert EngineConfig.load().history_limit == 200
