"""Tests for trace loading, replay and the CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from chatsync.cli import (
    InvalidHistoryFileError,
    InvalidTraceLineError,
    TraceFileNotFoundError,
    app,
)
from chatsync.cli.formatting import interleave
from chatsync.cli.replay import TraceEvent, load_history_file, load_trace, replay_trace
from chatsync.core.models import Message, ToolCall

runner = CliRunner()


def _agent(run_id: str, stream: str, data: dict[str, Any], seq: int = 1) -> dict:
    return {
        "runId": run_id,
        "seq": seq,
        "ts": 1,
        "sessionKey": "main",
        "stream": stream,
        "data": data,
    }


def _simple_turn() -> list[dict[str, Any]]:
    return [
        {"channel": "agent", "at": 0.0, "payload": _agent("r1", "lifecycle", {"phase": "start"})},
        {"channel": "agent", "at": 0.1, "payload": _agent("r1", "assistant", {"text": "Hi"}, seq=2)},
        {
            "channel": "chat",
            "at": 0.2,
            "payload": {
                "runId": "r1",
                "sessionKey": "main",
                "seq": 3,
                "state": "final",
                "message": {"role": "assistant", "content": "Hi", "timestamp": 1_700_000_000_200},
            },
        },
        {"channel": "agent", "at": 0.3, "payload": _agent("r1", "lifecycle", {"phase": "end"}, seq=4)},
    ]


def _write_trace(path: Path, records: list[dict[str, Any]]) -> Path:
    path.write_text("\n".join(json.dumps(record) for record in records) + "\n")
    return path


# ---------------------------------------------------------------------------
# load_trace / load_history_file
# ---------------------------------------------------------------------------


def test_load_trace_parses_records_and_skips_blank_lines(tmp_path: Path) -> None:
    path = tmp_path / "trace.jsonl"
    path.write_text(
        '{"channel": "agent", "payload": {"a": 1}, "at": 0.5}\n'
        "\n"
        '{"channel": "chat", "payload": {"b": 2}}\n'
    )
    events = load_trace(path)
    assert events == [
        TraceEvent(channel="agent", payload={"a": 1}, at=0.5),
        TraceEvent(channel="chat", payload={"b": 2}, at=0.5),
    ]


def test_load_trace_missing_file(tmp_path: Path) -> None:
    with pytest.raises(TraceFileNotFoundError):
        load_trace(tmp_path / "missing.jsonl")


@pytest.mark.parametrize(
    "line",
    ["not json", "[1, 2]", '{"payload": {}}', '{"channel": "chat", "at": "soon"}'],
)
def test_load_trace_rejects_bad_lines(tmp_path: Path, line: str) -> None:
    path = tmp_path / "trace.jsonl"
    path.write_text(line + "\n")
    with pytest.raises(InvalidTraceLineError, match="line 1"):
        load_trace(path)


def test_load_history_file_accepts_list_or_object(tmp_path: Path) -> None:
    as_list = tmp_path / "list.json"
    as_list.write_text('[{"role": "user", "content": "hi"}]')
    as_object = tmp_path / "object.json"
    as_object.write_text('{"messages": [], "thinkingLevel": "low"}')

    assert load_history_file(as_list) == {"messages": [{"role": "user", "content": "hi"}]}
    assert load_history_file(as_object)["thinkingLevel"] == "low"


def test_load_history_file_rejects_bad_shape(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text('{"messages": "nope"}')
    with pytest.raises(InvalidHistoryFileError):
        load_history_file(path)


# ---------------------------------------------------------------------------
# replay_trace
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_replay_builds_live_transcript() -> None:
    events = [TraceEvent(r["channel"], r["payload"], r["at"]) for r in _simple_turn()]
    result = await replay_trace(events, session_key="main")

    assert result.events == 4
    [message] = result.engine.messages
    assert message.id == "assistant_r1"
    assert message.content == "Hi"
    assert not result.engine.is_streaming
    assert result.failed_runs == []


@pytest.mark.asyncio
async def test_replay_records_failed_runs() -> None:
    events = [
        TraceEvent("agent", _agent("r1", "lifecycle", {"phase": "start"}), 0.0),
        TraceEvent(
            "chat",
            {"runId": "r1", "sessionKey": "main", "seq": 2, "state": "error", "errorMessage": "quota"},
            0.5,
        ),
    ]
    result = await replay_trace(events, session_key="main")

    assert [(run.run_id, run.status, run.error) for run in result.failed_runs] == [
        ("r1", "error", "quota")
    ]
    # Cleanup has removed the run by the time the replay settles
    assert result.engine.registry.get("r1") is None


@pytest.mark.asyncio
async def test_replay_with_history_snapshot_loads_it_first() -> None:
    history = {"messages": [{"role": "user", "content": "earlier", "timestamp": 1}]}
    result = await replay_trace([], session_key="main", history=history)
    assert [m.content for m in result.engine.messages] == ["earlier"]


@pytest.mark.asyncio
async def test_replay_queues_sends_while_disconnected() -> None:
    events = [TraceEvent("connection", {"connected": False}, 0.0)]
    result = await replay_trace(events, session_key="main")

    assert not result.engine.state.connected
    await result.engine.send_message("later")
    assert [item.content for item in result.engine.queue] == ["later"]


# ---------------------------------------------------------------------------
# formatting
# ---------------------------------------------------------------------------


def test_interleave_splits_text_at_tool_offsets() -> None:
    read = ToolCall(id="t1", name="read", inserted_at_content_length=7)
    late = ToolCall(id="t2", name="exec")
    message = Message(
        id="m", role="assistant", content="Looking then done", timestamp=0, tool_calls=[late, read]
    )
    assert interleave(message) == [
        ("text", "Looking"),
        ("tool", read),
        ("text", " then done"),
        ("tool", late),
    ]


# ---------------------------------------------------------------------------
# CLI commands
# ---------------------------------------------------------------------------


def test_cli_replay_prints_transcript(tmp_path: Path) -> None:
    trace = _write_trace(tmp_path / "trace.jsonl", _simple_turn())
    result = runner.invoke(app, ["replay", str(trace)])

    assert result.exit_code == 0, result.output
    assert "Hi" in result.output
    assert "4 events, 1 messages, 0 queued" in result.output


def test_cli_replay_empty_trace(tmp_path: Path) -> None:
    trace = tmp_path / "trace.jsonl"
    trace.write_text("")
    result = runner.invoke(app, ["replay", str(trace)])

    assert result.exit_code == 0
    assert "Transcript is empty." in result.output


def test_cli_replay_missing_trace(tmp_path: Path) -> None:
    result = runner.invoke(app, ["replay", str(tmp_path / "missing.jsonl")])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_cli_replay_invalid_line(tmp_path: Path) -> None:
    trace = tmp_path / "trace.jsonl"
    trace.write_text("{broken\n")
    result = runner.invoke(app, ["replay", str(trace)])
    assert result.exit_code == 1
    assert "Invalid trace line 1" in result.output


def test_cli_replay_rejects_log_level(tmp_path: Path) -> None:
    trace = _write_trace(tmp_path / "trace.jsonl", _simple_turn())
    result = runner.invoke(app, ["replay", str(trace), "--log-level", "loud"])
    assert result.exit_code == 1
    assert "Invalid --log-level" in result.output


def test_cli_config_prints_effective_config(tmp_path: Path) -> None:
    config = tmp_path / "chatsync.yaml"
    config.write_text("engine:\n  history_limit: 5\n")
    result = runner.invoke(app, ["config", "--config", str(config)])

    assert result.exit_code == 0, result.output
    assert "engine:" in result.output
    assert "history_limit: 5" in result.output


def test_cli_config_rejects_unknown_keys(tmp_path: Path) -> None:
    config = tmp_path / "chatsync.yaml"
    config.write_text("engine:\n  bogus: 1\n")
    result = runner.invoke(app, ["config", "--config", str(config)])

    assert result.exit_code == 1
    assert "Config error" in result.output
