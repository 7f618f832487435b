"""Trace replay: feed a recorded event log through the engine on a virtual clock."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import EngineConfig
from ..core.engine import ChatEngine
from ..core.registry import RUN_ABORTED, RUN_ERROR
from ..core.scheduler import ManualScheduler
from ..core.state import CHANGE_RUNS, ChatEngineState
from ..transport import CHANNEL_CONNECTION, LocalTransport
from .errors import InvalidHistoryFileError, InvalidTraceLineError, TraceFileNotFoundError

# Virtual clock origin; trace ``at`` offsets are added to it
REPLAY_EPOCH = 1_700_000_000.0


@dataclass(frozen=True)
class TraceEvent:
    """One recorded inbound event."""

    channel: str
    payload: Any
    at: float = 0.0


@dataclass
class FailedRun:
    run_id: str
    status: str
    error: str | None = None


@dataclass
class ReplayResult:
    engine: ChatEngine
    failed_runs: list[FailedRun] = field(default_factory=list)
    events: int = 0


class _RunOutcomeRecorder:
    """Remembers runs that ended in error or abort before cleanup removes them."""

    def __init__(self, engine: ChatEngine) -> None:
        self._engine = engine
        self.failed: dict[str, FailedRun] = {}

    def on_change(self, kind: str, state: ChatEngineState) -> None:
        if kind != CHANGE_RUNS:
            return
        for run in self._engine.registry:
            if run.status in (RUN_ERROR, RUN_ABORTED) and run.run_id not in self.failed:
                self.failed[run.run_id] = FailedRun(run.run_id, run.status, run.error)


def load_trace(path: str | Path) -> list[TraceEvent]:
    """Parse a JSONL trace. Blank lines are skipped."""
    path = Path(path).expanduser()
    if not path.exists():
        raise TraceFileNotFoundError(str(path))

    events: list[TraceEvent] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise InvalidTraceLineError(str(path), line_no, exc.msg) from exc
            if not isinstance(record, dict):
                raise InvalidTraceLineError(str(path), line_no, "not a JSON object")
            channel = record.get("channel")
            if not isinstance(channel, str) or not channel:
                raise InvalidTraceLineError(str(path), line_no, "missing channel")
            at = record.get("at", events[-1].at if events else 0.0)
            if not isinstance(at, (int, float)) or isinstance(at, bool):
                raise InvalidTraceLineError(str(path), line_no, "'at' must be a number")
            events.append(TraceEvent(channel=channel, payload=record.get("payload"), at=float(at)))
    return events


def load_history_file(path: str | Path) -> dict[str, Any]:
    """Load a ``chat.history`` response snapshot."""
    path = Path(path).expanduser()
    if not path.exists():
        raise TraceFileNotFoundError(str(path))
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise InvalidHistoryFileError(str(path), exc.msg) from exc

    if isinstance(data, list):
        return {"messages": data}
    if isinstance(data, dict) and isinstance(data.get("messages", []), list):
        return data
    raise InvalidHistoryFileError(str(path), "no messages list")


def _no_history(params: dict[str, Any]) -> Any:
    raise LookupError(f"No history recorded for session {params.get('sessionKey')}")


async def replay_trace(
    events: list[TraceEvent],
    *,
    session_key: str,
    config: EngineConfig | None = None,
    history: dict[str, Any] | None = None,
) -> ReplayResult:
    """Run ``events`` through a fresh engine and return its final state.

    Without a history snapshot, ``chat.history`` requests fail and the engine
    keeps the live transcript it built.
    """
    scheduler = ManualScheduler(start=REPLAY_EPOCH)
    transport = LocalTransport()
    if history is not None:
        transport.handle("chat.history", lambda params: history)
    else:
        transport.handle("chat.history", _no_history)

    engine = ChatEngine(transport, scheduler=scheduler, config=config)
    recorder = _RunOutcomeRecorder(engine)
    engine.add_observer(recorder)

    if history is not None:
        await engine.init_chat(session_key)
    else:
        engine.state.set_session(session_key)
        engine.start()

    for event in events:
        await scheduler.advance_to(REPLAY_EPOCH + event.at)
        if event.channel == CHANNEL_CONNECTION:
            connected = isinstance(event.payload, dict) and bool(event.payload.get("connected"))
            transport.set_connected(connected)
        else:
            transport.emit(event.channel, event.payload)
        await scheduler.run_pending()

    await scheduler.run_until_idle()
    return ReplayResult(engine=engine, failed_runs=list(recorder.failed.values()), events=len(events))
