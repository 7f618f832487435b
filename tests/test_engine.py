"""Tests for the ChatEngine facade and the state container."""

from __future__ import annotations

from typing import Any

import pytest

from chatsync.core.engine import ChatEngine
from chatsync.core.models import Message
from chatsync.core.scheduler import ManualScheduler
from chatsync.core.state import ChatEngineState
from chatsync.transport import LocalTransport


class _RecordingObserver:
    def __init__(self) -> None:
        self.kinds: list[str] = []

    def on_change(self, kind: str, state: ChatEngineState) -> None:
        self.kinds.append(kind)


class _BrokenObserver:
    def on_change(self, kind: str, state: ChatEngineState) -> None:
        raise RuntimeError("render failed")


def _make_engine(history: dict[str, list[dict[str, Any]]] | None = None) -> tuple[ChatEngine, LocalTransport, ManualScheduler]:
    scheduler = ManualScheduler(start=1000.0)
    transport = LocalTransport()
    sessions = history or {}
    transport.handle(
        "chat.history", lambda params: {"messages": sessions.get(params["sessionKey"], [])}
    )
    return ChatEngine(transport, scheduler=scheduler), transport, scheduler


def _assistant(run_id: str, text: str, session: str = "main") -> dict:
    return {
        "runId": run_id,
        "seq": 1,
        "ts": 1,
        "sessionKey": session,
        "stream": "assistant",
        "data": {"text": text},
    }


def test_start_is_idempotent_and_stop_unsubscribes() -> None:
    engine, transport, _ = _make_engine()
    engine.start()
    engine.start()
    assert transport.subscriber_count("chat") == 1
    assert transport.subscriber_count("agent") == 1
    assert transport.subscriber_count("connection") == 1

    engine.stop()
    assert transport.subscriber_count("chat") == 0
    assert transport.subscriber_count("agent") == 0
    assert transport.subscriber_count("connection") == 0


@pytest.mark.asyncio
async def test_stop_forgets_compaction_runs() -> None:
    engine, transport, _ = _make_engine()
    await engine.init_chat("main")
    transport.emit("agent", {"runId": "c1", "seq": 1, "ts": 1, "stream": "compaction", "data": {"phase": "start"}})
    assert engine.router.is_compaction_run("c1")

    engine.stop()
    assert not engine.router.is_compaction_run("c1")


@pytest.mark.asyncio
async def test_init_chat_subscribes_and_loads_history() -> None:
    engine, transport, _ = _make_engine({"main": [{"role": "user", "content": "hi", "timestamp": 1}]})
    await engine.init_chat("main")

    assert engine.session_key == "main"
    assert transport.subscriber_count("agent") == 1
    assert [m.content for m in engine.messages] == ["hi"]


@pytest.mark.asyncio
async def test_switch_session_restores_cache_then_reloads() -> None:
    engine, transport, _ = _make_engine(
        {
            "a": [{"role": "user", "content": "in a", "timestamp": 1}],
            "b": [{"role": "user", "content": "in b", "timestamp": 1}],
        }
    )
    await engine.init_chat("a")
    await engine.switch_session("b")
    assert [m.content for m in engine.messages] == ["in b"]

    seen: list[list[str]] = []

    class _Snapshot:
        def on_change(self, kind: str, state: ChatEngineState) -> None:
            if kind == "session":
                seen.append([m.content for m in state.messages])

    engine.add_observer(_Snapshot())
    await engine.switch_session("a")
    # The cached transcript is visible before the reload completes
    assert seen == [["in a"]]
    assert len(transport.requests_for("chat.history")) == 3


@pytest.mark.asyncio
async def test_switch_session_releases_runs_from_previous_session() -> None:
    engine, transport, _ = _make_engine()
    await engine.init_chat("a")
    transport.emit("agent", _assistant("r1", "streaming in a", session="a"))
    assert engine.is_streaming

    await engine.switch_session("b")
    assert not engine.is_streaming
    assert engine.registry.get("r1") is None


@pytest.mark.asyncio
async def test_cleanup_clears_state() -> None:
    engine, transport, _ = _make_engine({"main": [{"role": "user", "content": "hi", "timestamp": 1}]})
    await engine.init_chat("main")
    transport.emit("agent", _assistant("r1", "partial"))

    engine.cleanup()
    assert engine.messages == []
    assert not engine.is_streaming
    assert transport.subscriber_count("chat") == 0


@pytest.mark.asyncio
async def test_observers_receive_change_kinds() -> None:
    engine, transport, _ = _make_engine()
    observer = _RecordingObserver()
    engine.add_observer(observer)
    await engine.init_chat("main")
    transport.emit("agent", _assistant("r1", "Hi"))

    assert "session" in observer.kinds
    assert "history" in observer.kinds
    assert "runs" in observer.kinds
    assert engine.streaming_content == "Hi"

    engine.remove_observer(observer)
    count = len(observer.kinds)
    transport.emit("agent", _assistant("r1", "Hi there"))
    assert len(observer.kinds) == count


@pytest.mark.asyncio
async def test_observer_failures_do_not_propagate(caplog: pytest.LogCaptureFixture) -> None:
    engine, transport, _ = _make_engine()
    engine.add_observer(_BrokenObserver())
    await engine.init_chat("main")
    transport.emit("agent", _assistant("r1", "Hi"))

    assert engine.registry.get("r1").content == "Hi"
    assert "State observer" in caplog.text


@pytest.mark.asyncio
async def test_disconnect_updates_state_without_resync() -> None:
    engine, transport, scheduler = _make_engine()
    await engine.init_chat("main")
    transport.set_connected(False)
    await scheduler.run_pending()

    assert not engine.state.connected
    assert len(transport.requests_for("chat.history")) == 1


def test_state_add_message_deduplicates() -> None:
    state = ChatEngineState()
    message = Message(id="m1", role="user", content="x", timestamp=0)
    assert state.add_message(message)
    assert not state.add_message(Message(id="m1", role="user", content="y", timestamp=1))
    assert [m.content for m in state.messages] == ["x"]


def test_state_session_filter() -> None:
    state = ChatEngineState()
    assert state.is_active_session("anything")
    state.set_session("main")
    assert state.is_active_session("main")
    assert state.is_active_session(None)
    assert not state.is_active_session("other")
