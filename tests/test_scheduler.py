"""Tests for the scheduler implementations."""

from __future__ import annotations

import asyncio

import pytest

from chatsync.core.scheduler import AsyncioScheduler, ManualScheduler


@pytest.mark.asyncio
async def test_call_soon_runs_fifo_before_due_timers() -> None:
    scheduler = ManualScheduler()
    order: list[str] = []
    scheduler.call_later(0, order.append, "timer")
    scheduler.call_soon(order.append, "soon-1")
    scheduler.call_soon(order.append, "soon-2")
    await scheduler.advance(0)
    assert order == ["soon-1", "soon-2", "timer"]


@pytest.mark.asyncio
async def test_equal_due_timers_run_in_registration_order() -> None:
    scheduler = ManualScheduler()
    order: list[int] = []
    for i in range(3):
        scheduler.call_later(0.5, order.append, i)
    scheduler.call_later(0.2, order.append, -1)
    await scheduler.advance(1.0)
    assert order == [-1, 0, 1, 2]
    assert scheduler.time() == 1.0


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires() -> None:
    scheduler = ManualScheduler()
    fired: list[str] = []
    handle = scheduler.call_later(0.1, fired.append, "x")
    handle.cancel()
    await scheduler.advance(1)
    assert fired == []
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_clock_is_at_due_time_inside_callback() -> None:
    scheduler = ManualScheduler(start=10.0)
    seen: list[float] = []
    scheduler.call_later(0.25, lambda: seen.append(scheduler.time()))
    await scheduler.advance(1.0)
    assert seen == [10.25]


@pytest.mark.asyncio
async def test_awaitable_callbacks_are_driven() -> None:
    scheduler = ManualScheduler()
    done: list[str] = []

    async def job(name: str) -> None:
        await asyncio.sleep(0)
        done.append(name)

    scheduler.call_soon(job, "a")
    scheduler.call_later(0.1, job, "b")
    await scheduler.run_until_idle()
    assert done == ["a", "b"]


@pytest.mark.asyncio
async def test_timers_scheduled_by_callbacks_fire_in_same_advance() -> None:
    scheduler = ManualScheduler()
    order: list[str] = []

    def first() -> None:
        order.append("first")
        scheduler.call_later(0.1, order.append, "second")

    scheduler.call_later(0.1, first)
    await scheduler.advance(0.5)
    assert order == ["first", "second"]


@pytest.mark.asyncio
async def test_manual_scheduler_propagates_errors() -> None:
    scheduler = ManualScheduler()

    def boom() -> None:
        raise RuntimeError("boom")

    scheduler.call_soon(boom)
    with pytest.raises(RuntimeError):
        await scheduler.run_pending()


@pytest.mark.asyncio
async def test_asyncio_scheduler_runs_callbacks_and_tasks() -> None:
    scheduler = AsyncioScheduler()
    results: list[str] = []

    async def job() -> None:
        results.append("task")

    scheduler.call_soon(results.append, "soon")
    scheduler.call_later(0.01, job)
    await asyncio.sleep(0.05)
    await scheduler.drain()
    assert results == ["soon", "task"]


@pytest.mark.asyncio
async def test_asyncio_scheduler_logs_callback_failures(caplog: pytest.LogCaptureFixture) -> None:
    scheduler = AsyncioScheduler()

    def boom() -> None:
        raise RuntimeError("boom")

    scheduler.call_soon(boom)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert "Scheduled callback" in caplog.text
