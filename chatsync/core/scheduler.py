"""Explicit scheduling for deferred engine work.

The engine defers three kinds of work: tool-start insertion (next tick), run
cleanup after a grace window, and follow-ups after a run completes (queue drain,
history refresh). All of them go through a ``Scheduler`` so ordering is a
property of the scheduler, not of incidental event-loop timing.

Ordering guarantees shared by both implementations:
- ``call_soon`` callbacks run in FIFO order, before any timer that becomes due
  at or after the moment they were scheduled.
- Timers run in due-time order; equal due times run in registration order.
- A callback may return an awaitable; the scheduler drives it to completion.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class TimerHandle(Protocol):
    """Handle returned by ``call_later``."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock plus next-tick and delayed callback queues."""

    def time(self) -> float:
        """Current time in epoch seconds."""
        ...

    def call_soon(self, callback: Callback, *args: Any) -> None: ...

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Future[Any]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return time.time()

    def call_soon(self, callback: Callback, *args: Any) -> None:
        self._get_loop().call_soon(self._invoke, callback, args)

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle:
        return self._get_loop().call_later(max(delay, 0.0), self._invoke, callback, args)

    def _invoke(self, callback: Callback, args: tuple[Any, ...]) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Scheduled callback %r failed", callback)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled task failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for awaitables spawned by scheduled callbacks (used on shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    callback: Callback = field(compare=False)
    args: tuple[Any, ...] = field(compare=False, default=())
    cancelled: bool = field(compare=False, default=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler with a virtual clock.

    Nothing runs until the owner calls ``run_pending()`` (next-tick queue) or
    ``advance()`` (timers). Used for trace replay and tests. Exceptions raised
    by callbacks propagate to the caller of ``run_pending``/``advance``.

    Usage::

        scheduler = ManualScheduler(start=1_700_000_000.0)
        engine = ChatEngine(transport, scheduler=scheduler)
        transport.emit("agent", payload)
        await scheduler.run_pending()
        await scheduler.advance(0.5)
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._ready: deque[tuple[Callback, tuple[Any, ...]]] = deque()
        self._timers: list[_Timer] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_soon(self, callback: Callback, *args: Any) -> None:
        self._ready.append((callback, args))

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle:
        timer = _Timer(self._now + max(delay, 0.0), next(self._seq), callback, args)
        heapq.heappush(self._timers, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of queued next-tick callbacks plus live timers."""
        return len(self._ready) + sum(1 for t in self._timers if not t.cancelled)

    async def _invoke(self, callback: Callback, args: tuple[Any, ...]) -> None:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    async def run_pending(self) -> None:
        """Run next-tick callbacks until the queue is empty."""
        while self._ready:
            callback, args = self._ready.popleft()
            await self._invoke(callback, args)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that becomes due."""
        target = self._now + max(seconds, 0.0)
        await self.run_pending()
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = max(self._now, timer.due)
            await self._invoke(timer.callback, timer.args)
            await self.run_pending()
        self._now = target

    async def advance_to(self, when: float) -> None:
        """Advance to an absolute time (no-op if already past it)."""
        await self.advance(max(when - self._now, 0.0))

    async def run_until_idle(self, limit: float = 3600.0) -> None:
        """Fire timers in order until none remain or ``limit`` seconds elapse."""
        deadline = self._now + limit
        await self.run_pending()
        while True:
            live = [t for t in self._timers if not t.cancelled]
            if not live:
                break
            due = min(t.due for t in live)
            if due > deadline:
                break
            await self.advance_to(due)
