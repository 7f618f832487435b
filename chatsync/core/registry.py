"""Registry of in-flight runs (one per agent turn).

Invariants:
- Distinct run ids never share an entry.
- Status only moves forward: pending -> streaming -> complete | error | aborted.
- Terminal runs stay for a grace window to absorb duplicate trailing events,
  then are removed and tombstoned. Events never bring a removed id back.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from ..config import EngineConfig
from .models import Message
from .scheduler import Scheduler, TimerHandle
from .tools import ToolCallTable

logger = logging.getLogger(__name__)

RUN_PENDING = "pending"
RUN_STREAMING = "streaming"
RUN_COMPLETE = "complete"
RUN_ERROR = "error"
RUN_ABORTED = "aborted"

ACTIVE_STATUSES = frozenset({RUN_PENDING, RUN_STREAMING})
TERMINAL_STATUSES = frozenset({RUN_COMPLETE, RUN_ERROR, RUN_ABORTED})


@dataclass
class Run:
    """One in-flight agent turn."""

    run_id: str
    session_key: str
    started_at: int  # epoch ms
    status: str = RUN_PENDING
    content: str = ""
    tool_calls: ToolCallTable = field(default_factory=ToolCallTable)
    last_block_start: int | None = None
    error: str | None = None
    message: Message | None = None
    completed_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class RunRegistry:
    """Keyed store over Run entries with delayed, tombstoned cleanup."""

    def __init__(
        self,
        scheduler: Scheduler,
        config: EngineConfig | None = None,
        *,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._config = config or EngineConfig()
        self._on_change = on_change
        self._runs: dict[str, Run] = {}
        self._cleanup_timers: dict[str, TimerHandle] = {}
        self._tombstones: OrderedDict[str, None] = OrderedDict()

    # --- Views ---

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._runs

    def __iter__(self) -> Iterator[Run]:
        return iter(list(self._runs.values()))

    def __len__(self) -> int:
        return len(self._runs)

    def get(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def is_retired(self, run_id: str) -> bool:
        """True if the run was removed after finishing."""
        return run_id in self._tombstones

    @property
    def is_streaming(self) -> bool:
        """True while any run anywhere is pending or streaming."""
        return any(run.is_active for run in self._runs.values())

    def streaming_run(self, session_key: str) -> Run | None:
        for run in self._runs.values():
            if run.session_key == session_key and run.is_active:
                return run
        return None

    @property
    def streaming_content(self) -> str:
        for run in self._runs.values():
            if run.status == RUN_STREAMING and run.content:
                return run.content
        return ""

    # --- Mutation ---

    def _now(self) -> int:
        return int(self._scheduler.time() * 1000)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def start(self, run_id: str, session_key: str, *, reopen: bool = False) -> Run | None:
        """Return the run for ``run_id``, creating a pending one if needed.

        Returns None for a retired id unless ``reopen`` is set, which callers use
        when they deliberately transmit again under the same id (a retry).
        ``reopen`` also replaces a terminal run still in its grace window.
        """
        existing = self._runs.get(run_id)
        if existing is not None and not (reopen and existing.is_terminal):
            return existing

        if run_id in self._tombstones:
            if not reopen:
                logger.debug("Ignoring event for retired run %s", run_id)
                return None
            del self._tombstones[run_id]

        timer = self._cleanup_timers.pop(run_id, None)
        if timer is not None:
            timer.cancel()

        run = Run(run_id=run_id, session_key=session_key, started_at=self._now())
        self._runs[run_id] = run
        logger.debug("Run started %s (session %s)", run_id, session_key)
        self._changed()
        return run

    def update_content(self, run_id: str, content: str, last_block_start: int | None) -> bool:
        """Write merged text back to an active run (pending -> streaming)."""
        run = self._runs.get(run_id)
        if run is None or not run.is_active:
            return False
        run.content = content
        run.last_block_start = last_block_start
        run.status = RUN_STREAMING
        self._changed()
        return True

    def touch(self, run_id: str) -> None:
        """Signal that a run's tool calls changed."""
        if run_id in self._runs:
            self._changed()

    def complete(self, run_id: str, message: Message | None = None) -> bool:
        """Move an active run to complete. Returns False if it was not active."""
        run = self._runs.get(run_id)
        if run is None or not run.is_active:
            return False
        run.status = RUN_COMPLETE
        run.message = message
        self._finish(run, self._config.run_cleanup_delay)
        return True

    def fail(self, run_id: str, error: str) -> bool:
        """Move an active run to error."""
        run = self._runs.get(run_id)
        if run is None or not run.is_active:
            return False
        run.status = RUN_ERROR
        run.error = error
        self._finish(run, self._config.run_error_cleanup_delay)
        return True

    def abort(self, run_id: str) -> bool:
        """Move an active run to aborted."""
        run = self._runs.get(run_id)
        if run is None or not run.is_active:
            return False
        run.status = RUN_ABORTED
        self._finish(run, self._config.run_abort_cleanup_delay)
        return True

    def _finish(self, run: Run, delay: float) -> None:
        run.completed_at = self._now()
        logger.debug("Run %s -> %s", run.run_id, run.status)
        self._cleanup_timers[run.run_id] = self._scheduler.call_later(
            delay, self._expire, run.run_id, run
        )
        self._changed()

    def _expire(self, run_id: str, run: Run) -> None:
        # A retry may have replaced the entry since this timer was armed
        if self._runs.get(run_id) is not run:
            return
        self._cleanup_timers.pop(run_id, None)
        self.remove(run_id)

    def remove(self, run_id: str) -> bool:
        """Drop a run immediately and tombstone its id."""
        run = self._runs.pop(run_id, None)
        timer = self._cleanup_timers.pop(run_id, None)
        if timer is not None:
            timer.cancel()
        self._tombstones[run_id] = None
        self._tombstones.move_to_end(run_id)
        while len(self._tombstones) > self._config.tombstone_capacity:
            self._tombstones.popitem(last=False)
        if run is None:
            return False
        self._changed()
        return True

    def drop_other_sessions(self, session_key: str) -> list[str]:
        """Stop tracking runs that belong to other sessions, without tombstoning.

        Used on session switch: their events are filtered out from then on, so
        they would otherwise hold the streaming gate forever. If the user comes
        back, later events recreate the run on the fly.
        """
        dropped = [rid for rid, run in self._runs.items() if run.session_key != session_key]
        for run_id in dropped:
            del self._runs[run_id]
            timer = self._cleanup_timers.pop(run_id, None)
            if timer is not None:
                timer.cancel()
        if dropped:
            self._changed()
        return dropped

    def clear(self) -> None:
        """Forget every run (used when the engine is torn down)."""
        for timer in self._cleanup_timers.values():
            timer.cancel()
        self._cleanup_timers.clear()
        self._runs.clear()
        self._tombstones.clear()
        self._changed()
