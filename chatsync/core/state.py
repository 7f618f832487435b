"""ChatEngineState — the owned container for everything the UI renders.

Holds the transcript for the active session, the outbound queue, connection and
history-loading flags, and compaction display state. Every mutation goes through
a method here and notifies observers with a change kind, so a UI can re-render
the part that changed instead of diffing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Protocol, runtime_checkable

from .models import SEND_FAILED, SEND_QUEUED, SEND_SENDING, SEND_SENT, Message, QueuedSend

logger = logging.getLogger(__name__)

# Change kinds passed to observers
CHANGE_MESSAGES = "messages"
CHANGE_QUEUE = "queue"
CHANGE_RUNS = "runs"
CHANGE_HISTORY = "history"
CHANGE_COMPACTION = "compaction"
CHANGE_SESSION = "session"
CHANGE_CONNECTION = "connection"


@runtime_checkable
class StateObserver(Protocol):
    """Observer notified after every state mutation."""

    def on_change(self, kind: str, state: ChatEngineState) -> None:
        """Called with the change kind and the state that changed."""
        ...


@dataclass
class ChatEngineState:
    """Displayable conversation state.

    Key properties:
    - **Single writer**: only the engine's components call the mutation
      methods; UIs read attributes and subscribe via ``add_observer``.
    - **Transient cache**: transcripts are cached per session so switching back
      to a session renders immediately while history reloads. Nothing is
      persisted; the server transcript is authoritative.
    """

    messages: list[Message] = field(default_factory=list)
    queue: list[QueuedSend] = field(default_factory=list)
    session_key: str | None = None
    connected: bool = False

    is_loading_history: bool = False
    history_error: str | None = None
    thinking_level: str | None = None

    is_compacting: bool = False
    show_completed_compaction: bool = False
    compaction_insert_index: int | None = None
    compaction_summary: str | None = None

    _cache: dict[str, list[Message]] = field(default_factory=dict, repr=False)
    _observers: list[StateObserver] = field(default_factory=list, repr=False)

    # --- Observer management ---

    def add_observer(self, observer: StateObserver) -> None:
        """Attach an observer."""
        self._observers.append(observer)

    def remove_observer(self, observer: StateObserver) -> None:
        """Detach an observer."""
        self._observers.remove(observer)

    def notify(self, kind: str) -> None:
        """Tell observers that ``kind`` changed. Observer failures are logged."""
        for obs in list(self._observers):
            try:
                obs.on_change(kind, self)
            except Exception:
                logger.exception("State observer %r failed on %s change", obs, kind)

    # --- Session ---

    def is_active_session(self, session_key: str | None) -> bool:
        """True if events for ``session_key`` belong in the visible transcript.

        Events without a session key are attributed to the active session.
        """
        if session_key is None or self.session_key is None:
            return True
        return session_key == self.session_key

    def set_session(self, session_key: str) -> None:
        """Switch the visible session, restoring its cached transcript if any."""
        if self.session_key == session_key:
            return
        self.session_key = session_key
        self.messages = [replace(m) for m in self._cache.get(session_key, [])]
        self.reset_compaction()
        self.notify(CHANGE_SESSION)
        self.notify(CHANGE_MESSAGES)

    def set_connected(self, connected: bool) -> None:
        if self.connected == connected:
            return
        self.connected = connected
        self.notify(CHANGE_CONNECTION)

    # --- Transcript ---

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def add_message(self, message: Message) -> bool:
        """Append a message. Returns False if one with the same id is present."""
        if self.find_message(message.id) is not None:
            logger.debug("Skipping duplicate message %s", message.id)
            return False
        self.messages.append(message)
        self.notify(CHANGE_MESSAGES)
        return True

    def set_messages(self, messages: list[Message]) -> None:
        """Replace the transcript."""
        self.messages = list(messages)
        self.notify(CHANGE_MESSAGES)

    def clear_messages(self) -> None:
        self.messages = []
        self.history_error = None
        self.notify(CHANGE_MESSAGES)

    def cache_messages(self, session_key: str, messages: list[Message]) -> None:
        self._cache[session_key] = [replace(m) for m in messages]

    def cached_messages(self, session_key: str) -> list[Message] | None:
        cached = self._cache.get(session_key)
        return [replace(m) for m in cached] if cached is not None else None

    def _set_status(self, message_id: str, status: str, error: str | None = None) -> None:
        message = self.find_message(message_id)
        if message is None:
            return
        message.status = status
        message.error = error
        self.notify(CHANGE_MESSAGES)

    def mark_message_sending(self, message_id: str) -> None:
        self._set_status(message_id, SEND_SENDING)

    def mark_message_queued(self, message_id: str) -> None:
        self._set_status(message_id, SEND_QUEUED)

    def mark_message_sent(self, message_id: str) -> None:
        self._set_status(message_id, SEND_SENT)

    def mark_message_failed(self, message_id: str, error: str) -> None:
        self._set_status(message_id, SEND_FAILED, error)

    # --- Outbound queue ---

    def enqueue(self, item: QueuedSend) -> None:
        self.queue.append(item)
        self.notify(CHANGE_QUEUE)

    def dequeue(self, idempotency_key: str) -> QueuedSend | None:
        """Remove and return a queued send by key."""
        for index, item in enumerate(self.queue):
            if item.idempotency_key == idempotency_key:
                del self.queue[index]
                self.notify(CHANGE_QUEUE)
                return item
        return None

    def next_queued(self, session_key: str) -> QueuedSend | None:
        """Oldest queued send for a session."""
        for item in self.queue:
            if item.session_key == session_key:
                return item
        return None

    # --- History loading ---

    def begin_history_load(self) -> None:
        self.is_loading_history = True
        self.history_error = None
        self.notify(CHANGE_HISTORY)

    def end_history_load(self, error: str | None = None) -> None:
        self.is_loading_history = False
        self.history_error = error
        self.notify(CHANGE_HISTORY)

    # --- Compaction ---

    def begin_compaction(self) -> None:
        self.is_compacting = True
        self.notify(CHANGE_COMPACTION)

    def end_compaction(self, summary: str | None = None) -> None:
        """Record where the compaction marker renders and clear the flag."""
        self.is_compacting = False
        self.show_completed_compaction = True
        self.compaction_insert_index = len(self.messages)
        self.compaction_summary = summary
        self.notify(CHANGE_COMPACTION)

    def clear_stale_compaction(self) -> None:
        """Clear a compacting flag whose end event never arrived."""
        if not self.is_compacting:
            return
        self.is_compacting = False
        self.show_completed_compaction = True
        self.notify(CHANGE_COMPACTION)

    def reset_compaction(self) -> None:
        self.is_compacting = False
        self.show_completed_compaction = False
        self.compaction_insert_index = None
        self.compaction_summary = None
