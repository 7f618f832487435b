"""Reconciliation engine: runs, tool calls, routing, sending and history."""

from __future__ import annotations

from .engine import ChatEngine
from .history import HistoryReconciler, reconcile_history
from .models import Message, MessageImage, QueuedSend, ToolCall
from .registry import Run, RunRegistry
from .router import EventRouter
from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler
from .sender import MessageSender
from .state import ChatEngineState, StateObserver
from .streaming import DeltaResult, merge_delta_text
from .tools import ToolCallTable

__all__ = [
    "AsyncioScheduler",
    "ChatEngine",
    "ChatEngineState",
    "DeltaResult",
    "EventRouter",
    "HistoryReconciler",
    "ManualScheduler",
    "Message",
    "MessageImage",
    "MessageSender",
    "QueuedSend",
    "Run",
    "RunRegistry",
    "Scheduler",
    "StateObserver",
    "ToolCall",
    "ToolCallTable",
    "merge_delta_text",
    "reconcile_history",
]
