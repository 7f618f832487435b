"""chatsync: reconcile streamed agent events into one consistent conversation."""

__version__ = "0.1.0"

from .config import EngineConfig
from .core import (
    AsyncioScheduler,
    ChatEngine,
    ChatEngineState,
    ManualScheduler,
    Message,
    QueuedSend,
    ToolCall,
)
from .errors import ChatSyncError, EventValidationError, SendError
from .transport import LocalTransport, Transport

__all__ = [
    "__version__",
    "EngineConfig",
    "ChatEngine",
    "ChatEngineState",
    "AsyncioScheduler",
    "ManualScheduler",
    "Message",
    "QueuedSend",
    "ToolCall",
    "Transport",
    "LocalTransport",
    "ChatSyncError",
    "EventValidationError",
    "SendError",
]
