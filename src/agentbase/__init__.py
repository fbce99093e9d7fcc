"""
agentbase: broker-backed coordination for a fleet of chat-bot agents.

Agents route tasks to each other over Redis pub/sub, track task lifecycle in
a broker-resident registry, broadcast control messages, and arbitrate shared
resources with TTL leases.
"""

from .broker import BrokerConnection
from .coordinator import Coordinator
from .errors import (
    AgentbaseError,
    BrokerConnectionError,
    DeserializationError,
    HandlerExecutionError,
    InvalidTransitionError,
    LockAcquireTimeout,
    UnknownTaskTypeError,
)
from .lock_manager import LockManager
from .models import AgentStatus, BroadcastMessage, TaskMessage, TaskPayload, TaskStatus
from .task_registry import TaskRegistry
from .task_router import TaskRouter

__version__ = "0.1.0"

__all__ = [
    "AgentStatus",
    "AgentbaseError",
    "BroadcastMessage",
    "BrokerConnection",
    "BrokerConnectionError",
    "Coordinator",
    "DeserializationError",
    "HandlerExecutionError",
    "InvalidTransitionError",
    "LockAcquireTimeout",
    "LockManager",
    "TaskMessage",
    "TaskPayload",
    "TaskRegistry",
    "TaskRouter",
    "TaskStatus",
    "UnknownTaskTypeError",
]
