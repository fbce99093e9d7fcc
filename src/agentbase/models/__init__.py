"""
Data models for agentbase.

This package provides the task, status, broadcast and metrics records that
travel over the broker.
"""

from .agent_metrics import AgentActivity, AgentMetrics, SystemMetrics, SystemStats
from .agent_status import AgentState, AgentStatus
from .broadcast import BroadcastMessage, BroadcastType
from .task_message import TaskMessage, TaskPayload, TaskStatus, generate_task_id

__all__ = [
    "AgentActivity",
    "AgentMetrics",
    "AgentState",
    "AgentStatus",
    "BroadcastMessage",
    "BroadcastType",
    "SystemMetrics",
    "SystemStats",
    "TaskMessage",
    "TaskPayload",
    "TaskStatus",
    "generate_task_id",
]
