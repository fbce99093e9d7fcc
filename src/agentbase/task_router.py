"""
Task routing over broker channels.

Every agent listens on its own ``agent:<agentId>:tasks`` channel and on the
shared ``agent:broadcast`` channel. Routing a task persists it to the registry
first and publishes second, so a receiver that looks the task up after the
notification always finds at least ``pending``.
"""

from loguru import logger

from .broker import BrokerConnection
from .errors import ConfigurationError
from .models import BroadcastMessage, TaskMessage
from .task_registry import TaskRegistry

BROADCAST_CHANNEL = "agent:broadcast"
ACTIVITY_CHANNEL = "agent-activity"


def normalize_agent_id(agent_id: str) -> str:
    """
    Canonical form of an agent id: trimmed and lowercased.

    Raises:
        ConfigurationError: If the id is empty or contains ``:`` or ``*``,
            which would break key names and subscription patterns
    """
    normalized = agent_id.strip().lower() if isinstance(agent_id, str) else ""
    if not normalized or ":" in normalized or "*" in normalized:
        raise ConfigurationError(
            f"Invalid agent id {agent_id!r}: must be non-empty and must not contain ':' or '*'"
        )
    return normalized


def task_channel(agent_id: str) -> str:
    return f"agent:{agent_id}:tasks"


def status_key(agent_id: str) -> str:
    return f"agent:{agent_id}:status"


def activity_key(agent_id: str) -> str:
    return f"agent:{agent_id}:activity"


def agent_id_from_key(key: str) -> str:
    """``agent:<id>:status`` / ``agent:<id>:activity`` -> ``<id>``."""
    return key.split(":")[1]


class TaskRouter:
    def __init__(self, broker: BrokerConnection, registry: TaskRegistry):
        self.broker = broker
        self.registry = registry

    async def route(self, task: TaskMessage) -> int:
        """Persist ``task`` then notify its target. Returns the receiver count."""
        await self.registry.put(task)
        receivers = await self.broker.publish(task_channel(task.agent_id), task.to_json())
        if receivers == 0:
            logger.debug(f"[TaskRouter] No subscriber on {task_channel(task.agent_id)} for {task.task_id}")
        return receivers

    async def broadcast(self, message: BroadcastMessage) -> int:
        return await self.broker.publish(BROADCAST_CHANNEL, message.to_json())
