"""
Metrics collection from broker records.

The collector is a pure reader: it never writes agent records and tolerates
missing, partial or malformed ones.
"""

from collections import deque
from typing import Any, Optional

from ..broker import BrokerConnection
from ..coordinator import read_agent_statuses
from ..models import AgentMetrics, AgentStatus, SystemMetrics, SystemStats
from ..task_router import activity_key, agent_id_from_key


class MetricsCollector:
    def __init__(self, broker: BrokerConnection, activity_buffer: int = 500):
        self.broker = broker
        self._activities: deque[dict[str, Any]] = deque(maxlen=activity_buffer)

    async def get_agent_metrics(self, agent_id: str) -> Optional[AgentMetrics]:
        data = await self.broker.hgetall(activity_key(agent_id))
        if not data:
            return None
        return AgentMetrics.from_hash(agent_id, data)

    async def get_all_metrics(self) -> SystemMetrics:
        agents: list[AgentMetrics] = []
        for key in sorted(await self.broker.scan_keys("agent:*:activity")):
            data = await self.broker.hgetall(key)
            if data:
                agents.append(AgentMetrics.from_hash(agent_id_from_key(key), data))

        return SystemMetrics(
            total_agents=len(agents),
            active_agents=sum(1 for agent in agents if agent.status == "online"),
            agents=agents,
        )

    async def get_system_stats(self) -> SystemStats:
        metrics = await self.get_all_metrics()
        agents = metrics.agents
        total = metrics.total_agents

        def average(values: list[float]) -> float:
            return round(sum(values) / len(values), 2) if values else 0.0

        return SystemStats(
            total_agents=total,
            active_agents=metrics.active_agents,
            total_tasks_completed=sum(agent.tasks_completed for agent in agents),
            average_cpu=average([agent.cpu for agent in agents]),
            average_memory=average([agent.memory for agent in agents]),
            efficiency=round(metrics.active_agents / total * 100, 2) if total else 0.0,
            error_rate=round((total - metrics.active_agents) / total * 100, 2) if total else 0.0,
        )

    async def get_agent_statuses(self) -> list[AgentStatus]:
        return await read_agent_statuses(self.broker)

    def record_activity(self, activity: dict[str, Any]) -> None:
        self._activities.append(activity)

    def recent_activity(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent events first."""
        if limit <= 0:
            return []
        return list(reversed(self._activities))[:limit]
