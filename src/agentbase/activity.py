"""
Activity and heartbeat reporting for the metrics service.

The agent runtime owns two broker records consumed by the metrics service:
the ``agent:<agentId>:activity`` hash (status, uptime, counters, resource
usage) and the ``agent-activity`` channel of free-form events. Reporting is
best effort: broker failures are logged and never interrupt the agent.
"""

import resource
import sys
import time
from typing import Optional

from loguru import logger

from .broker import BrokerConnection
from .errors import BrokerConnectionError
from .models import AgentActivity
from .task_router import ACTIVITY_CHANNEL, activity_key
from .utils.clock import format_uptime, now_ms


class ResourceSampler:
    """CPU and memory usage of the current process."""

    def __init__(self) -> None:
        self._last_wall = time.monotonic()
        self._last_cpu = time.process_time()

    def cpu_percent(self) -> float:
        wall, cpu = time.monotonic(), time.process_time()
        elapsed = wall - self._last_wall
        used = cpu - self._last_cpu
        self._last_wall, self._last_cpu = wall, cpu
        if elapsed <= 0:
            return 0.0
        return round(min(100.0, 100.0 * used / elapsed), 2)

    def memory_mb(self) -> float:
        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
        return round(peak / divisor, 2)


class ActivityReporter:
    def __init__(self, agent_id: str, broker: BrokerConnection, sampler: Optional[ResourceSampler] = None):
        self.agent_id = agent_id
        self.broker = broker
        self.sampler = sampler or ResourceSampler()
        self._started_at = time.monotonic()
        self._log = logger.bind(agent_id=agent_id)

    @property
    def key(self) -> str:
        return activity_key(self.agent_id)

    async def publish_activity(
        self,
        action: str,
        content: str = "",
        user_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ) -> None:
        activity = AgentActivity(
            agent_id=self.agent_id,
            action=action,
            content=content,
            user_id=user_id,
            channel_id=channel_id,
        )
        try:
            await self.broker.publish(
                ACTIVITY_CHANNEL, activity.model_dump_json(by_alias=True, exclude_none=True)
            )
        except BrokerConnectionError as e:
            self._log.error(f"[{self.agent_id}] Failed to publish activity: {e}")

    async def update_status(self, status: str) -> None:
        try:
            await self.broker.hset(self.key, {"status": status, "last_updated": now_ms()})
        except BrokerConnectionError as e:
            self._log.error(f"[{self.agent_id}] Failed to update status: {e}")

    async def update_metrics(self, tasks_completed: int, status: str = "online") -> None:
        uptime = format_uptime(time.monotonic() - self._started_at)
        try:
            await self.broker.hset(
                self.key,
                {
                    "status": status,
                    "uptime": uptime,
                    "tasks_completed": tasks_completed,
                    "cpu": self.sampler.cpu_percent(),
                    "memory": self.sampler.memory_mb(),
                    "last_updated": now_ms(),
                },
            )
            # Same name as the hash; the metrics service listens on agent:*:activity
            await self.broker.publish(self.key, "updated")
        except BrokerConnectionError as e:
            self._log.error(f"[{self.agent_id}] Failed to update metrics: {e}")
