"""
Metrics records consumed by the dashboard.

``agent:<agentId>:activity`` hashes are written by the agent runtime and may be
partial or stale, so parsing never fails: missing or unparseable fields fall
back to zero / ``"unknown"``.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..utils.clock import now_ms


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentActivity(_CamelModel):
    """Free-form activity event published on ``agent-activity``."""

    agent_id: str
    timestamp: int = Field(default_factory=now_ms)
    action: str
    content: str = ""
    user_id: Optional[str] = None
    channel_id: Optional[str] = None


class AgentMetrics(_CamelModel):
    agent_id: str
    status: str = "unknown"
    uptime: str = "0s"
    tasks_completed: int = 0
    cpu: float = 0.0
    memory: float = 0.0
    last_updated: int = 0

    @classmethod
    def from_hash(cls, agent_id: str, data: dict[str, Any]) -> "AgentMetrics":
        return cls(
            agent_id=agent_id,
            status=data.get("status") or "unknown",
            uptime=data.get("uptime") or "0s",
            tasks_completed=_to_int(data.get("tasks_completed")),
            cpu=_to_float(data.get("cpu")),
            memory=_to_float(data.get("memory")),
            last_updated=_to_int(data.get("last_updated")),
        )


class SystemMetrics(_CamelModel):
    total_agents: int
    active_agents: int
    agents: list[AgentMetrics]
    timestamp: int = Field(default_factory=now_ms)


class SystemStats(_CamelModel):
    total_agents: int
    active_agents: int
    total_tasks_completed: int
    average_cpu: float
    average_memory: float
    efficiency: float
    error_rate: float
    timestamp: int = Field(default_factory=now_ms)
