"""
Agent status model for agentbase.

Status records are written only by the owning agent's coordinator and read by
anyone through a scan of ``agent:*:status``.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import DeserializationError
from ..utils.clock import now_ms


class AgentState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"


class AgentStatus(BaseModel):
    """Heartbeat/announcement record for one agent."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent_id: str = Field(..., min_length=1)
    status: AgentState = AgentState.ONLINE
    current_task: Optional[str] = None
    tasks_completed: int = Field(default=0, ge=0)
    uptime: str = "0m"
    last_seen: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "AgentStatus":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise DeserializationError(f"Malformed agent status: {e}", raw=str(raw)) from e
