"""
Task message model for agentbase.

A task is a unit of work routed to exactly one agent. Its lifecycle status is
tracked in the task registry and only ever moves forward:
``pending -> in_progress -> completed | failed``.
"""

import uuid
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import DeserializationError
from ..utils.clock import now_ms


def generate_task_id() -> str:
    """Time-ordered, collision-resistant task identifier."""
    return f"task-{now_ms()}-{uuid.uuid4().hex[:9]}"


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def can_transition_to(self, other: "TaskStatus") -> bool:
        return other in _TRANSITIONS[self]


_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class TaskPayload(BaseModel):
    """Task body. ``type`` selects the handler; other fields pass through untouched."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1)


class TaskMessage(BaseModel):
    """Task as stored in the registry and sent on ``agent:<agentId>:tasks``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str = Field(default_factory=generate_task_id)
    agent_id: str = Field(..., min_length=1)
    priority: int = 5
    payload: TaskPayload
    timestamp: int = Field(default_factory=now_ms)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def task_type(self) -> str:
        return self.payload.type

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "TaskMessage":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise DeserializationError(f"Malformed task message: {e}", raw=str(raw)) from e

    @classmethod
    def create(
        cls,
        target_agent: str,
        payload: Union[TaskPayload, dict[str, Any]],
        priority: int = 5,
    ) -> "TaskMessage":
        """Build a new pending task. Raises ``ValueError`` if the payload has no ``type``."""
        if not isinstance(payload, TaskPayload):
            payload = TaskPayload.model_validate(payload)
        return cls(agent_id=target_agent, payload=payload, priority=priority)
