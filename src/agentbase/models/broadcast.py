"""
Broadcast envelope sent on ``agent:broadcast``.

The ``type`` tag is free-form on the wire. Coordinators act on the types in
:class:`BroadcastType` and log everything else.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import DeserializationError
from ..utils.clock import now_ms


class BroadcastType(str, Enum):
    SHUTDOWN = "shutdown"
    STATUS_CHECK = "status_check"


class BroadcastMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1)
    timestamp: int = Field(default_factory=now_ms)
    sender: Optional[str] = None

    @property
    def kind(self) -> Optional[BroadcastType]:
        """The recognised broadcast type, or ``None`` for unknown tags."""
        try:
            return BroadcastType(self.type)
        except ValueError:
            return None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "BroadcastMessage":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise DeserializationError(f"Malformed broadcast: {e}", raw=str(raw)) from e
