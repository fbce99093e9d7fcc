"""
Task registry for agentbase.

Each task lives in the broker hash ``task:<taskId>`` with the fields
``data`` (JSON task), ``status``, ``created_at`` and ``updated_at``. Status
updates are field-level writes that never touch ``data``, and ``status`` is
always written together with ``updated_at`` in one command.
"""

from typing import Optional, Union

from loguru import logger

from .broker import BrokerConnection
from .errors import DeserializationError, InvalidTransitionError
from .models import TaskMessage, TaskStatus
from .utils.clock import now_ms


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def _parse_status(value: Optional[str]) -> Optional[TaskStatus]:
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError:
        return None


class TaskRegistry:
    """Broker-resident record of task metadata and status."""

    def __init__(self, broker: BrokerConnection):
        self.broker = broker

    async def put(self, task: TaskMessage) -> None:
        now = now_ms()
        await self.broker.hset(
            task_key(task.task_id),
            {
                "data": task.to_json(),
                "status": task.status.value,
                "created_at": task.timestamp or now,
                "updated_at": now,
            },
        )

    async def update_status(self, task_id: str, status: Union[TaskStatus, str]) -> bool:
        """
        Move a task forward to ``status``.

        Returns False without writing when the task is unknown or the move is
        not a forward transition (e.g. out of a terminal state).
        """
        status = TaskStatus(status)

        def allowed(current: Optional[str]) -> bool:
            previous = _parse_status(current)
            return previous is not None and previous.can_transition_to(status)

        updated = await self.broker.update_hash_if(
            task_key(task_id),
            "status",
            allowed,
            {"status": status.value, "updated_at": now_ms()},
        )
        if not updated:
            logger.warning(f"[TaskRegistry] Refused status {status.value} for task {task_id}")
        return updated

    async def transition(self, task_id: str, status: Union[TaskStatus, str]) -> None:
        """Like :meth:`update_status` but raises ``InvalidTransitionError`` on refusal."""
        status = TaskStatus(status)
        if not await self.update_status(task_id, status):
            current = await self.get_status(task_id)
            raise InvalidTransitionError(
                task_id, current.value if current else None, status.value
            )

    async def get_status(self, task_id: str) -> Optional[TaskStatus]:
        """Current status, or None if the task is unknown."""
        return _parse_status(await self.broker.hget(task_key(task_id), "status"))

    async def get(self, task_id: str) -> Optional[TaskMessage]:
        """Full task with its current status, or None if unknown or unreadable."""
        record = await self.broker.hgetall(task_key(task_id))
        if not record or "data" not in record:
            return None
        try:
            task = TaskMessage.from_json(record["data"])
        except DeserializationError as e:
            logger.warning(f"[TaskRegistry] Skipping unreadable task {task_id}: {e}")
            return None
        status = _parse_status(record.get("status"))
        if status is not None:
            task.status = status
        return task

    async def exists(self, task_id: str) -> bool:
        return await self.broker.exists(task_key(task_id))
