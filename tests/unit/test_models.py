"""
Unit tests for the broker message models.
"""

import json
import re

import pytest

from agentbase.errors import DeserializationError
from agentbase.models import (
    AgentMetrics,
    AgentState,
    AgentStatus,
    BroadcastMessage,
    BroadcastType,
    TaskMessage,
    TaskPayload,
    TaskStatus,
    generate_task_id,
)
from agentbase.utils.clock import format_uptime


@pytest.mark.unit
class TestTaskMessage:
    """Test TaskMessage creation and wire format."""

    def test_create_defaults(self):
        task = TaskMessage.create("bob", {"type": "summarize", "text": "hello"})

        assert re.fullmatch(r"task-\d+-[0-9a-f]{9}", task.task_id)
        assert task.agent_id == "bob"
        assert task.priority == 5
        assert task.status is TaskStatus.PENDING
        assert task.task_type == "summarize"
        assert task.timestamp > 0

    def test_wire_format_is_camel_case_and_keeps_payload_fields(self):
        task = TaskMessage.create("bob", {"type": "summarize", "text": "hello", "n": 3}, priority=1)

        data = json.loads(task.to_json())

        assert data["taskId"] == task.task_id
        assert data["agentId"] == "bob"
        assert data["priority"] == 1
        assert data["status"] == "pending"
        assert data["payload"] == {"type": "summarize", "text": "hello", "n": 3}

    def test_from_json_accepts_wire_format(self):
        raw = json.dumps({
            "taskId": "task-1-abcdef123",
            "agentId": "alice",
            "priority": 5,
            "payload": {"type": "echo", "message": "hi"},
            "timestamp": 1700000000000,
            "status": "pending",
        })

        task = TaskMessage.from_json(raw)

        assert task.task_id == "task-1-abcdef123"
        assert task.payload.model_extra == {"message": "hi"}

    @pytest.mark.parametrize("raw", ["not json", "{}", '{"agentId": "a", "payload": {}}'])
    def test_from_json_rejects_malformed(self, raw):
        with pytest.raises(DeserializationError) as exc_info:
            TaskMessage.from_json(raw)
        assert exc_info.value.raw == raw

    def test_payload_requires_type(self):
        with pytest.raises(ValueError):
            TaskMessage.create("bob", {"text": "no type"})
        with pytest.raises(ValueError):
            TaskPayload(type="")

    def test_task_ids_are_unique(self):
        ids = {generate_task_id() for _ in range(1000)}
        assert len(ids) == 1000


@pytest.mark.unit
class TestTaskStatus:
    """Test the forward-only status lifecycle."""

    def test_forward_transitions(self):
        assert TaskStatus.PENDING.can_transition_to(TaskStatus.IN_PROGRESS)
        assert TaskStatus.IN_PROGRESS.can_transition_to(TaskStatus.COMPLETED)
        assert TaskStatus.IN_PROGRESS.can_transition_to(TaskStatus.FAILED)

    def test_rejected_transitions(self):
        assert not TaskStatus.PENDING.can_transition_to(TaskStatus.COMPLETED)
        assert not TaskStatus.PENDING.can_transition_to(TaskStatus.FAILED)
        assert not TaskStatus.IN_PROGRESS.can_transition_to(TaskStatus.PENDING)
        for terminal in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            for status in TaskStatus:
                assert not terminal.can_transition_to(status)

    def test_terminal(self):
        assert TaskStatus.COMPLETED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert not TaskStatus.PENDING.is_terminal
        assert not TaskStatus.IN_PROGRESS.is_terminal


@pytest.mark.unit
class TestAgentStatus:
    """Test AgentStatus records."""

    def test_json_omits_missing_current_task(self):
        status = AgentStatus(agent_id="alice", tasks_completed=2, uptime="5m", last_seen=1)

        data = json.loads(status.to_json())

        assert data == {
            "agentId": "alice",
            "status": "online",
            "tasksCompleted": 2,
            "uptime": "5m",
            "lastSeen": 1,
        }

    def test_from_json(self):
        status = AgentStatus.from_json(
            '{"agentId": "bob", "status": "busy", "currentTask": "task-1-x", '
            '"tasksCompleted": 4, "uptime": "1h 2m", "lastSeen": 10}'
        )

        assert status.status is AgentState.BUSY
        assert status.current_task == "task-1-x"
        assert status.tasks_completed == 4

    def test_negative_task_count_rejected(self):
        with pytest.raises(ValueError):
            AgentStatus(agent_id="alice", tasks_completed=-1)

    def test_from_json_rejects_garbage(self):
        with pytest.raises(DeserializationError):
            AgentStatus.from_json("{not json")


@pytest.mark.unit
class TestBroadcastMessage:
    """Test the broadcast envelope."""

    def test_known_kinds(self):
        assert BroadcastMessage(type="shutdown").kind is BroadcastType.SHUTDOWN
        assert BroadcastMessage(type="status_check").kind is BroadcastType.STATUS_CHECK

    def test_unknown_type_is_preserved(self):
        message = BroadcastMessage.from_json('{"type": "reload", "reason": "new prompt"}')

        assert message.kind is None
        assert message.type == "reload"
        assert json.loads(message.to_json())["reason"] == "new prompt"

    def test_missing_type_rejected(self):
        with pytest.raises(DeserializationError):
            BroadcastMessage.from_json('{"sender": "alice"}')


@pytest.mark.unit
class TestAgentMetrics:
    """Test parsing of agent activity hashes."""

    def test_from_hash(self):
        metrics = AgentMetrics.from_hash("alice", {
            "status": "online",
            "uptime": "2h 3m",
            "tasks_completed": "7",
            "cpu": "12.5",
            "memory": "48.25",
            "last_updated": "1700000000000",
        })

        assert metrics.tasks_completed == 7
        assert metrics.cpu == 12.5
        assert metrics.memory == 48.25
        assert metrics.last_updated == 1700000000000

    def test_partial_or_bad_hash_falls_back_to_defaults(self):
        metrics = AgentMetrics.from_hash("bob", {"cpu": "n/a", "tasks_completed": ""})

        assert metrics.status == "unknown"
        assert metrics.uptime == "0s"
        assert metrics.tasks_completed == 0
        assert metrics.cpu == 0.0
        assert metrics.memory == 0.0

    def test_serializes_camel_case(self):
        data = AgentMetrics(agent_id="alice").model_dump(by_alias=True)
        assert set(data) == {
            "agentId", "status", "uptime", "tasksCompleted", "cpu", "memory", "lastUpdated",
        }


@pytest.mark.unit
@pytest.mark.parametrize(
    "seconds,expected",
    [
        (0, "0m"),
        (59, "0m"),
        (125, "2m"),
        (2 * 3600 + 5 * 60, "2h 5m"),
        (3 * 86400 + 4 * 3600 + 59, "3d 4h"),
        (-10, "0m"),
    ],
)
def test_format_uptime(seconds, expected):
    assert format_uptime(seconds) == expected
