"""
Unit tests for the coordinator's dispatch policy, status records and locks.

Tasks are fed straight into the subscription callbacks, so these tests do
not depend on pub/sub timing.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from agentbase.coordinator import Coordinator, read_agent_statuses
from agentbase.errors import BrokerConnectionError, ConfigurationError
from agentbase.models import AgentState, TaskMessage, TaskStatus
from agentbase.task_router import status_key, task_channel


async def _deliver(coordinator, target, payload):
    """Route a task and hand it to ``coordinator`` as if it arrived on its channel."""
    task = TaskMessage.create(target, payload)
    await coordinator.registry.put(task)
    await coordinator._handle_incoming_task(task_channel(target), task.to_json())
    return task


@pytest.mark.unit
class TestTaskDispatch:
    """Test handler lookup and outcome recording."""

    @pytest.mark.asyncio
    async def test_successful_handler_completes_task(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        handler = AsyncMock()
        bob.register_handler("echo", handler)

        task = await _deliver(bob, "bob", {"type": "echo", "message": "hi"})

        handler.assert_awaited_once()
        received = handler.await_args.args[0]
        assert received.task_id == task.task_id
        assert received.payload.model_extra == {"message": "hi"}
        assert await bob.get_task_status(task.task_id) is TaskStatus.COMPLETED
        assert bob.tasks_completed == 1

    @pytest.mark.asyncio
    async def test_unknown_type_fails_task(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)

        task = await _deliver(bob, "bob", {"type": "translate"})

        assert await bob.get_task_status(task.task_id) is TaskStatus.FAILED
        assert bob.tasks_completed == 0

    @pytest.mark.asyncio
    async def test_raising_handler_fails_task(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        bob.register_handler("explode", AsyncMock(side_effect=RuntimeError("boom")))

        task = await _deliver(bob, "bob", {"type": "explode"})

        assert await bob.get_task_status(task.task_id) is TaskStatus.FAILED
        assert bob.current_task is None
        assert bob.snapshot().status is AgentState.ONLINE
        assert bob.tasks_completed == 0

    @pytest.mark.asyncio
    async def test_cancelled_handler_fails_task(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)

        async def abandoned(task: TaskMessage) -> None:
            raise asyncio.CancelledError()

        bob.register_handler("abandoned", abandoned)

        task = await _deliver(bob, "bob", {"type": "abandoned"})

        assert await bob.get_task_status(task.task_id) is TaskStatus.FAILED
        assert bob.current_task is None
        assert bob.tasks_completed == 0

    @pytest.mark.asyncio
    async def test_cancelling_dispatch_cancels_running_handler(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        started = asyncio.Event()
        handler_cancelled = asyncio.Event()

        async def slow(task: TaskMessage) -> None:
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                handler_cancelled.set()
                raise

        bob.register_handler("slow", slow)
        task = TaskMessage.create("bob", {"type": "slow"})
        await bob.registry.put(task)

        dispatch = asyncio.create_task(bob._handle_incoming_task(task_channel("bob"), task.to_json()))
        await asyncio.wait_for(started.wait(), timeout=2)
        dispatch.cancel()

        with pytest.raises(asyncio.CancelledError):
            await dispatch
        await asyncio.wait_for(handler_cancelled.wait(), timeout=2)

    @pytest.mark.asyncio
    async def test_agent_is_busy_while_handling(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        seen = {}

        async def handler(task: TaskMessage) -> None:
            snapshot = bob.snapshot()
            seen["status"] = snapshot.status
            seen["current_task"] = snapshot.current_task

        bob.register_handler("work", handler)
        task = await _deliver(bob, "bob", {"type": "work"})

        assert seen == {"status": AgentState.BUSY, "current_task": task.task_id}
        assert bob.snapshot().current_task is None

    @pytest.mark.asyncio
    async def test_task_without_registry_record_is_skipped(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        handler = AsyncMock()
        bob.register_handler("echo", handler)
        task = TaskMessage.create("bob", {"type": "echo"})

        await bob._handle_incoming_task(task_channel("bob"), task.to_json())

        handler.assert_not_awaited()
        assert await bob.get_task_status(task.task_id) is None

    @pytest.mark.asyncio
    async def test_already_claimed_task_is_skipped(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        handler = AsyncMock()
        bob.register_handler("echo", handler)
        task = TaskMessage.create("bob", {"type": "echo"})
        await bob.registry.put(task)
        await bob.update_task_status(task.task_id, TaskStatus.IN_PROGRESS)

        await bob._handle_incoming_task(task_channel("bob"), task.to_json())

        handler.assert_not_awaited()
        assert await bob.get_task_status(task.task_id) is TaskStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)

        await bob._handle_incoming_task(task_channel("bob"), "not json")
        await bob._handle_incoming_task(task_channel("bob"), json.dumps({"taskId": "x"}))

        assert bob.tasks_completed == 0

    @pytest.mark.asyncio
    async def test_last_registration_wins(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        first, second = AsyncMock(), AsyncMock()
        bob.register_handler("echo", first)
        bob.register_handler("echo", second)

        await _deliver(bob, "bob", {"type": "echo"})

        first.assert_not_awaited()
        second.assert_awaited_once()
        assert bob.has_handler("echo")
        assert not bob.has_handler("other")


@pytest.mark.unit
class TestPublishing:
    """Test task publication and waiting."""

    @pytest.mark.asyncio
    async def test_publish_task_persists_pending_record(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)

        task_id = await alice.publish_task("bob", {"type": "echo", "message": "hi"}, priority=2)

        stored = await alice.get_task(task_id)
        assert stored.agent_id == "bob"
        assert stored.priority == 2
        assert stored.status is TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_publish_task_requires_type(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)

        with pytest.raises(ValueError):
            await alice.publish_task("bob", {"message": "no type"})

    @pytest.mark.asyncio
    async def test_wait_for_task_times_out_with_last_status(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)
        task_id = await alice.publish_task("nobody", {"type": "echo"})

        status = await alice.wait_for_task(task_id, timeout=0.1, poll_interval=0.02)

        assert status is TaskStatus.PENDING
        assert await alice.wait_for_task("task-0-missing", timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_wait_for_task_returns_terminal_status(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)
        task_id = await alice.publish_task("bob", {"type": "echo"})

        async def finish() -> None:
            await asyncio.sleep(0.05)
            await alice.update_task_status(task_id, TaskStatus.IN_PROGRESS)
            await alice.update_task_status(task_id, TaskStatus.COMPLETED)

        finisher = asyncio.create_task(finish())
        assert await alice.wait_for_task(task_id, timeout=2, poll_interval=0.02) is TaskStatus.COMPLETED
        await finisher

    @pytest.mark.asyncio
    async def test_broadcast_sets_sender(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)
        alice.router.broker.publish = AsyncMock(return_value=0)

        await alice.broadcast_message({"type": "status_check"})

        channel, body = alice.router.broker.publish.await_args.args
        assert channel == "agent:broadcast"
        assert json.loads(body)["sender"] == "alice"


@pytest.mark.unit
class TestStatusRecords:
    """Test status publication and discovery."""

    @pytest.mark.asyncio
    async def test_publish_status_writes_record(self, coordinator_factory, broker):
        alice = await coordinator_factory("alice", connect=False)

        status = await alice.publish_status()

        record = await broker.hgetall(status_key("alice"))
        assert json.loads(record["data"])["agentId"] == "alice"
        assert int(record["last_updated"]) == status.last_seen
        assert status.status is AgentState.ONLINE

    @pytest.mark.asyncio
    async def test_get_all_agent_statuses_skips_bad_records(self, coordinator_factory, broker):
        alice = await coordinator_factory("alice", connect=False)
        bob = await coordinator_factory("bob", connect=False)
        await alice.publish_status()
        await bob.publish_status(AgentState.OFFLINE)
        await broker.hset(status_key("carol"), {"data": "{broken"})
        await broker.hset(status_key("dave"), {"last_updated": "1"})
        await broker.set(status_key("erin"), "not a hash")

        statuses = await alice.get_all_agent_statuses()

        by_id = {status.agent_id: status for status in statuses}
        assert set(by_id) == {"alice", "bob"}
        assert by_id["bob"].status is AgentState.OFFLINE
        assert [s.agent_id for s in await read_agent_statuses(broker)].count("alice") == 1


@pytest.mark.unit
class TestBroadcastHandling:
    """Test control message handling."""

    @pytest.mark.asyncio
    async def test_status_check_refreshes_record(self, coordinator_factory, broker):
        bob = await coordinator_factory("bob", connect=False)

        await bob._handle_broadcast("agent:broadcast", '{"type": "status_check", "sender": "alice"}')

        assert await broker.hget(status_key("bob"), "data") is not None

    @pytest.mark.asyncio
    async def test_shutdown_notifies_listeners(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        listener = AsyncMock()
        bob.on_shutdown(listener)

        await bob._handle_broadcast("agent:broadcast", '{"type": "shutdown", "sender": "alice"}')

        listener.assert_awaited_once()
        assert listener.await_args.args[0].sender == "alice"

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_broadcasts_are_ignored(self, coordinator_factory):
        bob = await coordinator_factory("bob", connect=False)
        listener = AsyncMock(side_effect=RuntimeError("listener bug"))
        bob.on_shutdown(listener)

        await bob._handle_broadcast("agent:broadcast", '{"type": "reload"}')
        await bob._handle_broadcast("agent:broadcast", "garbage")
        await bob._handle_broadcast("agent:broadcast", '{"type": "shutdown"}')

        listener.assert_awaited_once()


@pytest.mark.unit
class TestCoordinatorLocks:
    """Test lock delegation."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)
        bob = await coordinator_factory("bob", connect=False)

        assert await alice.acquire_lock("repo", ttl=10)
        assert not await bob.acquire_lock("repo")
        assert not await bob.release_lock("repo")
        assert await alice.release_lock("repo")
        assert await bob.acquire_lock("repo")


@pytest.mark.unit
class TestCoordinatorIdentity:
    """Test agent id handling and connection setup."""

    def test_agent_id_is_normalized(self, make_broker):
        coordinator = Coordinator("  Alice ", make_broker())

        assert coordinator.agent_id == "alice"
        assert coordinator.locks.agent_id == "alice"

    @pytest.mark.parametrize("agent_id", ["", "a:b", "agent*"])
    def test_invalid_agent_id_rejected(self, make_broker, agent_id):
        with pytest.raises(ConfigurationError):
            Coordinator(agent_id, make_broker())

    @pytest.mark.asyncio
    async def test_publish_task_normalizes_target(self, coordinator_factory):
        alice = await coordinator_factory("alice", connect=False)

        task_id = await alice.publish_task("Bob", {"type": "echo"})

        assert (await alice.get_task(task_id)).agent_id == "bob"
        with pytest.raises(ConfigurationError):
            await alice.publish_task("bob:tasks", {"type": "echo"})

    @pytest.mark.asyncio
    async def test_failed_subscribe_closes_broker(self, make_broker):
        broker = make_broker()
        coordinator = Coordinator("bob", broker)

        with patch.object(broker, "subscribe", AsyncMock(side_effect=BrokerConnectionError("subscribe failed"))):
            with pytest.raises(BrokerConnectionError):
                await coordinator.connect()

        assert not coordinator.is_connected
        assert not broker.is_connected
