"""
Coordinator: the per-agent façade over the coordination layer.

A coordinator owns a broker connection, a view of the task registry, and a
table of task handlers keyed by payload ``type``. Once connected it receives
tasks on ``agent:<agentId>:tasks`` and control messages on
``agent:broadcast``, runs the matching handler, and records the outcome in
the registry. The registry is the only channel through which a publisher
learns how its task ended.

Handler policy:
    - no handler for the payload type: status ``failed``, warning logged
    - handler returns: status ``completed``
    - handler raises: error logged, status ``failed``; the subscription keeps
      running
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Union

from loguru import logger
from redis.exceptions import ResponseError

from .broker import BrokerConnection
from .errors import (
    BrokerConnectionError,
    DeserializationError,
    HandlerExecutionError,
    UnknownTaskTypeError,
)
from .lock_manager import DEFAULT_LOCK_TTL, LockManager
from .models import (
    AgentState,
    AgentStatus,
    BroadcastMessage,
    BroadcastType,
    TaskMessage,
    TaskPayload,
    TaskStatus,
)
from .task_registry import TaskRegistry
from .task_router import (
    BROADCAST_CHANNEL,
    TaskRouter,
    normalize_agent_id,
    status_key,
    task_channel,
)
from .utils.clock import format_uptime, now_ms

TaskHandler = Callable[[TaskMessage], Awaitable[Any]]
BroadcastListener = Callable[[BroadcastMessage], Awaitable[None]]


async def read_agent_statuses(broker: BrokerConnection) -> list[AgentStatus]:
    statuses: list[AgentStatus] = []
    for key in await broker.scan_keys("agent:*:status"):
        try:
            data = await broker.hget(key, "data")
        except ResponseError:
            # Not a hash
            continue
        if not data:
            continue
        try:
            statuses.append(AgentStatus.from_json(data))
        except DeserializationError as e:
            logger.debug(f"Skipping malformed status at {key}: {e}")
    return statuses


class Coordinator:
    """Task routing, status reporting and locking for one agent."""

    def __init__(
        self,
        agent_id: str,
        broker: BrokerConnection,
        *,
        lock_ttl: float = DEFAULT_LOCK_TTL,
    ):
        """
        Args:
            agent_id: This agent's identifier; also names its task channel.
                Stored in the form returned by :func:`normalize_agent_id`.
            broker: Connection owned by this coordinator from ``connect`` to
                ``disconnect``
            lock_ttl: Default TTL in seconds for :meth:`acquire_lock`

        Raises:
            ConfigurationError: If ``agent_id`` is not a valid agent id
        """
        agent_id = normalize_agent_id(agent_id)
        self.agent_id = agent_id
        self.broker = broker
        self.registry = TaskRegistry(broker)
        self.router = TaskRouter(broker, self.registry)
        self.locks = LockManager(broker, agent_id, default_ttl=lock_ttl)

        self._handlers: dict[str, TaskHandler] = {}
        self._shutdown_listeners: list[BroadcastListener] = []
        self._connected = False
        self._started_at = time.monotonic()
        self._state = AgentState.ONLINE
        self._current_task: Optional[str] = None
        self._tasks_completed = 0
        self._log = logger.bind(agent_id=agent_id)

    @property
    def tag(self) -> str:
        return f"[Coordinator:{self.agent_id}]"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def tasks_completed(self) -> int:
        return self._tasks_completed

    @property
    def current_task(self) -> Optional[str]:
        return self._current_task

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started_at

    async def __aenter__(self) -> "Coordinator":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # Lifecycle

    async def connect(self) -> None:
        """Connect the broker and subscribe to this agent's task and broadcast channels."""
        if self._connected:
            return
        await self.broker.connect()
        try:
            await self.broker.subscribe(task_channel(self.agent_id), self._handle_incoming_task)
            await self.broker.subscribe(BROADCAST_CHANNEL, self._handle_broadcast)
        except BaseException:
            await self.broker.disconnect()
            raise
        self._connected = True
        self._started_at = time.monotonic()
        self._log.info(f"{self.tag} Connected to Redis")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        await self.broker.disconnect()
        self._log.info(f"{self.tag} Disconnected from Redis")

    # Handlers

    def register_handler(self, task_type: str, handler: TaskHandler) -> None:
        """Register ``handler`` for payload ``task_type``. The last registration wins."""
        if task_type in self._handlers:
            self._log.warning(f"{self.tag} Handler for '{task_type}' already registered, overwriting")
        self._handlers[task_type] = handler

    def has_handler(self, task_type: str) -> bool:
        return task_type in self._handlers

    def on_shutdown(self, listener: BroadcastListener) -> None:
        """Call ``listener`` when a ``shutdown`` broadcast arrives."""
        self._shutdown_listeners.append(listener)

    # Publishing

    async def publish_task(
        self,
        target_agent: str,
        payload: Union[TaskPayload, dict[str, Any]],
        priority: int = 5,
    ) -> str:
        """
        Persist a new ``pending`` task and notify ``target_agent``.

        Fire and forget: the returned id is the only handle; completion is
        observable through :meth:`get_task_status` / :meth:`wait_for_task`.

        Raises:
            ValueError: If the payload has no ``type`` or ``target_agent`` is
                not a valid agent id
            BrokerConnectionError: If the broker is unavailable
        """
        task = TaskMessage.create(normalize_agent_id(target_agent), payload, priority)
        await self.router.route(task)
        self._log.info(f"{self.tag} Published task {task.task_id} to {target_agent}")
        return task.task_id

    async def broadcast_message(self, message: Union[BroadcastMessage, dict[str, Any]]) -> int:
        """Send a control message to every coordinator (this one included)."""
        if not isinstance(message, BroadcastMessage):
            message = BroadcastMessage.model_validate(message)
        if message.sender is None:
            message.sender = self.agent_id
        return await self.router.broadcast(message)

    # Registry access

    async def update_task_status(self, task_id: str, status: Union[TaskStatus, str]) -> bool:
        return await self.registry.update_status(task_id, status)

    async def get_task_status(self, task_id: str) -> Optional[TaskStatus]:
        return await self.registry.get_status(task_id)

    async def get_task(self, task_id: str) -> Optional[TaskMessage]:
        return await self.registry.get(task_id)

    async def wait_for_task(
        self,
        task_id: str,
        timeout: float = 30.0,
        poll_interval: float = 0.1,
    ) -> Optional[TaskStatus]:
        """
        Poll the registry until the task reaches a terminal status.

        Returns the last observed status; it is non-terminal if ``timeout``
        elapsed first, and None if the task is unknown.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            status = await self.registry.get_status(task_id)
            if status is not None and status.is_terminal:
                return status
            if loop.time() >= deadline:
                return status
            await asyncio.sleep(poll_interval)

    # Status

    def snapshot(self, state: Optional[AgentState] = None) -> AgentStatus:
        return AgentStatus(
            agent_id=self.agent_id,
            status=state or self._state,
            current_task=self._current_task,
            tasks_completed=self._tasks_completed,
            uptime=format_uptime(self.uptime_seconds),
            last_seen=now_ms(),
        )

    async def publish_status(self, state: Optional[AgentState] = None) -> AgentStatus:
        """Write a fresh status record to ``agent:<agentId>:status``."""
        status = self.snapshot(state)
        await self.broker.hset(
            status_key(self.agent_id),
            {"data": status.to_json(), "last_updated": status.last_seen},
        )
        return status

    async def get_all_agent_statuses(self) -> list[AgentStatus]:
        """All published status records. Missing or malformed records are skipped."""
        return await read_agent_statuses(self.broker)

    # Locks

    async def acquire_lock(self, resource: str, ttl: Optional[float] = None) -> bool:
        return await self.locks.acquire(resource, ttl)

    async def release_lock(self, resource: str) -> bool:
        return await self.locks.release(resource)

    # Subscription callbacks

    async def _handle_incoming_task(self, channel: str, data: str) -> None:
        try:
            task = TaskMessage.from_json(data)
        except DeserializationError as e:
            self._log.error(f"{self.tag} Dropping malformed task message: {e}")
            return

        self._log.info(f"{self.tag} Received task: {task.task_id}")
        try:
            await self._process_task(task)
        except BrokerConnectionError as e:
            self._log.error(f"{self.tag} Broker error while handling task {task.task_id}: {e}")

    async def _process_task(self, task: TaskMessage) -> None:
        if not await self.registry.update_status(task.task_id, TaskStatus.IN_PROGRESS):
            self._log.warning(
                f"{self.tag} Task {task.task_id} is unknown or already taken, skipping"
            )
            return

        try:
            handler = self._lookup_handler(task.task_type)
        except UnknownTaskTypeError as e:
            self._log.warning(f"{self.tag} {e}")
            await self.registry.update_status(task.task_id, TaskStatus.FAILED)
            return

        self._state = AgentState.BUSY
        self._current_task = task.task_id
        try:
            cause = await self._run_handler(handler, task)
            if cause is None:
                self._tasks_completed += 1
                await self.registry.update_status(task.task_id, TaskStatus.COMPLETED)
            else:
                error = HandlerExecutionError(task.task_id, task.task_type, cause)
                self._log.opt(exception=cause).error(f"{self.tag} {error}")
                await self.registry.update_status(task.task_id, TaskStatus.FAILED)
        finally:
            self._state = AgentState.ONLINE
            self._current_task = None

    async def _run_handler(self, handler: TaskHandler, task: TaskMessage) -> Optional[BaseException]:
        """
        Run ``handler`` in a child task and return what it raised, if anything.

        A handler that ends cancelled counts as a failure. Only cancellation of
        the subscription listener itself propagates; the handler is cancelled
        along with it.
        """
        run = asyncio.ensure_future(handler(task))
        try:
            await asyncio.wait({run})
        except asyncio.CancelledError:
            run.cancel()
            raise
        if run.cancelled():
            return asyncio.CancelledError(f"handler for task {task.task_id} was cancelled")
        cause = run.exception()
        if cause is not None and not isinstance(cause, Exception):
            raise cause
        return cause

    def _lookup_handler(self, task_type: str) -> TaskHandler:
        try:
            return self._handlers[task_type]
        except KeyError:
            raise UnknownTaskTypeError(task_type) from None

    async def _handle_broadcast(self, channel: str, data: str) -> None:
        try:
            message = BroadcastMessage.from_json(data)
        except DeserializationError as e:
            self._log.error(f"{self.tag} Dropping malformed broadcast: {e}")
            return

        self._log.info(f"{self.tag} Received broadcast: {message.type}")
        kind = message.kind
        try:
            if kind is BroadcastType.SHUTDOWN:
                self._log.info(f"{self.tag} Shutdown signal received")
                for listener in self._shutdown_listeners:
                    await listener(message)
            elif kind is BroadcastType.STATUS_CHECK:
                await self.publish_status()
            else:
                self._log.info(f"{self.tag} Unknown broadcast type: {message.type}")
        except Exception as e:
            self._log.exception(f"{self.tag} Error handling broadcast {message.type}: {e}")
