"""
Agent runtime.

Owns one coordinator and one activity reporter over a single broker
connection, publishes status and heartbeat metrics on a fixed interval, and
stops on SIGINT/SIGTERM or on a ``shutdown`` broadcast.
"""

import asyncio
import signal
from contextlib import suppress
from typing import Optional

from loguru import logger

from .activity import ActivityReporter
from .broker import BrokerConnection
from .config.settings import Settings
from .coordinator import Coordinator
from .errors import BrokerConnectionError, ConfigurationError
from .models import AgentState, BroadcastMessage, TaskMessage
from .task_router import normalize_agent_id


class AgentRuntime:
    """Long-running process wrapper around a :class:`Coordinator`."""

    def __init__(
        self,
        coordinator: Coordinator,
        reporter: Optional[ActivityReporter] = None,
        *,
        status_interval: float = 10.0,
        exit_on_shutdown: bool = True,
    ):
        self.coordinator = coordinator
        self.reporter = reporter or ActivityReporter(coordinator.agent_id, coordinator.broker)
        self.status_interval = status_interval
        self._stop_event = asyncio.Event()
        self._heartbeat: Optional[asyncio.Task] = None
        self._running = False

        if exit_on_shutdown:
            coordinator.on_shutdown(self._on_shutdown_broadcast)
        coordinator.register_handler("ping", self._handle_ping)

    @classmethod
    def from_settings(cls, settings: Settings, agent_id: Optional[str] = None) -> "AgentRuntime":
        agent_id = agent_id or settings.agent.id
        if not agent_id:
            raise ConfigurationError("AGENT_ID environment variable is required")
        agent_id = normalize_agent_id(agent_id)
        broker = BrokerConnection(
            settings.redis.url,
            poll_interval=settings.redis.poll_interval,
            socket_timeout=settings.redis.socket_timeout,
            name=f"broker:{agent_id}",
        )
        coordinator = Coordinator(agent_id, broker, lock_ttl=settings.agent.lock_ttl)
        return cls(coordinator, status_interval=settings.agent.status_interval)

    @property
    def agent_id(self) -> str:
        return self.coordinator.agent_id

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Connect, announce the agent as online and start the heartbeat timer."""
        if self._running:
            return
        await self.coordinator.connect()
        self._running = True
        self._stop_event.clear()
        logger.info(f"Starting agent {self.agent_id}")

        await self.reporter.update_status("online")
        await self._beat()
        await self.reporter.publish_activity("started", f"Agent {self.agent_id} is online")
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"{self.agent_id}-heartbeat")

    async def stop(self) -> None:
        """Stop the heartbeat, mark the agent offline and disconnect. Idempotent."""
        if not self._running:
            return
        self._running = False
        logger.info(f"[{self.agent_id}] Shutting down...")

        if self._heartbeat is not None:
            self._heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await self._heartbeat
            self._heartbeat = None

        try:
            await self.reporter.update_status("offline")
            await self.coordinator.publish_status(AgentState.OFFLINE)
        except BrokerConnectionError as e:
            logger.warning(f"[{self.agent_id}] Could not publish offline status: {e}")

        await self.coordinator.disconnect()
        self._stop_event.set()
        logger.info(f"Agent {self.agent_id} shutdown complete")

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run_forever(self) -> None:
        """Start, wait for a stop request (signal or broadcast), then stop."""
        await self.start()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self._signal_handler, signum)
        try:
            await self._stop_event.wait()
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                with suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(signum)
            await self.stop()

    def _signal_handler(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self.request_stop()

    async def _on_shutdown_broadcast(self, message: BroadcastMessage) -> None:
        logger.info(f"[{self.agent_id}] Shutdown requested by {message.sender or 'unknown'}")
        self.request_stop()

    async def _handle_ping(self, task: TaskMessage) -> None:
        await self.reporter.publish_activity("pong", f"Task {task.task_id} from ping")

    async def _beat(self) -> None:
        await self.coordinator.publish_status()
        await self.reporter.update_metrics(self.coordinator.tasks_completed)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.status_interval)
            try:
                await self._beat()
            except BrokerConnectionError as e:
                logger.error(f"[{self.agent_id}] Heartbeat failed: {e}")
