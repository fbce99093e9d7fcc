"""
Pytest configuration and shared fixtures.

Every test broker talks to an in-memory fakeredis server; brokers created
through the same ``fake_server`` share keys and pub/sub channels.
"""

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any

import fakeredis
import pytest
import pytest_asyncio

from agentbase.broker import BrokerConnection
from agentbase.coordinator import Coordinator


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (in-memory broker, real pub/sub)"
    )
    config.addinivalue_line("markers", "api: mark test as metrics API test")
    config.addinivalue_line("markers", "cli: mark test as CLI test")


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def sync_redis(fake_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    """Synchronous client on the same server, for seeding and inspecting records."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def make_broker(fake_server: fakeredis.FakeServer) -> Callable[..., BrokerConnection]:
    """Build (unconnected) brokers backed by ``fake_server``."""

    def _make(name: str = "test-broker") -> BrokerConnection:
        return BrokerConnection(
            "redis://fake:6379",
            client_factory=lambda url, **kwargs: fakeredis.FakeAsyncRedis(server=fake_server, **kwargs),
            poll_interval=0.01,
            name=name,
        )

    return _make


@pytest_asyncio.fixture
async def broker(make_broker: Callable[..., BrokerConnection]) -> AsyncIterator[BrokerConnection]:
    connection = make_broker()
    await connection.connect()
    yield connection
    await connection.disconnect()


@pytest_asyncio.fixture
async def coordinator_factory(
    make_broker: Callable[..., BrokerConnection],
) -> AsyncIterator[Callable[..., Awaitable[Coordinator]]]:
    """Create coordinators; connected ones are subscribed to their channels."""
    created: list[Coordinator] = []

    async def _make(agent_id: str, *, connect: bool = True, lock_ttl: float = 30.0) -> Coordinator:
        coordinator = Coordinator(agent_id, make_broker(name=f"broker:{agent_id}"), lock_ttl=lock_ttl)
        if connect:
            await coordinator.connect()
        else:
            await coordinator.broker.connect()
        created.append(coordinator)
        return coordinator

    yield _make

    for coordinator in created:
        await coordinator.disconnect()
        await coordinator.broker.disconnect()


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Poll an async predicate until it holds or fail after ``timeout`` seconds."""

    async def _eventually(
        predicate: Callable[[], Awaitable[bool]],
        timeout: float = 2.0,
        interval: float = 0.02,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not await predicate():
            if loop.time() >= deadline:
                pytest.fail(f"Condition not met within {timeout}s")
            await asyncio.sleep(interval)

    return _eventually


WORKFORCE_YAML = """
version: "1"
agents:
  - name: Alice
    config_path: ./agents/alice
    env:
      DISCORD_BOT_TOKEN: token-a
      MAX_TURNS: 5
    volumes:
      workspace: ./workspaces/alice
  - name: bob
    config_path: ./agents/bob
redis:
  url: redis://redis:6379
  port: 6380
metrics:
  port: 4000
"""


@pytest.fixture
def workforce_file(tmp_path: Path) -> Path:
    path = tmp_path / "workforce.yaml"
    path.write_text(WORKFORCE_YAML)
    return path


@pytest.fixture
def isolated_environ() -> Iterator[None]:
    """Restore ``os.environ`` after tests that load env files."""
    saved = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(saved)
