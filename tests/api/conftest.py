"""
Pytest fixtures for metrics API tests.
"""

import json

import pytest
from fastapi.testclient import TestClient

from agentbase.config.settings import Settings
from agentbase.metrics import create_app


@pytest.fixture
def seeded_redis(sync_redis):
    """Two agents with activity hashes and status records."""
    sync_redis.hset("agent:alice:activity", mapping={
        "status": "online",
        "uptime": "1h 5m",
        "tasks_completed": "4",
        "cpu": "10",
        "memory": "40",
        "last_updated": "1700000000000",
    })
    sync_redis.hset("agent:bob:activity", mapping={
        "status": "offline",
        "uptime": "3m",
        "tasks_completed": "1",
        "cpu": "20",
        "memory": "60",
        "last_updated": "1700000000000",
    })
    sync_redis.hset("agent:alice:status", mapping={
        "data": json.dumps({
            "agentId": "alice", "status": "online", "tasksCompleted": 4,
            "uptime": "1h 5m", "lastSeen": 1700000000000,
        }),
        "last_updated": "1700000000000",
    })
    return sync_redis


@pytest.fixture
def metrics_app(make_broker):
    return create_app(Settings(), broker=make_broker(name="metrics"))


@pytest.fixture
def client(metrics_app):
    with TestClient(metrics_app) as test_client:
        yield test_client
