"""
Distributed locks for agentbase.

A lock is the string key ``lock:<resource>`` holding the holder's agent id,
created with SET NX PX so that at most one agent holds it at a time. Release
deletes the key only while it still names the caller, so a holder whose lease
already expired cannot release someone else's lease.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from loguru import logger

from .broker import BrokerConnection
from .errors import LockAcquireTimeout

DEFAULT_LOCK_TTL = 30.0


def lock_key(resource: str) -> str:
    return f"lock:{resource}"


class LockManager:
    """Acquire/release named TTL leases on behalf of one agent."""

    def __init__(self, broker: BrokerConnection, agent_id: str, default_ttl: float = DEFAULT_LOCK_TTL):
        self.broker = broker
        self.agent_id = agent_id
        self.default_ttl = default_ttl
        self._log = logger.bind(agent_id=agent_id)

    async def acquire(self, resource: str, ttl: Optional[float] = None) -> bool:
        """
        Try once to take ``resource`` for ``ttl`` seconds.

        Never blocks or retries; returns True iff this call created the lock.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("Lock TTL must be positive")

        acquired = await self.broker.set_if_absent(lock_key(resource), self.agent_id, ttl)
        if acquired:
            self._log.debug(f"[Lock:{self.agent_id}] Acquired {resource} for {ttl}s")
        return acquired

    async def release(self, resource: str) -> bool:
        """
        Release ``resource`` if this agent holds it. Returns whether a lock was
        deleted; releasing a lock held by someone else is a no-op.
        """
        released = await self.broker.delete_if_equals(lock_key(resource), self.agent_id)
        if released:
            self._log.debug(f"[Lock:{self.agent_id}] Released {resource}")
        else:
            self._log.debug(f"[Lock:{self.agent_id}] Not the holder of {resource}, nothing released")
        return released

    async def holder(self, resource: str) -> Optional[str]:
        return await self.broker.get(lock_key(resource))

    async def acquire_with_retry(
        self,
        resource: str,
        ttl: Optional[float] = None,
        timeout: float = 10.0,
        retry_interval: float = 0.1,
    ) -> bool:
        """
        Poll :meth:`acquire` until it succeeds or ``timeout`` elapses.

        Raises:
            LockAcquireTimeout: If the lock was not obtained in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await self.acquire(resource, ttl):
                return True
            if loop.time() >= deadline:
                raise LockAcquireTimeout(resource, timeout)
            await asyncio.sleep(retry_interval)

    @asynccontextmanager
    async def hold(
        self,
        resource: str,
        ttl: Optional[float] = None,
        timeout: float = 10.0,
        retry_interval: float = 0.1,
    ) -> AsyncIterator[None]:
        """Hold ``resource`` for the duration of the ``async with`` block."""
        await self.acquire_with_retry(resource, ttl, timeout, retry_interval)
        try:
            yield
        finally:
            await self.release(resource)
