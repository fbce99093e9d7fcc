"""
Broker connection for agent coordination.

Wraps a redis.asyncio client used for commands and a dedicated PubSub
connection used for subscriptions (a connection blocked on subscription
delivery cannot issue commands). One listener task per connection delivers
subscription messages to their callbacks sequentially, in receipt order.

A connection is constructed explicitly and passed to whoever needs it; there
is no process-wide instance.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any, Optional

import redis.asyncio as redis
from loguru import logger
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError, ResponseError, WatchError

from .errors import BrokerConnectionError

MessageCallback = Callable[[str, str], Awaitable[None]]
ClientFactory = Callable[..., redis.Redis]


class BrokerConnection:
    """Command and subscription handles to the shared Redis broker."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        *,
        client_factory: Optional[ClientFactory] = None,
        poll_interval: float = 1.0,
        socket_timeout: Optional[float] = None,
        name: str = "broker",
    ):
        """
        Args:
            redis_url: Broker URL
            client_factory: Callable building the client from ``(url, **kwargs)``;
                defaults to ``redis.asyncio.from_url``
            poll_interval: Seconds the listener waits for a message per poll
            socket_timeout: Socket timeout for broker commands
            name: Label used in log lines
        """
        self.redis_url = redis_url
        self.name = name
        self.poll_interval = poll_interval
        self.socket_timeout = socket_timeout
        self._client_factory = client_factory or redis.from_url
        self._client: Optional[redis.Redis] = None
        self._pubsub: Optional[PubSub] = None
        self._listener: Optional[asyncio.Task] = None
        self._channel_callbacks: dict[str, MessageCallback] = {}
        self._pattern_callbacks: dict[str, MessageCallback] = {}

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Establish both handles. Raises ``BrokerConnectionError`` on failure."""
        if self._client is not None:
            return

        kwargs: dict[str, Any] = {"decode_responses": True}
        if self.socket_timeout is not None:
            kwargs["socket_timeout"] = self.socket_timeout

        client: Optional[redis.Redis] = None
        try:
            client = self._client_factory(self.redis_url, **kwargs)
            await client.ping()
            pubsub = client.pubsub(ignore_subscribe_messages=True)
        except (RedisError, OSError) as e:
            if client is not None:
                with suppress(RedisError, OSError):
                    await client.aclose()
            raise BrokerConnectionError(
                f"[{self.name}] Failed to connect to {self.redis_url}: {e}"
            ) from e

        self._client = client
        self._pubsub = pubsub
        logger.info(f"[{self.name}] Connected to Redis")

    async def disconnect(self) -> None:
        """Unsubscribe everything and close both handles. Safe to call twice."""
        if self._client is None:
            return

        client, pubsub, listener = self._client, self._pubsub, self._listener
        self._client = None
        self._pubsub = None
        self._listener = None

        if pubsub is not None:
            try:
                if self._channel_callbacks:
                    await pubsub.unsubscribe()
                if self._pattern_callbacks:
                    await pubsub.punsubscribe()
            except (RedisError, OSError) as e:
                logger.warning(f"[{self.name}] Failed to unsubscribe cleanly: {e}")

        if listener is not None:
            listener.cancel()
            with suppress(asyncio.CancelledError):
                await listener

        self._channel_callbacks.clear()
        self._pattern_callbacks.clear()

        try:
            if pubsub is not None:
                await pubsub.aclose()
            await client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"[{self.name}] Error while closing Redis connection: {e}")

        logger.info(f"[{self.name}] Disconnected from Redis")

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise BrokerConnectionError(f"[{self.name}] Broker is not connected")
        return self._client

    async def _run(self, operation: Awaitable[Any]) -> Any:
        try:
            return await operation
        except ResponseError:
            raise
        except (RedisError, OSError) as e:
            raise BrokerConnectionError(f"[{self.name}] Broker operation failed: {e}") from e

    # Key/value

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """Atomically create ``key`` with an expiry of ``ttl`` seconds. True iff created."""
        client = self._require_client()
        ttl_ms = max(1, int(ttl * 1000))
        return bool(await self._run(client.set(key, value, nx=True, px=ttl_ms)))

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client()
        return await self._run(client.get(key))

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        client = self._require_client()
        px = max(1, int(ttl * 1000)) if ttl is not None else None
        await self._run(client.set(key, value, px=px))

    async def delete(self, *keys: str) -> int:
        client = self._require_client()
        return await self._run(client.delete(*keys))

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Delete ``key`` only while it still holds ``expected``."""
        client = self._require_client()

        async def _compare_and_delete() -> bool:
            async with client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.get(key) != expected:
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    await pipe.execute()
                    return True
                except WatchError:
                    # Key changed between GET and DEL
                    return False

        return await self._run(_compare_and_delete())

    async def ttl_ms(self, key: str) -> int:
        client = self._require_client()
        return await self._run(client.pttl(key))

    # Hashes

    async def hset(self, key: str, mapping: dict[str, Any]) -> None:
        client = self._require_client()
        await self._run(client.hset(key, mapping={k: str(v) for k, v in mapping.items()}))

    async def hget(self, key: str, field: str) -> Optional[str]:
        client = self._require_client()
        return await self._run(client.hget(key, field))

    async def hgetall(self, key: str) -> dict[str, str]:
        client = self._require_client()
        return await self._run(client.hgetall(key))

    async def exists(self, key: str) -> bool:
        client = self._require_client()
        return bool(await self._run(client.exists(key)))

    async def update_hash_if(
        self,
        key: str,
        field: str,
        predicate: Callable[[Optional[str]], bool],
        mapping: dict[str, Any],
    ) -> bool:
        """
        Write ``mapping`` into hash ``key`` only if ``predicate`` accepts the
        current value of ``field``. The check and the write are guarded by
        WATCH, so a concurrent change makes this return False without writing.
        """
        client = self._require_client()

        async def _check_and_write() -> bool:
            async with client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if not predicate(await pipe.hget(key, field)):
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={k: str(v) for k, v in mapping.items()})
                    await pipe.execute()
                    return True
                except WatchError:
                    return False

        return await self._run(_check_and_write())

    async def scan_keys(self, pattern: str) -> list[str]:
        client = self._require_client()

        async def _scan() -> list[str]:
            return [key async for key in client.scan_iter(match=pattern)]

        return await self._run(_scan())

    # Pub/sub

    async def publish(self, channel: str, message: str) -> int:
        """Publish ``message``; returns the number of subscribers that received it."""
        client = self._require_client()
        return await self._run(client.publish(channel, message))

    async def subscribe(self, channel: str, callback: MessageCallback) -> None:
        """Deliver every message on ``channel`` to ``callback(channel, data)``."""
        pubsub = self._require_pubsub()
        self._channel_callbacks[channel] = callback
        await self._run(pubsub.subscribe(**{channel: self._on_message}))
        self._ensure_listener()
        logger.debug(f"[{self.name}] Subscribed to {channel}")

    async def psubscribe(self, pattern: str, callback: MessageCallback) -> None:
        """Deliver messages on every channel matching ``pattern``."""
        pubsub = self._require_pubsub()
        self._pattern_callbacks[pattern] = callback
        await self._run(pubsub.psubscribe(**{pattern: self._on_message}))
        self._ensure_listener()
        logger.debug(f"[{self.name}] Pattern-subscribed to {pattern}")

    async def unsubscribe(self, channel: str) -> None:
        pubsub = self._require_pubsub()
        self._channel_callbacks.pop(channel, None)
        await self._run(pubsub.unsubscribe(channel))

    def _require_pubsub(self) -> PubSub:
        self._require_client()
        assert self._pubsub is not None
        return self._pubsub

    def _ensure_listener(self) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(
                self._listen(), name=f"{self.name}-listener"
            )

    async def _listen(self) -> None:
        # get_message() invokes _on_message itself for every subscribed
        # channel, one message at a time.
        while self._pubsub is not None:
            pubsub = self._pubsub
            try:
                await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_interval
                )
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                logger.error(f"[{self.name}] Subscriber error: {e}")
                await asyncio.sleep(self.poll_interval)

    async def _on_message(self, message: dict[str, Any]) -> None:
        if message.get("type") == "pmessage":
            callback = self._pattern_callbacks.get(message.get("pattern"))
        else:
            callback = self._channel_callbacks.get(message.get("channel"))
        if callback is None:
            return

        channel = message.get("channel")
        try:
            await callback(channel, message.get("data"))
        except Exception as e:
            logger.exception(f"[{self.name}] Callback for {channel} raised: {e}")
