"""Redis-backed distributed lock.

Lock keys used by the indexing pipeline:

- ``lock:keyword_table:<dataset_id>`` guards every keyword-table mutation.
- ``lock:document:update:enabled_<document_id>`` is held across a full
  enable/disable toggle.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis

from voidx.core.exceptions import LockError
from voidx.core.interfaces import Locker
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

KEYWORD_TABLE_LOCK = "lock:keyword_table:{dataset_id}"
DOCUMENT_ENABLED_LOCK = "lock:document:update:enabled_{document_id}"

# Delete only when the stored token is ours
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisPool:
    """Redis connection pool manager."""

    def __init__(self):
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def initialize(self, redis_url: str, max_connections: int = 50) -> None:
        """Create the pool and verify connectivity."""
        try:
            self._pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                retry_on_timeout=True,
                health_check_interval=30,
                encoding="utf-8",
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
            LOGGER.info("Redis connection pool initialized", extra={"max_connections": max_connections})
        except Exception as e:
            LOGGER.error("Failed to initialize Redis pool", extra={"error": str(e)})
            raise

    def get_client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Redis pool not initialized")
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        LOGGER.info("Redis connection pool closed")

    async def health_check(self) -> bool:
        try:
            if self._client:
                await self._client.ping()
                return True
        except Exception as e:
            LOGGER.error("Redis health check failed", extra={"error": str(e)})
        return False


redis_pool = RedisPool()


class RedisLocker:
    """``SET NX PX`` lock with compare-and-delete release."""

    def __init__(self, client: redis.Redis):
        self._client = client
        self._release = client.register_script(_RELEASE_SCRIPT)

    async def acquire(self, key: str, ttl: float) -> str:
        token = uuid.uuid4().hex
        acquired = await self._client.set(key, token, nx=True, px=int(ttl * 1000))
        return token if acquired else ""

    async def release(self, key: str, token: str) -> bool:
        if not token:
            return False
        released = await self._release(keys=[key], args=[token])
        if not released:
            LOGGER.warning("Lock already expired or taken over", extra={"key": key})
        return bool(released)


@asynccontextmanager
async def hold_lock(
    locker: Locker,
    key: str,
    ttl: float = 30.0,
    timeout: float = 10.0,
    retry_interval: float = 0.1,
) -> AsyncIterator[str]:
    """Hold ``key`` for the duration of the block.

    Acquisition is retried until ``timeout`` elapses; the lock is released on
    every exit path.

    Raises:
        LockError: If the lock could not be acquired in time
    """
    deadline = time.monotonic() + timeout
    token = await locker.acquire(key, ttl)
    while not token:
        if time.monotonic() >= deadline:
            raise LockError(f"Could not acquire lock {key} within {timeout}s")
        await asyncio.sleep(retry_interval)
        token = await locker.acquire(key, ttl)

    try:
        yield token
    finally:
        try:
            await locker.release(key, token)
        except Exception as e:
            LOGGER.error("Failed to release lock", exc_info=True, extra={"key": key, "error": str(e)})
