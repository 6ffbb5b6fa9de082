"""
Distributed lock.

Redis-backed lock that keeps scheduled jobs from running twice at the
same time across workers. Without a Redis client it degrades to an
in-process asyncio lock (single worker deployments and tests).
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError


# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_local_locks: dict[str, asyncio.Lock] = {}


class DistributedLock:
    """Redis SET NX lock with token-checked release."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        prefix: str = "settlement:lock:",
    ) -> None:
        self.redis_client = redis_client
        self.prefix = prefix
        self.logger = logger.bind(service="DistributedLock")

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        timeout: int = 60,
        blocking_timeout: float = 0,
    ) -> AsyncIterator[bool]:
        """
        Acquire the lock for the duration of the block.

        Args:
            key: Lock name
            timeout: Lock expiry in seconds (guards against dead workers)
            blocking_timeout: Seconds to wait for the lock, 0 to fail fast

        Yields:
            True if the lock was acquired, False otherwise
        """
        if self.redis_client is None:
            async with self._local_lock(key, blocking_timeout) as acquired:
                yield acquired
            return

        name = f"{self.prefix}{key}"
        token = uuid.uuid4().hex
        acquired = await self._acquire(name, token, timeout, blocking_timeout)
        if not acquired:
            self.logger.info(f"Lock {name} is held by another worker")
        try:
            yield acquired
        finally:
            if acquired:
                await self._release(name, token)

    async def _acquire(
        self, name: str, token: str, timeout: int, blocking_timeout: float
    ) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + blocking_timeout
        while True:
            if await self.redis_client.set(name, token, nx=True, ex=timeout):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.1)

    async def _release(self, name: str, token: str) -> None:
        try:
            await self.redis_client.eval(_RELEASE_SCRIPT, 1, name, token)
        except RedisError as e:
            # Expiry releases it eventually
            self.logger.warning(f"Failed to release lock {name}: {e}")

    @asynccontextmanager
    async def _local_lock(
        self, key: str, blocking_timeout: float
    ) -> AsyncIterator[bool]:
        local = _local_locks.setdefault(key, asyncio.Lock())
        if local.locked() and blocking_timeout <= 0:
            yield False
            return
        try:
            await asyncio.wait_for(local.acquire(), timeout=blocking_timeout or None)
        except TimeoutError:
            yield False
            return
        try:
            yield True
        finally:
            local.release()
