"""Distributed lock helper for worker tasks."""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from redis.exceptions import RedisError

from settlement.utils.distributed_lock import DistributedLock
from settlement.utils.redis_utils import get_redis_client


T = TypeVar("T")


async def run_exclusive(
    lock_key: str,
    job: Callable[[], Awaitable[T]],
    timeout: int = 300,
) -> T | None:
    """
    Run ``job`` while holding a cluster-wide lock.

    Args:
        lock_key: Lock name
        job: Coroutine factory
        timeout: Lock expiry in seconds, longer than the job's time limit

    Returns:
        Job result, or None if another worker holds the lock
    """
    redis_client = get_redis_client()
    try:
        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock(lock_key, timeout=timeout) as acquired:
            if not acquired:
                logger.info(f"Skipping {lock_key}: already running elsewhere")
                return None
            return await job()
    finally:
        try:
            await redis_client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis client: {e}")
