"""Redis helpers shared by the job broker and the distributed job locks."""

import redis.asyncio as redis

from settlement.config.settings import Settings, settings as default_settings


def get_redis_client(config: Settings | None = None) -> redis.Redis:
    """
    Create a Redis client for lock bookkeeping.

    The caller owns the client and must ``await client.aclose()``.
    """
    config = config or default_settings
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
        db=config.redis_db,
        decode_responses=True,
        socket_timeout=config.chain_timeout_seconds,
    )


def get_redis_url_masked(config: Settings | None = None) -> str:
    """Redis URL with the password hidden, for log lines."""
    config = config or default_settings
    auth = ":****@" if config.redis_password else ""
    return f"redis://{auth}{config.redis_host}:{config.redis_port}/{config.redis_db}"
