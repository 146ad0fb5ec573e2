"""
Optional Redis connection for the job-search cache.

The client is created at startup when REDIS_URL is set; without it, or when
the server is unreachable, every cache call is a miss.
"""
from typing import Optional

import redis.asyncio as aioredis

from resume_engine.config import get_settings
from resume_engine.utils.logger import get_logger

logger = get_logger("redis")

_redis_client: Optional[aioredis.Redis] = None


async def init_redis(url: Optional[str] = None) -> None:
    global _redis_client
    url = url if url is not None else get_settings().redis_url
    if not url:
        logger.info("redis.disabled")
        return

    client = aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    try:
        await client.ping()
    except (aioredis.RedisError, OSError) as exc:
        logger.warning("redis.unavailable", extra={"error": str(exc)[:200]})
        await client.aclose()
        return
    _redis_client = client
    logger.info("redis.connected")


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except (aioredis.RedisError, OSError) as exc:
            logger.warning("redis.close_failed", extra={"error": str(exc)[:200]})
        _redis_client = None


def get_redis() -> Optional[aioredis.Redis]:
    return _redis_client


async def is_redis_healthy() -> bool:
    if _redis_client is None:
        return False
    try:
        return bool(await _redis_client.ping())
    except (aioredis.RedisError, OSError):
        return False
