"""
JSON cache on top of the optional Redis client.

A cache failure is always a miss: reads return None and writes return False,
so callers fall through to the real lookup.
"""
import hashlib
import json
from typing import Any, Optional

from redis.exceptions import RedisError

from resume_engine.services.redis_client import get_redis
from resume_engine.utils.logger import get_logger
from resume_engine.utils.metrics import inc

logger = get_logger("cache")

KEY_PREFIX = "resume_engine:"


def make_key(namespace: str, payload: Any) -> str:
    """Stable key for a JSON-serializable payload, e.g. search parameters."""
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()[:32]
    return f"{namespace}:{digest}"


async def cache_get(key: str) -> Optional[Any]:
    r = get_redis()
    if r is None:
        return None
    try:
        raw = await r.get(f"{KEY_PREFIX}{key}")
    except (RedisError, OSError) as exc:
        logger.debug(f"cache GET {key} failed: {exc}")
        return None
    if raw is None:
        inc("cache.miss")
        return None
    inc("cache.hit")
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def cache_set(key: str, value: Any, ttl: int = 3600) -> bool:
    r = get_redis()
    if r is None:
        return False
    try:
        await r.set(f"{KEY_PREFIX}{key}", json.dumps(value, default=str), ex=ttl)
        return True
    except (RedisError, OSError) as exc:
        logger.debug(f"cache SET {key} failed: {exc}")
        return False
