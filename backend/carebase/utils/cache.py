"""Tenant-scoped Redis cache for care plan reads.

The care plan list is the hot read: each dashboard refresh rescores
every plan and draft of a client.  It is cached per agency under

    t:{tenant_schema}:{prefix}:{function}:{md5 of keyword args}

and every draft write or finalize calls `invalidate_cache("care_plans:*")`.

Redis is optional.  CACHE_ENABLED=false skips it entirely, and any
RedisError falls through to the uncached call.
"""

import functools
import hashlib
import json
import logging
from datetime import date
from typing import Any, Callable

import redis.asyncio as redis

from carebase.config import settings
from carebase.tenancy import _tenant_ctx

logger = logging.getLogger(__name__)

_redis_client: redis.Redis | None = None

_KEYABLE = (str, int, float, bool, type(None))


async def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose()


def cache_key(**kwargs: Any) -> str:
    if not kwargs:
        return "default"
    return hashlib.md5(json.dumps(kwargs, sort_keys=True).encode()).hexdigest()


def _scoped(key: str) -> str:
    tenant = _tenant_ctx.get()
    return f"t:{tenant}:{key}" if tenant else key


def _keyable(kwargs: dict[str, Any]) -> dict[str, Any]:
    """Plain keyword values only; sessions, actors and `_`-names are skipped."""
    out = {}
    for name, value in kwargs.items():
        if name.startswith("_"):
            continue
        if isinstance(value, _KEYABLE):
            out[name] = value
        elif isinstance(value, date):
            out[name] = value.isoformat()
    return out


def _to_json(result: Any) -> str:
    if isinstance(result, list):
        result = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in result]
    elif hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    return json.dumps(result)


def cached(ttl: int = 300, prefix: str = "cache"):
    """Cache an async function's result as JSON in Redis for `ttl` seconds.

    A hit returns the decoded JSON, so callers get plain dicts where the
    uncached call returns pydantic models.  FastAPI's response_model
    validates both the same way.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            key = _scoped(f"{prefix}:{func.__name__}:{cache_key(**_keyable(kwargs))}")
            try:
                client = await get_redis()
                hit = await client.get(key)
            except redis.RedisError as exc:
                logger.warning("Cache read failed for %s, serving uncached: %s", key, exc)
                return await func(*args, **kwargs)
            if hit is not None:
                logger.debug("Cache hit %s", key)
                return json.loads(hit)

            result = await func(*args, **kwargs)
            try:
                await client.setex(key, ttl, _to_json(result))
            except redis.RedisError as exc:
                logger.warning("Cache write failed for %s: %s", key, exc)
            return result

        return wrapper

    return decorator


async def invalidate_cache(pattern: str) -> int:
    """Delete the current agency's keys matching `pattern`; returns how many."""
    if not settings.cache_enabled:
        return 0
    scoped_pattern = _scoped(pattern)
    try:
        client = await get_redis()
        keys = [key async for key in client.scan_iter(match=scoped_pattern)]
        if keys:
            await client.delete(*keys)
    except redis.RedisError as exc:
        logger.warning("Cache invalidation failed for %s: %s", scoped_pattern, exc)
        return 0
    logger.debug("Invalidated %d cache key(s) matching %s", len(keys), scoped_pattern)
    return len(keys)
