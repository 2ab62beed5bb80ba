"""
Shared Redis access for the durable storage backends.

`get_redis_client()` builds one `redis.asyncio.Redis` per process from
REDIS_URL. The helpers below store JSON values and walk key patterns;
callers pass the client explicitly so tests can substitute a fake.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

from redis.asyncio import Redis

from .logging_config import logger
from .settings import settings

_redis_client: Optional[Redis] = None


def get_redis_client() -> Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("redis: client created for %s", settings.redis_url.rsplit("@", 1)[-1])
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose()


def _as_text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


async def redis_get_json(redis: Redis, key: str) -> Optional[Any]:
    """
    Missing keys and payloads that are not valid JSON both read as None.
    """
    raw = await redis.get(key)
    if raw is None:
        return None
    try:
        return json.loads(_as_text(raw))
    except json.JSONDecodeError:
        logger.warning("redis: ignoring malformed JSON under %s", key)
        return None


async def redis_set_json(redis: Redis, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
    data = json.dumps(value, ensure_ascii=False)
    if ttl_seconds is None:
        await redis.set(key, data)
    else:
        await redis.set(key, data, ex=ttl_seconds)


async def redis_delete(redis: Redis, key: str) -> bool:
    return bool(await redis.delete(key))


async def redis_exists(redis: Redis, key: str) -> bool:
    return bool(await redis.exists(key))


async def redis_keys(redis: Redis, pattern: str) -> List[str]:
    """All keys matching a glob pattern, as text, via SCAN."""
    return [_as_text(key) async for key in redis.scan_iter(match=pattern)]


__all__ = [
    "close_redis_client",
    "get_redis_client",
    "redis_delete",
    "redis_exists",
    "redis_get_json",
    "redis_keys",
    "redis_set_json",
]
