"""
Key/value stores for serializable payloads.

`ResponseCache` and `BlobSessionBackend` only depend on the `BlobStore`
protocol; pick `InMemoryBlobStore` for a single process or
`RedisBlobStore` when payloads must outlive it.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from redis.asyncio import Redis

from docforge.redis_client import (
    get_redis_client,
    redis_delete,
    redis_exists,
    redis_get_json,
    redis_keys,
    redis_set_json,
)

BLOB_KEY_TEMPLATE = "docforge:blob:{path}"


@runtime_checkable
class BlobStore(Protocol):
    async def read(self, path: str) -> Optional[Any]:
        ...

    async def write(self, path: str, payload: Any) -> None:
        ...

    async def exists(self, path: str) -> bool:
        ...

    async def delete(self, path: str) -> bool:
        ...

    async def list(self, prefix: str = "") -> List[str]:
        ...


class InMemoryBlobStore:
    """
    Dict-backed store. Payloads are round-tripped through JSON so callers
    never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def read(self, path: str) -> Optional[Any]:
        raw = self._data.get(path)
        if raw is None:
            return None
        return json.loads(raw)

    async def write(self, path: str, payload: Any) -> None:
        data = json.dumps(payload, ensure_ascii=False)
        async with self._lock:
            self._data[path] = data

    async def exists(self, path: str) -> bool:
        return path in self._data

    async def delete(self, path: str) -> bool:
        async with self._lock:
            return self._data.pop(path, None) is not None

    async def list(self, prefix: str = "") -> List[str]:
        return sorted(p for p in self._data if p.startswith(prefix))


class RedisBlobStore:
    """
    Blob store on top of redis.asyncio. Paths map to keys under
    `docforge:blob:`; values are JSON strings. Without an explicit client
    the shared one from `get_redis_client()` (REDIS_URL) is used.
    """

    def __init__(self, redis: Optional[Redis] = None, *, ttl_seconds: Optional[int] = None) -> None:
        self._redis = redis if redis is not None else get_redis_client()
        self._ttl_seconds = ttl_seconds
        self._prefix = BLOB_KEY_TEMPLATE.format(path="")

    def _key(self, path: str) -> str:
        return BLOB_KEY_TEMPLATE.format(path=path)

    async def read(self, path: str) -> Optional[Any]:
        return await redis_get_json(self._redis, self._key(path))

    async def write(self, path: str, payload: Any) -> None:
        await redis_set_json(self._redis, self._key(path), payload, ttl_seconds=self._ttl_seconds)

    async def exists(self, path: str) -> bool:
        return await redis_exists(self._redis, self._key(path))

    async def delete(self, path: str) -> bool:
        return await redis_delete(self._redis, self._key(path))

    async def list(self, prefix: str = "") -> List[str]:
        keys = await redis_keys(self._redis, self._key(f"{prefix}*"))
        return sorted(key[len(self._prefix):] for key in keys)


__all__ = ["BLOB_KEY_TEMPLATE", "BlobStore", "InMemoryBlobStore", "RedisBlobStore"]
