import pytest

import docforge.redis_client as redis_client
from docforge.redis_client import (
    close_redis_client,
    redis_delete,
    redis_exists,
    redis_get_json,
    redis_keys,
    redis_set_json,
)


class ScanningRedis:
    def __init__(self) -> None:
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def exists(self, key):
        return int(key in self.data)

    async def scan_iter(self, match="*"):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key.encode("utf-8")

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_json_helpers():
    redis = ScanningRedis()

    await redis_set_json(redis, "a", {"x": [1, 2]}, ttl_seconds=5)
    await redis_set_json(redis, "b", "plain")

    assert await redis_get_json(redis, "a") == {"x": [1, 2]}
    assert redis.expiry == {"a": 5}
    assert await redis_exists(redis, "b") is True
    assert await redis_delete(redis, "b") is True
    assert await redis_delete(redis, "b") is False
    assert await redis_get_json(redis, "b") is None


@pytest.mark.asyncio
async def test_get_json_tolerates_bytes_and_garbage():
    redis = ScanningRedis()
    redis.data["bytes"] = b'{"ok": true}'
    redis.data["garbage"] = "{nope"

    assert await redis_get_json(redis, "bytes") == {"ok": True}
    assert await redis_get_json(redis, "garbage") is None


@pytest.mark.asyncio
async def test_redis_keys_decodes_scan_results():
    redis = ScanningRedis()
    redis.data.update({"docforge:blob:a": "1", "docforge:blob:b": "2", "other": "3"})

    assert sorted(await redis_keys(redis, "docforge:blob:*")) == ["docforge:blob:a", "docforge:blob:b"]


@pytest.mark.asyncio
async def test_close_redis_client_resets_shared_client(monkeypatch):
    shared = ScanningRedis()
    monkeypatch.setattr(redis_client, "_redis_client", shared)

    await close_redis_client()
    await close_redis_client()

    assert shared.closed is True
    assert redis_client._redis_client is None
