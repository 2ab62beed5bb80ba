"""
Content-addressed, TTL-bounded cache of backend responses.

Entries live in a `BlobStore` under cache/entry_<sha256>.json while an
in-memory index tracks size and access metadata. Every index mutation,
including the background sweep, happens under one asyncio lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from docforge.errors import ConfigurationError
from docforge.logging_config import logger
from docforge.models import CacheEntry, CacheEntryMetadata, CacheStats
from docforge.settings import settings
from docforge.storage.blob_store import BlobStore, InMemoryBlobStore

CACHE_DIR = "cache"
_ENTRY_PREFIX = f"{CACHE_DIR}/entry_"


@dataclass
class _IndexRecord:
    key: str
    timestamp: float
    ttl: float
    size: int
    access_count: int
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


def hash_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _entry_path(cache_key: str) -> str:
    return f"{_ENTRY_PREFIX}{cache_key}.json"


def _estimate_size(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


class ResponseCache:
    def __init__(
        self,
        storage: Optional[BlobStore] = None,
        *,
        default_ttl: Optional[float] = None,
        max_size: Optional[int] = None,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage: BlobStore = storage if storage is not None else InMemoryBlobStore()
        self.default_ttl = float(default_ttl if default_ttl is not None else settings.cache_default_ttl)
        self.max_size = max_size if max_size is not None else settings.cache_max_size_bytes
        self.cleanup_interval = (
            cleanup_interval if cleanup_interval is not None else settings.cache_cleanup_interval
        )
        if self.default_ttl <= 0:
            raise ConfigurationError("default_ttl must be positive")
        if self.cleanup_interval <= 0:
            raise ConfigurationError("cleanup_interval must be positive")

        self._clock = clock
        self._index: Dict[str, _IndexRecord] = {}
        self._total_size = 0
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        entry_ttl = float(ttl) if ttl is not None else self.default_ttl
        if entry_ttl <= 0:
            raise ConfigurationError("Cache ttl must be positive", details={"ttl": ttl})

        cache_key = hash_key(key)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            timestamp=now,
            ttl=entry_ttl,
            metadata=CacheEntryMetadata(size=_estimate_size(value), access_count=0, last_accessed=now),
        )

        async with self._lock:
            await self._storage.write(_entry_path(cache_key), entry.model_dump(mode="json"))
            self._index_put(cache_key, entry)
            self._sets += 1
            await self._enforce_max_size_locked()

    async def get(self, key: str) -> Optional[Any]:
        cache_key = hash_key(key)
        async with self._lock:
            record = self._index.get(cache_key)
            if record is None:
                self._misses += 1
                return None

            now = self._clock()
            if record.is_expired(now):
                await self._remove_locked(cache_key)
                self._misses += 1
                return None

            payload = await self._storage.read(_entry_path(cache_key))
            if payload is None:
                # Backing blob disappeared underneath the index.
                self._index_drop(cache_key)
                self._misses += 1
                return None

            record.access_count += 1
            record.last_accessed = now
            payload["metadata"] = {
                "size": record.size,
                "access_count": record.access_count,
                "last_accessed": record.last_accessed,
            }
            await self._storage.write(_entry_path(cache_key), payload)
            self._hits += 1
            return payload.get("value")

    async def has(self, key: str) -> bool:
        record = self._index.get(hash_key(key))
        return record is not None and not record.is_expired(self._clock())

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return await self._remove_locked(hash_key(key))

    async def clear(self) -> None:
        async with self._lock:
            paths = await self._storage.list(_ENTRY_PREFIX)
            for path in paths:
                await self._storage.delete(path)
            self._deletes += len(paths)
            self._index.clear()
            self._total_size = 0

    async def cleanup(self) -> int:
        """
        Remove every TTL-expired entry regardless of access.
        Returns the number of removed entries.
        """
        async with self._lock:
            now = self._clock()
            expired = [k for k, rec in self._index.items() if rec.is_expired(now)]
            for cache_key in expired:
                await self._remove_locked(cache_key)
        if expired:
            logger.debug("response cache: swept %d expired entries", len(expired))
        return len(expired)

    async def get_stats(self) -> CacheStats:
        async with self._lock:
            timestamps = [rec.timestamp for rec in self._index.values()]
            total_requests = self._hits + self._misses
            return CacheStats(
                total_entries=len(self._index),
                total_size=self._total_size,
                hit_rate=self._hits / total_requests if total_requests else 0.0,
                miss_rate=self._misses / total_requests if total_requests else 0.0,
                oldest_entry=min(timestamps) if timestamps else None,
                newest_entry=max(timestamps) if timestamps else None,
            )

    async def initialize(self) -> None:
        """
        Rebuild the index from entries already present in the blob store,
        then drop expired ones and enforce the size budget.
        """
        async with self._lock:
            self._index.clear()
            self._total_size = 0
            for path in await self._storage.list(_ENTRY_PREFIX):
                payload = await self._storage.read(path)
                try:
                    entry = CacheEntry.model_validate(payload)
                except ValueError:
                    logger.warning("response cache: dropping unreadable entry %s", path)
                    await self._storage.delete(path)
                    continue
                cache_key = path[len(_ENTRY_PREFIX):-len(".json")]
                self._index_put(cache_key, entry)
            await self._enforce_max_size_locked()
        await self.cleanup()

    # ------------------------------------------------------------------
    # Background sweep lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="response-cache-sweeper"
        )

    async def stop(self) -> None:
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def shutdown(self) -> None:
        await self.stop()
        await self.cleanup()

    async def __aenter__(self) -> "ResponseCache":
        await self.initialize()
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Unexpected error while sweeping response cache")

    # ------------------------------------------------------------------
    # Index helpers (callers hold self._lock)
    # ------------------------------------------------------------------

    def _index_put(self, cache_key: str, entry: CacheEntry) -> None:
        previous = self._index.get(cache_key)
        if previous is not None:
            self._total_size -= previous.size
        self._index[cache_key] = _IndexRecord(
            key=entry.key,
            timestamp=entry.timestamp,
            ttl=entry.ttl,
            size=entry.metadata.size,
            access_count=entry.metadata.access_count,
            last_accessed=entry.metadata.last_accessed,
        )
        self._total_size += entry.metadata.size

    def _index_drop(self, cache_key: str) -> Optional[_IndexRecord]:
        record = self._index.pop(cache_key, None)
        if record is not None:
            self._total_size -= record.size
        return record

    async def _remove_locked(self, cache_key: str) -> bool:
        removed_blob = await self._storage.delete(_entry_path(cache_key))
        record = self._index_drop(cache_key)
        if record is None and not removed_blob:
            return False
        self._deletes += 1
        return True

    async def _enforce_max_size_locked(self) -> List[str]:
        evicted: List[str] = []
        if not self.max_size or self._total_size <= self.max_size:
            return evicted
        by_access = sorted(self._index.items(), key=lambda item: item[1].last_accessed)
        for cache_key, record in by_access:
            if self._total_size <= self.max_size:
                break
            await self._remove_locked(cache_key)
            evicted.append(record.key)
        if evicted:
            logger.info(
                "response cache: evicted %d entries to stay under %d bytes",
                len(evicted),
                self.max_size,
            )
        return evicted


__all__ = ["CACHE_DIR", "ResponseCache", "hash_key"]
