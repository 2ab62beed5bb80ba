import time
from typing import Any, Optional

from pydantic import BaseModel, Field


class CacheEntryMetadata(BaseModel):
    size: int = Field(default=0, description="Serialized value size in bytes", ge=0)
    access_count: int = Field(default=0, ge=0)
    last_accessed: float = Field(default_factory=time.time)


class CacheEntry(BaseModel):
    key: str = Field(..., description="Original (unhashed) logical key")
    value: Any = None
    timestamp: float = Field(default_factory=time.time, description="Creation time (epoch seconds)")
    ttl: float = Field(..., description="Time to live in seconds", gt=0)
    metadata: CacheEntryMetadata = Field(default_factory=CacheEntryMetadata)

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class CacheStats(BaseModel):
    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    miss_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None


__all__ = ["CacheEntry", "CacheEntryMetadata", "CacheStats"]
