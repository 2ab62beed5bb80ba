from .blob_store import BLOB_KEY_TEMPLATE, BlobStore, InMemoryBlobStore, RedisBlobStore
from .response_cache import CACHE_DIR, ResponseCache, hash_key

__all__ = [
    "BLOB_KEY_TEMPLATE",
    "BlobStore",
    "CACHE_DIR",
    "InMemoryBlobStore",
    "RedisBlobStore",
    "ResponseCache",
    "hash_key",
]
