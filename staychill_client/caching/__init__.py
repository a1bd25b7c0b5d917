"""
Client caching package.

Two layers with different lifetimes: the query cache governs a single
client session, the persistent cache survives restarts and is shared by
every client on the same storage. Prefer explicit invalidation over short
windows.
"""

from .keys import ResourceKey, normalize_key, key_to_string, resource_url, create_cache_key
from .staleness import CACHE_TIMES, stale_time_for
from .storage import StorageBackend, MemoryStorage, RedisStorage
from .persistent_cache import PersistentCache, STORAGE_KEYS
from .query_cache import QueryCache, QueryEntry
from .invalidation import INVALIDATION_GRAPH, dependents_for

__all__ = [
    "ResourceKey",
    "normalize_key",
    "key_to_string",
    "resource_url",
    "create_cache_key",
    "CACHE_TIMES",
    "stale_time_for",
    "StorageBackend",
    "MemoryStorage",
    "RedisStorage",
    "PersistentCache",
    "STORAGE_KEYS",
    "QueryCache",
    "QueryEntry",
    "INVALIDATION_GRAPH",
    "dependents_for",
]
