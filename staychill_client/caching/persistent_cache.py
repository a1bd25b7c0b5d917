"""
Durable cache with expiry bookkeeping.

The cache is an optimisation, never a correctness dependency: every storage
failure is logged and the operation degrades to a no-op.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from shared.logging import get_logger
from .staleness import CACHE_TIMES
from .storage import StorageBackend


STORAGE_KEYS = {
    "AUTH_USER": "staychill_auth_user",
    "FEATURED_PROPERTIES": "staychill_featured_properties",
    "FEATURED_RESTAURANTS": "staychill_featured_restaurants",
    "LAST_FETCH": "staychill_last_fetch_",
    "SESSION_TOKEN": "staychill_session_token",
}

GENERAL_ENTRY_PREFIX = "cache_"

# clear_all never touches keys outside these prefixes
NAMESPACE_PREFIXES = ("staychill_", GENERAL_ENTRY_PREFIX)


@dataclass
class CacheEntry:
    """Stored value plus absolute expiry in epoch milliseconds."""

    data: Any
    expiry: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expiry

    def dumps(self) -> str:
        return json.dumps({"data": self.data, "expiry": self.expiry})

    @classmethod
    def loads(cls, raw: str) -> "CacheEntry":
        item = json.loads(raw)
        return cls(data=item.get("data"), expiry=int(item.get("expiry") or 0))


def last_fetch_key(key: str) -> str:
    return f"{STORAGE_KEYS['LAST_FETCH']}{key}"


class PersistentCache:
    """Key/value cache over a storage backend, with lazy eviction."""

    def __init__(self, storage: StorageBackend, *, clock: Callable[[], float] = time.time):
        self.storage = storage
        self._clock = clock
        self.logger = get_logger("client.persistent_cache")

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    async def set(self, key: str, value: Any, ttl_ms: int = CACHE_TIMES["default"]) -> bool:
        """Store a value with an absolute expiry and record the fetch time."""
        now = self._now_ms()
        try:
            entry = CacheEntry(data=value, expiry=now + ttl_ms)
            await self.storage.set_item(key, entry.dumps())
            await self.storage.set_item(last_fetch_key(key), str(now))
            return True
        except Exception as e:
            self.logger.warning("Error caching data", key=key, error=str(e))
            return False

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired.

        Expired entries are deleted here; nothing scans storage ahead of time.
        """
        try:
            raw = await self.storage.get_item(key)
            if raw is None:
                return None

            entry = CacheEntry.loads(raw)
            if not entry.expiry or entry.is_expired(self._now_ms()):
                await self.storage.remove_item(key)
                self.logger.debug("Evicted expired cache entry", key=key)
                return None

            return entry.data
        except Exception as e:
            self.logger.warning("Error retrieving cached data", key=key, error=str(e))
            return None

    async def is_fresh(self, key: str, max_age_ms: int = CACHE_TIMES["default"]) -> bool:
        """True when the last fetch for ``key`` happened less than ``max_age_ms`` ago."""
        try:
            fetch_time = await self.storage.get_item(last_fetch_key(key))
            if not fetch_time:
                return False
            return self._now_ms() - int(fetch_time) < max_age_ms
        except Exception as e:
            self.logger.debug("Freshness check failed", key=key, error=str(e))
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self.storage.remove_item(key)
            await self.storage.remove_item(last_fetch_key(key))
            return True
        except Exception as e:
            self.logger.warning("Error removing cached data", key=key, error=str(e))
            return False

    async def remove_where(self, predicate: Callable[[str], bool]) -> int:
        """Remove every application entry whose storage key satisfies ``predicate``."""
        removed = 0
        try:
            for key in await self.storage.keys():
                if key.startswith(STORAGE_KEYS["LAST_FETCH"]) or not key.startswith(NAMESPACE_PREFIXES):
                    continue
                if predicate(key):
                    await self.remove(key)
                    removed += 1
        except Exception as e:
            self.logger.warning("Error removing matching cached data", error=str(e))
        return removed

    async def clear_all(self) -> int:
        """Remove all application-owned keys, leaving foreign keys alone."""
        removed = 0
        try:
            for key in await self.storage.keys():
                if key.startswith(NAMESPACE_PREFIXES):
                    await self.storage.remove_item(key)
                    removed += 1
            self.logger.info("Persistent cache cleared", removed=removed)
        except Exception as e:
            self.logger.warning("Error clearing cached data", error=str(e))
        return removed
