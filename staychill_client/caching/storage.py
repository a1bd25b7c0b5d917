"""
Durable key/value storage backends shared between clients.

Values are strings; serialisation is the persistent cache's concern.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import StorageError, StorageQuotaExceeded


class StorageBackend(ABC):
    """Minimal async key/value contract, modelled on browser local storage."""

    async def start(self):
        """Open connections, if any."""

    async def stop(self):
        """Release connections, if any."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        ...


class MemoryStorage(StorageBackend):
    """Process-local storage; share one instance between clients to model tabs."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
        return size + len(key) + len(value)

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageQuotaExceeded(details={"key": key, "quota_bytes": self.quota_bytes})
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._items.keys())

    def __len__(self) -> int:
        return len(self._items)


class RedisStorage(StorageBackend):
    """Redis-backed storage shared by every client pointing at the same namespace."""

    def __init__(self, redis_url: str, namespace: str = "staychill:storage:"):
        self.redis_url = redis_url
        self.namespace = namespace
        self.logger = get_logger("client.storage.redis")
        self._redis: Optional[redis.Redis] = None

    async def start(self):
        """Connect and verify the server answers."""
        try:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            await self._redis.ping()
            self.logger.info("Redis storage started", namespace=self.namespace)
        except redis.RedisError as e:
            self.logger.error("Failed to start Redis storage", error=str(e))
            raise StorageError(str(e), details={"redis_url": self.redis_url})

    async def stop(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis storage stopped")

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self._redis

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get_item(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        return await client.get(self._full_key(key))

    async def set_item(self, key: str, value: str) -> None:
        client = await self._get_redis()
        try:
            await client.set(self._full_key(key), value)
        except redis.ResponseError as e:
            # maxmemory with noeviction policy
            if "OOM" in str(e):
                raise StorageQuotaExceeded(str(e), details={"key": key})
            raise

    async def remove_item(self, key: str) -> None:
        client = await self._get_redis()
        await client.delete(self._full_key(key))

    async def keys(self) -> List[str]:
        client = await self._get_redis()
        prefix_length = len(self.namespace)
        return [key[prefix_length:] async for key in client.scan_iter(match=f"{self.namespace}*")]
