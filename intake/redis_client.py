import redis.asyncio as redis
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import orjson


log = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised by key-value backends when a read or write could not complete"""


class KeyValueStore(ABC):
    """
    Minimal JSON key-value interface: get / set / delete.

    No transactions. Callers build consistency from idempotent
    read-modify-write steps. Backends raise StorageError on failure and
    return None from get() only when the key is absent.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None if the key does not exist"""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key; deleting a missing key is not an error"""

    async def close(self) -> None:
        """Release connections. Default is a no-op"""


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, url: str):
        self.url = url
        self._client = None

    async def get_client(self):
        """Get or create Redis client"""
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            log.info(f"Redis client connected to {self.url}")
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            client = await self.get_client()
            raw = await client.get(key)
        except redis.RedisError as e:
            log.error(f"Failed to read {key}: {e}")
            raise StorageError(f"read failed for {key}") from e
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            log.error(f"Corrupt value stored under {key}: {e}")
            raise StorageError(f"corrupt value for {key}") from e

    async def set(self, key: str, value: Any) -> None:
        try:
            client = await self.get_client()
            await client.set(key, orjson.dumps(value).decode("utf-8"))
        except (redis.RedisError, TypeError) as e:
            log.error(f"Failed to write {key}: {e}")
            raise StorageError(f"write failed for {key}") from e

    async def delete(self, key: str) -> None:
        try:
            client = await self.get_client()
            await client.delete(key)
        except redis.RedisError as e:
            log.error(f"Failed to delete {key}: {e}")
            raise StorageError(f"delete failed for {key}") from e

    async def close(self):
        """Close Redis connection"""
        if self._client:
            await self._client.aclose()
            self._client = None
            log.info("Redis client closed")


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local backend for tests and single-process development.
    Values go through the same JSON encoding as Redis so both backends
    hand back equal data.
    """

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return orjson.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = orjson.dumps(value)
        except TypeError as e:
            raise StorageError(f"write failed for {key}") from e

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


def create_store(backend: str, redis_url: str) -> KeyValueStore:
    if backend == "memory":
        log.warning("Using in-memory store, state is lost on restart")
        return InMemoryKeyValueStore()
    if backend == "redis":
        return RedisKeyValueStore(redis_url)
    raise ValueError(f"Unknown store backend: {backend}. Available: ['redis', 'memory']")


def clean_id(value) -> str:
    """Bitbucket UUIDs arrive wrapped in braces; keys use the bare value"""
    return str(value).replace("{", "").replace("}", "")
