# infra/cache.py
"""
Persistent key-value store backends for cross-session caching.

Values are strings (callers serialize JSON themselves). No transactions;
last write wins.
"""
import fnmatch
import logging
from typing import Dict, List, Optional, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String-keyed async storage used by the suggestion store."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def keys(self, pattern: str = "*") -> List[str]: ...


class RedisKeyValueStore:
    """
    Redis-backed store. Survives application restarts.
    """

    def __init__(self, redis_url: str):
        """
        Initialize store.

        Args:
            redis_url: Redis connection URL
        """
        self.redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    async def connect(self):
        """Establish Redis connection"""
        self._client = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        await self._client.ping()
        logger.info("Suggestion store connected to Redis")

    async def close(self):
        """Close Redis connection"""
        if self._client:
            await self._client.aclose()
            logger.info("Suggestion store disconnected from Redis")

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def keys(self, pattern: str = "*") -> List[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]


class MemoryKeyValueStore:
    """
    In-process store with the same interface. Used when Redis is unavailable
    and in tests.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def keys(self, pattern: str = "*") -> List[str]:
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
