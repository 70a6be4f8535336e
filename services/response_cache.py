# services/response_cache.py
"""
In-process response cache with per-entry TTL.

Expiry is lazy: an entry older than its TTL is deleted on the next ``get`` and
reported as a miss. There is no background sweep. Keys are built by callers
and must encode every parameter that affects the cached value.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from contracts.models import CacheEntry

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Key -> value store in front of the marketplace client.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Args:
            clock: Returns current time in epoch seconds
        """
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on miss (absent or expired).
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"Cache MISS: {key}")
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                logger.debug(f"Cache EXPIRED: {key}")
                return None
            logger.debug(f"Cache HIT: {key}")
            return entry.data

    def set(self, key: str, value: Any, ttl: float) -> None:
        """
        Store value under key for ``ttl`` seconds, replacing any previous entry.
        """
        with self._lock:
            self._entries[key] = CacheEntry(data=value, created_at=self._clock(), ttl=ttl)

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry access without expiry handling (diagnostics)."""
        return self._entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_response_cache: Optional[ResponseCache] = None


def get_response_cache() -> ResponseCache:
    """Get or create the process-wide response cache."""
    global _response_cache
    if _response_cache is None:
        _response_cache = ResponseCache()
    return _response_cache
