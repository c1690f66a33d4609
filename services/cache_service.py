"""
CacheService - In-process TTL cache for dashboard aggregates.

Entries are keyed by string; writers that change correlations or outcomes
drop whole key families with delete_prefix().
"""

from typing import Any, Optional, Dict, Callable
import time
import threading
import logging

logger = logging.getLogger(__name__)


class CacheEntry:
    """A cached value and its expiry"""

    def __init__(self, value: Any, ttl: Optional[int] = None):
        self.value = value
        self.expires_at = time.monotonic() + ttl if ttl else None

    def is_expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class CacheService:
    """
    Thread-safe in-memory cache with TTL support.

    A single instance is shared per process through the service registry.
    """

    def __init__(self, default_ttl: Optional[int] = None):
        self.default_ttl = default_ttl
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        """
        Returns:
            Cached value, or None when missing or expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                if not entry.is_expired():
                    return entry.value
                del self._cache[key]
                logger.debug(f"Cache expired for key: {key}")

            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._cache[key] = CacheEntry(value, ttl if ttl is not None else self.default_ttl)
            logger.debug(f"Cached value for key: {key}")

    def delete_prefix(self, prefix: str) -> int:
        """
        Drop every key starting with prefix.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = [key for key in self._cache if key.startswith(prefix)]
            for key in keys:
                del self._cache[key]

        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries with prefix {prefix}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Cached value for key, computing and storing it on a miss"""
        value = self.get(key)
        if value is None:
            value = factory()
            self.set(key, value, ttl)
        return value
