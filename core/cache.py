# core/cache.py

"""
In-memory query cache for derived values (lists, totals, dashboard figures).

Keys are ``"<entity>:<suffix>"``. Change-feed handlers invalidate a whole
entity prefix so the next read recomputes instead of serving a stale value.
One cache lives on each SyncContext; there is no module-level instance.
"""

from typing import Optional, Any, Callable, Awaitable
from datetime import datetime, timedelta
from threading import Lock
from core.logging_config import logger


class CacheEntry:
    """Represents a cached value with expiration time."""

    def __init__(self, value: Any, ttl_seconds: int):
        self.value = value
        self.expires_at = datetime.now() + timedelta(seconds=ttl_seconds)

    def is_expired(self) -> bool:
        """Check if the cache entry has expired."""
        return datetime.now() >= self.expires_at


class QueryCache:
    """
    Simple in-memory cache with TTL support and prefix invalidation.

    Thread-safe for concurrent access.
    """

    def __init__(self, default_ttl_seconds: int = 300):
        self._cache: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.default_ttl_seconds = default_ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Returns:
            Cached value or None if not found or expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if entry.is_expired():
                del self._cache[key]
                return None

            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        with self._lock:
            self._cache[key] = CacheEntry(value, ttl_seconds or self.default_ttl_seconds)

    def delete(self, key: str):
        with self._lock:
            self._cache.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """
        Drop every entry whose key is ``prefix`` or starts with ``prefix:``.

        Returns:
            Number of entries dropped
        """
        with self._lock:
            stale = [
                key for key in self._cache
                if key == prefix or key.startswith(f"{prefix}:")
            ]
            for key in stale:
                del self._cache[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cached queries for '{prefix}'")
        return len(stale)

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[int] = None,
    ) -> Any:
        """Return the cached value, or await ``fetcher`` and cache its result."""
        value = self.get(key)
        if value is not None:
            return value

        value = await fetcher()
        self.set(key, value, ttl_seconds)
        return value

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()

    def cleanup_expired(self):
        """Remove all expired entries from the cache."""
        with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry.is_expired()
            ]
            for key in expired_keys:
                del self._cache[key]

    def size(self) -> int:
        with self._lock:
            return len(self._cache)
