"""
In-process profile cache with LRU eviction and TTL expiry.

Holds small, advisory snapshots (user role, team) so every request does not
hit the users table. Entries are keyed by (cache_type, id). Guards that
destroy or close data re-read the user row from the database instead.
"""

import logging
import threading
import time
from typing import Any, Callable, Hashable, Optional, Tuple

from cachetools import TTLCache

from .config import settings

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Hashable]


class ProfileCache:
    """
    Bounded cache over `cachetools.TTLCache`.

    Entries expire `ttl_seconds` after they were written; reading an entry
    refreshes its recency, not its expiry. cachetools is not thread safe, so
    every access goes through one lock.
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 300,
        enabled: bool = True,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.enabled = enabled
        self._timer = timer
        self._lock = threading.Lock()
        self._entries: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=timer)
        self.hits = 0
        self.misses = 0

    @property
    def max_entries(self) -> int:
        return int(self._entries.maxsize)

    @property
    def ttl_seconds(self) -> float:
        return self._entries.ttl

    def resize(self, max_entries: int, ttl_seconds: float) -> None:
        """Replace the underlying store. Existing entries are dropped."""
        with self._lock:
            self._entries = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=self._timer)

    def get(self, cache_type: str, key: Hashable) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value or None if missing or expired
        """
        if not self.enabled:
            return None

        with self._lock:
            value = self._entries.get((cache_type, key))
            if value is None:
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, cache_type: str, key: Hashable, value: Any) -> None:
        """Store a value, evicting the least recently used entry when full."""
        if not self.enabled:
            return

        with self._lock:
            self._entries[(cache_type, key)] = value

    def invalidate(self, cache_type: str, key: Hashable) -> bool:
        """Drop one entry. Returns True when something was removed."""
        with self._lock:
            return self._entries.pop((cache_type, key), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def stats(self) -> dict:
        return {
            "entries": len(self),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }


# Process-wide instance, configured once by the lifespan
profile_cache = ProfileCache(
    max_entries=settings.profile_cache.max_entries,
    ttl_seconds=settings.profile_cache.ttl_seconds,
    enabled=settings.profile_cache.enabled,
)


def configure_profile_cache(max_entries: int, ttl_seconds: float, enabled: bool = True) -> ProfileCache:
    """Apply settings to the process-wide cache and empty it."""
    profile_cache.resize(max_entries, ttl_seconds)
    profile_cache.enabled = enabled
    logger.info(
        f"Profile cache configured | Max entries: {max_entries} | TTL: {ttl_seconds}s | Enabled: {enabled}"
    )
    return profile_cache
