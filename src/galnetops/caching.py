"""
Memory Cache Tier
=================

Short-lived, size-bounded cache for upstream lookups.

Benefits:
- Repeated lookups within the TTL never reach the network or the store
- Keys are namespaced by lookup kind ("system:", "bodies:", ...) so one
  kind can be cleared on its own
- Coarse eviction: on overflow the oldest half by last write is dropped
- Injectable clock for tests
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   caching.py
#
# Connected modules (direct imports):
#   (none)
#
# Notes:
#   - Eviction order is last write, not last read; this is not an LRU.
# ============================================================================

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Callable, Dict


logger = logging.getLogger("galnetops.caching")

KEY_SEPARATOR = ":"


def make_key(kind: str, lookup: str) -> str:
    """'system', 'Sol' -> 'system:sol'"""
    return f"{kind}{KEY_SEPARATOR}{lookup.strip().lower()}"


def key_kind(key: str) -> str:
    return key.split(KEY_SEPARATOR, 1)[0]


@dataclass
class CacheEntry:
    """A single cache entry"""
    key: str
    value: Any
    written_at: float
    last_accessed: float
    access_count: int
    ttl: float


class MemoryTierCache:
    """
    Thread-safe cache with TTL (Time To Live)

    Features:
    - Automatic expiration on read
    - Evict-oldest-half when full
    - Per-kind clearing
    - Statistics
    """

    def __init__(
        self,
        name: str,
        default_ttl: float = 300.0,
        max_size: int = 2000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache

        Args:
            name: Cache name (for logging)
            default_ttl: Default time-to-live in seconds
            max_size: Maximum number of entries
            clock: Monotonic seconds source
        """
        self.name = name
        self.default_ttl = default_ttl
        self.max_size = max(1, int(max_size))
        self._clock = clock

        # Storage
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not self._is_expired(entry)

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry):
                del self._cache[key]
                self._misses += 1
                return None

            entry.last_accessed = self._clock()
            entry.access_count += 1
            self._hits += 1

            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """
        Set value in cache

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live (None = use default)
        """
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_oldest_half()

            now = self._clock()
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                written_at=now,
                last_accessed=now,
                access_count=0,
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def clear(self, kind: Optional[str] = None) -> int:
        """
        Clear entries

        Args:
            kind: Only keys of this kind (None = everything, stats reset)

        Returns:
            Number of entries removed
        """
        with self._lock:
            if kind is None:
                removed = len(self._cache)
                self._cache.clear()
                self._hits = 0
                self._misses = 0
                self._evictions = 0
                return removed

            doomed = [key for key in self._cache if key_kind(key) == kind]
            for key in doomed:
                del self._cache[key]
            return len(doomed)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.written_at > entry.ttl

    def _evict_oldest_half(self):
        """Drop the older half of the entries by last write"""
        by_age = sorted(self._cache.values(), key=lambda entry: entry.written_at)
        doomed = by_age[:max(1, len(by_age) // 2)]
        for entry in doomed:
            del self._cache[entry.key]
        self._evictions += len(doomed)
        logger.debug("%s: evicted %d entries", self.name, len(doomed))

    def cleanup_expired(self) -> int:
        """Remove all expired entries"""
        with self._lock:
            expired = [key for key, entry in self._cache.items() if self._is_expired(entry)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

            return {
                "name": self.name,
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": hit_rate,
                "total_requests": total_requests,
            }
