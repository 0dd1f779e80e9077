"""Result caching for docset fan-out searches.

Fan-out results are cached in-process, keyed by the normalized term set and
every option that changes what the adapters return. The cache is bounded
(LRU eviction) and entries expire after a TTL. Any inconsistency found while
reading an entry is treated as a miss and the entry is dropped.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class CacheCorruptionError(Exception):
    """Raised internally when a cache entry violates the cache invariants."""
    pass


@dataclass
class PerformanceMetrics:
    """Hit/miss accounting for the result cache."""

    cache_hits: int = 0
    cache_misses: int = 0
    total_requests: int = 0
    evictions: int = 0
    expirations: int = 0
    error_count: int = 0
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.cache_hits / self.total_requests

    @property
    def miss_rate(self) -> float:
        """Calculate cache miss rate."""
        return 1.0 - self.hit_rate

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'cache_hits': self.cache_hits,
            'cache_misses': self.cache_misses,
            'total_requests': self.total_requests,
            'hit_rate': self.hit_rate,
            'miss_rate': self.miss_rate,
            'evictions': self.evictions,
            'expirations': self.expirations,
            'error_count': self.error_count,
            'last_updated': self.last_updated.isoformat()
        }


class CacheKey:
    """Utility class for generating consistent cache keys."""

    @staticmethod
    def search_results(terms: Sequence[str], options: Dict[str, Any]) -> str:
        """Cache key for a term search; term order does not matter."""
        key_data = {
            'terms': sorted(set(terms)),
            'options': sorted((k, v) for k, v in options.items() if v is not None),
        }
        key_string = json.dumps(key_data, sort_keys=True, default=str)
        return f"search:{hashlib.md5(key_string.encode()).hexdigest()}"


@dataclass(frozen=True)
class CacheEntry:
    """One cached fan-out result."""
    key: str
    results: Tuple[Any, ...]
    inserted_at: float


class MemoryCache:
    """Thread-safe in-memory LRU cache with a fixed TTL.

    Args:
        max_size: Maximum number of entries; the least recently used entry is
            evicted on overflow.
        ttl: Seconds an entry stays valid after insertion.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, max_size: int = 100, ttl: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.metrics = PerformanceMetrics()

    def _check(self, key: str, entry: Any) -> CacheEntry:
        if not isinstance(entry, CacheEntry) or entry.key != key or not isinstance(entry.results, tuple):
            raise CacheCorruptionError(f"Malformed cache entry for {key}")
        if entry.inserted_at > self._clock():
            raise CacheCorruptionError(f"Cache entry for {key} is timestamped in the future")
        return entry

    def get(self, key: str) -> Optional[Tuple[Any, ...]]:
        """Cached results for ``key``, or None on miss / expiry / corruption."""
        with self._lock:
            self.metrics.total_requests += 1
            raw = self._entries.get(key)
            if raw is None:
                self.metrics.cache_misses += 1
                return None

            try:
                entry = self._check(key, raw)
            except CacheCorruptionError as e:
                logger.warning(f"Dropping corrupt cache entry: {e}")
                del self._entries[key]
                self.metrics.error_count += 1
                self.metrics.cache_misses += 1
                return None

            if self._clock() - entry.inserted_at >= self.ttl:
                del self._entries[key]
                self.metrics.expirations += 1
                self.metrics.cache_misses += 1
                return None

            self._entries.move_to_end(key)
            self.metrics.cache_hits += 1
            return entry.results

    def set(self, key: str, results: Sequence[Any]) -> None:
        """Store ``results`` under ``key``, evicting LRU entries past ``max_size``."""
        entry = CacheEntry(key=key, results=tuple(results), inserted_at=self._clock())
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.metrics.evictions += 1
                logger.debug(f"Evicted LRU cache entry {evicted}")

    def delete(self, key: str) -> bool:
        """Delete key from cache."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        """Remove expired entries and return count."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items()
                       if not isinstance(e, CacheEntry) or now - e.inserted_at >= self.ttl]
            for key in expired:
                del self._entries[key]
            self.metrics.expirations += len(expired)
        return len(expired)

    def size(self) -> int:
        """Get current cache size."""
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            self.metrics.last_updated = datetime.now()
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl': self.ttl,
                'utilization': len(self._entries) / self.max_size,
                'performance': self.metrics.to_dict(),
            }
