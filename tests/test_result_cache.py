import sys
import os
from concurrent.futures import ThreadPoolExecutor

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from server.result_cache import CacheEntry, CacheKey, MemoryCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(max_size=3, ttl=60.0, clock=clock)


class TestCacheKey:

    def test_term_order_does_not_matter(self):
        options = {'limit': 20, 'source': None, 'type': None}
        assert CacheKey.search_results(["b", "a"], options) == CacheKey.search_results(["a", "b"], options)

    def test_options_change_the_key(self):
        base = CacheKey.search_results(["a"], {'limit': 20})
        assert base != CacheKey.search_results(["a"], {'limit': 10})
        assert base != CacheKey.search_results(["a"], {'limit': 20, 'source': 'apple'})
        assert base == CacheKey.search_results(["a"], {'limit': 20, 'source': None})


class TestMemoryCache:
    """Test the bounded TTL cache."""

    def test_hit_and_miss_accounting(self, cache):
        assert cache.get("k") is None
        cache.set("k", [1, 2])

        assert cache.get("k") == (1, 2)
        assert cache.metrics.cache_hits == 1
        assert cache.metrics.cache_misses == 1
        assert cache.metrics.hit_rate == 0.5

    def test_entries_expire_after_ttl(self, cache, clock):
        cache.set("k", [1])
        clock.advance(59.9)
        assert cache.get("k") == (1,)
        clock.advance(1.0)
        assert cache.get("k") is None
        assert cache.size() == 0
        assert cache.metrics.expirations == 1

    def test_lru_eviction(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, [key])
        cache.get("a")
        cache.set("d", ["d"])

        assert cache.get("b") is None
        assert cache.get("a") == ("a",)
        assert cache.size() == 3
        assert cache.metrics.evictions == 1

    def test_malformed_entry_fails_closed(self, cache):
        cache._entries["k"] = {"not": "an entry"}

        assert cache.get("k") is None
        assert "k" not in cache._entries
        assert cache.metrics.error_count == 1

    def test_entry_from_the_future_fails_closed(self, cache, clock):
        cache._entries["k"] = CacheEntry(key="k", results=(1,), inserted_at=clock.now + 100)
        assert cache.get("k") is None
        assert cache.size() == 0

    def test_cleanup_expired(self, cache, clock):
        cache.set("old", [1])
        clock.advance(30)
        cache.set("new", [2])
        clock.advance(31)

        assert cache.cleanup_expired() == 1
        assert cache.get("new") == (2,)

    def test_size_bound_holds_under_concurrent_writers(self):
        cache = MemoryCache(max_size=10, ttl=60.0)

        def writer(i):
            cache.set(f"key-{i % 40}", [i])
            cache.get(f"key-{(i * 7) % 40}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(writer, range(2000)))

        assert cache.size() <= 10

    def test_stats_and_clear(self, cache):
        cache.set("a", [1])
        stats = cache.stats()
        assert stats['size'] == 1
        assert stats['max_size'] == 3
        assert 'hit_rate' in stats['performance']

        cache.clear()
        assert cache.size() == 0
        assert cache.delete("a") is False

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)
