"""
Test 7: Bounded cache (querykit/cache.py)
"""

import pytest

from querykit.cache import BoundedCache


class TestBoundedCache:

    def test_get_put(self):
        cache = BoundedCache(2)
        assert cache.put("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_miss_default(self):
        cache = BoundedCache()
        assert cache.get("missing") is None
        assert cache.get("missing", "fallback") == "fallback"

    def test_stops_when_full(self):
        cache = BoundedCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.is_full
        assert cache.put("c", 3) is False
        assert "c" not in cache
        assert cache.get("a") == 1

    def test_update_existing_when_full(self):
        cache = BoundedCache(1)
        cache.put("a", 1)
        assert cache.put("a", 2)
        assert cache.get("a") == 2

    def test_zero_disables(self):
        cache = BoundedCache(0)
        assert cache.put("a", 1) is False
        assert len(cache) == 0

    def test_negative_size(self):
        with pytest.raises(ValueError):
            BoundedCache(-1)

    def test_stats_and_clear(self):
        cache = BoundedCache(5)
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        assert cache.stats() == {"size": 1, "max_size": 5, "hits": 1, "misses": 1}
        cache.clear()
        assert cache.stats() == {"size": 0, "max_size": 5, "hits": 0, "misses": 0}
