"""Tests for caching utilities."""

import time

import pytest
from unittest.mock import AsyncMock

from personal_graphrag.utils.cache import CacheStats, EmbeddingCache, LRUCache


class TestLRUCache:
    """Tests for LRUCache."""

    def test_basic_get_set(self):
        """Test basic get and set operations."""
        cache: LRUCache[str] = LRUCache(max_size=10)
        cache.set("key1", "value1")

        assert cache.get("key1") == "value1"
        assert cache.get("nonexistent") is None

    def test_lru_eviction(self):
        """Test the least recently used entry is evicted at capacity."""
        cache: LRUCache[int] = LRUCache(max_size=3)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") == 1
        cache.set("d", 4)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get_stats().evictions == 1

    def test_ttl_expiry(self, monkeypatch):
        """Test entries expire after their TTL."""
        now = [1000.0]
        monkeypatch.setattr(time, "monotonic", lambda: now[0])
        cache: LRUCache[str] = LRUCache(max_size=10, ttl_seconds=5)
        cache.set("k", "v")

        now[0] += 6

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_invalidate_and_clear(self):
        """Test single and full invalidation."""
        cache: LRUCache[int] = LRUCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_stats_hit_rate(self):
        """Test hit rate accounting."""
        cache: LRUCache[int] = LRUCache()
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")

        assert cache.get_stats().hit_rate == 0.5
        assert CacheStats().hit_rate == 0.0


class TestEmbeddingCache:
    """Tests for EmbeddingCache."""

    def test_keys_include_model(self):
        """Test the same text under different models does not collide."""
        first = EmbeddingCache(model="a")
        second = EmbeddingCache(model="b")

        assert first._make_key("hello") != second._make_key("hello")

    def test_stored_copy(self):
        """Test mutating the original vector does not change the cache."""
        cache = EmbeddingCache()
        vector = [0.1, 0.2]
        cache.set("hello", vector)
        vector.append(0.3)

        assert cache.get("hello") == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_cached_wrapper(self):
        """Test repeated texts skip the embedding call."""
        embed = AsyncMock(return_value=[1.0, 0.0])
        cached = EmbeddingCache().cached(embed)

        first = await cached("hello")
        second = await cached("hello")
        await cached("other")

        assert first == second == [1.0, 0.0]
        assert embed.await_count == 2
