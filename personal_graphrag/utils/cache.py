"""Caching utilities for query embeddings."""

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Cache hit rate (0.0-1.0)."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class LRUCache(Generic[T]):
    """Least-recently-used cache with optional per-entry expiry."""

    def __init__(self, max_size: int = 1000, ttl_seconds: float | None = None, name: str = "cache"):
        self.max_size = max_size
        self.ttl = ttl_seconds
        self.name = name
        # key -> (value, expires_at)
        self._entries: OrderedDict[str, tuple[T, float | None]] = OrderedDict()
        self._stats = CacheStats(max_size=max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> T | None:
        """Return the cached value, or None when absent or expired."""
        item = self._entries.get(key)
        if item is None:
            self._stats.misses += 1
            return None

        value, expires_at = item
        if expires_at is not None and time.monotonic() > expires_at:
            del self._entries[key]
            self._stats.size = len(self._entries)
            self._stats.misses += 1
            return None

        self._entries.move_to_end(key)
        self._stats.hits += 1
        return value

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store a value, evicting the least recently used entries at capacity."""
        entry_ttl = ttl if ttl is not None else self.ttl
        expires_at = time.monotonic() + entry_ttl if entry_ttl else None

        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
            self._stats.evictions += 1

        self._entries[key] = (value, expires_at)
        self._stats.size = len(self._entries)

    def invalidate(self, key: str) -> bool:
        """Drop one entry; returns True if it existed."""
        existed = self._entries.pop(key, None) is not None
        self._stats.size = len(self._entries)
        return existed

    def clear(self) -> None:
        """Clear all cache entries."""
        self._entries.clear()
        self._stats.size = 0
        logger.info(f"Cache '{self.name}' cleared")

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats


class EmbeddingCache:
    """Caches embedding vectors by content hash.

    Repeated queries against the same model skip the embedding call.
    """

    def __init__(self, max_size: int = 5000, ttl_seconds: float | None = 3600, model: str = "default"):
        self.model = model
        self._cache: LRUCache[list[float]] = LRUCache(
            max_size=max_size,
            ttl_seconds=ttl_seconds,
            name="embeddings",
        )

    def _make_key(self, text: str) -> str:
        content = f"{self.model}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def get(self, text: str) -> list[float] | None:
        return self._cache.get(self._make_key(text))

    def set(self, text: str, embedding: list[float]) -> None:
        self._cache.set(self._make_key(text), list(embedding))

    def clear(self) -> None:
        self._cache.clear()

    def get_stats(self) -> CacheStats:
        return self._cache.get_stats()

    def cached(
        self, embed_function: Callable[[str], Awaitable[list[float]]]
    ) -> Callable[[str], Awaitable[list[float]]]:
        """Wrap an embedding callback so hits skip the call.

        Args:
            embed_function: Async callable returning one vector per text

        Returns:
            Async callable with the same signature
        """

        async def embed(text: str) -> list[float]:
            hit = self.get(text)
            if hit is not None:
                return list(hit)
            embedding = await embed_function(text)
            self.set(text, embedding)
            return embedding

        return embed
