"""Shared utilities."""

from .cache import CacheStats, EmbeddingCache, LRUCache
from .logging import setup_logging
from .math import cosine_similarity_matrix

__all__ = [
    "CacheStats",
    "EmbeddingCache",
    "LRUCache",
    "setup_logging",
    "cosine_similarity_matrix",
]
