"""Ingestion: extraction, community building and background indexing."""

from .pipeline import (
    BackgroundIndexingService,
    IndexingConfig,
    IndexingProgress,
    IndexingStatus,
)

__all__ = [
    "BackgroundIndexingService",
    "IndexingConfig",
    "IndexingProgress",
    "IndexingStatus",
]
