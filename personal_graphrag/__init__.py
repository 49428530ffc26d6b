"""Personal knowledge-graph retrieval: communities, hybrid search and global queries."""

from .exceptions import (
    CypherParseError,
    DimensionMismatchError,
    GraphRAGError,
    IndexingStateError,
    NotInitializedError,
    PermissionDeniedError,
)
from .graph_rag import GraphRAG, GraphRAGConfig

__all__ = [
    "GraphRAG",
    "GraphRAGConfig",
    "GraphRAGError",
    "NotInitializedError",
    "DimensionMismatchError",
    "PermissionDeniedError",
    "CypherParseError",
    "IndexingStateError",
]

__version__ = "0.1.0"
