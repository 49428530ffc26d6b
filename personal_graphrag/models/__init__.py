"""Graph data models."""

from .entities import GraphEntity, GraphRelationship, ScoredEntity
from .communities import GraphCommunity, ScoredCommunity
from .stats import GraphStatistics

__all__ = [
    "GraphEntity",
    "GraphRelationship",
    "ScoredEntity",
    "GraphCommunity",
    "ScoredCommunity",
    "GraphStatistics",
]
