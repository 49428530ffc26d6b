"""Abstract graph repository."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from personal_graphrag.models import (
    GraphCommunity,
    GraphEntity,
    GraphRelationship,
    GraphStatistics,
    ScoredCommunity,
    ScoredEntity,
)


class Direction(str, Enum):
    """Traversal direction for neighbour queries."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


class GraphRepository(ABC):
    """Storage of entities, relationships and communities.

    Every read returns copies; callers never hold references into storage.
    Implementations raise ``NotInitializedError`` before ``initialize()`` and
    ``DimensionMismatchError`` when an embedding does not match the
    dimension established by the first write.
    """

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        ...

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove all entities, relationships and communities."""

    # Entities

    @abstractmethod
    async def add_entity(self, entity: GraphEntity) -> None:
        """Insert or replace an entity."""

    @abstractmethod
    async def update_entity(self, entity_id: str, **fields: Any) -> GraphEntity | None:
        """Update fields of an existing entity; returns None when missing."""

    @abstractmethod
    async def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity and its relationships."""

    @abstractmethod
    async def get_entity(self, entity_id: str) -> GraphEntity | None:
        ...

    @abstractmethod
    async def get_entities_by_type(self, entity_type: str) -> list[GraphEntity]:
        ...

    @abstractmethod
    async def get_all_entities(self) -> list[GraphEntity]:
        ...

    # Relationships

    @abstractmethod
    async def add_relationship(self, relationship: GraphRelationship) -> None:
        ...

    @abstractmethod
    async def delete_relationship(self, relationship_id: str) -> bool:
        ...

    @abstractmethod
    async def get_relationships(self, entity_id: str) -> list[GraphRelationship]:
        """Relationships touching an entity in either direction."""

    @abstractmethod
    async def get_all_relationships(self) -> list[GraphRelationship]:
        ...

    # Communities

    @abstractmethod
    async def add_community(self, community: GraphCommunity) -> None:
        ...

    @abstractmethod
    async def update_community_summary(
        self, community_id: str, summary: str, embedding: list[float]
    ) -> None:
        ...

    @abstractmethod
    async def get_communities_by_level(self, level: int) -> list[GraphCommunity]:
        ...

    @abstractmethod
    async def clear_communities(self) -> None:
        """Drop every community; entities and relationships are kept."""
        ...

    # Traversal and search

    @abstractmethod
    async def get_entity_neighbors(
        self,
        entity_id: str,
        depth: int = 1,
        relationship_type: str | None = None,
        direction: Direction = Direction.BOTH,
    ) -> list[GraphEntity]:
        """Entities reachable within ``depth`` hops, excluding the start."""

    @abstractmethod
    async def search_entities_by_similarity(
        self,
        embedding: list[float],
        top_k: int = 10,
        threshold: float = 0.0,
        entity_type: str | None = None,
    ) -> list[ScoredEntity]:
        ...

    @abstractmethod
    async def search_communities_by_similarity(
        self,
        embedding: list[float],
        top_k: int = 5,
        level: int | None = None,
    ) -> list[ScoredCommunity]:
        ...

    @abstractmethod
    async def get_stats(self) -> GraphStatistics:
        ...
