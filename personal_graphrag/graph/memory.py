"""In-memory graph repository."""

import asyncio
import logging
from collections import Counter
from typing import Any

import networkx as nx
import numpy as np

from personal_graphrag.exceptions import DimensionMismatchError, NotInitializedError
from personal_graphrag.models import (
    GraphCommunity,
    GraphEntity,
    GraphRelationship,
    GraphStatistics,
    ScoredCommunity,
    ScoredEntity,
)
from personal_graphrag.utils.math import cosine_similarity_matrix

from .repository import Direction, GraphRepository

logger = logging.getLogger(__name__)


class InMemoryGraphRepository(GraphRepository):
    """Repository backed by a ``networkx.MultiDiGraph``.

    Entities live on nodes under the ``entity`` attribute and relationships
    on edges keyed by relationship id. A relationship may point at an entity
    that does not exist yet; its endpoint is then a bare node that reads skip.

    An entity without an embedding is accepted only while no dimension is
    known. It never matches a similarity search and does not establish the
    dimension.
    """

    def __init__(self, embedding_dimension: int | None = None):
        """Initialize repository.

        Args:
            embedding_dimension: Fixed dimension; when None the first
                non-empty embedding written establishes it
        """
        self._fixed_dimension = embedding_dimension
        self._dimension = embedding_dimension
        self._graph = nx.MultiDiGraph()
        # relationship id -> (source, target), in insertion order
        self._edges: dict[str, tuple[str, str]] = {}
        self._communities: dict[str, GraphCommunity] = {}
        self._write_lock = asyncio.Lock()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def embedding_dimension(self) -> int | None:
        return self._dimension

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("In-memory graph repository initialized")

    async def close(self) -> None:
        self._initialized = False
        logger.info("In-memory graph repository closed")

    async def clear(self) -> None:
        self._check_initialized()
        async with self._write_lock:
            self._graph.clear()
            self._edges.clear()
            self._communities.clear()
            self._dimension = self._fixed_dimension
        logger.info("Graph cleared")

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("Graph repository not initialized. Call initialize() first.")

    def _check_dimension(self, embedding: list[float] | None) -> None:
        """Validate a community embedding; empty placeholders always pass."""
        if not embedding:
            return
        self._check_entity_dimension(embedding)

    def _check_entity_dimension(self, embedding: list[float] | None) -> None:
        if self._dimension is None:
            if embedding:
                self._dimension = len(embedding)
                logger.info(f"Embedding dimension established: {self._dimension}")
            return
        size = len(embedding or [])
        if size != self._dimension:
            raise DimensionMismatchError(self._dimension, size)

    def _entity_nodes(self) -> list[GraphEntity]:
        return [entity for _, entity in self._graph.nodes(data="entity") if entity is not None]

    def _is_entity(self, node: str) -> bool:
        return "entity" in self._graph.nodes[node]

    def _prune(self, node: str) -> None:
        """Drop a bare endpoint node once nothing references it."""
        if node in self._graph and not self._is_entity(node) and self._graph.degree(node) == 0:
            self._graph.remove_node(node)

    # Entities

    async def add_entity(self, entity: GraphEntity) -> None:
        self._check_initialized()
        async with self._write_lock:
            self._check_entity_dimension(entity.embedding)
            self._graph.add_node(entity.id, entity=entity.model_copy(deep=True))

    async def update_entity(self, entity_id: str, **fields: Any) -> GraphEntity | None:
        self._check_initialized()
        async with self._write_lock:
            current = self._graph.nodes[entity_id].get("entity") if entity_id in self._graph else None
            if current is None:
                return None
            fields.pop("id", None)
            if "embedding" in fields:
                self._check_entity_dimension(fields["embedding"])
            updated = current.model_copy(update=fields, deep=True)
            # model_copy skips validation
            updated = GraphEntity.model_validate(updated.model_dump())
            self._graph.nodes[entity_id]["entity"] = updated
            return updated.model_copy(deep=True)

    async def delete_entity(self, entity_id: str) -> bool:
        self._check_initialized()
        async with self._write_lock:
            if entity_id not in self._graph or not self._is_entity(entity_id):
                return False
            incident = list(self._graph.in_edges(entity_id, keys=True))
            incident += self._graph.out_edges(entity_id, keys=True)
            for _, _, rel_id in incident:
                self._edges.pop(rel_id, None)
            self._graph.remove_node(entity_id)
            for source, target, _ in incident:
                self._prune(source)
                self._prune(target)
            return True

    async def get_entity(self, entity_id: str) -> GraphEntity | None:
        self._check_initialized()
        if entity_id not in self._graph:
            return None
        entity = self._graph.nodes[entity_id].get("entity")
        return entity.model_copy(deep=True) if entity else None

    async def get_entities_by_type(self, entity_type: str) -> list[GraphEntity]:
        self._check_initialized()
        return [e.model_copy(deep=True) for e in self._entity_nodes() if e.type == entity_type]

    async def get_all_entities(self) -> list[GraphEntity]:
        self._check_initialized()
        return [e.model_copy(deep=True) for e in self._entity_nodes()]

    # Relationships

    async def add_relationship(self, relationship: GraphRelationship) -> None:
        self._check_initialized()
        async with self._write_lock:
            previous = self._edges.get(relationship.id)
            if previous is not None:
                self._graph.remove_edge(*previous, key=relationship.id)
            source, target = relationship.source_id, relationship.target_id
            self._graph.add_edge(
                source, target, key=relationship.id, relationship=relationship.model_copy(deep=True)
            )
            self._edges[relationship.id] = (source, target)
            if previous is not None:
                self._prune(previous[0])
                self._prune(previous[1])

    async def delete_relationship(self, relationship_id: str) -> bool:
        self._check_initialized()
        async with self._write_lock:
            endpoints = self._edges.pop(relationship_id, None)
            if endpoints is None:
                return False
            self._graph.remove_edge(*endpoints, key=relationship_id)
            self._prune(endpoints[0])
            self._prune(endpoints[1])
            return True

    def _live_relationships(self) -> list[GraphRelationship]:
        return [
            self._graph.edges[source, target, rel_id]["relationship"]
            for rel_id, (source, target) in self._edges.items()
            if self._is_entity(source) and self._is_entity(target)
        ]

    async def get_relationships(self, entity_id: str) -> list[GraphRelationship]:
        self._check_initialized()
        return [
            rel.model_copy(deep=True)
            for rel in self._live_relationships()
            if entity_id in (rel.source_id, rel.target_id)
        ]

    async def get_all_relationships(self) -> list[GraphRelationship]:
        self._check_initialized()
        return [rel.model_copy(deep=True) for rel in self._live_relationships()]

    # Communities

    async def add_community(self, community: GraphCommunity) -> None:
        self._check_initialized()
        async with self._write_lock:
            self._check_dimension(community.embedding)
            self._communities[community.id] = community.model_copy(deep=True)

    async def update_community_summary(
        self, community_id: str, summary: str, embedding: list[float]
    ) -> None:
        self._check_initialized()
        async with self._write_lock:
            community = self._communities.get(community_id)
            if community is None:
                raise KeyError(f"Unknown community: {community_id}")
            self._check_dimension(embedding)
            self._communities[community_id] = community.model_copy(
                update={"summary": summary, "embedding": list(embedding)}
            )

    async def get_communities_by_level(self, level: int) -> list[GraphCommunity]:
        self._check_initialized()
        return sorted(
            (c.model_copy(deep=True) for c in self._communities.values() if c.level == level),
            key=lambda c: c.id,
        )

    async def clear_communities(self) -> None:
        self._check_initialized()
        async with self._write_lock:
            self._communities.clear()

    # Traversal and search

    def _traversal_view(self, relationship_type: str | None, direction: Direction) -> nx.Graph:
        graph = self._graph

        def keep_edge(source: str, target: str, key: str) -> bool:
            return relationship_type is None or (
                graph.edges[source, target, key]["relationship"].type == relationship_type
            )

        view = nx.subgraph_view(graph, filter_node=self._is_entity, filter_edge=keep_edge)
        if direction == Direction.INCOMING:
            return view.reverse(copy=False)
        if direction == Direction.BOTH:
            return view.to_undirected(as_view=True)
        return view

    async def get_entity_neighbors(
        self,
        entity_id: str,
        depth: int = 1,
        relationship_type: str | None = None,
        direction: Direction = Direction.BOTH,
    ) -> list[GraphEntity]:
        """Entities within ``depth`` hops, nearest first, then by id."""
        self._check_initialized()
        if entity_id not in self._graph or not self._is_entity(entity_id) or depth < 1:
            return []

        view = self._traversal_view(relationship_type, direction)
        hops = nx.single_source_shortest_path_length(view, entity_id, cutoff=depth)
        order = sorted((distance, node) for node, distance in hops.items() if node != entity_id)
        return [self._graph.nodes[node]["entity"].model_copy(deep=True) for _, node in order]

    def _check_query_embedding(self, embedding: list[float]) -> None:
        if self._dimension is not None and len(embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(embedding))

    async def search_entities_by_similarity(
        self,
        embedding: list[float],
        top_k: int = 10,
        threshold: float = 0.0,
        entity_type: str | None = None,
    ) -> list[ScoredEntity]:
        self._check_initialized()
        self._check_query_embedding(embedding)

        candidates = [
            e
            for e in self._entity_nodes()
            if e.embedding and (entity_type is None or e.type == entity_type)
        ]
        if not candidates or top_k <= 0:
            return []

        scores = cosine_similarity_matrix(
            embedding, np.array([e.embedding for e in candidates], dtype=np.float64)
        )
        hits = [
            (float(score), entity)
            for score, entity in zip(scores, candidates)
            if score >= threshold
        ]
        hits.sort(key=lambda h: (-h[0], h[1].id))
        return [
            ScoredEntity(entity=entity.model_copy(deep=True), score=score)
            for score, entity in hits[:top_k]
        ]

    async def search_communities_by_similarity(
        self,
        embedding: list[float],
        top_k: int = 5,
        level: int | None = None,
    ) -> list[ScoredCommunity]:
        self._check_initialized()
        self._check_query_embedding(embedding)

        candidates = [
            c
            for c in self._communities.values()
            if c.embedding and (level is None or c.level == level)
        ]
        if not candidates or top_k <= 0:
            return []

        scores = cosine_similarity_matrix(
            embedding, np.array([c.embedding for c in candidates], dtype=np.float64)
        )
        hits = sorted(
            ((float(score), c) for score, c in zip(scores, candidates)),
            key=lambda h: (-h[0], h[1].id),
        )
        return [
            ScoredCommunity(community=c.model_copy(deep=True), score=score)
            for score, c in hits[:top_k]
        ]

    async def get_stats(self) -> GraphStatistics:
        self._check_initialized()
        entities = self._entity_nodes()
        return GraphStatistics(
            entity_count=len(entities),
            relationship_count=len(self._live_relationships()),
            community_count=len(self._communities),
            entity_types=dict(Counter(e.type for e in entities)),
            embedding_dimension=self._dimension,
        )
