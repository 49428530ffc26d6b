"""Hybrid retrieval fusing Cypher, embedding and community results."""

import logging
import re
import time
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Awaitable, Callable

from personal_graphrag.exceptions import CypherParseError
from personal_graphrag.generation.prompts import LocalAnswerPrompt, StreamingAnswerPrompt
from personal_graphrag.graph import GraphRepository
from personal_graphrag.models import GraphCommunity, GraphEntity

from .cypher import CypherQueryExecutor

logger = logging.getLogger(__name__)

NO_RELEVANT_INFORMATION = "I couldn't find relevant information to answer your question."


@dataclass
class HybridQueryConfig:
    """Fusion weights and search limits."""

    cypher_weight: float = 0.4
    embedding_weight: float = 0.4
    community_weight: float = 0.2
    top_k: int = 10
    similarity_threshold: float = 0.0
    rrf_k: float = 60.0  # RRF k parameter
    include_community_context: bool = True
    max_community_level: int = 2
    max_context_chars: int = 4000


@dataclass
class ScoredQueryEntity:
    """Entity with its fused relevance score."""

    entity: GraphEntity
    score: float
    source: str  # cypher, embedding or community


@dataclass
class ScoredQueryCommunity:
    community: GraphCommunity
    score: float


@dataclass
class QueryMetadata:
    original_query: str
    cypher_query: str | None = None
    cypher_error: str | None = None
    total_entities_searched: int = 0
    total_communities_searched: int = 0
    execution_time: float = 0.0  # seconds


@dataclass
class HybridQueryResult:
    """Fused entities and communities plus a ready-to-use context string."""

    entities: list[ScoredQueryEntity]
    communities: list[ScoredQueryCommunity]
    context_string: str
    metadata: QueryMetadata
    cypher_results: list[dict[str, Any]] | None = None
    generated_answer: str | None = None

    def with_answer(self, answer: str) -> "HybridQueryResult":
        return replace(self, generated_answer=answer)

    @property
    def entity_ids(self) -> list[str]:
        return [scored.entity.id for scored in self.entities]

    @property
    def entities_by_type(self) -> dict[str, list[GraphEntity]]:
        grouped: dict[str, list[GraphEntity]] = defaultdict(list)
        for scored in self.entities:
            grouped[scored.entity.type].append(scored.entity)
        return dict(grouped)

    @property
    def has_results(self) -> bool:
        return bool(self.entities or self.communities)

    def top_entities(self, n: int = 5) -> list[GraphEntity]:
        return [scored.entity for scored in self.entities[:n]]

    def find_entity(self, name: str) -> GraphEntity | None:
        """First entity whose name matches ``name`` case-insensitively."""
        wanted = name.lower()
        for scored in self.entities:
            if scored.entity.name.lower() == wanted:
                return scored.entity
        return None


class _ScoreAccumulator:
    """Per-source score sums for one entity."""

    def __init__(self) -> None:
        self.scores: dict[str, float] = {}
        self.entity: GraphEntity | None = None

    def add(self, source: str, score: float) -> None:
        self.scores[source] = self.scores.get(source, 0.0) + score

    @property
    def total(self) -> float:
        return sum(self.scores.values())

    @property
    def primary_source(self) -> str:
        best_source, best_score = "unknown", float("-inf")
        for source, score in self.scores.items():
            if score > best_score:
                best_source, best_score = source, score
        return best_source


def is_cypher_query(text: str) -> bool:
    return text.strip().upper().startswith("MATCH")


class HybridQueryEngine:
    """Local retrieval over the entity graph.

    Three sources are combined with weighted reciprocal rank fusion:

    1. Cypher results (explicit query, or the query text when it is Cypher)
    2. Entity embedding similarity
    3. Community embedding similarity, which also boosts member entities
    """

    def __init__(
        self,
        repository: GraphRepository,
        embed_function: Callable[[str], Awaitable[list[float]]] | None = None,
        generate_function: Callable[[str], Awaitable[str]] | None = None,
        config: HybridQueryConfig | None = None,
    ):
        self.repository = repository
        self.embed_function = embed_function
        self.generate_function = generate_function
        self.config = config or HybridQueryConfig()
        self.cypher_executor = CypherQueryExecutor(repository)
        self._answer_prompt = LocalAnswerPrompt()
        self._streaming_prompt = StreamingAnswerPrompt()

    def with_config(self, **overrides: Any) -> "HybridQueryEngine":
        """Engine sharing this one's collaborators with some config overridden."""
        return HybridQueryEngine(
            repository=self.repository,
            embed_function=self.embed_function,
            generate_function=self.generate_function,
            config=replace(self.config, **overrides),
        )

    def _rrf(self, rank: int) -> float:
        return 1.0 / (self.config.rrf_k + rank)

    async def query(
        self,
        query: str,
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
    ) -> HybridQueryResult:
        """Retrieve entities and communities relevant to a query.

        Args:
            query: Natural language question or Cypher text
            cypher_query: Explicit Cypher query to run alongside
            entity_types: Restrict embedding search to these types

        Returns:
            HybridQueryResult sorted by fused score
        """
        start = time.perf_counter()
        cfg = self.config

        effective_cypher = cypher_query or (query if is_cypher_query(query) else None)
        metadata = QueryMetadata(original_query=query, cypher_query=effective_cypher)

        scores: dict[str, _ScoreAccumulator] = defaultdict(_ScoreAccumulator)
        communities: list[ScoredQueryCommunity] = []
        cypher_rows: list[dict[str, Any]] | None = None

        # 1. Cypher
        if effective_cypher:
            try:
                cypher_result = await self.cypher_executor.run(effective_cypher)
            except CypherParseError as e:
                logger.warning(f"Cypher query failed to parse: {e}")
                metadata.cypher_error = str(e)
            else:
                cypher_rows = cypher_result.rows
                for rank, entity in enumerate(cypher_result.entities):
                    scores[entity.id].add("cypher", cfg.cypher_weight * self._rrf(rank))
                    scores[entity.id].entity = entity

        # 2. Embedding similarity
        query_embedding = None
        if self.embed_function is not None:
            query_embedding = await self.embed_function(query)
            for entity_type in entity_types or [None]:
                hits = await self.repository.search_entities_by_similarity(
                    query_embedding,
                    top_k=cfg.top_k,
                    threshold=cfg.similarity_threshold,
                    entity_type=entity_type,
                )
                for rank, hit in enumerate(hits):
                    scores[hit.entity.id].add("embedding", cfg.embedding_weight * self._rrf(rank))
                    scores[hit.entity.id].entity = hit.entity

        # 3. Communities
        if cfg.include_community_context and query_embedding is not None:
            for level in range(cfg.max_community_level + 1):
                hits = await self.repository.search_communities_by_similarity(
                    query_embedding, top_k=cfg.top_k // 2, level=level
                )
                for rank, hit in enumerate(hits):
                    rrf = self._rrf(rank)
                    communities.append(
                        ScoredQueryCommunity(
                            community=hit.community,
                            score=cfg.community_weight * rrf * (1 - 0.2 * level),
                        )
                    )
                    for entity_id in hit.community.entity_ids:
                        scores[entity_id].add("community", cfg.community_weight * 0.5 * rrf)

        # Fuse
        scored_entities = []
        for entity_id, accumulator in scores.items():
            entity = accumulator.entity or await self.repository.get_entity(entity_id)
            if entity is None:
                continue
            scored_entities.append(
                ScoredQueryEntity(
                    entity=entity, score=accumulator.total, source=accumulator.primary_source
                )
            )

        scored_entities.sort(key=lambda s: (-s.score, s.entity.id))
        communities.sort(key=lambda s: (-s.score, s.community.id))
        final_entities = scored_entities[: cfg.top_k]
        final_communities = communities[: cfg.top_k // 2]

        metadata.total_entities_searched = len(scores)
        metadata.total_communities_searched = len(communities)
        metadata.execution_time = time.perf_counter() - start

        logger.info(
            f"Hybrid query returned {len(final_entities)} entities and "
            f"{len(final_communities)} communities in {metadata.execution_time:.3f}s"
        )

        return HybridQueryResult(
            entities=final_entities,
            communities=final_communities,
            context_string=self.build_context(final_entities, final_communities),
            metadata=metadata,
            cypher_results=cypher_rows,
        )

    def build_context(
        self,
        entities: list[ScoredQueryEntity],
        communities: list[ScoredQueryCommunity],
    ) -> str:
        """Context string for generation, capped at ``max_context_chars``."""
        lines: list[str] = []
        if entities:
            lines.append("=== Relevant Entities ===\n")
            for scored in entities:
                entity = scored.entity
                lines.append(f"**{entity.name}** ({entity.type})")
                if entity.description:
                    lines.append(entity.description)
                lines.append("")

        if communities:
            lines.append("=== Community Context ===\n")
            for scored in communities:
                lines.append(f"**Community at Level {scored.community.level}:**")
                lines.append(scored.community.summary)
                lines.append("")

        return "\n".join(lines)[: self.config.max_context_chars]

    async def query_with_answer(
        self,
        query: str,
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
    ) -> HybridQueryResult:
        """Retrieve, then answer from the top entities when generation is available."""
        result = await self.query(query, cypher_query=cypher_query, entity_types=entity_types)
        if self.generate_function is None:
            return result

        if not result.entities:
            return result.with_answer(NO_RELEVANT_INFORMATION)

        prompt = self._answer_prompt.format(
            query=query, entities=[s.entity for s in result.entities]
        )
        answer = await self.generate_function(prompt)
        return result.with_answer(answer.strip())

    async def query_with_answer_streaming(
        self,
        query: str,
        stream_function: Callable[[str], AsyncIterator[str]],
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
    ) -> AsyncIterator[str]:
        """Retrieve, then stream answer tokens from ``stream_function``."""
        result = await self.query(query, cypher_query=cypher_query, entity_types=entity_types)
        if not result.entities:
            yield NO_RELEVANT_INFORMATION
            return

        community_summary = result.communities[0].community.summary if result.communities else None
        prompt = self._streaming_prompt.format(
            query=query,
            entities=[s.entity for s in result.entities],
            community_summary=community_summary,
        )
        async for token in stream_function(prompt):
            yield token

    def generate_cypher_from_nl(self, query: str) -> str | None:
        return generate_cypher_from_nl(query)


# Natural language templates, first match wins
_NL_TEMPLATES = [
    (
        re.compile(r"who knows (\w+)", re.IGNORECASE),
        'MATCH (p:PERSON)-[:KNOWS|COLLEAGUE_OF]->(target:PERSON {{name: "{0}"}})\n'
        "RETURN p\nLIMIT 10",
    ),
    (
        re.compile(r"events? (?:with|involving) (\w+)", re.IGNORECASE),
        "MATCH (e:EVENT)-[:ATTENDED_BY]->(p:PERSON)\n"
        'WHERE p.name CONTAINS "{0}"\nRETURN e, p\nLIMIT 10',
    ),
    (
        re.compile(r"people (?:at|from) (\w+)", re.IGNORECASE),
        "MATCH (p:PERSON)-[:WORKS_AT]->(o:ORGANIZATION)\n"
        'WHERE o.name CONTAINS "{0}"\nRETURN p, o\nLIMIT 10',
    ),
    (
        re.compile(r"contacts? from (\w+)", re.IGNORECASE),
        "MATCH (p:PERSON)-[:LOCATED_IN|WORKS_AT]->(loc)\n"
        'WHERE loc.name CONTAINS "{0}"\nRETURN p\nLIMIT 10',
    ),
]

_LIST_TEMPLATES = [
    (("all people", "list people"), "MATCH (p:PERSON)\nRETURN p\nLIMIT 20"),
    (("all events", "list events"), "MATCH (e:EVENT)\nRETURN e\nORDER BY e.startDate DESC\nLIMIT 20"),
    (("all organizations", "list organizations"), "MATCH (o:ORGANIZATION)\nRETURN o\nLIMIT 20"),
]


def generate_cypher_from_nl(query: str) -> str | None:
    """Translate a handful of question shapes into Cypher.

    Returns None when no template matches.
    """
    for pattern, template in _NL_TEMPLATES:
        match = pattern.search(query)
        if match:
            return template.format(match.group(1))

    query_lower = query.lower()
    for phrases, cypher in _LIST_TEMPLATES:
        if any(phrase in query_lower for phrase in phrases):
            return cypher
    return None


class HybridQueryBuilder:
    """Fluent construction of hybrid queries.

    Example::

        result = await (
            HybridQueryBuilder().query("who works at Acme").types(["PERSON"]).limit(5).execute(engine)
        )
    """

    def __init__(self) -> None:
        self._query: str | None = None
        self._cypher: str | None = None
        self._types: list[str] | None = None
        self._overrides: dict[str, Any] = {}

    def query(self, query: str) -> "HybridQueryBuilder":
        self._query = query
        return self

    def cypher(self, cypher: str) -> "HybridQueryBuilder":
        self._cypher = cypher
        return self

    def types(self, types: list[str]) -> "HybridQueryBuilder":
        self._types = list(types)
        return self

    def threshold(self, threshold: float) -> "HybridQueryBuilder":
        self._overrides["similarity_threshold"] = threshold
        return self

    def limit(self, limit: int) -> "HybridQueryBuilder":
        self._overrides["top_k"] = limit
        return self

    def with_communities(self, include: bool = True) -> "HybridQueryBuilder":
        self._overrides["include_community_context"] = include
        return self

    async def execute(self, engine: HybridQueryEngine) -> HybridQueryResult:
        if self._query is None:
            raise ValueError("Query is required")
        if self._overrides:
            engine = engine.with_config(**self._overrides)
        return await engine.query(self._query, cypher_query=self._cypher, entity_types=self._types)
