"""GraphRAG facade wiring repository, connectors, indexing and query engines."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from personal_graphrag.config.settings import Settings
from personal_graphrag.connectors import (
    ConnectorManager,
    DataConnector,
    PermissionStatus,
    PermissionType,
)
from personal_graphrag.exceptions import NotInitializedError
from personal_graphrag.generation.prompts import AugmentedPrompt
from personal_graphrag.graph import Direction, GraphRepository, InMemoryGraphRepository
from personal_graphrag.ingestion import (
    BackgroundIndexingService,
    IndexingConfig,
    IndexingProgress,
)
from personal_graphrag.ingestion.graphrag import (
    CommunityDetectionConfig,
    CommunityDetectionResult,
    CommunitySummarizer,
    EntityExtractionConfig,
    EntityExtractor,
    EmbeddingSimilarityLinkPredictor,
    ExtractionResult,
    LinkPredictionConfig,
    LinkPredictor,
    LouvainCommunityDetector,
    PredictedLink,
)
from personal_graphrag.models import (
    GraphCommunity,
    GraphEntity,
    GraphRelationship,
    GraphStatistics,
    ScoredCommunity,
    ScoredEntity,
)
from personal_graphrag.retrieval import (
    CancellationToken,
    CypherQueryExecutor,
    GlobalQueryConfig,
    GlobalQueryEngine,
    GlobalQueryProgress,
    GlobalQueryResult,
    HybridQueryConfig,
    HybridQueryEngine,
    HybridQueryResult,
)
from personal_graphrag.utils.cache import EmbeddingCache

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[str]]
StreamGenerateFn = Callable[[str], AsyncIterator[str]]
EmbedFn = Callable[[str], Awaitable[list[float]]]


@dataclass
class GraphRAGConfig:
    """Component configuration for a GraphRAG instance."""

    query_config: HybridQueryConfig = field(default_factory=HybridQueryConfig)
    global_config: GlobalQueryConfig = field(default_factory=GlobalQueryConfig)
    extraction_config: EntityExtractionConfig = field(default_factory=EntityExtractionConfig)
    community_config: CommunityDetectionConfig = field(default_factory=CommunityDetectionConfig)
    indexing_config: IndexingConfig = field(default_factory=IndexingConfig)
    link_prediction: LinkPredictionConfig | None = None  # None disables it during indexing
    embedding_dimension: int | None = None
    query_cache_size: int = 1000
    auto_index: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraphRAGConfig":
        return cls(
            query_config=HybridQueryConfig(
                cypher_weight=settings.hybrid_cypher_weight,
                embedding_weight=settings.hybrid_embedding_weight,
                community_weight=settings.hybrid_community_weight,
                top_k=settings.hybrid_top_k,
                similarity_threshold=settings.similarity_threshold,
            ),
            global_config=GlobalQueryConfig(
                min_helpfulness_score=settings.global_min_helpfulness_score,
                max_community_answers=settings.global_max_community_answers,
                response_type=settings.global_response_type,
            ),
            community_config=CommunityDetectionConfig(
                resolution=settings.community_resolution,
                max_depth=settings.community_max_depth,
                random_seed=settings.community_random_seed,
            ),
            indexing_config=IndexingConfig(
                batch_size=settings.indexing_batch_size,
                batch_delay=settings.indexing_batch_delay,
                max_community_depth=settings.community_max_depth,
            ),
            link_prediction=LinkPredictionConfig() if settings.link_prediction_enabled else None,
            embedding_dimension=settings.embedding_dimension,
        )


def _quote(value: str) -> str:
    """Cypher string literal for an arbitrary value."""
    return json.dumps(value, ensure_ascii=False)


class GraphRAG:
    """Unified entry point for the personal knowledge graph.

    Every operation except ``initialize`` and ``close`` raises
    ``NotInitializedError`` until ``initialize`` has completed.
    """

    def __init__(
        self,
        generate_function: GenerateFn,
        embed_function: EmbedFn,
        stream_function: StreamGenerateFn | None = None,
        config: GraphRAGConfig | None = None,
        repository: GraphRepository | None = None,
        connector_manager: ConnectorManager | None = None,
    ):
        """Initialize GraphRAG.

        Args:
            generate_function: Async text generation callback
            embed_function: Async embedding callback for one text
            stream_function: Async generator of generated tokens
            config: Component configuration
            repository: Graph storage (in-memory by default)
            connector_manager: Data sources (empty manager by default)
        """
        self.config = config or GraphRAGConfig()
        self.generate_function = generate_function
        self.embed_function = embed_function
        self.stream_function = stream_function

        self._repository = repository or InMemoryGraphRepository(self.config.embedding_dimension)
        self._connectors = connector_manager or ConnectorManager()
        self._query_cache = EmbeddingCache(max_size=self.config.query_cache_size)
        self._embed_query = self._query_cache.cached(embed_function)

        self._extractor: EntityExtractor | None = None
        self._query_engine: HybridQueryEngine | None = None
        self._global_engine: GlobalQueryEngine | None = None
        self._indexing: BackgroundIndexingService | None = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def repository(self) -> GraphRepository:
        self._check_initialized()
        return self._repository

    @property
    def connectors(self) -> ConnectorManager:
        self._check_initialized()
        return self._connectors

    @property
    def query_engine(self) -> HybridQueryEngine:
        self._check_initialized()
        return self._query_engine

    @property
    def global_engine(self) -> GlobalQueryEngine:
        self._check_initialized()
        return self._global_engine

    @property
    def indexing(self) -> BackgroundIndexingService:
        self._check_initialized()
        return self._indexing

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("GraphRAG not initialized. Call initialize() first.")

    async def initialize(self) -> None:
        if self._initialized:
            return

        await self._repository.initialize()
        cfg = self.config

        self._extractor = EntityExtractor(
            generate_function=self.generate_function,
            embed_function=self.embed_function,
            config=cfg.extraction_config,
        )
        self._query_engine = HybridQueryEngine(
            repository=self._repository,
            embed_function=self._embed_query,
            generate_function=self.generate_function,
            config=cfg.query_config,
        )
        self._global_engine = GlobalQueryEngine(
            repository=self._repository,
            generate_function=self.generate_function,
            stream_function=self.stream_function,
            config=cfg.global_config,
        )
        self._indexing = BackgroundIndexingService(
            repository=self._repository,
            extractor=self._extractor,
            connector_manager=self._connectors,
            summarizer=CommunitySummarizer(self.generate_function, self.embed_function),
            config=cfg.indexing_config,
            community_config=cfg.community_config,
            link_predictor=(
                LinkPredictor(self._repository, cfg.link_prediction, self.embed_function)
                if cfg.link_prediction is not None
                else None
            ),
        )
        self._initialized = True
        logger.info("GraphRAG initialized")

        if cfg.auto_index:
            await self.start_indexing()

    async def close(self) -> None:
        if not self._initialized:
            return
        await self._indexing.close()
        await self._repository.close()
        self._query_cache.clear()
        self._initialized = False
        logger.info("GraphRAG closed")

    # Connectors

    def register_connector(self, connector: DataConnector) -> None:
        self._check_initialized()
        self._connectors.register_connector(connector)

    async def check_permissions(self) -> dict[str, dict[PermissionType, PermissionStatus]]:
        self._check_initialized()
        return await self._connectors.check_all_permissions()

    async def request_permissions(self, data_type: str) -> dict[PermissionType, PermissionStatus]:
        self._check_initialized()
        return await self._connectors.request_permissions(data_type)

    # Indexing

    async def start_indexing(self, full_reindex: bool = False) -> None:
        self._check_initialized()
        await self._indexing.start_indexing(full_reindex=full_reindex)

    def pause_indexing(self) -> None:
        self._check_initialized()
        self._indexing.pause_indexing()

    def resume_indexing(self) -> None:
        self._check_initialized()
        self._indexing.resume_indexing()

    def cancel_indexing(self) -> None:
        self._check_initialized()
        self._indexing.cancel_indexing()

    async def wait_for_indexing(self) -> None:
        self._check_initialized()
        await self._indexing.wait_for_completion()

    def indexing_progress(self) -> AsyncIterator[IndexingProgress]:
        self._check_initialized()
        return self._indexing.subscribe()

    @property
    def indexing_status(self) -> IndexingProgress:
        self._check_initialized()
        return self._indexing.progress

    # Queries

    async def query(
        self,
        query: str,
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
    ) -> HybridQueryResult:
        self._check_initialized()
        return await self._query_engine.query(
            query, cypher_query=cypher_query, entity_types=entity_types
        )

    async def query_with_answer(
        self,
        query: str,
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
    ) -> HybridQueryResult:
        self._check_initialized()
        return await self._query_engine.query_with_answer(
            query, cypher_query=cypher_query, entity_types=entity_types
        )

    async def query_with_answer_streaming(
        self,
        query: str,
        cypher_query: str | None = None,
        entity_types: list[str] | None = None,
        stream_function: StreamGenerateFn | None = None,
    ) -> AsyncIterator[str]:
        self._check_initialized()
        stream_function = stream_function or self.stream_function
        if stream_function is None:
            raise ValueError("Streaming requires a stream_function")
        async for token in self._query_engine.query_with_answer_streaming(
            query, stream_function, cypher_query=cypher_query, entity_types=entity_types
        ):
            yield token

    async def global_query(
        self, query: str, community_level: int | None = None
    ) -> GlobalQueryResult:
        """Map-reduce answer over community summaries at one level."""
        self._check_initialized()
        return await self._global_engine.query(query, community_level=community_level)

    async def global_query_auto(self, query: str) -> GlobalQueryResult:
        self._check_initialized()
        return await self._global_engine.query_with_auto_level(query)

    async def global_query_auto_streaming(
        self,
        query: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GlobalQueryProgress]:
        self._check_initialized()
        async for event in self._global_engine.query_with_auto_level_streaming(
            query, cancel_token=cancel_token
        ):
            yield event

    async def global_query_streaming(
        self,
        query: str,
        community_level: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GlobalQueryProgress]:
        self._check_initialized()
        async for event in self._global_engine.query_streaming(
            query, community_level=community_level, cancel_token=cancel_token
        ):
            yield event

    async def cypher_query(self, cypher: str) -> list[dict[str, Any]]:
        self._check_initialized()
        return await CypherQueryExecutor(self._repository).execute(cypher)

    async def search_entities(
        self, query: str, top_k: int = 10, entity_type: str | None = None
    ) -> list[ScoredEntity]:
        self._check_initialized()
        embedding = await self._embed_query(query)
        return await self._repository.search_entities_by_similarity(
            embedding, top_k=top_k, entity_type=entity_type
        )

    async def search_communities(
        self, query: str, top_k: int = 5, level: int | None = None
    ) -> list[ScoredCommunity]:
        self._check_initialized()
        embedding = await self._embed_query(query)
        return await self._repository.search_communities_by_similarity(
            embedding, top_k=top_k, level=level
        )

    async def get_context(self, query: str) -> str:
        """Context string from hybrid retrieval, for prompt augmentation."""
        self._check_initialized()
        return (await self._query_engine.query(query)).context_string

    async def augment_prompt(self, query: str, prompt_template: str | None = None) -> str:
        """Fill ``{context}`` and ``{query}`` of a template with graph context."""
        context = await self.get_context(query)
        return AugmentedPrompt(prompt_template).format(query=query, context=context)

    # Graph

    async def add_entity(self, entity: GraphEntity) -> None:
        self._check_initialized()
        await self._repository.add_entity(entity)

    async def get_entity(self, entity_id: str) -> GraphEntity | None:
        self._check_initialized()
        return await self._repository.get_entity(entity_id)

    async def update_entity(self, entity_id: str, **fields: Any) -> GraphEntity | None:
        self._check_initialized()
        return await self._repository.update_entity(entity_id, **fields)

    async def delete_entity(self, entity_id: str) -> bool:
        self._check_initialized()
        return await self._repository.delete_entity(entity_id)

    async def get_entities_by_type(self, entity_type: str) -> list[GraphEntity]:
        self._check_initialized()
        return await self._repository.get_entities_by_type(entity_type)

    async def add_relationship(self, relationship: GraphRelationship) -> None:
        self._check_initialized()
        await self._repository.add_relationship(relationship)

    async def get_relationships(self, entity_id: str) -> list[GraphRelationship]:
        self._check_initialized()
        return await self._repository.get_relationships(entity_id)

    async def delete_relationship(self, relationship_id: str) -> bool:
        self._check_initialized()
        return await self._repository.delete_relationship(relationship_id)

    async def get_neighbors(
        self,
        entity_id: str,
        depth: int = 1,
        relationship_type: str | None = None,
        direction: Direction = Direction.BOTH,
    ) -> list[GraphEntity]:
        self._check_initialized()
        return await self._repository.get_entity_neighbors(
            entity_id, depth=depth, relationship_type=relationship_type, direction=direction
        )

    async def get_communities_by_level(self, level: int) -> list[GraphCommunity]:
        self._check_initialized()
        return await self._repository.get_communities_by_level(level)

    async def get_stats(self) -> GraphStatistics:
        self._check_initialized()
        return await self._repository.get_stats()

    async def clear_graph(self) -> None:
        """Clear the graph and reset sync state so the next run fetches everything."""
        self._check_initialized()
        await self._repository.clear()
        self._connectors.reset_sync_state()
        self._query_cache.clear()

    # Extraction and detection

    async def extract_entities(
        self, text: str, source_id: str, source_type: str = "text"
    ) -> ExtractionResult:
        self._check_initialized()
        return await self._extractor.extract_from_text(text, source_id, source_type)

    async def extract_from_data(
        self, data: dict[str, Any], source_id: str, source_type: str
    ) -> ExtractionResult:
        self._check_initialized()
        return await self._extractor.extract_from_structured(data, source_id, source_type)

    async def detect_communities(self) -> CommunityDetectionResult:
        """Run detection over the current graph without persisting the result."""
        self._check_initialized()
        entities = await self._repository.get_all_entities()
        relationships = await self._repository.get_all_relationships()
        return LouvainCommunityDetector(self.config.community_config).detect_communities(
            entities, relationships
        )

    async def predict_similarity_links(self) -> list[PredictedLink]:
        """Link entities with similar embeddings and store the accepted links.

        Cross-type pairs are checked with the generation callback first.
        """
        self._check_initialized()
        config = self.config.link_prediction or LinkPredictionConfig()
        predictor = EmbeddingSimilarityLinkPredictor(
            self._repository, self.generate_function, config
        )
        links = await predictor.predict()
        await LinkPredictor(self._repository, config).store_predicted_links(links)
        logger.info(f"Stored {len(links)} similarity links")
        return links

    # Convenience finders

    async def find_people_at(self, organization: str) -> list[GraphEntity]:
        cypher = (
            "MATCH (p:PERSON)-[:WORKS_AT]->(o:ORGANIZATION) "
            f"WHERE o.name CONTAINS {_quote(organization)} RETURN p LIMIT 20"
        )
        result = await self.query(f"people at {organization}", cypher_query=cypher)
        return [s.entity for s in result.entities if s.entity.type == "PERSON"]

    async def find_events_for(self, person_name: str) -> list[GraphEntity]:
        cypher = (
            "MATCH (e:EVENT)-[:ATTENDED_BY]->(p:PERSON) "
            f"WHERE p.name CONTAINS {_quote(person_name)} RETURN e LIMIT 20"
        )
        result = await self.query(f"events with {person_name}", cypher_query=cypher)
        return [s.entity for s in result.entities if s.entity.type == "EVENT"]

    async def find_connections_of(self, person_name: str) -> list[GraphEntity]:
        cypher = (
            "MATCH (p:PERSON)-[:KNOWS|COLLEAGUE_OF]-(target:PERSON) "
            f"WHERE target.name CONTAINS {_quote(person_name)} RETURN p LIMIT 20"
        )
        result = await self.query(f"who knows {person_name}", cypher_query=cypher)
        return [s.entity for s in result.entities if s.entity.type == "PERSON"]
