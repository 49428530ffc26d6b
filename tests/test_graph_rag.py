"""Tests for the GraphRAG facade."""

import json
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from personal_graphrag import GraphRAG, GraphRAGConfig
from personal_graphrag.config.settings import Settings
from personal_graphrag.connectors import Contact, InMemoryConnector, PermissionType
from personal_graphrag.exceptions import IndexingStateError, NotInitializedError
from personal_graphrag.ingestion import IndexingStatus
from personal_graphrag.ingestion.graphrag import CommunityDetectionConfig

from conftest import axis_embedding, make_entity, make_relationship

EXTRACTION = json.dumps(
    {
        "entities": [
            {"name": "Alice Smith", "type": "PERSON", "description": "Engineer"},
            {"name": "Acme", "type": "ORGANIZATION", "description": "Software company"},
        ],
        "relationships": [{"source": "Alice Smith", "target": "Acme", "type": "WORKS_AT"}],
    }
)


async def fake_generate(prompt: str) -> str:
    """Route prompts to canned responses by their headers."""
    if "---Community Summary---" in prompt:
        return "SCORE: 70\nAlice Smith works at Acme."
    if "---Analyst Reports---" in prompt:
        return "Alice Smith is an engineer at Acme."
    if "Generate a comprehensive summary" in prompt or "Generate a summary for a level" in prompt:
        return "Alice Smith and her employer Acme."
    if "Answer" in prompt and "Data:" in prompt:
        return "Alice Smith works at Acme."
    return EXTRACTION


@pytest.fixture
def contacts():
    return InMemoryConnector(
        "contacts",
        [
            Contact(
                id="c1",
                last_modified=datetime(2025, 1, 1, tzinfo=timezone.utc),
                given_name="Alice",
                family_name="Smith",
                organization_name="Acme",
            )
        ],
        required_permissions=[PermissionType.CONTACTS],
    )


@pytest_asyncio.fixture
async def graph_rag(embed_function, stream_function):
    """Initialized facade with deterministic callbacks."""
    config = GraphRAGConfig(community_config=CommunityDetectionConfig(random_seed=3))
    config.indexing_config.batch_delay = 0.0
    rag = GraphRAG(
        generate_function=AsyncMock(side_effect=fake_generate),
        embed_function=embed_function,
        stream_function=stream_function,
        config=config,
    )
    await rag.initialize()
    yield rag
    await rag.close()


@pytest_asyncio.fixture
async def indexed_rag(graph_rag, contacts):
    """Facade after one completed indexing run."""
    graph_rag.register_connector(contacts)
    await graph_rag.start_indexing()
    await graph_rag.wait_for_indexing()
    return graph_rag


class TestLifecycle:
    """Tests for initialization."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, embed_function, generate_function):
        """Test operations before initialize() raise NotInitializedError."""
        rag = GraphRAG(generate_function, embed_function)

        with pytest.raises(NotInitializedError):
            await rag.query("anything")
        with pytest.raises(NotInitializedError):
            await rag.add_entity(make_entity("a", "Alice"))
        with pytest.raises(NotInitializedError):
            rag.pause_indexing()
        with pytest.raises(NotInitializedError):
            rag.repository

    @pytest.mark.asyncio
    async def test_initialize_idempotent(self, graph_rag):
        """Test a second initialize() keeps the same components."""
        engine = graph_rag.query_engine

        await graph_rag.initialize()

        assert graph_rag.query_engine is engine

    @pytest.mark.asyncio
    async def test_close(self, embed_function, generate_function):
        """Test close() makes the facade unusable again."""
        rag = GraphRAG(generate_function, embed_function)
        await rag.initialize()
        await rag.close()

        assert rag.is_initialized is False
        with pytest.raises(NotInitializedError):
            await rag.get_stats()

    def test_config_from_settings(self):
        """Test settings map onto component configs."""
        settings = Settings(
            _env_file=None,
            hybrid_top_k=7,
            global_min_helpfulness_score=40,
            community_max_depth=3,
            indexing_batch_size=4,
            embedding_dimension=16,
            link_prediction_enabled=True,
        )

        config = GraphRAGConfig.from_settings(settings)

        assert config.query_config.top_k == 7
        assert config.global_config.min_helpfulness_score == 40
        assert config.community_config.max_depth == 3
        assert config.indexing_config.batch_size == 4
        assert config.indexing_config.max_community_depth == 3
        assert config.embedding_dimension == 16
        assert config.link_prediction is not None
        assert GraphRAGConfig.from_settings(Settings(_env_file=None)).link_prediction is None


class TestIndexingAndQueries:
    """End-to-end tests over an indexed graph."""

    @pytest.mark.asyncio
    async def test_indexing_builds_graph(self, indexed_rag):
        """Test indexing stores entities, relationships and communities."""
        assert indexed_rag.indexing_status.status == IndexingStatus.COMPLETED

        stats = await indexed_rag.get_stats()
        assert stats.entity_count == 2
        assert stats.relationship_count == 1
        assert stats.community_count == 1

        [community] = await indexed_rag.get_communities_by_level(0)
        assert community.summary == "Alice Smith and her employer Acme."

    @pytest.mark.asyncio
    async def test_start_twice(self, graph_rag, contacts):
        """Test starting while a run is active is rejected."""
        graph_rag.register_connector(contacts)
        await graph_rag.start_indexing()

        with pytest.raises(IndexingStateError):
            await graph_rag.start_indexing()

        await graph_rag.wait_for_indexing()

    @pytest.mark.asyncio
    async def test_indexing_progress_stream(self, graph_rag, contacts):
        """Test the progress stream ends with the terminal snapshot."""
        graph_rag.register_connector(contacts)
        await graph_rag.start_indexing()

        snapshots = [s async for s in graph_rag.indexing_progress()]

        assert snapshots[-1].status == IndexingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_hybrid_query(self, indexed_rag):
        """Test hybrid queries find indexed entities."""
        result = await indexed_rag.query("Alice Smith Engineer")

        assert "person_alice_smith" in result.entity_ids
        assert result.context_string

    @pytest.mark.asyncio
    async def test_query_with_answer(self, indexed_rag):
        """Test answers come from the generation callback."""
        result = await indexed_rag.query_with_answer("Alice Smith Engineer")

        assert result.generated_answer == "Alice Smith works at Acme."

    @pytest.mark.asyncio
    async def test_query_with_answer_streaming(self, indexed_rag):
        """Test streamed answers use the stream callback."""
        tokens = [t async for t in indexed_rag.query_with_answer_streaming("Alice Smith Engineer")]

        assert "".join(tokens) == "Hello world"

    @pytest.mark.asyncio
    async def test_streaming_requires_stream_function(self, embed_function, generate_function):
        """Test streaming without a stream callback fails."""
        rag = GraphRAG(generate_function, embed_function)
        await rag.initialize()

        with pytest.raises(ValueError):
            async for _ in rag.query_with_answer_streaming("Alice"):
                pass

    @pytest.mark.asyncio
    async def test_global_query(self, indexed_rag):
        """Test map-reduce over the indexed communities."""
        result = await indexed_rag.global_query("What are the main themes?", community_level=0)

        assert result.answer == "Alice Smith is an engineer at Acme."
        assert result.useful_answers == 1

    @pytest.mark.asyncio
    async def test_global_query_auto(self, indexed_rag):
        """Test automatic level selection on a single-level graph."""
        result = await indexed_rag.global_query_auto("Give me an overview")

        assert result.metadata.community_level == 0

    @pytest.mark.asyncio
    async def test_global_query_streaming(self, indexed_rag):
        """Test streaming global queries end with a result."""
        events = [e async for e in indexed_rag.global_query_streaming("overview", 0)]

        assert events[-1].result.answer == "Hello world"

    @pytest.mark.asyncio
    async def test_cypher_query(self, indexed_rag):
        """Test raw Cypher over the facade."""
        rows = await indexed_rag.cypher_query(
            "MATCH (p:PERSON)-[:WORKS_AT]->(o) RETURN p.name, o.name AS org"
        )

        assert rows == [{"name": "Alice Smith", "org": "Acme"}]

    @pytest.mark.asyncio
    async def test_find_people_at(self, indexed_rag):
        """Test the organization finder."""
        people = await indexed_rag.find_people_at("Acme")

        assert [p.id for p in people] == ["person_alice_smith"]

    @pytest.mark.asyncio
    async def test_finder_quotes_input(self, indexed_rag):
        """Test quotes in finder input do not break the query."""
        result = await indexed_rag.query(
            "people",
            cypher_query='MATCH (p:PERSON) WHERE p.name CONTAINS "Alice \\"Al\\"" RETURN p',
        )
        people = await indexed_rag.find_people_at('Acme "Labs"')

        assert result.cypher_results == []
        assert all(p.type == "PERSON" for p in people)

    @pytest.mark.asyncio
    async def test_search_entities_caches_embedding(self, indexed_rag, embed_function):
        """Test repeated searches embed the query once."""
        before = embed_function.await_count

        await indexed_rag.search_entities("Alice")
        await indexed_rag.search_entities("Alice")

        assert embed_function.await_count == before + 1

    @pytest.mark.asyncio
    async def test_augment_prompt(self, indexed_rag):
        """Test the default template receives context and question."""
        prompt = await indexed_rag.augment_prompt("Alice Smith Engineer")

        assert "User Question: Alice Smith Engineer" in prompt
        assert "Alice Smith" in prompt.split("User Question")[0]

    @pytest.mark.asyncio
    async def test_clear_graph(self, indexed_rag, contacts):
        """Test clearing empties the graph and the next run re-fetches everything."""
        await indexed_rag.clear_graph()
        assert (await indexed_rag.get_stats()).entity_count == 0

        await indexed_rag.start_indexing()
        await indexed_rag.wait_for_indexing()

        assert indexed_rag.indexing_status.total_items == 1
        assert (await indexed_rag.get_stats()).entity_count == 2

    @pytest.mark.asyncio
    async def test_finder_round_trips_control_characters(self, graph_rag):
        """Test finder input with control and non-ASCII characters matches exactly."""
        organization = 'Acme\x07\b\f☃ "Labs"\\'
        await graph_rag.add_entity(make_entity("alice", "Alice"))
        await graph_rag.add_entity(make_entity("acme", organization, "ORGANIZATION"))
        await graph_rag.add_entity(make_entity("other", "Acme Labs", "ORGANIZATION"))
        await graph_rag.add_entity(make_entity("bob", "Bob"))
        await graph_rag.add_relationship(make_relationship("alice", "WORKS_AT", "acme"))
        await graph_rag.add_relationship(make_relationship("bob", "WORKS_AT", "other"))

        people = await graph_rag.find_people_at(organization)

        assert [p.id for p in people] == ["alice"]


class TestGraphOperations:
    """Tests for direct graph access."""

    @pytest.mark.asyncio
    async def test_entity_crud(self, graph_rag):
        """Test add, update, neighbour and delete through the facade."""
        await graph_rag.add_entity(make_entity("alice", "Alice"))
        await graph_rag.add_entity(make_entity("bob", "Bob"))
        await graph_rag.add_relationship(make_relationship("alice", "KNOWS", "bob"))

        updated = await graph_rag.update_entity("alice", description="Engineer")
        neighbors = await graph_rag.get_neighbors("alice")

        assert updated.description == "Engineer"
        assert [n.id for n in neighbors] == ["bob"]
        assert len(await graph_rag.get_relationships("bob")) == 1

        assert await graph_rag.delete_entity("bob") is True
        assert await graph_rag.get_relationships("alice") == []

    @pytest.mark.asyncio
    async def test_detect_communities_not_persisted(self, graph_rag):
        """Test on-demand detection leaves stored communities alone."""
        for entity_id in ["a", "b", "c"]:
            await graph_rag.add_entity(make_entity(entity_id, entity_id.upper()))
        await graph_rag.add_relationship(make_relationship("a", "KNOWS", "b"))
        await graph_rag.add_relationship(make_relationship("b", "KNOWS", "c"))

        result = await graph_rag.detect_communities()

        assert result.communities
        assert (await graph_rag.get_stats()).community_count == 0

    @pytest.mark.asyncio
    async def test_permissions(self, graph_rag, contacts):
        """Test permission checks and requests pass through."""
        graph_rag.register_connector(contacts)

        statuses = await graph_rag.check_permissions()
        requested = await graph_rag.request_permissions("contacts")

        assert set(statuses) == {"contacts"}
        assert PermissionType.CONTACTS in requested

    @pytest.mark.asyncio
    async def test_extract_entities(self, graph_rag):
        """Test text extraction through the facade."""
        result = await graph_rag.extract_entities("Alice Smith works at Acme.", "note_1")

        assert {e.name for e in result.entities} == {"Alice Smith", "Acme"}

    @pytest.mark.asyncio
    async def test_predict_similarity_links(self, graph_rag):
        """Test near-identical people are linked and the link is stored."""
        await graph_rag.add_entity(make_entity("mom", "Mom", embedding=axis_embedding(0)))
        await graph_rag.add_entity(make_entity("dad", "Dad", embedding=axis_embedding(0)))
        await graph_rag.add_entity(make_entity("acme", "Acme", "ORGANIZATION", axis_embedding(3)))

        links = await graph_rag.predict_similarity_links()

        assert [(l.source_entity_id, l.target_entity_id, l.relationship_type) for l in links] == [
            ("mom", "dad", "RELATED_TO")
        ]
        [stored] = await graph_rag.get_relationships("mom")
        assert stored.type == "RELATED_TO"
        assert stored.metadata["prediction_method"] == "embedding_similarity_same_type"
