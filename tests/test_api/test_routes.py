"""Tests for the HTTP API."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from personal_graphrag.exceptions import CypherParseError, IndexingStateError
from personal_graphrag.graph_rag import GraphRAG
from personal_graphrag.ingestion import IndexingProgress, IndexingStatus
from personal_graphrag.models import GraphCommunity, GraphStatistics
from personal_graphrag.retrieval import (
    CommunityAnswer,
    GlobalQueryPhase,
    GlobalQueryProgress,
    GlobalQueryResult,
    HybridQueryResult,
    ScoredQueryCommunity,
    ScoredQueryEntity,
)
from personal_graphrag.retrieval.global_search import GlobalQueryMetadata
from personal_graphrag.retrieval.hybrid import QueryMetadata

from conftest import axis_embedding, make_entity


def sse_events(text: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def global_result() -> GlobalQueryResult:
    return GlobalQueryResult(
        answer="Work and family.",
        community_answers=[
            CommunityAnswer(
                community_id="community_0_0",
                summary="Acme team",
                answer="Work at Acme.",
                helpfulness_score=80,
                level=0,
            )
        ],
        total_communities_processed=2,
        communities_filtered=1,
        metadata=GlobalQueryMetadata(original_query="themes", community_level=0),
    )


@pytest.fixture
def graph_rag():
    """GraphRAG double with canned results."""
    rag = MagicMock(spec=GraphRAG)
    rag.is_initialized = True
    rag.indexing_status = IndexingProgress()
    rag.get_stats = AsyncMock(return_value=GraphStatistics(entity_count=2, relationship_count=1))
    return rag


@pytest.fixture
def setup_env(monkeypatch):
    """Run the app without external clients."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("VOYAGE_API_KEY", "")
    from personal_graphrag.config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client(graph_rag, setup_env):
    from personal_graphrag.api.main import app, get_graph_rag

    app.dependency_overrides[get_graph_rag] = lambda: graph_rag
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestRootAndHealth:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        """Test the root endpoint."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_request_id_header(self, client):
        """Test request IDs are echoed or generated."""
        echoed = client.get("/", headers={"X-Request-ID": "abc123"})
        generated = client.get("/")

        assert echoed.headers["X-Request-ID"] == "abc123"
        assert len(generated.headers["X-Request-ID"]) == 8
        assert generated.headers["X-Response-Time"].endswith("ms")

    def test_health_healthy(self, client):
        """Test health reports graph statistics."""
        response = client.get("/health")

        data = response.json()
        assert data["status"] == "healthy"
        assert data["stats"]["entity_count"] == 2

    def test_health_unhealthy(self, client, graph_rag):
        """Test health when the facade is not initialized."""
        graph_rag.is_initialized = False

        data = client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["stats"] is None

    def test_not_initialized_returns_503(self, setup_env):
        """Test endpoints fail with 503 when no API keys are configured."""
        from personal_graphrag.api.main import app

        with TestClient(app) as test_client:
            response = test_client.get("/graph/stats")

        assert response.status_code == 503


class TestQueryRoutes:
    """Tests for query endpoints."""

    def test_query(self, client, graph_rag):
        """Test hybrid query serialization."""
        graph_rag.query = AsyncMock(
            return_value=HybridQueryResult(
                entities=[
                    ScoredQueryEntity(
                        entity=make_entity("alice", "Alice", description="Engineer"),
                        score=0.5,
                        source="cypher",
                    )
                ],
                communities=[
                    ScoredQueryCommunity(
                        community=GraphCommunity(
                            id="community_0_0", level=0, summary="Acme team", entity_ids=["alice", "bob"]
                        ),
                        score=0.1,
                    )
                ],
                context_string="Alice works at Acme",
                metadata=QueryMetadata(original_query="Alice"),
            )
        )

        response = client.post("/query", json={"query": "Alice"})

        assert response.status_code == 200
        data = response.json()
        assert data["entities"][0]["id"] == "alice"
        assert data["entities"][0]["source"] == "cypher"
        assert data["communities"][0]["entity_count"] == 2
        assert data["metadata"]["original_query"] == "Alice"
        graph_rag.query.assert_awaited_once_with("Alice", cypher_query=None, entity_types=None)

    def test_query_validation(self, client):
        """Test empty queries are rejected."""
        response = client.post("/query", json={"query": ""})

        assert response.status_code == 422

    def test_answer_stream(self, client, graph_rag):
        """Test answer tokens arrive as server-sent events."""

        async def tokens(*args, **kwargs):
            for token in ["Alice", " works"]:
                yield token

        graph_rag.query_with_answer_streaming = tokens

        response = client.post("/query/answer/stream", json={"query": "Alice"})

        assert response.headers["content-type"].startswith("text/event-stream")
        assert sse_events(response.text) == [
            {"type": "token", "content": "Alice"},
            {"type": "token", "content": " works"},
            {"type": "done"},
        ]

    def test_answer_stream_error(self, client, graph_rag):
        """Test stream failures are reported as an error event."""

        async def failing(*args, **kwargs):
            raise ValueError("Streaming requires a stream_function")
            yield

        graph_rag.query_with_answer_streaming = failing

        events = sse_events(client.post("/query/answer/stream", json={"query": "x"}).text)

        assert events == [{"type": "error", "message": "Streaming requires a stream_function"}]

    def test_cypher(self, client, graph_rag):
        """Test Cypher rows are returned with a count."""
        graph_rag.cypher_query = AsyncMock(return_value=[{"name": "Alice"}])

        response = client.post("/query/cypher", json={"cypher": "MATCH (p) RETURN p.name"})

        assert response.json() == {"rows": [{"name": "Alice"}], "count": 1}

    def test_cypher_parse_error(self, client, graph_rag):
        """Test malformed Cypher maps to 400 with the error position."""
        graph_rag.cypher_query = AsyncMock(side_effect=CypherParseError("Expected MATCH", 0))

        response = client.post("/query/cypher", json={"cypher": "RETURN"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Expected MATCH", "position": 0}

    def test_global_query_with_level(self, client, graph_rag):
        """Test an explicit level uses global_query."""
        graph_rag.global_query = AsyncMock(return_value=global_result())

        response = client.post("/query/global", json={"query": "themes", "community_level": 0})

        data = response.json()
        assert data["answer"] == "Work and family."
        assert data["useful_answers"] == 1
        assert data["community_answers"][0]["helpfulness_score"] == 80
        graph_rag.global_query.assert_awaited_once_with("themes", community_level=0)

    def test_global_query_auto(self, client, graph_rag):
        """Test a missing level picks the level automatically."""
        graph_rag.global_query_auto = AsyncMock(return_value=global_result())

        response = client.post("/query/global", json={"query": "themes"})

        assert response.status_code == 200
        graph_rag.global_query_auto.assert_awaited_once_with("themes")

    def test_global_query_stream(self, client, graph_rag):
        """Test progress events and the final result are streamed."""

        async def events(query, community_level=None, cancel_token=None):
            yield GlobalQueryProgress(GlobalQueryPhase.STARTING, "Using community level 0", community_level=0)
            yield GlobalQueryProgress(GlobalQueryPhase.STREAMING, "Generating response...", token="Work")
            yield GlobalQueryProgress(GlobalQueryPhase.COMPLETED, "Done", result=global_result())

        graph_rag.global_query_streaming = events

        response = client.post("/query/global/stream", json={"query": "themes", "community_level": 0})

        received = sse_events(response.text)
        assert [e["phase"] for e in received] == ["starting", "streaming", "completed"]
        assert received[1]["token"] == "Work"
        assert "token" not in received[0]
        assert received[2]["result"]["answer"] == "Work and family."

    def test_search_entities(self, client, graph_rag):
        """Test similarity search results."""
        from personal_graphrag.models import ScoredEntity

        graph_rag.search_entities = AsyncMock(
            return_value=[ScoredEntity(entity=make_entity("alice", "Alice", embedding=axis_embedding(0)), score=0.9)]
        )

        response = client.post("/search/entities", json={"query": "Alice", "top_k": 3})

        assert response.json()[0]["entity"]["id"] == "alice"
        graph_rag.search_entities.assert_awaited_once_with("Alice", top_k=3, entity_type=None)

    def test_context(self, client, graph_rag):
        """Test the context endpoint."""
        graph_rag.get_context = AsyncMock(return_value="Alice works at Acme")

        response = client.post("/context", json={"query": "Alice"})

        assert response.json() == {"query": "Alice", "context": "Alice works at Acme"}


class TestIndexingRoutes:
    """Tests for indexing control."""

    def test_progress(self, client):
        """Test the idle snapshot."""
        data = client.get("/indexing/progress").json()

        assert data["status"] == "idle"
        assert data["progress"] == 0.0

    def test_start(self, client, graph_rag):
        """Test starting a run passes the reindex flag."""
        graph_rag.start_indexing = AsyncMock()
        graph_rag.indexing_status = IndexingProgress(status=IndexingStatus.RUNNING, total_items=4)

        response = client.post("/indexing/start", json={"full_reindex": True})

        assert response.json()["status"] == "running"
        graph_rag.start_indexing.assert_awaited_once_with(full_reindex=True)

    def test_invalid_transition_conflict(self, client, graph_rag):
        """Test invalid state transitions map to 409."""
        graph_rag.pause_indexing = MagicMock(
            side_effect=IndexingStateError("Cannot pause indexing while idle")
        )

        response = client.post("/indexing/pause")

        assert response.status_code == 409
        assert response.json()["detail"] == "Cannot pause indexing while idle"


class TestGraphRoutes:
    """Tests for graph inspection."""

    def test_get_entity_hides_embedding(self, client, graph_rag):
        """Test entities are returned without their embedding."""
        graph_rag.get_entity = AsyncMock(
            return_value=make_entity("alice", "Alice", embedding=axis_embedding(0))
        )

        data = client.get("/graph/entities/alice").json()

        assert data["name"] == "Alice"
        assert "embedding" not in data

    def test_missing_entity(self, client, graph_rag):
        """Test unknown entities return 404."""
        graph_rag.get_entity = AsyncMock(return_value=None)

        assert client.get("/graph/entities/ghost").status_code == 404
        assert client.get("/graph/entities/ghost/neighbors").status_code == 404

    def test_neighbors(self, client, graph_rag):
        """Test neighbour traversal parameters are forwarded."""
        from personal_graphrag.graph import Direction

        graph_rag.get_entity = AsyncMock(return_value=make_entity("alice", "Alice"))
        graph_rag.get_neighbors = AsyncMock(return_value=[make_entity("acme", "Acme", "ORGANIZATION")])

        response = client.get("/graph/entities/alice/neighbors?depth=2&direction=outgoing")

        assert [e["id"] for e in response.json()] == ["acme"]
        graph_rag.get_neighbors.assert_awaited_once_with(
            "alice", depth=2, relationship_type=None, direction=Direction.OUTGOING
        )

    def test_neighbors_depth_bounds(self, client):
        """Test depth is validated."""
        assert client.get("/graph/entities/alice/neighbors?depth=9").status_code == 422

    def test_clear(self, client, graph_rag):
        """Test clearing the graph."""
        graph_rag.clear_graph = AsyncMock()

        assert client.delete("/graph").json() == {"status": "cleared"}
        graph_rag.clear_graph.assert_awaited_once()
