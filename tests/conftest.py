"""Pytest configuration and fixtures."""

import hashlib

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from personal_graphrag.graph import InMemoryGraphRepository
from personal_graphrag.models import GraphEntity, GraphRelationship

EMBEDDING_DIM = 8


def fake_embedding(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic embedding derived from a hash of the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(digest[i] / 255.0) - 0.5 for i in range(dim)]


def axis_embedding(index: int, dim: int = EMBEDDING_DIM) -> list[float]:
    """Unit vector along one axis, handy for exact similarity checks."""
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


@pytest.fixture
def mock_settings():
    """Mock settings for testing."""
    return {
        "anthropic_api_key": "test-anthropic-key",
        "voyage_api_key": "test-voyage-key",
        "embedding_dimension": EMBEDDING_DIM,
    }


@pytest.fixture
def embed_function():
    """Deterministic async embedding callback."""

    async def embed(text: str) -> list[float]:
        return fake_embedding(text)

    return AsyncMock(side_effect=embed)


@pytest.fixture
def generate_function():
    """Async generation callback returning a fixed answer."""
    return AsyncMock(return_value="Generated answer")


@pytest.fixture
def stream_function():
    """Async streaming callback yielding three tokens."""

    async def stream(prompt: str, **kwargs):
        for token in ["Hello", " ", "world"]:
            yield token

    return stream


@pytest_asyncio.fixture
async def repository():
    """Initialized, empty in-memory repository."""
    repo = InMemoryGraphRepository()
    await repo.initialize()
    yield repo
    await repo.close()


def make_entity(
    entity_id: str,
    name: str,
    entity_type: str = "PERSON",
    embedding: list[float] | None = None,
    description: str | None = None,
    **metadata,
) -> GraphEntity:
    return GraphEntity(
        id=entity_id,
        name=name,
        type=entity_type,
        embedding=embedding if embedding is not None else [],
        description=description,
        metadata=metadata or None,
    )


def make_relationship(
    source_id: str, rel_type: str, target_id: str, weight: float = 1.0
) -> GraphRelationship:
    return GraphRelationship(
        id=f"{source_id}_{rel_type}_{target_id}",
        source_id=source_id,
        target_id=target_id,
        type=rel_type,
        weight=weight,
    )


@pytest_asyncio.fixture
async def people_graph(repository):
    """Small graph: Alice and Bob work at Acme, Carol knows Alice, Bob attends a meeting."""
    entities = [
        make_entity("alice", "Alice Smith", "PERSON", axis_embedding(0), "Engineer", age=34),
        make_entity("bob", "Bob Jones", "PERSON", axis_embedding(1), "Designer", age=28),
        make_entity("carol", "Carol White", "PERSON", axis_embedding(2), "Manager", age=45),
        make_entity("acme", "Acme Corp", "ORGANIZATION", axis_embedding(3), "Software company"),
        make_entity("standup", "Daily Standup", "EVENT", axis_embedding(4), "Team meeting"),
    ]
    for entity in entities:
        await repository.add_entity(entity)

    for rel in [
        make_relationship("alice", "WORKS_AT", "acme"),
        make_relationship("bob", "WORKS_AT", "acme"),
        make_relationship("carol", "KNOWS", "alice"),
        make_relationship("standup", "ATTENDED_BY", "bob"),
    ]:
        await repository.add_relationship(rel)

    return repository
