"""Entity and relationship models for the knowledge graph."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GraphEntity(BaseModel):
    """Typed node of the knowledge graph."""

    id: str = Field(..., description="Unique entity identifier")
    name: str = Field(..., description="Entity name")
    type: str = Field(..., description="Entity type tag (PERSON, EVENT, LOCATION, ...)")
    embedding: list[float] = Field(
        default_factory=list, description="Entity embedding vector"
    )
    description: str | None = Field(None, description="Entity description")
    metadata: dict[str, Any] | None = Field(None, description="Free-form attributes")
    last_modified: datetime = Field(
        default_factory=_utcnow, description="Last modification time (UTC)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "id": "PERSON_alice_smith",
                "name": "Alice Smith",
                "type": "PERSON",
                "embedding": [0.1, 0.2, 0.3],
                "description": "Engineer at Acme Corp",
                "metadata": {"source_id": "contact_1"},
                "last_modified": "2025-01-01T00:00:00Z",
            }
        }


class GraphRelationship(BaseModel):
    """Directed, typed edge between two entities."""

    id: str = Field(..., description="Unique relationship identifier")
    source_id: str = Field(..., description="Source entity ID")
    target_id: str = Field(..., description="Target entity ID")
    type: str = Field(..., description="Relationship type (KNOWS, WORKS_AT, ...)")
    weight: float = Field(default=1.0, ge=0.0, description="Edge weight")
    metadata: dict[str, Any] | None = Field(None, description="Free-form attributes")


class ScoredEntity(BaseModel):
    """Entity similarity hit."""

    entity: GraphEntity
    score: float
