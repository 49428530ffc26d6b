"""Graph statistics model."""

from pydantic import BaseModel, Field


class GraphStatistics(BaseModel):
    """Counts describing the stored graph."""

    entity_count: int = 0
    relationship_count: int = 0
    community_count: int = 0
    entity_types: dict[str, int] = Field(default_factory=dict)
    embedding_dimension: int | None = None
