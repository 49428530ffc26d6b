"""Community model for hierarchical graph summaries."""

from typing import Any

from pydantic import BaseModel, Field


class GraphCommunity(BaseModel):
    """Persisted community of entities at one hierarchy level."""

    id: str = Field(..., description="Unique community identifier")
    level: int = Field(..., ge=0, description="Hierarchy level, 0 is the finest")
    summary: str = Field(default="", description="Community summary, empty until summarized")
    entity_ids: list[str] = Field(default_factory=list, description="Member entity IDs")
    embedding: list[float] | None = Field(None, description="Summary embedding vector")
    parent_community_id: str | None = Field(None, description="Parent community ID")
    child_community_ids: list[str] = Field(
        default_factory=list, description="Child community IDs"
    )
    metadata: dict[str, Any] | None = Field(None, description="Detection metadata")


class ScoredCommunity(BaseModel):
    """Community similarity hit."""

    community: GraphCommunity
    score: float
