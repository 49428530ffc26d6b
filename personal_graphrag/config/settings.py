"""Application settings using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Anthropic Settings
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    claude_model: str = Field(
        default="claude-sonnet-4-5", description="Claude model used for generation"
    )
    claude_max_tokens: int = Field(default=2048, ge=1, description="Default generation length")
    claude_max_retries: int = Field(
        default=2, ge=0, description="SDK retries on rate limits and overload"
    )
    claude_timeout: float = Field(default=60.0, gt=0.0, description="Request timeout in seconds")

    # Voyage AI Settings
    voyage_api_key: str | None = Field(default=None, description="Voyage AI API key")
    voyage_embed_model: str = Field(
        default="voyage-3.5", description="Voyage embedding model"
    )
    embedding_dimension: int = Field(default=1024, description="Embedding vector dimension")

    # Hybrid Query Settings
    hybrid_cypher_weight: float = Field(default=0.4, ge=0.0, description="Cypher source weight")
    hybrid_embedding_weight: float = Field(
        default=0.4, ge=0.0, description="Embedding source weight"
    )
    hybrid_community_weight: float = Field(
        default=0.2, ge=0.0, description="Community source weight"
    )
    hybrid_top_k: int = Field(default=10, ge=1, description="Entities returned per query")
    similarity_threshold: float = Field(
        default=0.0, description="Minimum cosine similarity for entity hits"
    )

    # Global Query Settings
    global_min_helpfulness_score: int = Field(
        default=20, ge=0, le=100, description="Minimum map-phase helpfulness score"
    )
    global_max_community_answers: int = Field(
        default=10, ge=1, description="Community answers kept for the reduce phase"
    )
    global_response_type: str = Field(
        default="multiple paragraphs", description="Requested final answer shape"
    )

    # Indexing Settings
    indexing_batch_size: int = Field(default=10, ge=1, description="Items per indexing batch")
    indexing_batch_delay: float = Field(
        default=0.1, ge=0.0, description="Seconds to sleep between batches"
    )

    # Community Detection Settings
    community_resolution: float = Field(default=1.0, gt=0.0, description="Louvain resolution")
    community_max_depth: int = Field(default=2, ge=1, description="Hierarchy levels")
    community_random_seed: int | None = Field(
        default=None, description="Seed for deterministic node ordering"
    )

    # Link Prediction Settings
    link_prediction_enabled: bool = Field(
        default=False, description="Predict template, co-mention and temporal links while indexing"
    )

    # Application Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
