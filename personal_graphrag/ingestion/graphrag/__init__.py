"""Knowledge-graph extraction, community detection and summarization."""

from .community import (
    CommunityDetectionConfig,
    CommunityDetectionResult,
    DetectedCommunity,
    LouvainCommunityDetector,
    build_entity_graph,
)
from .entity_extractor import (
    EntityExtractionConfig,
    EntityExtractor,
    EntityMerger,
    EntityTypes,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
    RelationshipTypes,
    entity_id_for,
)
from .link_prediction import (
    YOU_ENTITY_ID,
    EmbeddingCandidate,
    EmbeddingSimilarityLinkPredictor,
    LinkPredictionConfig,
    LinkPredictor,
    PredictedLink,
)
from .summarizer import CommunitySummarizer, CommunitySummary

__all__ = [
    "CommunityDetectionConfig",
    "CommunityDetectionResult",
    "DetectedCommunity",
    "LouvainCommunityDetector",
    "build_entity_graph",
    "EntityExtractionConfig",
    "EntityExtractor",
    "EntityMerger",
    "EntityTypes",
    "ExtractedEntity",
    "ExtractedRelationship",
    "ExtractionResult",
    "RelationshipTypes",
    "entity_id_for",
    "YOU_ENTITY_ID",
    "EmbeddingCandidate",
    "EmbeddingSimilarityLinkPredictor",
    "LinkPredictionConfig",
    "LinkPredictor",
    "PredictedLink",
    "CommunitySummarizer",
    "CommunitySummary",
]
