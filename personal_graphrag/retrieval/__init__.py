"""Retrieval over the knowledge graph.

1. CypherQueryExecutor - MATCH/WHERE/RETURN subset over the repository
2. HybridQueryEngine - Cypher + embedding + community fusion (local questions)
3. GlobalQueryEngine - map-reduce over community summaries (global questions)
"""

from .cypher import (
    CypherLexer,
    CypherParser,
    CypherQuery,
    CypherQueryExecutor,
    CypherResult,
    evaluate_condition,
)
from .global_search import (
    CancellationToken,
    CommunityAnswer,
    GlobalQueryConfig,
    GlobalQueryEngine,
    GlobalQueryPhase,
    GlobalQueryProgress,
    GlobalQueryResult,
)
from .hybrid import (
    HybridQueryBuilder,
    HybridQueryConfig,
    HybridQueryEngine,
    HybridQueryResult,
    ScoredQueryCommunity,
    ScoredQueryEntity,
    generate_cypher_from_nl,
)

__all__ = [
    # Cypher
    "CypherLexer",
    "CypherParser",
    "CypherQuery",
    "CypherQueryExecutor",
    "CypherResult",
    "evaluate_condition",
    # Hybrid
    "HybridQueryBuilder",
    "HybridQueryConfig",
    "HybridQueryEngine",
    "HybridQueryResult",
    "ScoredQueryCommunity",
    "ScoredQueryEntity",
    "generate_cypher_from_nl",
    # Global
    "CancellationToken",
    "CommunityAnswer",
    "GlobalQueryConfig",
    "GlobalQueryEngine",
    "GlobalQueryPhase",
    "GlobalQueryProgress",
    "GlobalQueryResult",
]
