"""Query scope heuristics."""

from .intent import QueryScope, QueryScopeClassifier, ScopeResult, select_community_level

__all__ = [
    "QueryScope",
    "QueryScopeClassifier",
    "ScopeResult",
    "select_community_level",
]
