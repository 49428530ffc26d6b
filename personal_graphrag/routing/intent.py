"""Query scope classification for community level selection."""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class QueryScope(str, Enum):
    """How much of the graph a question is about."""

    BROAD = "broad"  # Big-picture questions -> coarsest communities
    THEMATIC = "thematic"  # Grouped themes -> middle of the hierarchy
    SPECIFIC = "specific"  # Single entity/detail -> finest communities
    DEFAULT = "default"


@dataclass
class ScopeResult:
    """Result of scope classification."""

    scope: QueryScope
    matches: list[str] = field(default_factory=list)


class QueryScopeClassifier:
    """Keyword heuristics for query scope.

    Scopes are checked in order broad, thematic, specific; the first scope
    with a matching indicator wins.
    """

    SCOPE_KEYWORDS = {
        QueryScope.BROAD: [
            "main themes", "overall", "general", "summary", "overview",
            "what are the", "key trends", "major", "common patterns",
            "most important", "all ", "everything", "entire", "whole",
        ],
        QueryScope.THEMATIC: [
            "how do", "why do", "what causes", "relationship between",
            "connection", "impact of", "effect of", "related to",
            "associated with", "theme", "topic", "category",
        ],
        QueryScope.SPECIFIC: [
            "who is", "what is", "where is", "when did", "which ",
            "specific", "particular", "exactly", "details about",
            "tell me about", "info on", "information about",
        ],
    }

    def classify(self, query: str) -> ScopeResult:
        query_lower = query.lower()
        for scope, keywords in self.SCOPE_KEYWORDS.items():
            matches = [kw for kw in keywords if kw in query_lower]
            if matches:
                logger.debug(f"Query scope: {scope.value} (matched {matches})")
                return ScopeResult(scope=scope, matches=matches)
        return ScopeResult(scope=QueryScope.DEFAULT)


def select_community_level(scope: QueryScope, available_levels: list[int]) -> int:
    """Pick a community level for a scope.

    Level 0 is the finest. Broad questions take the coarsest level, thematic
    ones the middle, specific ones the finest, anything else one step below
    the coarsest.

    Args:
        scope: Classified query scope
        available_levels: Levels that hold communities (must be non-empty)
    """
    if not available_levels:
        raise ValueError("No community levels available")

    min_level = min(available_levels)
    max_level = max(available_levels)

    if scope == QueryScope.BROAD:
        level = max_level
    elif scope == QueryScope.THEMATIC:
        level = max_level // 2
    elif scope == QueryScope.SPECIFIC:
        level = min_level
    else:
        level = max(min_level, max_level - 1)

    return min(max(level, min_level), max_level)
