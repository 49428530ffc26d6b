"""Tests for query scope classification and level selection."""

import pytest

from personal_graphrag.routing import (
    QueryScope,
    QueryScopeClassifier,
    ScopeResult,
    select_community_level,
)


@pytest.fixture
def classifier():
    return QueryScopeClassifier()


class TestQueryScope:
    """Tests for QueryScope enum."""

    def test_scope_values(self):
        """Test scope enum values."""
        assert QueryScope.BROAD.value == "broad"
        assert QueryScope.THEMATIC.value == "thematic"
        assert QueryScope.SPECIFIC.value == "specific"
        assert QueryScope.DEFAULT.value == "default"

    def test_every_scope_has_keywords(self):
        """Test each non-default scope has indicators."""
        for scope in (QueryScope.BROAD, QueryScope.THEMATIC, QueryScope.SPECIFIC):
            assert QueryScopeClassifier.SCOPE_KEYWORDS[scope]


class TestQueryScopeClassifier:
    """Tests for QueryScopeClassifier."""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("What are the main themes in my contacts?", QueryScope.BROAD),
            ("Give me an overview of last year", QueryScope.BROAD),
            ("How do my projects relate?", QueryScope.THEMATIC),
            ("What is the connection between Alice and Acme", QueryScope.THEMATIC),
            ("Who is Bob?", QueryScope.SPECIFIC),
            ("Tell me about the offsite", QueryScope.SPECIFIC),
            ("Alice", QueryScope.DEFAULT),
        ],
    )
    def test_classify(self, classifier, query, expected):
        """Test representative questions."""
        assert classifier.classify(query).scope == expected

    def test_broad_checked_first(self, classifier):
        """Test broad indicators win over specific ones."""
        result = classifier.classify("Who is mentioned most overall?")

        assert result.scope == QueryScope.BROAD
        assert "overall" in result.matches

    def test_default_has_no_matches(self, classifier):
        """Test unmatched queries report no indicators."""
        assert classifier.classify("Acme") == ScopeResult(scope=QueryScope.DEFAULT)


class TestSelectCommunityLevel:
    """Tests for select_community_level."""

    def test_broad_uses_coarsest(self):
        """Test broad questions pick the highest level."""
        assert select_community_level(QueryScope.BROAD, [0, 1, 2]) == 2

    def test_thematic_uses_middle(self):
        """Test thematic questions pick half the highest level."""
        assert select_community_level(QueryScope.THEMATIC, [0, 1, 2, 3]) == 1

    def test_specific_uses_finest(self):
        """Test specific questions pick the lowest level."""
        assert select_community_level(QueryScope.SPECIFIC, [1, 2]) == 1

    def test_default_one_below_coarsest(self):
        """Test default questions pick one level below the highest."""
        assert select_community_level(QueryScope.DEFAULT, [0, 1, 2]) == 1
        assert select_community_level(QueryScope.DEFAULT, [0]) == 0

    def test_thematic_clamped(self):
        """Test the middle level is clamped into the available range."""
        assert select_community_level(QueryScope.THEMATIC, [2, 3]) == 2

    def test_no_levels(self):
        """Test an empty level list is rejected."""
        with pytest.raises(ValueError):
            select_community_level(QueryScope.BROAD, [])
