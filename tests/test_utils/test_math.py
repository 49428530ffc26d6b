"""Tests for vector math helpers."""

import numpy as np
import pytest

from personal_graphrag.utils import cosine_similarity_matrix


class TestCosineSimilarityMatrix:
    """Tests for cosine_similarity_matrix."""

    def test_scores(self):
        """Test identical, orthogonal and opposite vectors."""
        vectors = np.array([[1.0, 0.0], [0.0, 2.0], [-3.0, 0.0]])

        scores = cosine_similarity_matrix([1.0, 0.0], vectors)

        assert scores.tolist() == pytest.approx([1.0, 0.0, -1.0])

    def test_zero_vectors(self):
        """Test zero vectors score 0.0 instead of NaN."""
        vectors = np.array([[0.0, 0.0], [1.0, 1.0]])

        assert cosine_similarity_matrix([1.0, 1.0], vectors).tolist() == pytest.approx([0.0, 1.0])
        assert cosine_similarity_matrix([0.0, 0.0], vectors).tolist() == [0.0, 0.0]

    def test_empty(self):
        assert cosine_similarity_matrix([1.0], np.zeros((0, 1))).size == 0
