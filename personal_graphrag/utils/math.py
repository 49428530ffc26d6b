"""Vector math helpers."""

from typing import Sequence

import numpy as np


def cosine_similarity_matrix(query: Sequence[float], vectors: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query against every row of ``vectors``.

    Zero vectors score 0.0 rather than NaN.
    """
    q = np.asarray(query, dtype=np.float64)
    if vectors.size == 0:
        return np.zeros(0)
    norms = np.linalg.norm(vectors, axis=1) * np.linalg.norm(q)
    dots = vectors @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores
