"""
Vector similarity helpers.

All functions work on numpy arrays and never divide by zero: a zero-norm
vector has cosine similarity 0 with everything.
"""

from typing import Sequence, Union

import numpy as np

from core.errors import DimensionMismatch

VectorLike = Union[np.ndarray, Sequence[float]]


def as_vector(vector: VectorLike) -> np.ndarray:
    """Coerce to a 1-d float64 array."""
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-dimensional vector, got shape {arr.shape}")
    return arr


def cosine_similarity(vec1: VectorLike, vec2: VectorLike) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity score (-1 to 1), 0.0 if either vector is zero

    Raises:
        DimensionMismatch: Vectors differ in length
    """
    a = as_vector(vec1)
    b = as_vector(vec2)
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    # Clip float error so identical vectors never exceed 1
    return float(np.clip(np.dot(a, b) / (norm1 * norm2), -1.0, 1.0))


def cosine_scores(query_vec: VectorLike, corpus_vecs: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one query against every row of a matrix.

    Args:
        query_vec: Query vector of shape (dimension,)
        corpus_vecs: Corpus matrix of shape (n_docs, dimension)

    Returns:
        Array of shape (n_docs,)
    """
    query = as_vector(query_vec)
    corpus = np.asarray(corpus_vecs, dtype=np.float64)

    if corpus.size == 0:
        return np.zeros(corpus.shape[0] if corpus.ndim == 2 else 0)
    if corpus.shape[1] != query.shape[0]:
        raise DimensionMismatch(corpus.shape[1], query.shape[0])

    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(corpus.shape[0])

    corpus_norms = np.linalg.norm(corpus, axis=1)
    dots = corpus @ query
    denom = corpus_norms * query_norm

    scores = np.zeros(corpus.shape[0])
    np.divide(dots, denom, out=scores, where=denom > 0)
    return np.clip(scores, -1.0, 1.0)


def top_k_indices(scores: np.ndarray, k: int) -> np.ndarray:
    """
    Indices of the k highest scores, descending.

    Uses a stable sort so equal scores keep their original (insertion) order.
    """
    if k <= 0 or scores.size == 0:
        return np.array([], dtype=int)
    order = np.argsort(-scores, kind='stable')
    return order[:k]


def to_unit_interval(cosine: float) -> float:
    """Map a cosine in [-1, 1] onto [0, 1], preserving order."""
    return (1.0 + cosine) / 2.0


def min_max_normalize(scores: Sequence[float]) -> list:
    """
    Min-max scale scores into [0, 1].

    If every score is equal (including a single score) all members get 1.0.
    """
    if not len(scores):
        return []
    low = min(scores)
    high = max(scores)
    spread = high - low
    if spread == 0:
        return [1.0 for _ in scores]
    return [(s - low) / spread for s in scores]
