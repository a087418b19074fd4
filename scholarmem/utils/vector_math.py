"""
Vector similarity primitives.

Pure functions only: nothing here touches the store or a provider.
"""

from typing import List, Sequence, Tuple

import numpy as np

from .errors import DimensionMismatch

Vector = Sequence[float]


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero norm

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0

    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def find_similar(query: Vector, candidates: Sequence[Vector], threshold: float = 0.5) -> List[Tuple[int, float]]:
    """Score candidates against a query and keep those at or above threshold.

    Args:
        query: Query vector
        candidates: Candidate vectors
        threshold: Minimum similarity (inclusive)

    Returns:
        List of (candidate_index, similarity) sorted by similarity descending.
        Equal similarities keep candidate order.
    """
    scored = []
    for index, candidate in enumerate(candidates):
        similarity = cosine_similarity(query, candidate)
        if similarity >= threshold:
            scored.append((index, similarity))

    # sorted() is stable, so ties stay in candidate order
    return sorted(scored, key=lambda item: item[1], reverse=True)


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


def round_score(value: float, precision: int = 4) -> float:
    """Clamp to [0, 1] and round to storage precision."""
    return round(clamp_unit(value), precision)


def mean_vector(vectors: Sequence[Vector]) -> List[float]:
    """Element-wise mean of equally sized vectors.

    Raises:
        DimensionMismatch: If the vectors are ragged
    """
    if not vectors:
        return []

    size = len(vectors[0])
    for vector in vectors:
        if len(vector) != size:
            raise DimensionMismatch(size, len(vector))

    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()
