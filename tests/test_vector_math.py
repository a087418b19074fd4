from __future__ import annotations

import math

import pytest

from scholarmem.utils.errors import DimensionMismatch
from scholarmem.utils.vector_math import clamp_unit, cosine_similarity, find_similar, mean_vector, round_score


class TestCosineSimilarity:

    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_is_symmetric(self) -> None:
        a, b = [0.3, -0.2, 0.9], [0.1, 0.4, 0.5]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_scale_invariant(self) -> None:
        a, b = [0.3, -0.2, 0.9], [0.1, 0.4, 0.5]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity([x * 7 for x in a], b))

    def test_zero_norm_is_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_length_mismatch_raises(self) -> None:
        with pytest.raises(DimensionMismatch):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_stays_in_range(self) -> None:
        value = cosine_similarity([1e-300, 1e-300], [1e-300, 1e-300])
        assert -1.0 <= value <= 1.0


class TestFindSimilar:

    def test_filters_and_sorts(self) -> None:
        query = [1.0, 0.0]
        candidates = [[0.0, 1.0], [1.0, 0.1], [1.0, 0.0], [1.0, 1.0]]

        results = find_similar(query, candidates, threshold=0.7)

        assert [index for index, _ in results] == [2, 1, 3]
        scores = [score for _, score in results]
        assert scores == sorted(scores, reverse=True)

    def test_threshold_is_inclusive(self) -> None:
        results = find_similar([1.0, 0.0], [[1.0, 0.0]], threshold=1.0)
        assert results == [(0, pytest.approx(1.0))]

    def test_ties_keep_candidate_order(self) -> None:
        results = find_similar([1.0, 0.0], [[2.0, 0.0], [1.0, 0.0], [3.0, 0.0]], threshold=0.5)
        assert [index for index, _ in results] == [0, 1, 2]

    def test_empty_candidates(self) -> None:
        assert find_similar([1.0, 0.0], [], threshold=0.0) == []


def test_clamp_and_round() -> None:
    assert clamp_unit(1.5) == 1.0
    assert clamp_unit(-0.2) == 0.0
    assert round_score(0.123456) == 0.1235
    assert round_score(math.pi, precision=2) == 1.0


def test_mean_vector() -> None:
    assert mean_vector([[1.0, 3.0], [3.0, 5.0]]) == [2.0, 4.0]
    assert mean_vector([]) == []
    with pytest.raises(DimensionMismatch):
        mean_vector([[1.0, 2.0], [1.0]])
