"""
Tests for the nearest-neighbor search and the distance weighting.
"""

import numpy as np
import pytest
from scipy.spatial.distance import cdist

from localpls.exceptions import InsufficientNeighborsError, SingularityError
from localpls.local_models import KNNR
from localpls.neighbors import (
    WEIGHT_KERNELS,
    NeighborIndex,
    distance_to_weight,
    floor_weights,
    get_knn,
)


def test_neighbors_are_sorted_and_deterministic():
    rng = np.random.default_rng(42)
    X_ref = rng.standard_normal((50, 3))
    X = rng.standard_normal((7, 3))
    first = get_knn(X_ref, X, k=10)
    second = get_knn(X_ref, X, k=10)

    assert first.indices.shape == (7, 10)
    assert np.all(np.diff(first.distances, axis=1) >= 0)
    np.testing.assert_array_equal(first.indices, second.indices)
    np.testing.assert_array_equal(first.distances, second.distances)
    np.testing.assert_allclose(
        first.distances, np.sort(cdist(X, X_ref), axis=1)[:, :10]
    )


def test_ties_are_broken_by_index():
    X_ref = np.array([[0.0], [1.0], [-1.0], [1.0], [-1.0]])
    res = get_knn(X_ref, [[0.0]], k=5)
    np.testing.assert_array_equal(res.indices, [[0, 1, 2, 3, 4]])
    np.testing.assert_array_equal(res.distances, [[0.0, 1.0, 1.0, 1.0, 1.0]])


def test_mahalanobis_distances():
    rng = np.random.default_rng(42)
    X_ref = rng.standard_normal((40, 3)) @ np.array(
        [[2.0, 0.0, 0.0], [0.5, 1.0, 0.0], [0.0, 0.3, 0.2]]
    )
    X = rng.standard_normal((4, 3))
    VI = np.linalg.inv(np.cov(X_ref, rowvar=False))
    res = get_knn(X_ref, X, k=40, metric="mahalanobis")
    expected = np.sort(cdist(X, X_ref, metric="mahalanobis", VI=VI), axis=1)
    np.testing.assert_allclose(res.distances, expected, rtol=1e-8)


def test_mahalanobis_singular_covariance_raises():
    rng = np.random.default_rng(42)
    X_ref = np.hstack((rng.standard_normal((20, 2)), np.ones((20, 1))))
    with pytest.raises(SingularityError):
        NeighborIndex("mahalanobis").fit(X_ref)


def test_invalid_queries():
    X_ref = np.zeros((5, 2))
    with pytest.raises(InsufficientNeighborsError):
        get_knn(X_ref, X_ref, k=6)
    with pytest.raises(ValueError):
        get_knn(X_ref, X_ref, k=0)
    with pytest.raises(ValueError):
        NeighborIndex("cosine")


@pytest.mark.parametrize("kind", WEIGHT_KERNELS)
def test_infinite_bandwidth_gives_uniform_weights(kind):
    d = np.array([0.0, 0.5, 2.0, 10.0])
    np.testing.assert_array_equal(distance_to_weight(d, np.inf, kind), np.ones(4))


@pytest.mark.parametrize("kind", WEIGHT_KERNELS)
def test_weights_are_non_increasing_with_maximum_one(kind):
    d = np.array([0.1, 0.4, 0.5, 0.9, 1.3, 2.0])
    w = distance_to_weight(d, 1.0, kind)
    assert w.max() == pytest.approx(1.0)
    assert np.all(w >= 0)
    assert np.all(np.diff(w) <= 1e-12)


def test_bisquare_weights():
    d = np.array([0.0, 1.0, 2.0])
    np.testing.assert_allclose(
        distance_to_weight(d, 1.0, "bisquare"), [1.0, 0.5625, 0.0]
    )


def test_invalid_weighting():
    with pytest.raises(ValueError):
        distance_to_weight([1.0], 0.0)
    with pytest.raises(ValueError):
        distance_to_weight([1.0], 1.0, kind="tricube")


def test_floor_weights():
    w = floor_weights([0.0, 1e-6, 0.5, 1.0], tol=1e-4)
    np.testing.assert_array_equal(w, [1e-4, 1e-4, 0.5, 1.0])


def test_every_neighbor_weight_is_at_least_tol():
    rng = np.random.default_rng(42)
    X = rng.standard_normal((60, 4))
    X[:5] += 20
    Y = rng.standard_normal(60)
    for kernel in WEIGHT_KERNELS:
        model = KNNR(k=30, h=0.2, kernel=kernel, tol=1e-3).fit(X, Y)
        weights = model.kneighbors(rng.standard_normal((10, 4))).weights
        assert weights.shape == (10, 30)
        assert np.all(weights >= 1e-3)
