"""
Tests for PLS and KernelPLS.
"""

import numpy as np
import pytest

from localpls.exceptions import DimensionError, RangeError
from localpls.kernel_pls import KernelPLS
from localpls.pls import PLS
from localpls.scores import rmsep


def _data(N=40, K=8, M=2):
    rng = np.random.default_rng(42)
    X = rng.standard_normal((N, K))
    Y = X @ rng.standard_normal((K, M)) + 0.1 * rng.standard_normal((N, M))
    return X, Y


@pytest.mark.parametrize("algorithm", [1, 2])
def test_truncation_equals_independent_fits(algorithm):
    X, Y = _data()
    full = PLS(algorithm=algorithm).fit(X, Y, A=5)
    for a in range(1, 6):
        single = PLS(algorithm=algorithm).fit(X, Y, A=a)
        np.testing.assert_allclose(
            full.predict(X, n_components=a),
            single.predict(X, n_components=a),
            rtol=1e-8,
            atol=1e-10,
        )


def test_exact_fit_from_two_components_when_y_lies_in_two_pcs():
    rng = np.random.default_rng(42)
    X = rng.standard_normal((50, 10)) * np.linspace(3, 0.5, 10)
    Xc = X - X.mean(axis=0)
    _, _, Vt = np.linalg.svd(Xc, full_matrices=False)
    y = 1.0 + Xc @ Vt[:2].T @ np.array([[2.0], [-1.0]])

    pls = PLS().fit(X, y, A=5)
    errors = [rmsep(pls.predict(X, n_components=a), y)[0, 0] for a in range(6)]

    assert errors[1] > 1e-3
    for a in range(2, 6):
        assert errors[a] < 1e-8


def test_zero_components_predicts_the_mean():
    X, Y = _data()
    pls = PLS().fit(X, Y, A=0)
    assert pls.B.shape == (0, 8, 2)
    np.testing.assert_allclose(
        pls.predict(X, n_components=0), np.tile(Y.mean(axis=0), (40, 1))
    )
    full = PLS().fit(X, Y, A=3)
    np.testing.assert_allclose(
        full.predict(X, n_components=0), np.tile(Y.mean(axis=0), (40, 1))
    )


def test_components_are_capped():
    X, Y = _data(N=6, K=10)
    pls = PLS().fit(X, Y, A=20)
    assert pls.A == 5
    np.testing.assert_array_equal(
        pls.predict(X, n_components=50), pls.predict(X, n_components=5)
    )


def test_invalid_components_raise():
    X, Y = _data()
    with pytest.raises(RangeError):
        PLS().fit(X, Y, A=-1)
    pls = PLS().fit(X, Y, A=3)
    with pytest.raises(RangeError):
        pls.predict(X, n_components=-1)
    with pytest.raises(DimensionError):
        PLS().fit(X, Y[:-1], A=3)
    with pytest.raises(ValueError):
        PLS(algorithm=3)


@pytest.mark.parametrize("algorithm", [1, 2])
def test_integer_weights_equal_replicated_rows(algorithm):
    X, Y = _data(N=20)
    weights = np.arange(1, 21) % 3 + 1
    weighted = PLS(algorithm=algorithm).fit(X, Y, A=4, weights=weights)
    replicated = PLS(algorithm=algorithm).fit(
        np.repeat(X, weights, axis=0), np.repeat(Y, weights, axis=0), A=4
    )
    np.testing.assert_allclose(
        weighted.predict(X), replicated.predict(X), rtol=1e-8, atol=1e-10
    )


@pytest.mark.parametrize("scale_X", [False, True])
def test_coef_reproduces_predictions(scale_X):
    X, Y = _data()
    pls = PLS(scale_X=scale_X).fit(X, Y, A=4)
    B, intercept = pls.coef(3)
    np.testing.assert_allclose(X @ B + intercept, pls.predict(X, n_components=3))


def test_transform_and_inverse_transform():
    X, Y = _data(N=30, K=4)
    pls = PLS().fit(X, Y, A=4)
    T = pls.transform(X)
    np.testing.assert_allclose(T, pls.T)
    np.testing.assert_allclose(pls.inverse_transform(T), X, atol=1e-8)
    assert pls.transform(X, n_components=2).shape == (30, 2)


def test_kernel_pls_linear_kernel_matches_pls():
    X, Y = _data(M=1)
    kpls = KernelPLS(kernel="linear").fit(X, Y, A=3)
    pls = PLS().fit(X, Y, A=3)
    rng = np.random.default_rng(0)
    X_new = rng.standard_normal((5, 8))
    np.testing.assert_allclose(
        kpls.predict(X_new), pls.predict(X_new), rtol=1e-6, atol=1e-8
    )


def test_kernel_pls_shapes():
    X, Y = _data()
    kpls = KernelPLS(kernel="rbf", gamma=0.1).fit(X, Y, A=4)
    assert kpls.predict(X).shape == (4, 40, 2)
    assert kpls.predict(X, n_components=2).shape == (40, 2)
    assert kpls.predict(X, n_components=[0, 4]).shape == (2, 40, 2)
    assert kpls.transform(X, n_components=3).shape == (40, 3)
    np.testing.assert_allclose(
        kpls.predict(X, n_components=0), np.tile(Y.mean(axis=0), (40, 1))
    )


def test_kernel_pls_uniform_weights_equal_unweighted():
    X, Y = _data()
    unweighted = KernelPLS(kernel="poly", degree=2).fit(X, Y, A=3)
    weighted = KernelPLS(kernel="poly", degree=2).fit(
        X, Y, A=3, weights=np.full(40, 7.0)
    )
    np.testing.assert_allclose(weighted.predict(X), unweighted.predict(X), atol=1e-8)


def test_kernel_pls_invalid_kernel():
    with pytest.raises(ValueError):
        KernelPLS(kernel="sigmoid")
