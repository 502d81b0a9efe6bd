"""
Tests for the ridge, multiblock and clusterwise models, the prediction scores and
the permutation importance.
"""

import numpy as np
import pytest

from localpls.clusterwise import CPLSRAvg
from localpls.exceptions import DimensionError, RangeError
from localpls.importance import varimp_perm
from localpls.multiblock import MBPLSR, block_norms
from localpls.pls import PLS
from localpls.ridge import RR
from localpls.scores import bias, cor2, err, msep, r2, rmsep, rpd, sep, ssr
from localpls.weighted_linalg import MLR


def _data(N=40, K=6, M=2):
    rng = np.random.default_rng(42)
    X = rng.standard_normal((N, K))
    Y = X @ rng.standard_normal((K, M)) + 0.1 * rng.standard_normal((N, M))
    return X, Y


def test_ridge_without_penalty_is_mlr():
    X, Y = _data()
    weights = np.random.default_rng(0).uniform(0.5, 2.0, 40)
    rr = RR(lam=0.0).fit(X, Y, weights)
    mlr = MLR().fit(X, Y, weights)
    np.testing.assert_allclose(rr.predict(X), mlr.predict(X), rtol=1e-8, atol=1e-10)
    B, intercept = rr.coef()
    np.testing.assert_allclose(B, mlr.B, rtol=1e-8, atol=1e-10)
    np.testing.assert_allclose(intercept, mlr.intercept, rtol=1e-8, atol=1e-10)


def test_ridge_predicts_every_lambda_from_one_fit():
    X, Y = _data()
    rr = RR().fit(X, Y)
    pred = rr.predict(X[:5], lam=[0.0, 0.1, 1.0])
    assert pred.shape == (3, 5, 2)
    np.testing.assert_allclose(pred[1], RR(lam=0.1).fit(X, Y).predict(X[:5]))
    np.testing.assert_allclose(rr.predict(X[:5], lam=0.1), pred[1])
    assert rr.predict(X[:5]).shape == (5, 2)


def test_ridge_shrinks_towards_the_mean():
    X, Y = _data()
    rr = RR().fit(X, Y)
    norms = [np.linalg.norm(rr.coef(lam)[0]) for lam in (0.0, 1.0, 100.0)]
    assert norms[0] > norms[1] > norms[2]
    np.testing.assert_allclose(
        rr.predict(X, lam=1e12), np.tile(Y.mean(axis=0), (40, 1)), atol=1e-8
    )


def test_ridge_rejects_negative_lambda():
    X, Y = _data()
    rr = RR().fit(X, Y)
    with pytest.raises(RangeError):
        rr.predict(X, lam=-1.0)
    with pytest.raises(RangeError):
        rr.predict(X, lam=[])


def test_scores():
    pred = np.array([1.0, 2.0, 3.0])
    Y = np.array([1.0, 2.0, 5.0])
    np.testing.assert_allclose(ssr(pred, Y), [[4.0]])
    np.testing.assert_allclose(msep(pred, Y), [[4 / 3]])
    np.testing.assert_allclose(rmsep(pred, Y), [[np.sqrt(4 / 3)]])
    np.testing.assert_allclose(bias(pred, Y), [[-2 / 3]])
    np.testing.assert_allclose(sep(pred, Y), [[np.sqrt(8 / 9)]])
    np.testing.assert_allclose(r2(Y, Y), [[1.0]])
    np.testing.assert_allclose(cor2(2 * Y + 1, Y), [[1.0]])
    np.testing.assert_allclose(rpd(pred, Y), np.std(Y) / np.sqrt(4 / 3))
    np.testing.assert_allclose(err(["a", "b", "b", "a"], ["a", "c", "b", "b"]), [[0.5]])


def test_scores_are_columnwise():
    X, Y = _data()
    assert rmsep(Y + 1, Y).shape == (1, 2)
    np.testing.assert_allclose(rmsep(Y + 1, Y), 1.0)


def test_block_norms():
    X, _ = _data()
    norms = block_norms([X[:, :2], np.ones((40, 3)), X[:, 2:]])
    np.testing.assert_allclose(norms[0], np.sqrt(X[:, :2].var(axis=0).sum()))
    assert norms[1] == 1
    np.testing.assert_allclose(norms[2], np.sqrt(X[:, 2:].var(axis=0).sum()))


def test_mbplsr_without_block_scaling_is_pls_on_the_concatenation():
    X, Y = _data()
    model = MBPLSR(scale_blocks=False).fit([X[:, :2], X[:, 2:]], Y, A=3)
    pls = PLS().fit(X, Y, A=3)
    np.testing.assert_allclose(
        model.predict([X[:, :2], X[:, 2:]]), pls.predict(X), rtol=1e-8, atol=1e-10
    )


def test_mbplsr_is_invariant_to_block_scale():
    X, Y = _data()
    first = MBPLSR().fit([X[:, :2], X[:, 2:]], Y, A=3)
    second = MBPLSR().fit([10 * X[:, :2], X[:, 2:]], Y, A=3)
    np.testing.assert_allclose(
        first.predict([X[:, :2], X[:, 2:]], n_components=2),
        second.predict([10 * X[:, :2], X[:, 2:]], n_components=2),
        rtol=1e-8,
        atol=1e-10,
    )
    assert first.transform([X[:, :2], X[:, 2:]]).shape == (40, 3)


def test_mbplsr_invalid_blocks():
    X, Y = _data()
    with pytest.raises(DimensionError):
        MBPLSR().fit([], Y, A=2)
    with pytest.raises(DimensionError):
        MBPLSR().fit([X[:, :2], X[:-1, 2:]], Y, A=2)
    model = MBPLSR().fit([X[:, :2], X[:, 2:]], Y, A=2)
    with pytest.raises(DimensionError):
        model.predict([X[:, :3], X[:, 3:]])


def _clustered_data():
    rng = np.random.default_rng(42)
    centers = np.array([[0.0] * 5, [10.0] + [0.0] * 4, [0.0, 10.0] + [0.0] * 3])
    X = np.vstack([rng.normal(c, 1.0, (40, 5)) for c in centers])
    cla = np.repeat([0, 1, 2], 40)
    B = rng.normal(0.0, 3.0, (3, 5, 1))
    Y = np.vstack([X[cla == c] @ B[c] for c in range(3)])
    Y = Y + 0.05 * rng.standard_normal(Y.shape)
    return X, Y, cla


def test_clusterwise_averaging_fits_local_structure():
    X, Y, _ = _clustered_data()
    model = CPLSRAvg(A_da=3, n_clusters=3, min_size=30, random_state=0).fit(X, Y, nlv=5)
    assert len(model.models) == 3
    assert model.included.all()
    proba = model.predict_proba(X)
    assert proba.shape == (120, 3)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    pred = model.predict(X)
    assert pred.shape == (120, 1)
    global_pred = PLS().fit(X, Y, A=5).predict(X, n_components=5)
    assert rmsep(pred, Y)[0, 0] < 0.5 * rmsep(global_pred, Y)[0, 0]


def test_clusterwise_averaging_leaves_out_small_clusters():
    X, Y, cla = _clustered_data()
    keep = np.concatenate((np.arange(80), np.arange(80, 90)))
    model = CPLSRAvg(A_da=3, min_size=30).fit(
        X[keep], Y[keep], nlv="1:3", cla=cla[keep]
    )
    np.testing.assert_array_equal(model.ni, [40, 40, 10])
    np.testing.assert_array_equal(model.included, [True, True, False])
    proba = model.predict_proba(X)
    np.testing.assert_array_equal(proba[:, 2], 0)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    assert model.predict(X).shape == (120, 1)

    model = CPLSRAvg(A_da=3, min_size=100).fit(X, Y, nlv="1:3", cla=cla)
    assert model.included.all()


def test_permutation_importance():
    rng = np.random.default_rng(42)
    X = rng.standard_normal((60, 4))
    y = 3 * X[:, 0] + 0.1 * rng.standard_normal(60)
    imp = varimp_perm(X[:40], y[:40], X[40:], y[40:], MLR, B=5, random_state=42)
    assert imp.shape == (4, 1)
    assert imp[0, 0] > 1
    assert np.all(np.abs(imp[1:]) < 0.1)
    again = varimp_perm(X[:40], y[:40], X[40:], y[40:], MLR, B=5, random_state=42)
    np.testing.assert_array_equal(imp, again)


def test_permutation_importance_passes_parameters():
    X, Y = _data()
    imp = varimp_perm(
        X[:30], Y[:30], X[30:], Y[30:], RR, score=rmsep, B=3, random_state=0, lam=0.5
    )
    assert imp.shape == (6, 2)
