"""
Tests for the grid search and cross-validation engine.
"""

import numpy as np
import pandas as pd
import pytest

from localpls.discrimination import PLSLDA
from localpls.exceptions import DimensionError, RangeError
from localpls.fast_cross_validation.pls import PLS as FastCVPLS
from localpls.gridcv import (
    fitter,
    gridcv,
    gridcv_lb,
    gridcv_lv,
    gridcv_lv_mb,
    gridcv_mb,
    gridscore,
    gridscore_lv,
    mpar,
)
from localpls.local_models import KNNR
from localpls.multiblock import MBPLSR
from localpls.pls import PLS
from localpls.ridge import RR
from localpls.scores import err, rmsep
from localpls.segments import segm_kf, segm_ts


def _data(N=40, K=6, M=2):
    rng = np.random.default_rng(42)
    X = rng.standard_normal((N, K))
    Y = X @ rng.standard_normal((K, M)) + 0.1 * rng.standard_normal((N, M))
    return X, Y


class _Concatenated:
    def __init__(self, model):
        self.model = model

    def predict(self, Xbl):
        return self.model.predict(np.hstack(Xbl))


def _concatenated_ridge(Xbl, Y, lam):
    return _Concatenated(RR(lam=lam).fit(np.hstack(Xbl), Y))


def test_mpar_expands_all_combinations():
    pars = mpar(h=[1, 2], k=[5, 10, 20])
    assert set(pars) == {"h", "k"}
    np.testing.assert_array_equal(pars["h"], [1, 1, 1, 2, 2, 2])
    np.testing.assert_array_equal(pars["k"], [5, 10, 20, 5, 10, 20])
    assert len(mpar(a=3)["a"]) == 1


def test_fitter_separates_constructor_and_fit_parameters():
    X, Y = _data()
    model = fitter(PLS)(X, Y, A=3, scale_X=True)
    assert model.scale_X
    assert model.A == 3


def test_gridscore():
    X, Y = _data()
    res = gridscore(X[:30], Y[:30], X[30:], Y[30:], rmsep, RR, mpar(lam=[0.0, 1.0]))
    assert list(res.columns) == ["lam", "y1", "y2"]
    assert res.shape == (2, 3)
    assert (res["y1"] > 0).all()


def test_gridscore_lv():
    X, Y = _data()
    res = gridscore_lv(X[:30], Y[:30], X[30:], Y[30:], rmsep, PLS, nlv=[2, 5])
    np.testing.assert_array_equal(res["nlv"], [2, 3, 4, 5])
    pls = PLS().fit(X[:30], Y[:30], A=5)
    np.testing.assert_allclose(
        res.loc[res["nlv"] == 4, ["y1", "y2"]].to_numpy(),
        rmsep(pls.predict(X[30:], n_components=4), Y[30:]),
    )


def test_res_is_the_mean_of_res_rep():
    X, Y = _data()
    segm = segm_kf(40, 4, rep=2, random_state=42)
    pars = mpar(k=[5, 10], h=[1.0, np.inf])
    res, res_rep = gridcv(X, Y, segm, rmsep, KNNR, pars)

    assert res_rep.shape[0] == 2 * 4 * 4
    assert list(res_rep.columns[:4]) == ["rep", "segm", "k", "h"]
    assert res.shape[0] == 4
    for i, (k, h) in enumerate(zip(pars["k"], pars["h"])):
        assert res.loc[i, "k"] == k and res.loc[i, "h"] == h
        rows = res_rep[(res_rep["k"] == k) & (res_rep["h"] == h)]
        assert rows.shape[0] == 8
        np.testing.assert_allclose(
            res.loc[i, ["y1", "y2"]].to_numpy(dtype=float),
            rows[["y1", "y2"]].mean().to_numpy(),
        )


def test_gridcv_rejects_unequal_parameters():
    X, Y = _data()
    segm = segm_kf(40, 4, random_state=42)
    with pytest.raises(DimensionError):
        gridcv(X, Y, segm, rmsep, KNNR, {"k": [5, 10], "h": [1.0]})
    with pytest.raises(DimensionError):
        gridcv(X, Y, segm, rmsep, KNNR, {})


def test_gridcv_lv_finds_the_true_number_of_components():
    rng = np.random.default_rng(42)
    T = rng.standard_normal((50, 2))
    X = T @ rng.standard_normal((2, 10))
    y = T @ np.array([[2.0], [-1.0]])
    segm = segm_kf(50, 5, rep=2, random_state=42)

    res = gridcv_lv(X, y, segm, rmsep, PLS, nlv=range(3)).res
    np.testing.assert_array_equal(res["nlv"], range(3))
    assert res.loc[res["nlv"] == 1, "y1"].item() > 1e-3
    assert res.loc[res["nlv"] == 0, "y1"].item() > 1
    assert res.loc[res["nlv"] == 2, "y1"].item() < 1e-6


def test_gridcv_lv_with_parameters():
    X, Y = _data()
    segm = segm_ts(40, 10, rep=3, random_state=42)
    res, res_rep = gridcv_lv(
        X, Y, segm, rmsep, PLS, nlv=[1, 3], pars=mpar(scale_X=[False, True])
    )
    assert res.shape[0] == 6
    assert res_rep.shape[0] == 3 * 6
    assert list(res.columns) == ["scale_X", "nlv", "y1", "y2"]


def test_gridcv_lv_rejects_empty_nlv():
    X, Y = _data()
    segm = segm_kf(40, 4, random_state=42)
    with pytest.raises(RangeError):
        gridcv_lv(X, Y, segm, rmsep, PLS, nlv=[])


@pytest.mark.parametrize("weighted", [False, True])
def test_fast_gridcv_lv_matches_refitting(weighted):
    X, Y = _data()
    weights = np.random.default_rng(0).uniform(0.5, 2.0, 40) if weighted else None
    segm = segm_kf(40, 5, rep=2, random_state=42)
    fast = gridcv_lv(
        X, Y, segm, rmsep, FastCVPLS, nlv=range(5),
        pars=mpar(algorithm=[1, 2]), weights=weights,
    )
    slow = gridcv_lv(
        X, Y, segm, rmsep, PLS, nlv=range(5),
        pars=mpar(algorithm=[1, 2]), weights=weights,
    )
    pd.testing.assert_frame_equal(fast.res_rep, slow.res_rep, rtol=1e-6)
    pd.testing.assert_frame_equal(fast.res, slow.res, rtol=1e-6)


def test_gridcv_lb():
    X, Y = _data()
    segm = segm_kf(40, 4, random_state=42)
    res = gridcv_lb(X, Y, segm, rmsep, RR, lam=[1.0, 0.0, 1.0, 10.0]).res
    np.testing.assert_array_equal(res["lam"], [0.0, 1.0, 10.0])
    assert np.all(np.diff(res["y1"]) > 0)


def test_gridcv_weights_reach_the_model():
    X, Y = _data()
    segm = segm_kf(40, 4, random_state=42)
    uniform = gridcv_lv(X, Y, segm, rmsep, PLS, nlv=range(3), weights=np.full(40, 2.0))
    unweighted = gridcv_lv(X, Y, segm, rmsep, PLS, nlv=range(3))
    pd.testing.assert_frame_equal(uniform.res, unweighted.res, rtol=1e-8)
    with pytest.raises(DimensionError):
        gridcv_lv(X, Y, segm, rmsep, PLS, nlv=range(3), weights=np.ones(39))


def test_multiblock_gridcv():
    X, Y = _data()
    Xbl = [X[:, :2], X[:, 2:]]
    segm = segm_kf(40, 4, random_state=42)

    res = gridcv_lv_mb(Xbl, Y, segm, rmsep, MBPLSR, nlv=range(4)).res
    assert res.shape[0] == 4
    res = gridcv_lv_mb(
        Xbl, Y, segm, rmsep, MBPLSR, nlv=range(4), pars=mpar(scale_blocks=[True, False])
    ).res
    assert res.shape[0] == 8

    res = gridcv_mb(Xbl, Y, segm, rmsep, _concatenated_ridge, mpar(lam=[0.0, 1.0])).res
    expected = gridcv(X, Y, segm, rmsep, RR, mpar(lam=[0.0, 1.0])).res
    pd.testing.assert_frame_equal(res, expected)

    with pytest.raises(DimensionError):
        gridcv_mb(X, Y, segm, rmsep, _concatenated_ridge, mpar(lam=[0.0]))


def test_discrimination_gridcv_lv():
    rng = np.random.default_rng(42)
    X = np.vstack((rng.normal(0.0, 1.0, (30, 5)), rng.normal(3.0, 1.0, (30, 5))))
    y = np.array(["a"] * 30 + ["b"] * 30)
    segm = segm_kf(60, 3, rep=2, random_state=42)
    res = gridcv_lv(X, y, segm, err, PLSLDA, nlv=range(1, 4)).res
    np.testing.assert_array_equal(res["nlv"], [1, 2, 3])
    assert list(res.columns) == ["nlv", "y1"]
    assert (res["y1"] < 0.1).all()
