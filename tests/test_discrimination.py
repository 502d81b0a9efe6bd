"""
Tests for the discrimination models.
"""

import numpy as np
import pytest

from localpls.discrimination import LDA, PLSLDA, PLSQDA, PLSRDA, QDA, dummy
from localpls.exceptions import RangeError
from localpls.scores import err


def _class_data():
    rng = np.random.default_rng(42)
    centers = np.array(
        [[0.0, 0.0, 0.0, 0.0], [4.0, 0.0, 0.0, 0.0], [0.0, 4.0, 0.0, 0.0]]
    )
    X = np.vstack([rng.normal(c, 1.0, (25, 4)) for c in centers])
    y = np.repeat([2, 0, 1], 25)
    X_new = np.vstack([rng.normal(c, 1.0, (10, 4)) for c in centers])
    y_new = np.repeat([2, 0, 1], 10)
    return X, y, X_new, y_new


def test_dummy():
    z = dummy(["b", "a", "b", "c"])
    np.testing.assert_array_equal(z.lev, ["a", "b", "c"])
    np.testing.assert_array_equal(z.ni, [1, 2, 1])
    np.testing.assert_array_equal(
        z.Y, [[0, 1, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]]
    )


@pytest.mark.parametrize("model_class", [LDA, QDA])
@pytest.mark.parametrize("prior", ["unif", "prop"])
def test_discriminant_analysis(model_class, prior):
    X, y, X_new, y_new = _class_data()
    model = model_class(prior=prior).fit(X, y)
    proba = model.predict_proba(X_new)
    assert proba.shape == (30, 3)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    np.testing.assert_array_equal(model.lev, [0, 1, 2])
    assert err(model.predict(X_new), y_new)[0, 0] < 0.15


def test_lda_shares_one_covariance():
    X, y, _, _ = _class_data()
    lda = LDA().fit(X, y)
    qda = QDA().fit(X, y)
    for S in lda.covariances[1:]:
        np.testing.assert_array_equal(S, lda.covariances[0])
    assert not np.allclose(qda.covariances[0], qda.covariances[1])


def test_proportional_priors():
    X, y, _, _ = _class_data()
    keep = np.concatenate((np.arange(50), np.arange(50, 55)))
    lda = LDA(prior="prop").fit(X[keep], y[keep])
    np.testing.assert_allclose(lda.priors, np.array([25, 5, 25]) / 55)
    weighted = LDA(prior="prop").fit(X, y, weights=np.repeat([1.0, 1.0, 3.0], 25))
    np.testing.assert_allclose(weighted.priors, [0.2, 0.6, 0.2])


def test_single_observation_class():
    X, y, X_new, _ = _class_data()
    X = np.vstack((X, [[-6.0, -6.0, 0.0, 0.0]]))
    y = np.append(y, 3)
    model = QDA().fit(X, y)
    assert model.predict_proba(X_new).shape == (30, 4)
    assert model.predict([[-6.0, -6.0, 0.0, 0.0]])[0] == 3


def test_invalid_prior():
    with pytest.raises(ValueError):
        LDA(prior="equal")


@pytest.mark.parametrize("softmax", [True, False])
def test_plsrda(softmax):
    X, y, X_new, y_new = _class_data()
    model = PLSRDA(softmax=softmax).fit(X, y, A=3)
    assert model.predict(X_new).shape == (30,)
    assert err(model.predict(X_new), y_new)[0, 0] < 0.15
    pred = model.predict(X_new, n_components=[0, 1, 3])
    assert pred.shape == (3, 30)
    np.testing.assert_array_equal(pred[2], model.predict(X_new))
    proba = model.predict_proba(X_new, n_components=2)
    assert proba.shape == (30, 3)
    if softmax:
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)


def test_plsrda_without_components_predicts_the_largest_class():
    X, y, X_new, _ = _class_data()
    keep = np.concatenate((np.arange(35), np.arange(50, 60)))
    model = PLSRDA().fit(X[keep], y[keep], A=0)
    np.testing.assert_array_equal(model.predict(X_new), np.full(30, 2))


@pytest.mark.parametrize("model_class", [PLSLDA, PLSQDA])
def test_pls_discriminant_analysis(model_class):
    X, y, X_new, y_new = _class_data()
    model = model_class(prior="prop").fit(X, y, A=3)
    assert len(model.da) == 3
    assert model.predict(X_new).shape == (30,)
    assert err(model.predict(X_new), y_new)[0, 0] < 0.15
    proba = model.predict_proba(X_new, n_components=[1, 2, 3])
    assert proba.shape == (3, 30, 3)
    np.testing.assert_allclose(proba.sum(axis=2), 1.0)
    np.testing.assert_array_equal(
        model.predict(X_new, n_components=10), model.predict(X_new)
    )


@pytest.mark.parametrize("model_class", [PLSLDA, PLSQDA])
def test_pls_discriminant_analysis_requires_one_component(model_class):
    X, y, X_new, _ = _class_data()
    with pytest.raises(RangeError):
        model_class().fit(X, y, A=0)
    model = model_class().fit(X, y, A=2)
    with pytest.raises(RangeError):
        model.predict(X_new, n_components=0)
