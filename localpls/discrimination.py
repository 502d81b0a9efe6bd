"""
Contains the discrimination models: Gaussian linear and quadratic discriminant
analysis (LDA, QDA) and their PLS based counterparts.

PLS discrimination transforms the class memberships `y` to a dummy table with one
0/1 column per class and fits a PLS2 on `X` and that table. PLSRDA predicts the
dummy table directly and returns the class of the largest (optionally softmax
transformed) prediction. PLSLDA and PLSQDA run an LDA or a QDA on the PLS scores
instead, one discriminant model per number of components.

Classes are ordered as returned by `numpy.unique`. Ties in the posteriors are
resolved in favor of the first class in that order.
"""

from typing import NamedTuple, Optional, Union

import numpy as np
import numpy.typing as npt
from scipy.special import logsumexp
from scipy.stats import multivariate_normal
from sklearn.base import BaseEstimator

from .exceptions import RangeError
from .pls import PLS, NComponents
from .weighted_linalg import as_2d, check_rows, mweights, weighted_covariance

PRIORS = ("unif", "prop")


class Dummy(NamedTuple):
    """
    Y : Array of shape (N, nlev)
        Dummy table.

    lev : Array of shape (nlev,)
        Sorted class labels, one per column of `Y`.

    ni : Array of shape (nlev,)
        Number of observations in each class.
    """

    Y: npt.NDArray[np.float64]
    lev: npt.NDArray
    ni: npt.NDArray[np.int_]


def dummy(y: npt.ArrayLike) -> Dummy:
    """
    Builds the dummy table of the class memberships `y`.
    """
    y = np.asarray(y).reshape(-1)
    lev, ni = np.unique(y, return_counts=True)
    Y = (y[:, None] == lev[None, :]).astype(np.float64)
    return Dummy(Y, lev, ni)


def _labels(y: npt.ArrayLike) -> npt.NDArray:
    return np.asarray(y).reshape(-1)


class LDA(BaseEstimator):
    """
    Gaussian linear discriminant analysis. All classes share the pooled
    within-class covariance matrix, where each class covariance is weighted by the
    class proportion. A class holding a single observation uses the covariance of
    the whole training set.

    Parameters
    ----------
    prior : str, default="unif"
        "unif" for equal class priors or "prop" for priors proportional to the
        (weighted) class sizes.
    """

    def __init__(self, prior: str = "unif") -> None:
        if prior not in PRIORS:
            raise ValueError(f"Invalid prior: {prior}. Prior must be one of {PRIORS}.")
        self.prior = prior
        self.lev = None
        self.ni = None
        self.priors = None
        self.means = None
        self.covariances = None

    def _class_covariances(
        self, X: npt.NDArray[np.float64], y: npt.NDArray, w: npt.NDArray[np.float64]
    ) -> list[npt.NDArray[np.float64]]:
        overall = None
        covariances = []
        for level, n in zip(self.lev, self.ni):
            s = y == level
            if n == 1:
                if overall is None:
                    overall = weighted_covariance(X, w)
                covariances.append(overall)
            else:
                covariances.append(weighted_covariance(X[s], w[s]))
        return covariances

    def fit(
        self,
        X: npt.ArrayLike,
        y: npt.ArrayLike,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "LDA":
        X = as_2d(X)
        y = _labels(y)
        N = check_rows(X, y, weights)
        w = mweights(weights, N)
        self.lev, self.ni = np.unique(y, return_counts=True)
        nlev = self.lev.shape[0]
        # Classes with zero total weight get a small share so that they stay defined
        class_w = np.array([w[y == level].sum() for level in self.lev])
        w = np.where(class_w[np.searchsorted(self.lev, y)] > 0, w, 1 / N)
        class_w = np.array([w[y == level].sum() for level in self.lev])
        class_w = class_w / class_w.sum()

        if self.prior == "unif":
            self.priors = np.full(nlev, 1 / nlev)
        else:
            self.priors = class_w
        self.means = np.vstack(
            [
                np.average(X[y == level], axis=0, weights=w[y == level])
                for level in self.lev
            ]
        )
        self.covariances = self._pool(self._class_covariances(X, y, w), class_w)
        return self

    def _pool(
        self,
        covariances: list[npt.NDArray[np.float64]],
        class_w: npt.NDArray[np.float64],
    ) -> list[npt.NDArray[np.float64]]:
        pooled = sum(cw * S for cw, S in zip(class_w, covariances))
        return [pooled] * len(covariances)

    def _log_densities(self, X: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.column_stack(
            [
                np.atleast_1d(
                    multivariate_normal.logpdf(X, mean=mu, cov=S, allow_singular=True)
                )
                for mu, S in zip(self.means, self.covariances)
            ]
        )

    def predict_proba(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Posterior probabilities of shape (N, nlev).
        """
        X = as_2d(X)
        log_post = self._log_densities(X) + np.log(self.priors)
        return np.exp(log_post - logsumexp(log_post, axis=1, keepdims=True))

    def predict(self, X: npt.ArrayLike) -> npt.NDArray:
        """
        Predicted class labels of shape (N,).
        """
        return self.lev[np.argmax(self.predict_proba(X), axis=1)]


class QDA(LDA):
    """
    Gaussian quadratic discriminant analysis. Each class keeps its own covariance
    matrix. A class holding a single observation uses the covariance of the whole
    training set.

    Parameters
    ----------
    prior : str, default="unif"
        "unif" or "prop". See `LDA`.
    """

    def _pool(
        self,
        covariances: list[npt.NDArray[np.float64]],
        class_w: npt.NDArray[np.float64],
    ) -> list[npt.NDArray[np.float64]]:
        return covariances


def _softmax(Z: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    Z = np.exp(Z - Z.max(axis=-1, keepdims=True))
    return Z / Z.sum(axis=-1, keepdims=True)


class PLSRDA(BaseEstimator):
    """
    Discrimination based on PLS regression of the dummy table.

    Parameters
    ----------
    softmax : bool, default=True
        Whether to apply a softmax transformation to the predicted dummy table
        before taking the class of the largest value.

    algorithm : int, default=1
        Improved Kernel PLS algorithm. See `PLS`.

    scale_X : bool, default=False
        Whether to scale `X`. See `PLS`.
    """

    def __init__(
        self, softmax: bool = True, algorithm: int = 1, scale_X: bool = False
    ) -> None:
        self.softmax = softmax
        self.algorithm = algorithm
        self.scale_X = scale_X
        self.pls = None
        self.lev = None
        self.ni = None

    def fit(
        self,
        X: npt.ArrayLike,
        y: npt.ArrayLike,
        A: int,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "PLSRDA":
        """
        Fits the PLS on `X` and the dummy table of `y` using `A` components.
        `A` may be 0, in which case the class with the largest (weighted)
        proportion is always predicted.
        """
        z = dummy(y)
        self.lev, self.ni = z.lev, z.ni
        self.pls = PLS(algorithm=self.algorithm, scale_X=self.scale_X).fit(
            X, z.Y, A, weights
        )
        return self

    @property
    def A(self) -> int:
        return self.pls.A

    def predict_proba(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray[np.float64]:
        """
        Predicted dummy table, of shape (N, nlev) for an int or None (all `A`
        components) and (len(n_components), N, nlev) for a sequence.
        """
        if n_components is None:
            n_components = self.A
        Z = self.pls.predict(X, n_components=n_components)
        return _softmax(Z) if self.softmax else Z

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray:
        """
        Predicted class labels, of shape (N,) for an int or None (all `A`
        components) and (len(n_components), N) for a sequence.
        """
        return self.lev[np.argmax(self.predict_proba(X, n_components), axis=-1)]


class PLSLDA(BaseEstimator):
    """
    LDA on PLS scores (PLS-LDA). A PLS2 is fitted on `X` and the dummy table of
    `y`, and one LDA is fitted on the first `a` training scores for every `a` in
    1..A.

    Parameters
    ----------
    prior : str, default="unif"
        "unif" or "prop". See `LDA`.

    algorithm : int, default=1
        Improved Kernel PLS algorithm. See `PLS`.

    scale_X : bool, default=False
        Whether to scale `X`. See `PLS`.
    """

    da_class = LDA

    def __init__(
        self, prior: str = "unif", algorithm: int = 1, scale_X: bool = False
    ) -> None:
        self.prior = prior
        self.algorithm = algorithm
        self.scale_X = scale_X
        self.pls = None
        self.da = None
        self.lev = None
        self.ni = None

    def fit(
        self,
        X: npt.ArrayLike,
        y: npt.ArrayLike,
        A: int,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "PLSLDA":
        """
        Raises
        ------
        RangeError
            If `A` is smaller than 1.
        """
        if A < 1:
            raise RangeError(f"Number of components must be at least 1. Got {A}.")
        y = _labels(y)
        z = dummy(y)
        self.lev, self.ni = z.lev, z.ni
        self.pls = PLS(algorithm=self.algorithm, scale_X=self.scale_X).fit(
            X, z.Y, A, weights
        )
        if self.pls.A < 1:
            raise RangeError("At least 2 observations are required to fit PLS scores.")
        self.da = [
            self.da_class(prior=self.prior).fit(self.pls.T[:, :a], y, weights)
            for a in range(1, self.pls.A + 1)
        ]
        return self

    @property
    def A(self) -> int:
        return self.pls.A

    def _counts(self, n_components: NComponents) -> npt.NDArray[np.int_]:
        counts = np.atleast_1d(
            np.asarray(self.A if n_components is None else n_components, dtype=int)
        )
        if np.any(counts < 1):
            raise RangeError(
                f"Number of components must be at least 1. Got {n_components}."
            )
        return np.minimum(counts, self.A)

    def predict_proba(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray[np.float64]:
        """
        Posterior probabilities of shape (N, nlev) for an int or None (all `A`
        components) and (len(n_components), N, nlev) for a sequence.
        """
        counts = self._counts(n_components)
        T = self.pls.transform(X)
        posteriors = np.stack([self.da[a - 1].predict_proba(T[:, :a]) for a in counts])
        if n_components is None or np.ndim(n_components) == 0:
            return posteriors[0]
        return posteriors

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray:
        """
        Predicted class labels of shape (N,) or (len(n_components), N).
        """
        return self.lev[np.argmax(self.predict_proba(X, n_components), axis=-1)]


class PLSQDA(PLSLDA):
    """
    QDA on PLS scores (PLS-QDA). See `PLSLDA`.
    """

    da_class = QDA


DAModel = Union[LDA, QDA, PLSRDA, PLSLDA, PLSQDA]
