"""
Contains the RR class which implements weighted ridge regression by SVD. The SVD is
computed once, and predictions for any value (or sequence of values) of the
regularization parameter follow from it without refitting.
"""

from typing import Optional, Sequence, Union

import numpy as np
import numpy.typing as npt
from sklearn.base import BaseEstimator

from .exceptions import RangeError
from .weighted_linalg import as_2d, check_rows, mweights, weighted_center

Lambdas = Union[None, float, Sequence[float]]


class RR(BaseEstimator):
    """
    Weighted ridge regression minimizing
    :math:`\\sum_i w_i (y_i - x_i b)^2 + \\lambda \\|b\\|^2` with normalized weights.

    Parameters
    ----------
    lam : float, default=1e-2
        Default regularization parameter used by `predict`.
    """

    def __init__(self, lam: float = 1e-2) -> None:
        self.lam = lam
        self.V = None
        self.sv = None
        self.UtY = None
        self.X_mean = None
        self.Y_mean = None

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "RR":
        X = as_2d(X)
        Y = as_2d(Y)
        N = check_rows(X, Y, weights)
        w = mweights(weights, N)
        Xc, self.X_mean = weighted_center(X, w)
        Yc, self.Y_mean = weighted_center(Y, w)
        sqrt_w = np.sqrt(w)[:, None]
        U, self.sv, Vt = np.linalg.svd(sqrt_w * Xc, full_matrices=False)
        self.V = Vt.T
        self.UtY = U.T @ (sqrt_w * Yc)
        return self

    def _check_lambdas(self, lam: Lambdas) -> npt.NDArray[np.float64]:
        lam = np.atleast_1d(np.asarray(self.lam if lam is None else lam, dtype=float))
        if lam.size == 0 or np.any(lam < 0):
            raise RangeError(f"Lambda values must be non-negative. Got {lam}.")
        return lam

    def coef(self, lam: Optional[float] = None) -> tuple[npt.NDArray, npt.NDArray]:
        """
        Returns the coefficients (K, M) and the intercept (1, M) for `lam`.
        """
        lam = self._check_lambdas(lam)[0]
        B = self.V @ ((self.sv / (self.sv**2 + lam))[:, None] * self.UtY)
        return B, self.Y_mean - self.X_mean @ B

    def predict(self, X: npt.ArrayLike, lam: Lambdas = None) -> npt.NDArray[np.float64]:
        """
        Predicts on `X`. If `lam` is a scalar or None, returns (N, M). If `lam` is a
        sequence, returns one prediction per value, (len(lam), N, M).
        """
        X = as_2d(X)
        lams = self._check_lambdas(lam)
        preds = []
        for value in lams:
            B, intercept = self.coef(value)
            preds.append(X @ B + intercept)
        if lam is None or np.ndim(lam) == 0:
            return preds[0]
        return np.stack(preds)
