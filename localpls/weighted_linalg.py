"""
Contains the weighted linear algebra kernel shared by every model in localpls:
weighted means, centering and covariance, weighted multiple linear regression (QR,
Cholesky and pseudo-inverse variants) and weighted PCA by SVD.

Observation weights are never required to sum to one. They are normalized
internally wherever a weighted mean or covariance is computed.
"""

import warnings
from typing import Optional, Tuple

import numpy as np
import numpy.typing as npt
import scipy.linalg as sla
from sklearn.base import BaseEstimator

from .exceptions import DimensionError, FallbackWarning, SingularityError

REGRESSION_METHODS = ("qr", "cholesky", "pinv", "pinv_normal")


def as_2d(A: npt.ArrayLike, dtype: np.floating = np.float64) -> npt.NDArray:
    """
    Converts `A` to a 2D array. Vectors become single column matrices.
    """
    A = np.asarray(A, dtype=dtype)
    if A.ndim == 0:
        return A.reshape(1, 1)
    if A.ndim == 1:
        return A.reshape(-1, 1)
    return A


def check_rows(*arrays: Optional[npt.ArrayLike]) -> int:
    """
    Checks that all arrays that are not None have the same number of rows.

    Returns
    -------
    N : int
        The common number of rows.

    Raises
    ------
    DimensionError
        If the row counts differ.
    """
    lengths = [np.shape(a)[0] for a in arrays if a is not None]
    if len(set(lengths)) > 1:
        raise DimensionError(f"Row counts must be equal. Got {lengths}.")
    return lengths[0]


def mweights(
    weights: Optional[npt.ArrayLike], N: Optional[int] = None
) -> npt.NDArray[np.float64]:
    """
    Returns weights of shape (N,) that sum to one. If `weights` is None, then
    uniform weights of length `N` are returned.

    Raises
    ------
    ValueError
        If any weight is negative or if all weights are zero.
    """
    if weights is None:
        if N is None:
            raise ValueError("`N` is required when `weights` is None.")
        return np.full(N, 1 / N)
    weights = np.asarray(weights, dtype=np.float64).reshape(-1)
    if np.any(weights < 0):
        raise ValueError("Weights must be non-negative.")
    total = weights.sum()
    if not total > 0:
        raise ValueError("At least one weight must be positive.")
    return weights / total


def weighted_mean(
    X: npt.ArrayLike, weights: Optional[npt.ArrayLike] = None
) -> npt.NDArray[np.float64]:
    """
    Column-wise weighted means of `X`, returned as an array of shape (1, K).
    """
    X = as_2d(X)
    check_rows(X, weights)
    w = mweights(weights, X.shape[0])
    return (w @ X).reshape(1, -1)


def weighted_center(
    X: npt.ArrayLike, weights: Optional[npt.ArrayLike] = None
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Centers `X` on its column-wise weighted means.

    Returns
    -------
    Xc : Array of shape (N, K)
        Centered copy of `X`.

    means : Array of shape (1, K)
        Weighted column means.
    """
    X = as_2d(X)
    means = weighted_mean(X, weights)
    return X - means, means


def weighted_covariance(
    X: npt.ArrayLike, weights: Optional[npt.ArrayLike] = None
) -> npt.NDArray[np.float64]:
    """
    Weighted covariance matrix :math:`\\mathbf{X}_c^T\\mathbf{D}\\mathbf{X}_c` where
    :math:`\\mathbf{D}` is the diagonal matrix of normalized weights. With uniform
    weights this is the biased (1 / N) covariance.
    """
    X = as_2d(X)
    w = mweights(weights, X.shape[0])
    Xc, _ = weighted_center(X, w)
    return (Xc * w[:, None]).T @ Xc


def _cholesky_solve(
    XtDX: npt.NDArray[np.float64], XtDY: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    try:
        factor = sla.cho_factor(XtDX, lower=False, check_finite=False)
    except np.linalg.LinAlgError as e:
        raise SingularityError("Normal matrix is not positive definite.") from e
    pivots = np.diag(factor[0]) ** 2
    if pivots.min() <= np.sqrt(np.finfo(np.float64).eps) * pivots.max():
        raise SingularityError("Normal matrix is rank deficient.")
    return sla.cho_solve(factor, XtDY, check_finite=False)


def _pinv_rtol(A: npt.NDArray[np.float64]) -> float:
    return np.sqrt(np.finfo(A.dtype).eps)


def weighted_regress(
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    weights: Optional[npt.ArrayLike] = None,
    fit_intercept: bool = True,
    method: str = "qr",
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Weighted multiple linear regression of `Y` on `X`.

    Parameters
    ----------
    X : Array of shape (N, K) or (N,)
        Predictor variables.

    Y : Array of shape (N, M) or (N,)
        Response variables.

    weights : Array of shape (N,) or None, optional, default=None
        Observation weights. Normalized internally.

    fit_intercept : bool, default=True
        Whether to center on the weighted means and return an intercept.

    method : str, default="qr"
        One of "qr" (least squares on the square root weighted design using a
        complete orthogonal factorization), "cholesky" (normal equations),
        "pinv" (pseudo-inverse of the weighted design) or "pinv_normal"
        (pseudo-inverse of the normal matrix). "cholesky" and "pinv_normal" are
        faster when N is much larger than K.

    Returns
    -------
    B : Array of shape (K, M)
        Regression coefficients.

    intercept : Array of shape (1, M)
        Intercepts. Zeros if `fit_intercept` is False.

    Raises
    ------
    DimensionError
        If row counts differ or if "cholesky" is used with a single column.

    ValueError
        If `method` is unknown.

    Warns
    -----
    FallbackWarning
        If the Cholesky factorization fails and the pseudo-inverse is used.
    """
    if method not in REGRESSION_METHODS:
        raise ValueError(
            f"Invalid method: {method}. Method must be one of {REGRESSION_METHODS}."
        )
    X = as_2d(X)
    Y = as_2d(Y)
    N = check_rows(X, Y, weights)
    K = X.shape[1]
    w = mweights(weights, N)

    if fit_intercept:
        Xc, X_mean = weighted_center(X, w)
        Yc, Y_mean = weighted_center(Y, w)
    else:
        Xc, Yc = X, Y

    if method == "cholesky" and K < 2:
        raise DimensionError("Method 'cholesky' requires X with at least 2 columns.")

    if method in ("cholesky", "pinv_normal"):
        XtD = (Xc * w[:, None]).T
        XtDX = XtD @ Xc
        XtDY = XtD @ Yc
        if method == "cholesky":
            try:
                B = _cholesky_solve(XtDX, XtDY)
            except SingularityError as e:
                warnings.warn(
                    message=f"{e} Falling back to the pseudo-inverse.",
                    category=FallbackWarning,
                )
                method = "pinv"
        else:
            B = sla.pinv(XtDX, rtol=_pinv_rtol(XtDX)) @ XtDY

    if method in ("qr", "pinv"):
        sqrt_w = np.sqrt(w)[:, None]
        sqrt_wX = sqrt_w * Xc
        sqrt_wY = sqrt_w * Yc
        if method == "qr":
            B = sla.lstsq(sqrt_wX, sqrt_wY, lapack_driver="gelsy")[0]
        else:
            B = sla.pinv(sqrt_wX, rtol=_pinv_rtol(sqrt_wX)) @ sqrt_wY

    if fit_intercept:
        intercept = Y_mean - X_mean @ B
    else:
        intercept = np.zeros((1, Y.shape[1]))
    return B, intercept


class MLR(BaseEstimator):
    """
    Weighted multiple linear regression.

    Parameters
    ----------
    fit_intercept : bool, default=True
        Whether to fit an intercept.

    method : str, default="qr"
        Solver. See `weighted_regress`.
    """

    def __init__(self, fit_intercept: bool = True, method: str = "qr") -> None:
        self.fit_intercept = fit_intercept
        self.method = method
        self.B = None
        self.intercept = None
        self.weights = None

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "MLR":
        X = as_2d(X)
        self.weights = mweights(weights, X.shape[0])
        self.B, self.intercept = weighted_regress(
            X, Y, self.weights, fit_intercept=self.fit_intercept, method=self.method
        )
        return self

    def predict(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        return self.intercept + as_2d(X) @ self.B


def weighted_pca(
    X: npt.ArrayLike,
    weights: Optional[npt.ArrayLike] = None,
    A: Optional[int] = None,
) -> Tuple[
    npt.NDArray[np.float64],
    npt.NDArray[np.float64],
    npt.NDArray[np.float64],
    npt.NDArray[np.float64],
    npt.NDArray[np.float64],
]:
    """
    Weighted PCA by SVD of :math:`\\mathbf{D}^{1/2}\\mathbf{X}_c`.

    Parameters
    ----------
    X : Array of shape (N, K)
        Data.

    weights : Array of shape (N,) or None, optional, default=None
        Observation weights.

    A : int or None, optional, default=None
        Number of components. Capped at min(N, K). If None, min(N, K) is used.

    Returns
    -------
    T : Array of shape (N, A)
        Scores. :math:`\\mathbf{T} = \\mathbf{X}_c\\mathbf{P}`.

    P : Array of shape (K, A)
        Loadings.

    sv : Array of shape (min(N, K),)
        Singular values, clipped to non-negative. The squared singular values are
        the weighted variances of the scores.

    X_mean : Array of shape (1, K)
        Weighted column means.

    weights : Array of shape (N,)
        Normalized weights.
    """
    X = as_2d(X)
    N, K = X.shape
    A = min(N, K) if A is None else min(A, N, K)
    w = mweights(weights, N)
    Xc, X_mean = weighted_center(X, w)
    _, sv, Vt = np.linalg.svd(np.sqrt(w)[:, None] * Xc, full_matrices=False)
    sv = np.clip(sv, 0, None)
    P = Vt[:A].T
    T = Xc @ P
    return T, P, sv, X_mean, w
