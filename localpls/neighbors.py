"""
Contains the nearest-neighbor search and the distance weighting functions used by the
local models.

Neighbors are ordered by increasing distance. Ties are resolved by ascending index in
the reference set, so repeated queries, and hence cross-validation results, are
reproducible.
"""

from typing import NamedTuple

import numpy as np
import numpy.typing as npt
import scipy.linalg as sla
from scipy.spatial.distance import cdist

from .exceptions import InsufficientNeighborsError, SingularityError
from .weighted_linalg import as_2d

METRICS = ("euclidean", "mahalanobis")
WEIGHT_KERNELS = ("bisquare", "gaussian", "inverse", "exponential")


class NeighborResult(NamedTuple):
    """
    indices : Array of shape (m, k)
        Row i holds the indices of the k nearest reference rows of query row i,
        sorted by increasing distance.

    distances : Array of shape (m, k)
        The corresponding distances.
    """

    indices: npt.NDArray[np.int_]
    distances: npt.NDArray[np.float64]


class NeighborIndex:
    """
    Exhaustive nearest-neighbor index over a reference set.

    Parameters
    ----------
    metric : str, default="euclidean"
        "euclidean" or "mahalanobis". The Mahalanobis distance uses the covariance
        of the reference set. In high dimension it is numerically unstable, so the
        reference set is usually a handful of PLS or PCA scores.
    """

    def __init__(self, metric: str = "euclidean") -> None:
        if metric not in METRICS:
            raise ValueError(
                f"Invalid metric: {metric}. Metric must be one of {METRICS}."
            )
        self.metric = metric
        self.X = None
        self.L = None

    def _whiten(self, X: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        if self.L is None:
            return X
        return sla.solve_triangular(self.L, X.T, lower=True).T

    def fit(self, X: npt.ArrayLike) -> "NeighborIndex":
        """
        Stores the reference set `X` of shape (N, K).

        Raises
        ------
        SingularityError
            If the metric is "mahalanobis" and the covariance of `X` is not positive
            definite.
        """
        X = as_2d(X)
        if self.metric == "mahalanobis":
            S = np.atleast_2d(np.cov(X, rowvar=False))
            try:
                self.L = sla.cholesky(S, lower=True)
            except np.linalg.LinAlgError as e:
                raise SingularityError(
                    "Covariance of the reference set is not positive definite. "
                    "Reduce the dimension before using the Mahalanobis distance."
                ) from e
        else:
            self.L = None
        self.X = self._whiten(X)
        return self

    def query(self, X: npt.ArrayLike, k: int) -> NeighborResult:
        """
        Returns the `k` nearest reference rows of every row of `X`.

        Raises
        ------
        InsufficientNeighborsError
            If `k` exceeds the size of the reference set.
        """
        N = self.X.shape[0]
        if k < 1:
            raise ValueError(f"k must be positive. Got {k}.")
        if k > N:
            raise InsufficientNeighborsError(
                f"Requested k = {k} neighbors from a reference set of {N} rows."
            )
        D = cdist(self._whiten(as_2d(X)), self.X, metric="euclidean")
        indices = np.argsort(D, axis=1, kind="stable")[:, :k]
        return NeighborResult(indices, np.take_along_axis(D, indices, axis=1))


def get_knn(
    X_ref: npt.ArrayLike, X: npt.ArrayLike, k: int, metric: str = "euclidean"
) -> NeighborResult:
    """
    Finds the `k` nearest rows of `X_ref` for every row of `X`.
    """
    return NeighborIndex(metric).fit(X_ref).query(X, k)


def distance_to_weight(
    d: npt.ArrayLike, h: float, kind: str = "exponential", cri: float = 4
) -> npt.NDArray[np.float64]:
    """
    Converts distances to weights. The weights are rescaled so that the largest is 1.

    Parameters
    ----------
    d : Array of shape (k,)
        Distances.

    h : float
        Bandwidth. Lower is sharper. `numpy.inf` gives uniform weights.

    kind : str, default="exponential"
        - "bisquare": :math:`(1 - (d / (h d_{max}))^2)^2`, 0 beyond :math:`h d_{max}`.
        - "gaussian": :math:`\\exp(-d^2 / h)`.
        - "inverse": :math:`1 / (1 + d / h)`.
        - "exponential": :math:`\\exp(-d / (h\\,\\mathrm{median}(d)))`, 0 beyond
          :math:`\\mathrm{median}(d) + cri \\cdot \\mathrm{MAD}(d)`.

    cri : float, default=4
        Cutoff multiplier of the "exponential" kernel.

    Returns
    -------
    w : Array of shape (k,)
        Non-negative weights. May contain zeros, see `floor_weights`.
    """
    if kind not in WEIGHT_KERNELS:
        raise ValueError(
            f"Invalid kind: {kind}. Kind must be one of {WEIGHT_KERNELS}."
        )
    if not h > 0:
        raise ValueError(f"Bandwidth h must be positive. Got {h}.")
    d = np.asarray(d, dtype=np.float64).reshape(-1)
    if np.isinf(h) or d.size == 0:
        return np.ones_like(d)

    with np.errstate(divide="ignore", invalid="ignore"):
        if kind == "bisquare":
            dmax = d.max()
            if dmax == 0:
                return np.ones_like(d)
            u = d / (h * dmax)
            w = np.where(u < 1, (1 - u**2) ** 2, 0.0)
        elif kind == "gaussian":
            w = np.exp(-(d**2) / h)
        elif kind == "inverse":
            w = 1 / (1 + d / h)
        else:
            med = np.median(d)
            mad = 1.4826 * np.median(np.abs(d - med))
            w = np.exp(-d / (h * med))
            w[np.isnan(w)] = 1
            w[d > med + cri * mad] = 0

    wmax = w.max()
    if wmax > 0:
        w = w / wmax
    return w


def floor_weights(w: npt.ArrayLike, tol: float) -> npt.NDArray[np.float64]:
    """
    Returns a copy of `w` where every value below `tol` is replaced by `tol`.
    """
    w = np.asarray(w, dtype=np.float64)
    return np.where(w < tol, tol, w)
