"""
Contains the PCA class which implements weighted principal component analysis by
singular value decomposition of the square root weighted, centered data.
"""

from typing import Optional

import numpy as np
import numpy.typing as npt
import pandas as pd
from sklearn.base import BaseEstimator

from .weighted_linalg import as_2d, check_rows, weighted_pca


class PCA(BaseEstimator):
    """
    Weighted PCA by SVD.

    Noting :math:`\\mathbf{D}` the diagonal matrix of normalized observation
    weights, the loadings are the right singular vectors of
    :math:`\\mathbf{D}^{1/2}\\mathbf{X}_c` and the scores are
    :math:`\\mathbf{T} = \\mathbf{X}_c\\mathbf{P}`.

    Parameters
    ----------
    dtype : numpy.float, default=numpy.float64
        The float datatype to use in computation.
    """

    def __init__(self, dtype: np.floating = np.float64) -> None:
        self.dtype = dtype
        self.A = None
        self.T = None
        self.P = None
        self.sv = None
        self.X_mean = None
        self.weights = None

    def fit(
        self,
        X: npt.ArrayLike,
        A: Optional[int] = None,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "PCA":
        """
        Fits a PCA with `A` components. `A` is capped at min(N, K).

        Attributes
        ----------
        T : Array of shape (N, A)
            Scores.

        P : Array of shape (K, A)
            Loadings.

        sv : Array of shape (min(N, K),)
            Singular values.

        X_mean : Array of shape (1, K)
            Weighted mean of X.

        weights : Array of shape (N,)
            Normalized weights.
        """
        X = as_2d(X, self.dtype)
        check_rows(X, weights)
        self.T, self.P, self.sv, self.X_mean, self.weights = weighted_pca(
            X, weights, A
        )
        self.A = self.P.shape[1]
        return self

    def transform(
        self, X: npt.ArrayLike, n_components: Optional[int] = None
    ) -> npt.NDArray[np.floating]:
        """
        Computes the scores of `X` using the first `n_components` components. If
        `n_components` is None, all components are used.
        """
        n_components = self.A if n_components is None else min(n_components, self.A)
        X = as_2d(X, self.dtype)
        return (X - self.X_mean) @ self.P[:, :n_components]

    def inverse_transform(self, T: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """
        Maps scores back to the original space: :math:`\\mathbf{T}\\mathbf{P}^T`
        plus the mean.
        """
        T = as_2d(T, self.dtype)
        return T @ self.P[:, : T.shape[1]].T + self.X_mean

    def explained_variance(self) -> pd.DataFrame:
        """
        Returns the weighted variance of each component's scores, the proportion of
        the total weighted variance it explains and the cumulated proportion.
        """
        eig = self.sv**2
        tt = eig[: self.A]
        pvar = tt / eig.sum()
        return pd.DataFrame(
            {
                "pc": np.arange(1, self.A + 1),
                "var": tt,
                "pvar": pvar,
                "cumpvar": np.cumsum(pvar),
            }
        )
