"""
Contains the KernelPLS class which implements weighted kernel partial least-squares
regression with the NIPALS algorithm of Rosipal and Trejo:
https://www.jmlr.org/papers/v2/rosipal01a.html

The Euclidean inner product of PLS is replaced by a Gram matrix (RBF, polynomial or
linear). Loadings are replaced by a dual expansion over the training observations.
Dual regression coefficients are stored for every number of components so any
truncation predicts without refitting.
"""

import warnings
from typing import Optional

import numpy as np
import numpy.linalg as la
import numpy.typing as npt
from sklearn.base import BaseEstimator
from sklearn.metrics.pairwise import linear_kernel, polynomial_kernel, rbf_kernel

from .exceptions import RangeError
from .pls import NComponents
from .weighted_linalg import as_2d, check_rows, mweights

KERNELS = ("rbf", "poly", "linear")


class KernelPLS(BaseEstimator):
    """
    Weighted kernel PLS regression (NIPALS).

    Parameters
    ----------
    kernel : str, default="rbf"
        One of "rbf" (:math:`\\exp(-\\gamma\\|x - y\\|^2)`), "poly"
        (:math:`(\\gamma x^Ty + c_0)^d`) or "linear".

    gamma : float or None, default=None
        Kernel coefficient for "rbf" and "poly". If None, 1 / K is used.

    degree : int, default=3
        Degree of the polynomial kernel.

    coef0 : float, default=1.0
        Independent term of the polynomial kernel.

    center_Y : bool, default=True
        Whether to center `Y` on its weighted mean.

    tol : float, default=1e-10
        Convergence tolerance of the NIPALS inner loop (only iterates when `Y` has
        more than one column).

    max_iter : int, default=500
        Maximum number of NIPALS inner iterations.

    dtype : numpy.float, default=numpy.float64
        The float datatype to use in computation.
    """

    def __init__(
        self,
        kernel: str = "rbf",
        gamma: Optional[float] = None,
        degree: int = 3,
        coef0: float = 1.0,
        center_Y: bool = True,
        tol: float = 1e-10,
        max_iter: int = 500,
        dtype: np.floating = np.float64,
    ) -> None:
        self.kernel = kernel
        self.gamma = gamma
        self.degree = degree
        self.coef0 = coef0
        self.center_Y = center_Y
        self.tol = tol
        self.max_iter = max_iter
        self.dtype = dtype
        self.eps = np.finfo(dtype).eps
        if self.kernel not in KERNELS:
            raise ValueError(
                f"Invalid kernel: {self.kernel}. Kernel must be one of {KERNELS}."
            )
        self.A = None
        self.N = None
        self.M = None
        self.X = None
        self.T = None
        self.U = None
        self.alpha = None
        self.weights = None
        self.Y_mean = None

    def _gram(self, X1: npt.NDArray, X2: npt.NDArray) -> npt.NDArray[np.floating]:
        if self.kernel == "rbf":
            return rbf_kernel(X1, X2, gamma=self.gamma)
        if self.kernel == "poly":
            return polynomial_kernel(
                X1, X2, degree=self.degree, gamma=self.gamma, coef0=self.coef0
            )
        return linear_kernel(X1, X2)

    def _centered_gram(self, X: npt.ArrayLike) -> npt.NDArray[np.floating]:
        """
        Gram matrix between `X` and the training data, centered on the weighted mean
        of the training data in feature space.
        """
        K_new = self._gram(as_2d(X, self.dtype), self.X)
        return K_new - (K_new @ self.weights)[:, None] - self._Kw[None, :] + self._wKw

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        A: int,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "KernelPLS":
        """
        Fits kernel PLS on `X` and `Y` using `A` components. `A` is silently capped at
        N - 1.

        Attributes
        ----------
        T : Array of shape (N, A)
            Orthonormal scores of the square root weighted, centered Gram matrix.

        U : Array of shape (N, A)
            Y-scores.

        alpha : Array of shape (A, N, M)
            Dual regression coefficients. `alpha[a - 1]` predicts with `a` components.

        Warns
        -----
        UserWarning
            If the deflated Gram matrix vanishes before `A` components are extracted.
            `A` is then reduced to the number of extracted components.
        """
        X = as_2d(X, self.dtype)
        Y = as_2d(Y, self.dtype)
        N = check_rows(X, Y, weights)
        M = Y.shape[1]
        if A < 0:
            raise RangeError(f"Number of components must be non-negative. Got {A}.")
        A = int(min(A, max(N - 1, 0)))

        self.X = X
        self.weights = mweights(weights, N)
        self.N = N
        self.M = M
        sqrt_w = np.sqrt(self.weights)

        K = self._gram(X, X)
        self._Kw = K @ self.weights
        self._wKw = self.weights @ self._Kw
        Kc = K - self._Kw[None, :] - self._Kw[:, None] + self._wKw
        Kd = sqrt_w[:, None] * Kc * sqrt_w[None, :]

        if self.center_Y:
            self.Y_mean = (self.weights @ Y).reshape(1, -1)
            Y = Y - self.Y_mean
        else:
            self.Y_mean = np.zeros((1, M), dtype=self.dtype)
        Yd = sqrt_w[:, None] * Y

        T = np.zeros((N, A), dtype=self.dtype)
        U = np.zeros((N, A), dtype=self.dtype)
        K_def = Kd.copy()
        Y_def = Yd.copy()
        num_components = A
        for i in range(A):
            u = Y_def[:, [np.argmax(la.norm(Y_def, axis=0))]]
            t = None
            for _ in range(self.max_iter):
                t = K_def @ u
                t_norm = la.norm(t)
                if t_norm <= self.eps:
                    t = None
                    break
                t = t / t_norm
                u_new = Y_def @ (Y_def.T @ t)
                u_norm = la.norm(u_new)
                if u_norm <= self.eps:
                    t = None
                    break
                u_new = u_new / u_norm
                converged = la.norm(u_new - u / la.norm(u)) < self.tol
                u = u_new
                if M == 1 or converged:
                    break
            if t is None:
                warnings.warn(
                    message=f"Deflated kernel matrix is close to zero. Only {i} "
                    "component(s) were extracted.",
                    category=UserWarning,
                )
                num_components = i
                break
            T[:, i] = t.squeeze()
            U[:, i] = u.squeeze()
            Kt = K_def @ t
            K_def = K_def - t @ Kt.T - Kt @ t.T + (t.T @ Kt) * (t @ t.T)
            Y_def = Y_def - t @ (t.T @ Y_def)

        T = T[:, :num_components]
        U = U[:, :num_components]
        G = T.T @ Kd @ U
        TY = T.T @ Yd
        alpha = np.zeros((num_components, N, M), dtype=self.dtype)
        for a in range(1, num_components + 1):
            alpha[a - 1] = sqrt_w[:, None] * (
                U[:, :a] @ la.solve(G[:a, :a], TY[:a])
            )
        self._G = G
        self.T = T
        self.U = U
        self.alpha = alpha
        self.A = num_components
        return self

    def transform(
        self, X: npt.ArrayLike, n_components: Optional[int] = None
    ) -> npt.NDArray[np.floating]:
        """
        Computes the scores of `X` using the first `n_components` components.
        """
        a = self.A if n_components is None else min(n_components, self.A)
        if a == 0:
            return np.zeros((as_2d(X).shape[0], 0), dtype=self.dtype)
        projection = np.sqrt(self.weights)[:, None] * (
            self.U[:, :a] @ la.inv(self._G[:a, :a])
        )
        return self._centered_gram(X) @ projection

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray[np.floating]:
        """
        Predicts on `X` using `n_components` components. Accepts the same values of
        `n_components` as `PLS.predict`.
        """
        Kc = self._centered_gram(X)
        alpha = np.concatenate(
            (np.zeros((1, self.N, self.M), dtype=self.dtype), self.alpha), axis=0
        )
        if n_components is None:
            indices = np.arange(1, self.A + 1)
        else:
            indices = np.atleast_1d(np.asarray(n_components, dtype=int))
            if np.any(indices < 0):
                raise RangeError(
                    f"Number of components must be non-negative. Got {n_components}."
                )
            indices = np.minimum(indices, self.A)
        if n_components is not None and np.ndim(n_components) == 0:
            return Kc @ alpha[indices[0]] + self.Y_mean
        return Kc @ alpha[indices] + self.Y_mean
