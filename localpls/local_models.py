"""
Contains the local (k nearest neighbors) models.

Every model finds the `k` nearest training rows of each query row, converts their
distances to weights with `distance_to_weight` and floors the weights at `tol`.
The neighbor search is done either on the raw `X` (`A_dis=0`) or on the scores of
a global PLS with `A_dis` components fitted on the whole training set.

- KNNR and KNNDA predict with the weighted mean, respectively the weighted vote, of
  the neighbors.
- LWPLSR, LWPLSRAvg, LWPLSRDA and LWPLSLDA fit one weighted model per query row on
  its neighbors, see `localpls.local.local_predict`.

With `k` equal to the number of training rows and `h=numpy.inf`, every neighbor
gets the same weight and the local models reduce to their global counterparts.
"""

from typing import Any, Optional, Union

import numpy as np
import numpy.typing as npt
from sklearn.base import BaseEstimator

from .discrimination import PLSLDA, PLSRDA, dummy
from .ensemble import NLVRange, PLSRAvg, as_nlv_range
from .exceptions import RangeError
from .local import ON_ERROR, Neighborhoods, local_predict, local_predict_lv
from .neighbors import (
    METRICS,
    WEIGHT_KERNELS,
    NeighborIndex,
    distance_to_weight,
    floor_weights,
)
from .pls import PLS, NComponents
from .weighted_linalg import as_2d, check_rows


class _LocalModel(BaseEstimator):
    """
    Neighbor search shared by the local models.

    Parameters
    ----------
    A_dis : int, default=0
        Number of components of the global PLS whose scores are used for the
        neighbor search. If 0, then the search is done on `X`.

    metric : str, default="euclidean"
        "euclidean" or "mahalanobis".

    h : float, default=1.0
        Bandwidth of the distance weighting. `numpy.inf` gives uniform weights.

    k : int, default=50
        Number of neighbors.

    kernel : str, default="exponential"
        Distance weighting kernel. See `distance_to_weight`.

    tol : float, default=1e-4
        Floor of the neighbor weights.

    on_error : str, default="nan"
        Failure policy of the local fits, "nan" or "raise". See `localpls.local`.

    n_jobs : int, default=1
        Number of parallel jobs over the query rows.

    verbose : int, default=0
        Controls verbosity of parallel jobs.
    """

    def __init__(
        self,
        A_dis: int = 0,
        metric: str = "euclidean",
        h: float = 1.0,
        k: int = 50,
        kernel: str = "exponential",
        tol: float = 1e-4,
        on_error: str = "nan",
        n_jobs: int = 1,
        verbose: int = 0,
    ) -> None:
        if metric not in METRICS:
            raise ValueError(
                f"Invalid metric: {metric}. Metric must be one of {METRICS}."
            )
        if kernel not in WEIGHT_KERNELS:
            raise ValueError(
                f"Invalid kernel: {kernel}. Kernel must be one of {WEIGHT_KERNELS}."
            )
        if on_error not in ON_ERROR:
            raise ValueError(
                f"Invalid on_error: {on_error}. Must be one of {ON_ERROR}."
            )
        self.A_dis = A_dis
        self.metric = metric
        self.h = h
        self.k = k
        self.kernel = kernel
        self.tol = tol
        self.on_error = on_error
        self.n_jobs = n_jobs
        self.verbose = verbose
        self.X = None
        self.Y = None
        self.pls_dis = None
        self.index = None
        self.failed_ = None

    def _fit_neighbors(self, X: npt.ArrayLike, Y_dis: npt.ArrayLike) -> None:
        """
        Stores the training set and builds the neighbor index. `Y_dis` is the
        response of the global PLS used when `A_dis > 0`.
        """
        self.X = as_2d(X)
        if self.A_dis > 0:
            self.pls_dis = PLS().fit(self.X, Y_dis, self.A_dis)
            reference = self.pls_dis.T
        else:
            self.pls_dis = None
            reference = self.X
        self.index = NeighborIndex(self.metric).fit(reference)

    def kneighbors(self, X: npt.ArrayLike) -> Neighborhoods:
        """
        Neighbor indices, distances and floored weights of every row of `X`.
        """
        X = as_2d(X)
        if self.pls_dis is not None:
            X = self.pls_dis.transform(X)
        indices, distances = self.index.query(X, self.k)
        weights = np.vstack(
            [
                floor_weights(distance_to_weight(d, self.h, self.kernel), self.tol)
                for d in distances
            ]
        )
        return Neighborhoods(indices, distances, weights)

    def _local_predict(
        self,
        X: npt.ArrayLike,
        fit_function: Any,
        n_components: NComponents = None,
        row_axis: int = -2,
    ) -> npt.NDArray:
        neighborhoods = self.kneighbors(X)
        kwargs = dict(
            row_axis=row_axis,
            on_error=self.on_error,
            n_jobs=self.n_jobs,
            verbose=self.verbose,
        )
        if n_components is not None and np.ndim(n_components) == 1:
            result = local_predict_lv(
                self.X, self.Y, X, neighborhoods.indices, neighborhoods.weights,
                fit_function, n_components, **kwargs,
            )
        else:
            predict_kwargs = (
                None if n_components is None else {"n_components": n_components}
            )
            result = local_predict(
                self.X, self.Y, X, neighborhoods.indices, neighborhoods.weights,
                fit_function, predict_kwargs, **kwargs,
            )
        self.failed_ = result.failed
        return result.pred


def _check_counts(n_components: NComponents, minimum: int = 0) -> None:
    if n_components is not None and np.any(np.asarray(n_components) < minimum):
        raise RangeError(
            f"Number of components must be at least {minimum}. Got {n_components}."
        )


class KNNR(_LocalModel):
    """
    k nearest neighbors regression. Predictions are the weighted means of the
    neighbor responses. See `_LocalModel` for the parameters.
    """

    def fit(self, X: npt.ArrayLike, Y: npt.ArrayLike) -> "KNNR":
        self.Y = as_2d(Y)
        check_rows(X, self.Y)
        self._fit_neighbors(X, self.Y)
        return self

    def predict(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        indices, _, weights = self.kneighbors(X)
        weights = weights / weights.sum(axis=1, keepdims=True)
        return np.einsum("mk,mkj->mj", weights, self.Y[indices])


class KNNDA(_LocalModel):
    """
    k nearest neighbors discrimination. Predictions are the classes with the
    largest sum of neighbor weights. Ties go to the first class in sorted order.
    See `_LocalModel` for the parameters.
    """

    def fit(self, X: npt.ArrayLike, y: npt.ArrayLike) -> "KNNDA":
        z = dummy(y)
        self.Y = np.asarray(y).reshape(-1)
        self.lev = z.lev
        self.Y_dummy = z.Y
        check_rows(X, self.Y)
        self._fit_neighbors(X, z.Y)
        return self

    def predict_proba(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Weighted class proportions among the neighbors, of shape (m, nlev).
        """
        indices, _, weights = self.kneighbors(X)
        votes = np.einsum("mk,mkj->mj", weights, self.Y_dummy[indices])
        return votes / votes.sum(axis=1, keepdims=True)

    def predict(self, X: npt.ArrayLike) -> npt.NDArray:
        return self.lev[np.argmax(self.predict_proba(X), axis=1)]


class LWPLSR(_LocalModel):
    """
    k nearest neighbors locally weighted PLS regression. One weighted PLS is
    fitted on the neighbors of every query row.

    Parameters
    ----------
    algorithm : int, default=1
        Improved Kernel PLS algorithm of the local models. See `PLS`.

    scale_X : bool, default=False
        Whether the local models scale `X`.

    See `_LocalModel` for the other parameters.
    """

    def __init__(
        self,
        A_dis: int = 0,
        metric: str = "euclidean",
        h: float = 1.0,
        k: int = 50,
        kernel: str = "exponential",
        tol: float = 1e-4,
        on_error: str = "nan",
        n_jobs: int = 1,
        verbose: int = 0,
        algorithm: int = 1,
        scale_X: bool = False,
    ) -> None:
        super().__init__(A_dis, metric, h, k, kernel, tol, on_error, n_jobs, verbose)
        self.algorithm = algorithm
        self.scale_X = scale_X
        self.A = None

    def fit(self, X: npt.ArrayLike, Y: npt.ArrayLike, A: int) -> "LWPLSR":
        """
        Stores the training set. The local models use up to `A` components.
        """
        if A < 0:
            raise RangeError(f"Number of components must be non-negative. Got {A}.")
        self.Y = as_2d(Y)
        check_rows(X, self.Y)
        self.A = A
        self._fit_neighbors(X, self.Y)
        return self

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray[np.float64]:
        """
        Predicts on `X` with `n_components` components (all `A` if None).

        Returns
        -------
        Y_pred : Array of shape (m, M) or (len(n_components), m, M)
            Rows whose local model failed are NaN, see `failed_`.
        """
        _check_counts(n_components)
        n_components = self.A if n_components is None else n_components
        A = int(np.max(n_components))

        def fit_function(X_nn, Y_nn, weights):
            return PLS(algorithm=self.algorithm, scale_X=self.scale_X).fit(
                X_nn, Y_nn, A, weights
            )

        return self._local_predict(X, fit_function, n_components)


class LWPLSRAvg(_LocalModel):
    """
    k nearest neighbors locally weighted PLSR averaging. One `PLSRAvg` is fitted on
    the neighbors of every query row.

    Parameters
    ----------
    policy, avg_kernel, K, rep, random_state
        Parameters `policy`, `kernel`, `K`, `rep` and `random_state` of the local
        `PLSRAvg` models.

    See `_LocalModel` for the other parameters.
    """

    def __init__(
        self,
        A_dis: int = 0,
        metric: str = "euclidean",
        h: float = 1.0,
        k: int = 50,
        kernel: str = "exponential",
        tol: float = 1e-4,
        on_error: str = "nan",
        n_jobs: int = 1,
        verbose: int = 0,
        policy: str = "unif",
        avg_kernel: str = "bisquare",
        K: int = 5,
        rep: int = 10,
        random_state: Optional[int] = None,
    ) -> None:
        super().__init__(A_dis, metric, h, k, kernel, tol, on_error, n_jobs, verbose)
        self.policy = policy
        self.avg_kernel = avg_kernel
        self.K = K
        self.rep = rep
        self.random_state = random_state
        self.nlv = None

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        nlv: Union[int, tuple[int, int], range, str, NLVRange],
    ) -> "LWPLSRAvg":
        """
        Raises
        ------
        RangeError
            If `nlv.high > min(k - 1, K)`.
        """
        self.Y = as_2d(Y)
        X = as_2d(X)
        check_rows(X, self.Y)
        self.nlv = as_nlv_range(nlv)
        max_nlv = min(self.k - 1, X.shape[1])
        if self.nlv.high > max_nlv:
            raise RangeError(
                f"Largest number of components {self.nlv.high} exceeds "
                f"min(k - 1, K) = {max_nlv}."
            )
        self._fit_neighbors(X, self.Y)
        return self

    def predict(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        def fit_function(X_nn, Y_nn, weights):
            return PLSRAvg(
                policy=self.policy,
                kernel=self.avg_kernel,
                K=self.K,
                rep=self.rep,
                random_state=self.random_state,
            ).fit(X_nn, Y_nn, self.nlv, weights)

        return self._local_predict(X, fit_function)


class _SingleClass:
    """
    Classifier of a neighborhood holding a single class.
    """

    def __init__(self, label: Any) -> None:
        self.label = np.asarray([label])

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray:
        labels = np.repeat(self.label, as_2d(X).shape[0])
        if n_components is not None and np.ndim(n_components) == 1:
            return np.tile(labels, (len(n_components), 1))
        return labels


class LWPLSRDA(LWPLSR):
    """
    k nearest neighbors locally weighted PLSR discrimination. One `PLSRDA` is
    fitted on the neighbors of every query row. The global PLS of the neighbor
    search uses the dummy table of `y`.

    Parameters
    ----------
    softmax : bool, default=True
        See `PLSRDA`.

    See `LWPLSR` for the other parameters.
    """

    min_components = 0

    def __init__(
        self,
        A_dis: int = 0,
        metric: str = "euclidean",
        h: float = 1.0,
        k: int = 50,
        kernel: str = "exponential",
        tol: float = 1e-4,
        on_error: str = "nan",
        n_jobs: int = 1,
        verbose: int = 0,
        algorithm: int = 1,
        scale_X: bool = False,
        softmax: bool = True,
    ) -> None:
        super().__init__(
            A_dis,
            metric,
            h,
            k,
            kernel,
            tol,
            on_error,
            n_jobs,
            verbose,
            algorithm,
            scale_X,
        )
        self.softmax = softmax

    def fit(self, X: npt.ArrayLike, y: npt.ArrayLike, A: int) -> "LWPLSRDA":
        _check_counts(A, self.min_components)
        self.Y = np.asarray(y).reshape(-1)
        check_rows(X, self.Y)
        self.A = A
        self._fit_neighbors(X, dummy(self.Y).Y)
        return self

    def _new_model(self) -> Any:
        return PLSRDA(
            softmax=self.softmax, algorithm=self.algorithm, scale_X=self.scale_X
        )

    def predict(
        self, X: npt.ArrayLike, n_components: NComponents = None
    ) -> npt.NDArray:
        """
        Predicted class labels of shape (m,) or (len(n_components), m). Rows whose
        local model failed are None, see `failed_`.
        """
        _check_counts(n_components, self.min_components)
        n_components = self.A if n_components is None else n_components
        A = int(np.max(n_components))

        def fit_function(X_nn, y_nn, weights):
            if np.unique(y_nn).shape[0] == 1:
                return _SingleClass(y_nn[0])
            return self._new_model().fit(X_nn, y_nn, A, weights)

        return self._local_predict(X, fit_function, n_components, row_axis=-1)


class LWPLSLDA(LWPLSRDA):
    """
    k nearest neighbors locally weighted PLS-LDA. One `PLSLDA` is fitted on the
    neighbors of every query row.

    Parameters
    ----------
    prior : str, default="unif"
        See `LDA`.

    See `LWPLSR` for the other parameters.
    """

    min_components = 1

    def __init__(
        self,
        A_dis: int = 0,
        metric: str = "euclidean",
        h: float = 1.0,
        k: int = 50,
        kernel: str = "exponential",
        tol: float = 1e-4,
        on_error: str = "nan",
        n_jobs: int = 1,
        verbose: int = 0,
        algorithm: int = 1,
        scale_X: bool = False,
        prior: str = "unif",
    ) -> None:
        super().__init__(
            A_dis,
            metric,
            h,
            k,
            kernel,
            tol,
            on_error,
            n_jobs,
            verbose,
            algorithm,
            scale_X,
        )
        self.prior = prior

    def _new_model(self) -> Any:
        return PLSLDA(prior=self.prior, algorithm=self.algorithm, scale_X=self.scale_X)
