"""
Contains the PLS class which implements fast cross-validation with weighted partial
least-squares regression using Improved Kernel PLS by Dayal and MacGregor:
https://arxiv.org/abs/2401.13185
https://doi.org/10.1002/(SICI)1099-128X(199701)11:1%3C73::AID-CEM435%3E3.0.CO;2-%23

The training set statistics and the matrix products
:math:`\\mathbf{X}^T\\mathbf{W}\\mathbf{X}` and
:math:`\\mathbf{X}^T\\mathbf{W}\\mathbf{Y}` of every segment are derived from those of
the whole data set by `cvmatrix` instead of being recomputed from the training rows.
Segments are dispatched with joblib.
"""

import warnings
from collections.abc import Callable
from typing import Any, Optional, Sequence

import joblib
import numpy as np
import numpy.linalg as la
import numpy.typing as npt
from cvmatrix.cvmatrix import CVMatrix
from joblib import Parallel, delayed

from ..exceptions import RangeError
from ..weighted_linalg import as_2d, check_rows


class PLS:
    """
    Implements fast cross-validation with weighted partial least-squares regression
    using Improved Kernel PLS by Dayal and MacGregor:
    https://arxiv.org/abs/2401.13185
    https://doi.org/10.1002/(SICI)1099-128X(199701)11:1%3C73::AID-CEM435%3E3.0.CO;2-%23

    Parameters
    ----------
    algorithm : int, default=1
        Whether to use Improved Kernel PLS Algorithm #1 or #2. Generally, Algorithm #1
        is faster if `X` has less rows than columns, while Algorithm #2 is faster if
        `X` has more rows than columns.

    center_X : bool, optional default=True
        Whether to center `X` on the (weighted) column means of the training set of
        each segment.

    center_Y : bool, optional default=True
        Whether to center `Y` on the (weighted) column means of the training set of
        each segment.

    scale_X : bool, optional default=False
        Whether to scale `X` by the (weighted) column standard deviations of the
        training set of each segment.

    scale_Y : bool, optional default=False
        Whether to scale `Y` by the (weighted) column standard deviations of the
        training set of each segment.

    ddof : int, default=1
        The delta degrees of freedom to use when computing the sample standard
        deviation.

    dtype : numpy.float, default=numpy.float64
        The float datatype to use in computation of the PLS algorithm.

    Raises
    ------
    ValueError
        If `algorithm` is not 1 or 2.

    Notes
    -----
    Predictions for a given number of components equal those of
    `localpls.pls.PLS` fitted on the training rows of the segment with the same
    parameters.
    """

    def __init__(
        self,
        algorithm: int = 1,
        center_X: bool = True,
        center_Y: bool = True,
        scale_X: bool = False,
        scale_Y: bool = False,
        ddof: int = 1,
        dtype: np.floating = np.float64,
    ) -> None:
        self.center_X = center_X
        self.center_Y = center_Y
        self.scale_X = scale_X
        self.scale_Y = scale_Y
        self.algorithm = algorithm
        self.ddof = ddof
        self.dtype = dtype
        self.eps = np.finfo(dtype).eps
        self.name = f"Improved Kernel PLS Algorithm #{algorithm}"
        if self.algorithm not in [1, 2]:
            raise ValueError(
                f"Invalid algorithm: {self.algorithm}. Algorithm must be 1 or 2."
            )
        self.sqrt_weights = None  # Used for algorithm 1
        self.A = None
        self.N = None
        self.K = None
        self.M = None
        self.cvm = None
        self.all_indices = None

    def _weight_warning(self, i: int) -> None:
        warnings.warn(
            message=f"Weight is close to zero. Results with A = {i + 1} "
            "component(s) or higher may be unstable.",
            category=UserWarning,
        )

    def _stateless_fit(
        self,
        validation_indices: npt.NDArray[np.int_],
    ) -> tuple[
        npt.NDArray[np.floating],
        Optional[npt.NDArray[np.floating]],
        Optional[npt.NDArray[np.floating]],
        Optional[npt.NDArray[np.floating]],
        Optional[npt.NDArray[np.floating]],
    ]:
        """
        Fits Improved Kernel PLS on the training set of the segment defined by
        `validation_indices`. The number of components is capped at
        min(N_train - 1, K).

        Returns
        -------
        B : Array of shape (A_train + 1, K, M)
            PLS regression coefficients tensor. `B[a]` holds the coefficients for `a`
            components. `B[0]` is all zeros.

        training_X_mean, training_Y_mean, training_X_std, training_Y_std
            Training set statistics. None where not computed.
        """
        training_indices = np.setdiff1d(
            self.all_indices, validation_indices, assume_unique=True
        )
        A = int(min(self.A, max(training_indices.size - 1, 0), self.K))
        B = np.zeros(shape=(A + 1, self.K, self.M), dtype=self.dtype)
        PT = np.zeros(shape=(A, self.K), dtype=self.dtype)
        RT = np.zeros(shape=(A, self.K), dtype=self.dtype)
        stable = A

        if self.algorithm == 1:
            training_X = self.cvm.X[training_indices]
            result = self.cvm.training_XTY(validation_indices)
            training_XTY = result[0]
            training_X_mean, training_X_std, training_Y_mean, training_Y_std = result[1]
            if self.center_X:
                training_X = training_X - training_X_mean
            if self.scale_X:
                training_X = training_X / training_X_std
            if self.sqrt_weights is not None:
                training_X = training_X * self.sqrt_weights[training_indices]
        else:
            result = self.cvm.training_XTX_XTY(validation_indices)
            training_XTX, training_XTY = result[0]
            training_X_mean, training_X_std, training_Y_mean, training_Y_std = result[1]

        # Execute Improved Kernel PLS steps 2-5
        for i in range(A):
            # Step 2
            if self.M == 1:
                norm = la.norm(training_XTY, ord=2)
                if np.isclose(norm, 0, atol=self.eps, rtol=0):
                    self._weight_warning(i)
                    stable = i
                    break
                w = training_XTY / norm
            else:
                if self.M < self.K:
                    training_XTYTtraining_XTY = training_XTY.T @ training_XTY
                    eig_vals, eig_vecs = la.eigh(training_XTYTtraining_XTY)
                    q = eig_vecs[:, -1:]
                    w = training_XTY @ q
                    norm = la.norm(w)
                    if np.isclose(norm, 0, atol=self.eps, rtol=0):
                        self._weight_warning(i)
                        stable = i
                        break
                    w = w / norm
                else:
                    training_XTYYTX = training_XTY @ training_XTY.T
                    eig_vals, eig_vecs = la.eigh(training_XTYYTX)
                    norm = eig_vals[-1]
                    if np.isclose(norm, 0, atol=self.eps, rtol=0):
                        self._weight_warning(i)
                        stable = i
                        break
                    w = eig_vecs[:, -1:]

            # Step 3
            r = np.copy(w)
            for j in range(i):
                r = r - PT[j].reshape(-1, 1).T @ w * RT[j].reshape(-1, 1)
            RT[i] = r.squeeze()

            # Step 4
            if self.algorithm == 1:
                t = training_X @ r
                tTt = t.T @ t
                p = (t.T @ training_X).T / tTt
            else:
                rtraining_XTX = r.T @ training_XTX
                tTt = rtraining_XTX @ r
                p = rtraining_XTX.T / tTt
            q = (r.T @ training_XTY).T / tTt
            PT[i] = p.squeeze()

            # Step 5
            training_XTY = training_XTY - (p @ q.T) * tTt

            # Compute regression coefficients
            B[i + 1] = B[i] + r @ q.T

        B[stable + 1 :] = B[stable]
        return B, training_X_mean, training_Y_mean, training_X_std, training_Y_std

    def _stateless_predict(
        self,
        indices: npt.NDArray[np.int_],
        B: npt.NDArray[np.floating],
        training_X_mean: Optional[npt.NDArray[np.floating]],
        training_Y_mean: Optional[npt.NDArray[np.floating]],
        training_X_std: Optional[npt.NDArray[np.floating]],
        training_Y_std: Optional[npt.NDArray[np.floating]],
        n_components: npt.NDArray[np.int_],
    ) -> npt.NDArray[np.floating]:
        """
        Predicts on the rows `indices` of `X` for every value of `n_components`.
        Counts above the number of fitted components are capped.

        Returns
        -------
        Y_pred : Array of shape (len(n_components), N_pred, M)
        """
        predictor_variables = self.cvm.X[indices]
        # Apply the potential training set centering and scaling
        if self.center_X:
            predictor_variables = predictor_variables - training_X_mean
        if self.scale_X:
            predictor_variables = predictor_variables / training_X_std
        Y_pred = predictor_variables @ B[np.minimum(n_components, B.shape[0] - 1)]
        # Multiply by the potential training set scale and add the potential training
        # set bias
        if self.scale_Y:
            Y_pred = Y_pred * training_Y_std
        if self.center_Y:
            Y_pred = Y_pred + training_Y_mean
        return Y_pred

    def _stateless_fit_predict_eval(
        self,
        validation_indices: npt.NDArray[np.int_],
        metric_function: Callable[..., Any],
        n_components: npt.NDArray[np.int_],
    ) -> Any:
        """
        Fits on the training set of the segment, predicts the validation rows and
        evaluates the predictions using `metric_function`.
        """
        B, *statistics = self._stateless_fit(validation_indices)
        Y_pred = self._stateless_predict(
            validation_indices, B, *statistics, n_components=n_components
        )
        Y_true = self.cvm.Y[validation_indices]
        if self.cvm.weights is None:
            return metric_function(Y_true, Y_pred)
        weights = self.cvm.weights[validation_indices].flatten()
        return metric_function(Y_true, Y_pred, weights)

    def cross_validate(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        A: int,
        segments: Sequence[npt.ArrayLike],
        metric_function: Callable[..., Any],
        n_components: Optional[Sequence[int]] = None,
        weights: Optional[npt.ArrayLike] = None,
        n_jobs: int = -1,
        verbose: int = 10,
    ) -> list[Any]:
        """
        Cross-validates the PLS model on `X` and `Y` with up to `A` components,
        evaluating the predictions of every segment with `metric_function`.

        Parameters
        ----------
        X : Array of shape (N, K)
            Predictor variables.

        Y : Array of shape (N, M) or (N,)
            Target variables.

        A : int
            Maximum number of components in the PLS model.

        segments : Sequence of index arrays
            Validation row indices of each segment, e.g. one replication of
            `localpls.segments.segm_kf`.

        metric_function : Callable receiving arrays `Y_val`, `Y_pred`, and, if
        `weights` is not None, also, `weights_val`, and returning Any.
            `Y_pred` has shape (len(n_components), N_val, M).

        n_components : Sequence of int or None, optional, default=None
            Numbers of components to predict with. 0 predicts the training mean. If
            None, then 0..A is used.

        weights : Array of shape (N,) or None, optional, default=None
            Weights for each observation. If None, then all observations are weighted
            equally.

        n_jobs : int, optional default=-1
            Number of parallel jobs to use. A value of -1 will use the minimum of all
            available cores and the number of segments.

        verbose : int, optional default=10
            Controls verbosity of parallel jobs. A value of 0 also silences the
            banner.

        Returns
        -------
        metrics : list
            The result of `metric_function` for every segment, in the order of
            `segments`.

        Raises
        ------
        RangeError
            If `A` or a value of `n_components` is negative.

        DimensionError
            If `X`, `Y` and `weights` do not have the same number of rows.

        ValueError
            If `weights` are provided and not all weights are non-negative.
        """
        if A < 0:
            raise RangeError(f"Number of components must be non-negative. Got {A}.")
        n_components = np.asarray(
            range(A + 1) if n_components is None else n_components, dtype=int
        ).reshape(-1)
        if np.any(n_components < 0):
            raise RangeError(
                f"Number of components must be non-negative. Got {n_components}."
            )

        X = as_2d(X, self.dtype)
        Y = as_2d(Y, self.dtype)
        check_rows(X, Y, weights)
        if weights is not None:
            weights = np.asarray(weights, dtype=self.dtype).reshape(-1, 1)
            if np.any(weights < 0):
                raise ValueError("Weights must be non-negative.")

        self.cvm = CVMatrix(
            center_X=self.center_X,
            center_Y=self.center_Y,
            scale_X=self.scale_X,
            scale_Y=self.scale_Y,
            ddof=self.ddof,
            dtype=self.dtype,
            copy=False,
        )
        segments = [np.asarray(s, dtype=int).reshape(-1) for s in segments]
        num_splits = len(segments)

        if n_jobs == -1:
            n_jobs = min(joblib.cpu_count(), num_splits)

        if verbose:
            print(
                f"Cross-validating Improved Kernel PLS Algorithm {self.algorithm} with "
                f"{A} components on {num_splits} segments using {n_jobs} "
                f"parallel processes."
            )

        self.cvm.fit(X, Y, weights)
        self.A = A
        self.N, self.K = self.cvm.X.shape
        self.M = self.cvm.Y.shape[1]
        self.all_indices = np.arange(self.N, dtype=int)
        if self.algorithm == 1 and weights is not None:
            self.sqrt_weights = np.sqrt(self.cvm.weights)
        else:
            self.sqrt_weights = None

        def worker(
            validation_indices: npt.NDArray[np.int_],
            metric_function: Callable[..., Any],
        ) -> Any:
            return self._stateless_fit_predict_eval(
                validation_indices, metric_function, n_components
            )

        return Parallel(n_jobs=n_jobs, verbose=verbose)(
            delayed(worker)(validation_indices, metric_function)
            for validation_indices in segments
        )
