"""
Contains PLSRAvg, an ensemble of PLS regression models with different numbers of
components. A single PLS is fitted with the largest number of components and the
predictions of every number of components in the range are combined, so the
ensemble costs one fit.

Combination policies:

- "unif": uniform average.
- "cv": weights derived from the K-fold cross-validated RMSEP of every number of
  components. The distance of each RMSEP to the smallest one is converted to a
  weight by `localpls.neighbors.distance_to_weight` with the kernel `kernel`.
- "aic": Akaike weights :math:`\\exp(-\\Delta/2)` of the AIC (or BIC). The degrees of
  freedom of every number of components are the effective degrees of freedom
  estimated by `df_pls`, or optionally the naive count :math:`1 + a`.
- "stack": stacking. The K-fold held-out predictions of every number of components
  are regressed on the response.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional, Union

import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator

from .exceptions import RangeError
from .gridcv import fitter, gridcv_lv
from .neighbors import WEIGHT_KERNELS, distance_to_weight
from .pls import PLS
from .scores import rmsep
from .segments import segm_kf
from .weighted_linalg import as_2d, check_rows, mweights, weighted_regress

POLICIES = ("unif", "cv", "aic", "stack")
DF_METHODS = ("hat", "naive")


@dataclass(frozen=True)
class NLVRange:
    """
    Inclusive range `low..high` of numbers of components.

    Raises
    ------
    RangeError
        Unless `0 <= low <= high`.
    """

    low: int
    high: int

    def __post_init__(self) -> None:
        if not 0 <= self.low <= self.high:
            raise RangeError(
                f"Invalid range of components {self.low}:{self.high}. "
                "Must satisfy 0 <= low <= high."
            )

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.low, self.high + 1))

    def __len__(self) -> int:
        return self.high - self.low + 1

    def __str__(self) -> str:
        return f"{self.low}:{self.high}"


def parse_nlv(text: str) -> NLVRange:
    """
    Parses "low:high" or a single number "a" (meaning "a:a").
    """
    match = re.fullmatch(r"\s*(-?\d+)\s*(?::\s*(-?\d+)\s*)?", text)
    if match is None:
        raise ValueError(f"Invalid range of components: {text!r}. Expected 'low:high'.")
    low = int(match.group(1))
    high = low if match.group(2) is None else int(match.group(2))
    return NLVRange(low, high)


def as_nlv_range(nlv: Union[int, tuple[int, int], range, str, NLVRange]) -> NLVRange:
    """
    Converts an int, a (low, high) tuple, a range with step 1 or a "low:high" string
    to an `NLVRange`.
    """
    if isinstance(nlv, NLVRange):
        return nlv
    if isinstance(nlv, str):
        return parse_nlv(nlv)
    if isinstance(nlv, range):
        if nlv.step != 1 or len(nlv) == 0:
            raise RangeError(f"Invalid range of components: {nlv}.")
        return NLVRange(nlv.start, nlv[-1])
    if isinstance(nlv, tuple):
        return NLVRange(int(nlv[0]), int(nlv[1]))
    return NLVRange(int(nlv), int(nlv))


def df_pls(
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    nlv: Union[int, tuple[int, int], range, str, NLVRange],
    weights: Optional[npt.ArrayLike] = None,
    algorithm: int = 1,
    scale_X: bool = False,
    eps: float = 1e-4,
    n_jobs: int = 1,
) -> npt.NDArray[np.float64]:
    """
    Effective degrees of freedom of PLS models, including the intercept.

    The degrees of freedom of `a` components are the trace of the Jacobian of the
    fitted values with respect to the responses,
    :math:`\\sum_i \\partial \\hat{y}_{ij} / \\partial y_{ij}`. PLS is not linear
    in :math:`\\mathbf{Y}`, so every diagonal element is estimated by a central
    finite difference: `Y[i, j]` is perturbed by `eps` times the standard deviation
    of column `j` and the PLS is refitted. This costs :math:`2NM` fits, which are
    dispatched with joblib.

    0 components gives 1 (the mean). When the number of components reaches the rank
    of the centered `X`, PLS is least squares and the result is that rank plus 1.

    Parameters
    ----------
    X : Array of shape (N, K)
        Predictor variables.

    Y : Array of shape (N, M) or (N,)
        Response variables.

    nlv : int, tuple, range, str or NLVRange
        Numbers of components. See `as_nlv_range`.

    weights : Array of shape (N,) or None, optional, default=None
        Observation weights of the PLS fits.

    algorithm : int, default=1
        Improved Kernel PLS algorithm. See `PLS`.

    scale_X : bool, default=False
        Whether to scale `X`. See `PLS`.

    eps : float, default=1e-4
        Relative step of the finite differences.

    n_jobs : int, default=1
        Number of parallel jobs.

    Returns
    -------
    df : Array of shape (len(nlv), M)
    """
    X = as_2d(X)
    Y = as_2d(Y)
    N = check_rows(X, Y, weights)
    nlv = as_nlv_range(nlv)
    n_components = list(nlv)
    std = Y.std(axis=0)
    steps = eps * np.where(std > 0, std, 1.0)

    def worker(i: int, j: int) -> npt.NDArray[np.float64]:
        diff = np.zeros(len(nlv))
        for sign in (1, -1):
            Y_step = Y.copy()
            Y_step[i, j] += sign * steps[j]
            pls = PLS(algorithm=algorithm, scale_X=scale_X).fit(
                X, Y_step, nlv.high, weights
            )
            pred = pls.predict(X[i : i + 1], n_components=n_components)
            diff += sign * pred[:, 0, j]
        return diff / (2 * steps[j])

    derivatives = Parallel(n_jobs=n_jobs)(
        delayed(worker)(i, j) for j in range(Y.shape[1]) for i in range(N)
    )
    derivatives = np.asarray(derivatives).reshape(Y.shape[1], N, len(nlv))
    return derivatives.sum(axis=1).T


def aic_pls(
    pred: npt.ArrayLike,
    Y: npt.ArrayLike,
    df: npt.ArrayLike,
    weights: Optional[npt.ArrayLike] = None,
    correction: bool = True,
    bic: bool = False,
) -> npt.NDArray[np.float64]:
    """
    Information criterion of PLS models from their training predictions.

    Parameters
    ----------
    pred : Array of shape (len(nlv), N, M)
        Training predictions for every number of components in `nlv`.

    Y : Array of shape (N, M) or (N,)
        Training responses.

    df : Array of shape (len(nlv),) or (len(nlv), M)
        Degrees of freedom of every number of components, including the intercept.
        See `df_pls`.

    weights : Array of shape (N,) or None, optional, default=None
        Observation weights of the sum of squared residuals.

    correction : bool, default=True
        Whether to apply the small sample correction (AICc). Ignored for BIC.

    bic : bool, default=False
        Whether to compute the BIC instead of the AIC.

    Returns
    -------
    crit : Array of shape (len(nlv), M)
    """
    Y = as_2d(Y)
    pred = np.asarray(pred, dtype=np.float64)
    n = Y.shape[0]
    w = mweights(weights, n)
    ssr = np.einsum("n,lnm->lm", w * n, (Y[None] - pred) ** 2)
    ssr = np.maximum(ssr, np.finfo(np.float64).tiny)
    df = np.asarray(df, dtype=np.float64)
    if df.ndim == 1:
        df = df[:, None]
    if bic:
        return n * np.log(ssr) + np.log(n) * (df + 1)
    crit = n * np.log(ssr) + 2 * (df + 1)
    if correction:
        with np.errstate(divide="ignore"):
            crit = crit + np.where(
                n - df - 2 > 0, 2 * (df + 1) * (df + 2) / (n - df - 2), np.inf
            )
    return crit


def _normalize_columns(W: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    totals = W.sum(axis=0, keepdims=True)
    W = np.where(totals > 0, W, 1.0)
    return W / W.sum(axis=0, keepdims=True)


class PLSRAvg(BaseEstimator):
    """
    Averaging of PLS regression models with different numbers of components.

    Parameters
    ----------
    policy : str, default="unif"
        "unif", "cv", "aic" or "stack". See the module docstring.

    kernel : str, default="bisquare"
        Kernel converting RMSEP differences to weights with policy "cv".

    K : int, default=5
        Number of folds with policies "cv" and "stack". Capped at the number of
        observations.

    rep : int, default=10
        Number of replications of the K-fold segments with policy "cv".

    bic : bool, default=False
        Whether policy "aic" uses the BIC instead of the AICc.

    df : str, default="hat"
        Degrees of freedom of policy "aic". "hat" for the effective degrees of
        freedom estimated by `df_pls` and "naive" for :math:`1 + a`.

    random_state : int, numpy.random.Generator or None, optional, default=None
        Seed of the K-fold segments.

    algorithm : int, default=1
        Improved Kernel PLS algorithm. See `PLS`.

    scale_X : bool, default=False
        Whether to scale `X`. See `PLS`.

    n_jobs : int, default=1
        Number of parallel jobs of the cross-validation with policy "cv" and of the
        degrees of freedom with policy "aic".
    """

    def __init__(
        self,
        policy: str = "unif",
        kernel: str = "bisquare",
        K: int = 5,
        rep: int = 10,
        bic: bool = False,
        df: str = "hat",
        random_state: Optional[Union[int, np.random.Generator]] = None,
        algorithm: int = 1,
        scale_X: bool = False,
        n_jobs: int = 1,
    ) -> None:
        if policy not in POLICIES:
            raise ValueError(
                f"Invalid policy: {policy}. Policy must be one of {POLICIES}."
            )
        if kernel not in WEIGHT_KERNELS:
            raise ValueError(
                f"Invalid kernel: {kernel}. Kernel must be one of {WEIGHT_KERNELS}."
            )
        if df not in DF_METHODS:
            raise ValueError(f"Invalid df: {df}. df must be one of {DF_METHODS}.")
        self.policy = policy
        self.kernel = kernel
        self.K = K
        self.rep = rep
        self.bic = bic
        self.df = df
        self.random_state = random_state
        self.algorithm = algorithm
        self.scale_X = scale_X
        self.n_jobs = n_jobs
        self.nlv = None
        self.pls = None
        self.weights_ = None
        self.intercept_ = None

    def _new_pls(self) -> PLS:
        return PLS(algorithm=self.algorithm, scale_X=self.scale_X)

    def _cv_weights(
        self, X: npt.NDArray, Y: npt.NDArray, weights: Optional[npt.NDArray]
    ) -> npt.NDArray[np.float64]:
        N = X.shape[0]
        segm = segm_kf(N, min(self.K, N), rep=self.rep, random_state=self.random_state)
        res = gridcv_lv(
            X,
            Y,
            segm,
            rmsep,
            fitter(PLS),
            nlv=list(self.nlv),
            pars={"algorithm": [self.algorithm], "scale_X": [self.scale_X]},
            weights=weights,
            n_jobs=self.n_jobs,
        ).res
        columns = [f"y{j + 1}" for j in range(Y.shape[1])]
        err = res.sort_values("nlv")[columns].to_numpy()
        W = np.column_stack(
            [
                distance_to_weight(e - e.min(), h=1, kind=self.kernel)
                for e in err.T
            ]
        )
        return _normalize_columns(W)

    def _stack_weights(
        self, X: npt.NDArray, Y: npt.NDArray, weights: Optional[npt.NDArray]
    ) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        N = X.shape[0]
        segm = segm_kf(N, min(self.K, N), random_state=self.random_state)[0]
        held_out = np.empty((len(self.nlv), N, Y.shape[1]))
        all_indices = np.arange(N)
        for s in segm:
            train = np.setdiff1d(all_indices, s, assume_unique=True)
            train_weights = None if weights is None else weights[train]
            model = self._new_pls().fit(
                X[train], Y[train], self.nlv.high, train_weights
            )
            held_out[:, s] = model.predict(X[s], n_components=list(self.nlv))
        W = np.empty((len(self.nlv), Y.shape[1]))
        intercept = np.empty((1, Y.shape[1]))
        for j in range(Y.shape[1]):
            B, b0 = weighted_regress(
                held_out[:, :, j].T, Y[:, j], weights, method="pinv"
            )
            W[:, j] = B[:, 0]
            intercept[0, j] = b0[0, 0]
        return W, intercept

    def _df(
        self, X: npt.NDArray, Y: npt.NDArray, weights: Optional[npt.NDArray]
    ) -> npt.NDArray[np.float64]:
        if self.df == "naive":
            return 1 + np.asarray(list(self.nlv), dtype=np.float64)
        return df_pls(
            X,
            Y,
            self.nlv,
            weights,
            algorithm=self.algorithm,
            scale_X=self.scale_X,
            n_jobs=self.n_jobs,
        )

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        nlv: Union[int, tuple[int, int], range, str, NLVRange],
        weights: Optional[npt.ArrayLike] = None,
    ) -> "PLSRAvg":
        """
        Fits the ensemble on `X` and `Y` for the numbers of components `nlv`.

        Attributes
        ----------
        weights_ : Array of shape (len(nlv), M)
            Combination weights of every number of components and response.

        intercept_ : Array of shape (1, M)
            Intercept of the combination. Non-zero only with policy "stack".

        Raises
        ------
        RangeError
            If `nlv` is invalid or `nlv.high > min(N - 1, K)`.
        """
        X = as_2d(X)
        Y = as_2d(Y)
        N = check_rows(X, Y, weights)
        self.nlv = as_nlv_range(nlv)
        max_nlv = min(N - 1, X.shape[1])
        if self.nlv.high > max_nlv:
            raise RangeError(
                f"Largest number of components {self.nlv.high} exceeds "
                f"min(N - 1, K) = {max_nlv}."
            )
        if weights is not None:
            weights = mweights(weights, N)

        self.pls = self._new_pls().fit(X, Y, self.nlv.high, weights)
        L, M = len(self.nlv), Y.shape[1]
        self.intercept_ = np.zeros((1, M))
        if self.policy == "unif" or L == 1:
            self.weights_ = np.full((L, M), 1 / L)
        elif self.policy == "cv":
            self.weights_ = self._cv_weights(X, Y, weights)
        elif self.policy == "aic":
            pred = self.pls.predict(X, n_components=list(self.nlv))
            crit = aic_pls(pred, Y, self._df(X, Y, weights), weights, bic=self.bic)
            delta = crit - crit.min(axis=0, keepdims=True)
            delta[np.isnan(delta)] = 0
            self.weights_ = _normalize_columns(np.exp(-delta / 2))
        else:
            self.weights_, self.intercept_ = self._stack_weights(X, Y, weights)
        return self

    def predict(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Combined predictions of shape (N, M).
        """
        pred = self.pls.predict(X, n_components=list(self.nlv))
        return np.einsum("lnm,lm->nm", pred, self.weights_) + self.intercept_
