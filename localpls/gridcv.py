"""
Contains the grid search engine: prediction scores of a model over a grid of
parameters, either on a single training/validation split (`gridscore*`) or by
cross-validation over segments (`gridcv*`).

The model is given by a fitting function `fun(X_train, Y_train, **params)`
returning a fitted model with a `predict` method. Any scikit-learn style estimator
class of localpls may be passed directly: its constructor parameters are
separated from its `fit` parameters by `fitter`.

The `*_lv` variants fit a latent-variable model once at the largest number of
components and predict with every number of components from that single fit. The
`*_lb` variants do the same for the ridge parameter lambda. The `*_mb` variants
take a list of row-aligned X blocks.

Cross-validation results are returned as a `CVResult` holding pandas DataFrames:
`res_rep` with one row per replication, segment and grid point, and `res` with the
unweighted mean over replications and segments of every grid point. Score columns
are named `y1`, `y2`, ... after the columns of the score.
"""

import itertools
from collections.abc import Callable
from typing import Any, NamedTuple, Optional, Sequence, Union

import numpy as np
import numpy.typing as npt
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator

from .exceptions import DimensionError, RangeError
from .fast_cross_validation.pls import PLS as FastCVPLS
from .segments import Segments

Pars = Optional[dict[str, Sequence[Any]]]
Data = Union[npt.ArrayLike, Sequence[npt.ArrayLike]]


class CVResult(NamedTuple):
    """
    res : pandas.DataFrame
        Mean scores of every grid point.

    res_rep : pandas.DataFrame
        Scores of every replication `rep`, segment `segm` and grid point.
    """

    res: pd.DataFrame
    res_rep: pd.DataFrame


def mpar(**kwargs: Any) -> dict[str, npt.NDArray]:
    """
    Expands the given parameter values to all their combinations.

    Examples
    --------
    >>> pars = mpar(h=[1, 2], k=[5, 10, 20])
    >>> len(pars["h"])
    6

    Returns
    -------
    pars : dict of str to Array
        One array per parameter, all of the same length.
    """
    names = list(kwargs)
    values = [np.atleast_1d(np.asarray(v)).tolist() for v in kwargs.values()]
    combinations = list(itertools.product(*values))
    return {
        name: np.asarray([c[i] for c in combinations]) for i, name in enumerate(names)
    }


def fitter(estimator: type) -> Callable[..., Any]:
    """
    Turns an estimator class into a fitting function `fun(X, Y, **params)`.
    Parameters accepted by the constructor configure the estimator, the others are
    passed to `fit`.
    """
    init_names = set(estimator().get_params(deep=False))

    def fun(X: Data, Y: npt.ArrayLike, **params: Any) -> Any:
        init = {k: v for k, v in params.items() if k in init_names}
        fit = {k: v for k, v in params.items() if k not in init_names}
        return estimator(**init).fit(X, Y, **fit)

    return fun


def as_fitting_function(fun: Any) -> Callable[..., Any]:
    if isinstance(fun, type) and issubclass(fun, BaseEstimator):
        return fitter(fun)
    return fun


def _check_pars(pars: Pars) -> tuple[list[str], list[dict[str, Any]]]:
    """
    Returns the parameter names and the list of parameter combinations of `pars`.
    """
    if not pars:
        return [], [{}]
    names = list(pars)
    values = [np.atleast_1d(np.asarray(v)).tolist() for v in pars.values()]
    lengths = {len(v) for v in values}
    if len(lengths) > 1:
        raise DimensionError(
            f"Parameter arrays must have the same length. Got "
            f"{dict(zip(names, map(len, values)))}."
        )
    return names, [dict(zip(names, c)) for c in zip(*values)]


def _check_nlv(nlv: Union[int, Sequence[int]]) -> list[int]:
    nlv = np.atleast_1d(np.asarray(nlv, dtype=int))
    if nlv.size == 0:
        raise RangeError("At least one number of components is required.")
    if nlv.max() < 0:
        raise RangeError(f"Number of components must be non-negative. Got {nlv}.")
    return list(range(max(int(nlv.min()), 0), int(nlv.max()) + 1))


def _check_lambdas(lam: Union[float, Sequence[float]]) -> list[float]:
    lam = np.atleast_1d(np.asarray(lam, dtype=float))
    if lam.size == 0:
        raise RangeError("At least one lambda value is required.")
    return np.unique(lam).tolist()


def _score_columns(scores: npt.ArrayLike) -> dict[str, float]:
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    return {f"y{j + 1}": s for j, s in enumerate(scores)}


def _fit_kwargs(weights: Optional[npt.ArrayLike]) -> dict[str, Any]:
    return {} if weights is None else {"weights": weights}


def gridscore(
    X_train: Data,
    Y_train: npt.ArrayLike,
    X_val: Data,
    Y_val: npt.ArrayLike,
    score: Callable[..., Any],
    fun: Any,
    pars: Pars,
    weights: Optional[npt.ArrayLike] = None,
) -> pd.DataFrame:
    """
    Fits `fun` on the training set for every combination of `pars` and scores the
    predictions of the validation set.

    Returns
    -------
    res : pandas.DataFrame
        One row per combination, with the parameter columns followed by the score
        columns.
    """
    fun = as_fitting_function(fun)
    names, combinations = _check_pars(pars)
    rows = []
    for params in combinations:
        model = fun(X_train, Y_train, **params, **_fit_kwargs(weights))
        pred = model.predict(X_val)
        rows.append({**params, **_score_columns(score(pred, Y_val))})
    return pd.DataFrame(rows)


def gridscore_lv(
    X_train: Data,
    Y_train: npt.ArrayLike,
    X_val: Data,
    Y_val: npt.ArrayLike,
    score: Callable[..., Any],
    fun: Any,
    nlv: Union[int, Sequence[int]],
    pars: Pars = None,
    weights: Optional[npt.ArrayLike] = None,
) -> pd.DataFrame:
    """
    Same as `gridscore` for latent-variable models. For every combination of
    `pars`, the model is fitted once with `A=max(nlv)` and scored for every number
    of components from `max(min(nlv), 0)` to `max(nlv)`. `pars` must not contain
    `A`.

    Returns
    -------
    res : pandas.DataFrame
        One row per combination and number of components, with the parameter
        columns, an `nlv` column and the score columns.

    Raises
    ------
    RangeError
        If `nlv` is empty or only holds negative values.
    """
    fun = as_fitting_function(fun)
    nlv = _check_nlv(nlv)
    names, combinations = _check_pars(pars)
    rows = []
    for params in combinations:
        model = fun(X_train, Y_train, A=nlv[-1], **params, **_fit_kwargs(weights))
        pred = model.predict(X_val, n_components=nlv)
        for a, zpred in zip(nlv, pred):
            rows.append({**params, "nlv": a, **_score_columns(score(zpred, Y_val))})
    return pd.DataFrame(rows)


def gridscore_lb(
    X_train: Data,
    Y_train: npt.ArrayLike,
    X_val: Data,
    Y_val: npt.ArrayLike,
    score: Callable[..., Any],
    fun: Any,
    lam: Union[float, Sequence[float]],
    pars: Pars = None,
    weights: Optional[npt.ArrayLike] = None,
) -> pd.DataFrame:
    """
    Same as `gridscore` for ridge models. For every combination of `pars`, the
    model is fitted once and scored for every (sorted, unique) value of `lam`.
    `pars` must not contain `lam`.
    """
    fun = as_fitting_function(fun)
    lam = _check_lambdas(lam)
    names, combinations = _check_pars(pars)
    rows = []
    for params in combinations:
        model = fun(X_train, Y_train, **params, **_fit_kwargs(weights))
        pred = model.predict(X_val, lam=lam)
        for value, zpred in zip(lam, pred):
            rows.append({**params, "lam": value, **_score_columns(score(zpred, Y_val))})
    return pd.DataFrame(rows)


def _take(X: Data, rows: npt.NDArray[np.int_]) -> Data:
    if isinstance(X, (list, tuple)):
        return [np.asarray(x)[rows] for x in X]
    return np.asarray(X)[rows]


def _n_rows(X: Data) -> int:
    if isinstance(X, (list, tuple)):
        lengths = {np.shape(x)[0] for x in X}
        if len(lengths) != 1:
            raise DimensionError(
                f"Blocks must have the same number of rows. Got {lengths}."
            )
        return lengths.pop()
    return np.shape(X)[0]


def _cross_validate(
    X: Data,
    Y: npt.ArrayLike,
    segm: Segments,
    grid_function: Callable[..., pd.DataFrame],
    group_columns: list[str],
    weights: Optional[npt.ArrayLike],
    n_jobs: int,
    verbose: bool,
    **kwargs: Any,
) -> CVResult:
    n = _n_rows(X)
    Y = np.asarray(Y)
    if Y.shape[0] != n:
        raise DimensionError(
            f"X and Y must have the same number of rows. Got {n} and {Y.shape[0]}."
        )
    if weights is not None:
        weights = np.asarray(weights, dtype=np.float64).reshape(-1)
        if weights.shape[0] != n:
            raise DimensionError(
                f"`weights` must have length {n}. Got {weights.shape[0]}."
            )
    all_indices = np.arange(n)
    tasks = [
        (i, j, np.asarray(s, dtype=int))
        for i, listsegm in enumerate(segm)
        for j, s in enumerate(listsegm)
    ]
    if verbose:
        print(
            f"Cross-validating {len(tasks)} segments from {len(segm)} replications "
            f"using {n_jobs} parallel processes."
        )

    def worker(i: int, j: int, s: npt.NDArray[np.int_]) -> pd.DataFrame:
        train = np.setdiff1d(all_indices, s, assume_unique=True)
        zres = grid_function(
            _take(X, train),
            Y[train],
            _take(X, s),
            Y[s],
            weights=None if weights is None else weights[train],
            **kwargs,
        )
        zres.insert(0, "segm", j)
        zres.insert(0, "rep", i)
        return zres

    results = Parallel(n_jobs=n_jobs, verbose=10 if verbose else 0)(
        delayed(worker)(i, j, s) for i, j, s in tasks
    )
    return _summarize(pd.concat(results, ignore_index=True), group_columns)


def _summarize(res_rep: pd.DataFrame, group_columns: list[str]) -> CVResult:
    ycols = [c for c in res_rep.columns if c.startswith("y") and c[1:].isdigit()]
    res = (
        res_rep.groupby(group_columns, sort=False, dropna=False)[ycols]
        .mean()
        .reset_index()
    )
    return CVResult(res, res_rep)


def gridcv(
    X: Data,
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: Any,
    pars: dict[str, Sequence[Any]],
    weights: Optional[npt.ArrayLike] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> CVResult:
    """
    Cross-validates `fun` over the grid `pars`.

    Parameters
    ----------
    X : Array of shape (N, K)
        Predictor variables.

    Y : Array of shape (N, M) or (N,)
        Responses. May hold class labels.

    segm : list of lists of index arrays
        Validation segments, e.g. the output of `segm_kf` or `segm_ts`.

    score : Callable receiving `pred` and `Y_val`
        Score function, e.g. `localpls.scores.rmsep`.

    fun : Callable or estimator class
        Fitting function `fun(X_train, Y_train, **params)`.

    pars : dict of str to sequence
        Grid of parameters. All sequences must have the same length, see `mpar`.

    weights : Array of shape (N,) or None, optional, default=None
        Observation weights. The training part is passed to `fun` as `weights`.

    n_jobs : int, default=1
        Number of parallel jobs over the segments.

    verbose : bool, default=False
        Whether to print progress.

    Returns
    -------
    CVResult
        `res` and `res_rep`.

    Raises
    ------
    DimensionError
        If the arrays of `pars` differ in length or the row counts differ.
    """
    names, _ = _check_pars(pars)
    if not names:
        raise DimensionError("`pars` must hold at least one parameter.")
    return _cross_validate(
        X, Y, segm, gridscore, names, weights, n_jobs, verbose,
        score=score, fun=fun, pars=pars,
    )


def _fast_gridcv_lv(
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: type,
    nlv: list[int],
    pars: Pars,
    weights: Optional[npt.ArrayLike],
    n_jobs: int,
    verbose: bool,
) -> CVResult:
    names, combinations = _check_pars(pars)

    def metric_function(Y_val, Y_pred, *args):
        return [score(zpred, Y_val) for zpred in Y_pred]

    frames = {}
    for params in combinations:
        model = fun(**params)
        for i, listsegm in enumerate(segm):
            metrics = model.cross_validate(
                X,
                Y,
                A=nlv[-1],
                segments=listsegm,
                metric_function=metric_function,
                n_components=nlv,
                weights=weights,
                n_jobs=n_jobs,
                verbose=10 if verbose else 0,
            )
            for j, segment_scores in enumerate(metrics):
                rows = [
                    {"rep": i, "segm": j, **params, "nlv": a, **_score_columns(s)}
                    for a, s in zip(nlv, segment_scores)
                ]
                frames.setdefault((i, j), []).append(pd.DataFrame(rows))
    res_rep = pd.concat(
        [frame for key in sorted(frames) for frame in frames[key]], ignore_index=True
    )
    return _summarize(res_rep, names + ["nlv"])


def gridcv_lv(
    X: Data,
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: Any,
    nlv: Union[int, Sequence[int]],
    pars: Pars = None,
    weights: Optional[npt.ArrayLike] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> CVResult:
    """
    Same as `gridcv` for latent-variable models. See `gridscore_lv`. The results
    hold an `nlv` column.

    If `fun` is `localpls.fast_cross_validation.pls.PLS` (or a subclass), then
    `pars` configures its constructor and every replication is validated with its
    `cross_validate`, which avoids recomputing the training set matrix products.
    """
    nlv = _check_nlv(nlv)
    if isinstance(fun, type) and issubclass(fun, FastCVPLS):
        return _fast_gridcv_lv(
            X, Y, segm, score, fun, nlv, pars, weights, n_jobs, verbose
        )
    names, _ = _check_pars(pars)
    return _cross_validate(
        X, Y, segm, gridscore_lv, names + ["nlv"], weights, n_jobs, verbose,
        score=score, fun=fun, nlv=nlv, pars=pars,
    )


def gridcv_lb(
    X: Data,
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: Any,
    lam: Union[float, Sequence[float]],
    pars: Pars = None,
    weights: Optional[npt.ArrayLike] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> CVResult:
    """
    Same as `gridcv` for ridge models. See `gridscore_lb`. The results hold a
    `lam` column.
    """
    lam = _check_lambdas(lam)
    names, _ = _check_pars(pars)
    return _cross_validate(
        X, Y, segm, gridscore_lb, names + ["lam"], weights, n_jobs, verbose,
        score=score, fun=fun, lam=lam, pars=pars,
    )


def _check_blocks(Xbl: Sequence[npt.ArrayLike]) -> list[npt.NDArray]:
    if not isinstance(Xbl, (list, tuple)) or len(Xbl) == 0:
        raise DimensionError("Multiblock X must be a non-empty list of blocks.")
    return [np.asarray(x) for x in Xbl]


def gridcv_mb(
    Xbl: Sequence[npt.ArrayLike],
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: Any,
    pars: dict[str, Sequence[Any]],
    weights: Optional[npt.ArrayLike] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> CVResult:
    """
    Same as `gridcv` for multiblock models. `Xbl` is a list of X blocks with the
    same rows, all sliced identically.
    """
    return gridcv(
        _check_blocks(Xbl), Y, segm, score, fun, pars, weights, n_jobs, verbose
    )


def gridcv_lv_mb(
    Xbl: Sequence[npt.ArrayLike],
    Y: npt.ArrayLike,
    segm: Segments,
    score: Callable[..., Any],
    fun: Any,
    nlv: Union[int, Sequence[int]],
    pars: Pars = None,
    weights: Optional[npt.ArrayLike] = None,
    n_jobs: int = 1,
    verbose: bool = False,
) -> CVResult:
    """
    Same as `gridcv_lv` for multiblock latent-variable models.
    """
    return gridcv_lv(
        _check_blocks(Xbl), Y, segm, score, fun, nlv, pars, weights, n_jobs, verbose
    )
