"""
Contains the local weighted model dispatcher. For every query row, a model is fitted
on the weighted neighborhood of that row only, and the row is predicted with it.

Rows are independent once the neighbor and weight lists are known, so they are
dispatched with joblib.

Failure policy: with ``on_error="nan"`` (the default) a row whose local fit or
prediction fails is returned as NaN (or None for class labels), flagged in the
`failed` mask and reported once with a `LocalFitWarning`. With ``on_error="raise"``
the first failure is raised as `InsufficientNeighborsError`.
"""

import warnings
from collections.abc import Callable
from typing import Any, NamedTuple, Optional, Sequence

import numpy as np
import numpy.linalg as la
import numpy.typing as npt
from joblib import Parallel, delayed

from .exceptions import InsufficientNeighborsError, LocalFitWarning
from .weighted_linalg import as_2d

ON_ERROR = ("nan", "raise")


class LocalPrediction(NamedTuple):
    """
    pred : Array
        Predictions. Rows that failed are NaN (None for non-numeric outputs).

    failed : Array of shape (m,)
        True for the rows whose local model failed.
    """

    pred: npt.NDArray
    failed: npt.NDArray[np.bool_]


class Neighborhoods(NamedTuple):
    """
    Neighbor indices, distances and weights of every query row, each of shape
    (m, k).
    """

    indices: npt.NDArray[np.int_]
    distances: npt.NDArray[np.float64]
    weights: npt.NDArray[np.float64]


def _fit_predict_row(
    fit_function: Callable[..., Any],
    X: npt.NDArray,
    Y: npt.NDArray,
    x: npt.NDArray,
    weights: npt.NDArray[np.float64],
    predict_kwargs: dict[str, Any],
) -> npt.NDArray:
    n_effective = np.count_nonzero(weights > 0)
    if n_effective < 2:
        raise InsufficientNeighborsError(
            f"A local model needs at least 2 positively weighted neighbors. "
            f"Got {n_effective}."
        )
    model = fit_function(X, Y, weights)
    pred = np.asarray(model.predict(x, **predict_kwargs))
    if pred.dtype.kind in "fc" and not np.all(np.isfinite(pred)):
        raise la.LinAlgError("Local model returned non-finite predictions.")
    return pred


def local_predict(
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    X_query: npt.ArrayLike,
    listnn: Sequence[npt.ArrayLike],
    listw: Sequence[npt.ArrayLike],
    fit_function: Callable[..., Any],
    predict_kwargs: Optional[dict[str, Any]] = None,
    row_axis: int = -2,
    on_error: str = "nan",
    n_jobs: int = 1,
    verbose: int = 0,
) -> LocalPrediction:
    """
    Fits one weighted model per query row on its neighbors and predicts the row.

    Parameters
    ----------
    X : Array of shape (N, K)
        Training predictor variables.

    Y : Array of shape (N, M) or (N,)
        Training responses. May hold class labels.

    X_query : Array of shape (m, K)
        Rows to predict.

    listnn : Sequence of m index arrays
        Neighbors of each query row in `X`.

    listw : Sequence of m weight arrays
        Weights of the neighbors, parallel to `listnn`.

    fit_function : Callable receiving `X_nn`, `Y_nn` and `weights_nn` and returning
    a fitted model with a `predict` method.

    predict_kwargs : dict or None, optional, default=None
        Keyword arguments of the local `predict` calls.

    row_axis : int, default=-2
        Axis of the local predictions along which query rows are concatenated. -2 for
        (1, M) or (L, 1, M) regression outputs, -1 for (1,) or (L, 1) label outputs.

    on_error : str, default="nan"
        "nan" or "raise". See the module docstring.

    n_jobs : int, default=1
        Number of parallel jobs.

    verbose : int, default=0
        Controls verbosity of parallel jobs.

    Returns
    -------
    LocalPrediction
        Predictions and the failure mask.

    Raises
    ------
    InsufficientNeighborsError
        If `on_error` is "raise" and a local model fails.
    """
    if on_error not in ON_ERROR:
        raise ValueError(f"Invalid on_error: {on_error}. Must be one of {ON_ERROR}.")
    X = as_2d(X)
    Y = np.asarray(Y)
    X_query = as_2d(X_query)
    predict_kwargs = {} if predict_kwargs is None else predict_kwargs
    m = X_query.shape[0]

    def worker(i: int) -> tuple[Optional[npt.NDArray], Optional[Exception]]:
        nn = np.asarray(listnn[i], dtype=int)
        try:
            pred = _fit_predict_row(
                fit_function,
                X[nn],
                Y[nn],
                X_query[i : i + 1],
                np.asarray(listw[i], dtype=np.float64),
                predict_kwargs,
            )
        except (la.LinAlgError, ValueError) as e:
            return None, e
        return pred, None

    results = Parallel(n_jobs=n_jobs, verbose=verbose)(
        delayed(worker)(i) for i in range(m)
    )

    failed = np.array([error is not None for _, error in results], dtype=bool)
    if failed.any():
        first = int(np.flatnonzero(failed)[0])
        if on_error == "raise":
            raise InsufficientNeighborsError(
                f"Local model for query row {first} failed: {results[first][1]}"
            ) from results[first][1]
        warnings.warn(
            message=f"Local model failed for {failed.sum()} of {m} query row(s) "
            f"(first: row {first}, {results[first][1]}). Their predictions are NaN.",
            category=LocalFitWarning,
        )

    template = next((pred for pred, _ in results if pred is not None), None)
    if template is None:
        shape = (m, as_2d(Y).shape[1]) if row_axis == -2 else (m,)
        n_components = predict_kwargs.get("n_components")
        if n_components is not None and np.ndim(n_components) == 1:
            shape = (len(n_components),) + shape
        if row_axis == -1:
            return LocalPrediction(np.full(shape, None, dtype=object), failed)
        return LocalPrediction(np.full(shape, np.nan), failed)
    if template.dtype.kind in "fc":
        filler = np.full(template.shape, np.nan, dtype=template.dtype)
    else:
        filler = np.full(template.shape, None, dtype=object)
    pred = np.concatenate(
        [filler if p is None else p for p, _ in results], axis=row_axis
    )
    return LocalPrediction(pred, failed)


def local_predict_lv(
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    X_query: npt.ArrayLike,
    listnn: Sequence[npt.ArrayLike],
    listw: Sequence[npt.ArrayLike],
    fit_function: Callable[..., Any],
    n_components: Sequence[int],
    row_axis: int = -2,
    on_error: str = "nan",
    n_jobs: int = 1,
    verbose: int = 0,
) -> LocalPrediction:
    """
    Same as `local_predict` for latent-variable models. `fit_function` must fit at
    max(`n_components`) components. Each local model is fitted once and predicts all
    of `n_components`, giving predictions of shape (len(n_components), m, M).
    """
    return local_predict(
        X,
        Y,
        X_query,
        listnn,
        listw,
        fit_function,
        predict_kwargs={"n_components": list(n_components)},
        row_axis=row_axis,
        on_error=on_error,
        n_jobs=n_jobs,
        verbose=verbose,
    )
