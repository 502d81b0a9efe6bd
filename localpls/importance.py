"""
Contains permutation variable importance: the increase of a prediction score when
the values of one X column of the validation set are randomly permuted.
"""

from collections.abc import Callable
from typing import Any, Optional

import numpy as np
import numpy.typing as npt
from joblib import Parallel, delayed

from .gridcv import as_fitting_function
from .scores import msep
from .weighted_linalg import as_2d


def varimp_perm(
    X_train: npt.ArrayLike,
    Y_train: npt.ArrayLike,
    X: npt.ArrayLike,
    Y: npt.ArrayLike,
    fun: Any,
    score: Callable[..., Any] = msep,
    B: int = 10,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
    **params: Any,
) -> npt.NDArray[np.float64]:
    """
    Permutation importance of every column of `X`.

    Parameters
    ----------
    X_train, Y_train : Arrays of shape (N, K) and (N, M)
        Training set of the model.

    X, Y : Arrays of shape (m, K) and (m, M)
        Validation set on which the columns are permuted.

    fun : Callable or estimator class
        Fitting function `fun(X_train, Y_train, **params)`, see
        `localpls.gridcv`.

    score : Callable, default=localpls.scores.msep
        Score function receiving `pred` and `Y`.

    B : int, default=10
        Number of permutations per column.

    random_state : int or None, optional, default=None
        Seed of the permutations. Every column gets its own independent stream.

    n_jobs : int, default=1
        Number of parallel jobs over the columns.

    Returns
    -------
    imp : Array of shape (K, M)
        Mean over the `B` permutations of the permuted score minus the score of
        the intact validation set.
    """
    X = as_2d(X)
    model = as_fitting_function(fun)(X_train, Y_train, **params)
    reference = np.asarray(score(model.predict(X), Y)).reshape(-1)
    seeds = np.random.SeedSequence(random_state).spawn(X.shape[1])

    def worker(j: int, seed: np.random.SeedSequence) -> npt.NDArray[np.float64]:
        rng = np.random.default_rng(seed)
        zX = X.copy()
        res = np.empty((B, reference.shape[0]))
        for i in range(B):
            zX[:, j] = X[rng.permutation(X.shape[0]), j]
            res[i] = np.asarray(score(model.predict(zX), Y)).reshape(-1) - reference
        return res.mean(axis=0)

    imp = Parallel(n_jobs=n_jobs)(
        delayed(worker)(j, seed) for j, seed in enumerate(seeds)
    )
    return np.vstack(imp)
