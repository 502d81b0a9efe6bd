"""
Contains the segment generators used to validate models: K-fold segments and
"test-set" (held-out) segments, optionally sampling whole blocks of observations.

A segment plan is a list of `rep` replications. Each replication is a list of
integer arrays (K arrays for K-fold, one array for a test set) holding sorted,
0-based row indices.

Block sampling keeps all rows sharing a `group` label in the same segment. It is
required when the response is correlated within blocks, and prevents underestimating
the generalization error.
"""

from typing import Optional, Union

import numpy as np
import numpy.typing as npt

from .exceptions import DimensionError

Segments = list[list[npt.NDArray[np.int_]]]
RandomState = Union[None, int, np.random.Generator]


def _unique_in_order(group: npt.NDArray) -> npt.NDArray:
    _, first = np.unique(group, return_index=True)
    return group[np.sort(first)]


def _check_group(n: int, group: npt.ArrayLike) -> npt.NDArray:
    group = np.asarray(group).reshape(-1)
    if group.shape[0] != n:
        raise DimensionError(f"`group` must have length {n}. Got {group.shape[0]}.")
    return group


def _expand(group: npt.NDArray, levels: npt.NDArray) -> npt.NDArray[np.int_]:
    return np.flatnonzero(np.isin(group, levels))


def _kfold_rows(n: int, K: int, rng: np.random.Generator) -> list[npt.NDArray[np.int_]]:
    # Pad the permutation with -1 to a multiple of K; segment j takes every K-th value
    pad = K - n % K
    v = np.concatenate((rng.permutation(n), np.full(pad, -1)))
    return [np.sort(v[j::K][v[j::K] >= 0]) for j in range(K)]


def segm_kf(
    n: int,
    K: int,
    rep: int = 1,
    group: Optional[npt.ArrayLike] = None,
    random_state: RandomState = None,
) -> Segments:
    """
    Builds segments for K-fold cross-validation.

    Parameters
    ----------
    n : int
        Number of observations. Indices are sampled in 0..n-1.

    K : int
        Number of folds. If `group` is given, `K` is capped at the number of groups.

    rep : int, default=1
        Number of replications of the sampling.

    group : Array of shape (n,) or None, optional, default=None
        Block labels. Whole blocks are sampled instead of observations.

    random_state : int, numpy.random.Generator or None, optional, default=None
        Seed or generator of the permutations.

    Returns
    -------
    segm : list of `rep` lists of K index arrays
        Within a replication the segments partition 0..n-1. Without `group`, their
        sizes differ by at most one.

    Raises
    ------
    ValueError
        If `K` is not in 1..n.

    DimensionError
        If `group` does not have length `n`.
    """
    rng = np.random.default_rng(random_state)
    if group is None:
        if not 1 <= K <= n:
            raise ValueError(f"K must be in 1..{n}. Got {K}.")
        return [_kfold_rows(n, K, rng) for _ in range(rep)]

    group = _check_group(n, group)
    levels = _unique_in_order(group)
    K = min(K, levels.shape[0])
    if K < 1:
        raise ValueError(f"K must be positive. Got {K}.")
    return [
        [_expand(group, levels[s]) for s in _kfold_rows(levels.shape[0], K, rng)]
        for _ in range(rep)
    ]


def segm_ts(
    n: int,
    m: int,
    rep: int = 1,
    group: Optional[npt.ArrayLike] = None,
    random_state: RandomState = None,
) -> Segments:
    """
    Builds segments for test-set validation.

    Parameters
    ----------
    n : int
        Number of observations.

    m : int
        Number of observations (or of groups, if `group` is given) in each segment.
        Capped at the number of groups when `group` is given.

    rep : int, default=1
        Number of replications of the sampling.

    group : Array of shape (n,) or None, optional, default=None
        Block labels.

    random_state : int, numpy.random.Generator or None, optional, default=None
        Seed or generator of the sampling.

    Returns
    -------
    segm : list of `rep` lists holding one sorted index array each
        Segments of different replications may overlap.
    """
    rng = np.random.default_rng(random_state)
    if group is None:
        if not 0 <= m <= n:
            raise ValueError(f"m must be in 0..{n}. Got {m}.")
        return [[np.sort(rng.choice(n, size=m, replace=False))] for _ in range(rep)]

    group = _check_group(n, group)
    levels = _unique_in_order(group)
    m = min(m, levels.shape[0])
    return [
        [
            _expand(
                group,
                levels[np.sort(rng.choice(levels.shape[0], size=m, replace=False))],
            )
        ]
        for _ in range(rep)
    ]
