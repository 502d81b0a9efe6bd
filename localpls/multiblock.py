"""
Contains MBPLSR, multiblock PLS regression. Every X block is divided by its
(weighted) Frobenius norm after centering, so that blocks with many columns or
large variances do not dominate, and the scaled blocks are concatenated before
fitting a PLS.
"""

from typing import Optional, Sequence

import numpy as np
import numpy.typing as npt
from sklearn.base import BaseEstimator

from .exceptions import DimensionError
from .pls import PLS, NComponents
from .weighted_linalg import as_2d, check_rows, mweights, weighted_center


def block_norms(
    Xbl: Sequence[npt.ArrayLike], weights: Optional[npt.ArrayLike] = None
) -> npt.NDArray[np.float64]:
    """
    Weighted Frobenius norm of every centered block. Norms of constant blocks are
    set to 1.
    """
    norms = []
    for X in Xbl:
        X = as_2d(X)
        w = mweights(weights, X.shape[0])
        Xc, _ = weighted_center(X, w)
        norms.append(np.sqrt(np.sum(w[:, None] * Xc**2)))
    norms = np.asarray(norms)
    norms[norms <= np.finfo(np.float64).eps] = 1
    return norms


class MBPLSR(BaseEstimator):
    """
    Multiblock PLS regression on block-scaled and concatenated X blocks.

    Parameters
    ----------
    scale_blocks : bool, default=True
        Whether to divide each block by its Frobenius norm.

    algorithm : int, default=1
        Improved Kernel PLS algorithm. See `PLS`.
    """

    def __init__(self, scale_blocks: bool = True, algorithm: int = 1) -> None:
        self.scale_blocks = scale_blocks
        self.algorithm = algorithm
        self.norms = None
        self.block_sizes = None
        self.pls = None

    def _concatenate(self, Xbl: Sequence[npt.ArrayLike]) -> npt.NDArray[np.float64]:
        Xbl = [as_2d(X) for X in Xbl]
        if [X.shape[1] for X in Xbl] != self.block_sizes:
            raise DimensionError(
                f"Expected blocks with {self.block_sizes} columns. "
                f"Got {[X.shape[1] for X in Xbl]}."
            )
        check_rows(*Xbl)
        return np.hstack([X / norm for X, norm in zip(Xbl, self.norms)])

    def fit(
        self,
        Xbl: Sequence[npt.ArrayLike],
        Y: npt.ArrayLike,
        A: int,
        weights: Optional[npt.ArrayLike] = None,
    ) -> "MBPLSR":
        """
        Fits the PLS on the list of X blocks `Xbl` and `Y` using `A` components.

        Raises
        ------
        DimensionError
            If `Xbl` is empty or the blocks, `Y` and `weights` differ in rows.
        """
        if len(Xbl) == 0:
            raise DimensionError("At least one X block is required.")
        Xbl = [as_2d(X) for X in Xbl]
        check_rows(*Xbl, Y, weights)
        self.block_sizes = [X.shape[1] for X in Xbl]
        if self.scale_blocks:
            self.norms = block_norms(Xbl, weights)
        else:
            self.norms = np.ones(len(Xbl))
        self.pls = PLS(algorithm=self.algorithm).fit(
            self._concatenate(Xbl), Y, A, weights
        )
        return self

    @property
    def A(self) -> int:
        return self.pls.A

    def transform(
        self, Xbl: Sequence[npt.ArrayLike], n_components: Optional[int] = None
    ) -> npt.NDArray[np.float64]:
        return self.pls.transform(self._concatenate(Xbl), n_components)

    def predict(
        self, Xbl: Sequence[npt.ArrayLike], n_components: NComponents = None
    ) -> npt.NDArray[np.float64]:
        """
        Predicts on the list of X blocks `Xbl`. See `PLS.predict`.
        """
        return self.pls.predict(self._concatenate(Xbl), n_components)
