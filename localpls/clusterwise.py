"""
Contains CPLSRAvg, clusterwise PLSR averaging. The training set is split into
clusters (k-means or given classes) and one `PLSRAvg` is fitted per cluster. New
rows are predicted by the mixture of the cluster models, weighted by the posterior
cluster probabilities of a PLS-LDA fitted on the clusters.
"""

from typing import Optional, Union

import numpy as np
import numpy.typing as npt
from sklearn.base import BaseEstimator
from sklearn.cluster import KMeans

from .discrimination import PLSLDA
from .ensemble import NLVRange, PLSRAvg, as_nlv_range
from .weighted_linalg import as_2d, check_rows


class CPLSRAvg(BaseEstimator):
    """
    Clusterwise PLSR averaging.

    Parameters
    ----------
    A_da : int, default=15
        Number of components of the PLS-LDA computing the cluster posteriors.

    n_clusters : int, default=5
        Number of k-means clusters. Ignored if the classes are given to `fit`.

    min_size : int, default=30
        Clusters with fewer observations are left out of the mixture. If no
        cluster is large enough, then all clusters are used.

    policy : str, default="unif"
        Combination policy of the cluster `PLSRAvg` models.

    random_state : int or None, optional, default=None
        Seed of the k-means clustering and of the `PLSRAvg` models.
    """

    def __init__(
        self,
        A_da: int = 15,
        n_clusters: int = 5,
        min_size: int = 30,
        policy: str = "unif",
        random_state: Optional[int] = None,
    ) -> None:
        self.A_da = A_da
        self.n_clusters = n_clusters
        self.min_size = min_size
        self.policy = policy
        self.random_state = random_state
        self.lev = None
        self.ni = None
        self.da = None
        self.models = None
        self.included = None

    def fit(
        self,
        X: npt.ArrayLike,
        Y: npt.ArrayLike,
        nlv: Union[int, tuple[int, int], range, str, NLVRange],
        cla: Optional[npt.ArrayLike] = None,
    ) -> "CPLSRAvg":
        """
        Fits one `PLSRAvg` per cluster. The range `nlv` is capped at `ni - 1` and at
        the number of columns of `X` within a cluster of `ni` observations.
        """
        X = as_2d(X)
        Y = as_2d(Y)
        check_rows(X, Y, cla)
        nlv = as_nlv_range(nlv)
        if cla is None:
            cla = KMeans(
                n_clusters=self.n_clusters,
                n_init=10,
                max_iter=500,
                random_state=self.random_state,
            ).fit(X).labels_
        cla = np.asarray(cla).reshape(-1)
        self.lev, self.ni = np.unique(cla, return_counts=True)
        self.da = PLSLDA(prior="prop").fit(X, cla, self.A_da)

        self.models = []
        for level, n in zip(self.lev, self.ni):
            s = cla == level
            high = min(nlv.high, n - 1, X.shape[1])
            low = min(nlv.low, high)
            self.models.append(
                PLSRAvg(policy=self.policy, random_state=self.random_state).fit(
                    X[s], Y[s], NLVRange(low, high)
                )
            )
        self.included = self.ni >= self.min_size
        if not self.included.any():
            self.included[:] = True
        return self

    def predict_proba(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Posterior cluster probabilities of shape (N, nlev), renormalized over the
        clusters used in the mixture.
        """
        post = self.da.predict_proba(X) * self.included
        return post / post.sum(axis=1, keepdims=True)

    def predict(self, X: npt.ArrayLike) -> npt.NDArray[np.float64]:
        X = as_2d(X)
        post = self.predict_proba(X)
        pred = 0
        for i in np.flatnonzero(self.included):
            pred = pred + post[:, i : i + 1] * self.models[i].predict(X)
        return pred
