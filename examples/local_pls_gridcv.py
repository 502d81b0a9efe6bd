"""
This file contains an example of tuning a locally weighted PLS regression (LWPLSR) by
cross-validation over a grid of neighborhood parameters and numbers of components,
and of comparing it with the global PLS and the global PLSR averaging.

The data are a nonlinear response of a few latent factors, for which local models
are expected to outperform a single global PLS.

To run the example, execute the file.

Note: The code assumes the availability of the `localpls` package and its
dependencies.
"""

import numpy as np

from localpls.ensemble import PLSRAvg
from localpls.gridcv import gridcv_lv, mpar
from localpls.local_models import LWPLSR
from localpls.pls import PLS
from localpls.scores import rmsep
from localpls.segments import segm_kf, segm_ts

if __name__ == "__main__":
    rng = np.random.default_rng(42)
    N = 300  # Number of samples.
    K = 30  # Number of features.

    T = rng.uniform(-2, 2, size=(N, 3))
    X = T @ rng.standard_normal((3, K)) + 0.05 * rng.standard_normal((N, K))
    y = np.sin(T[:, 0]) + T[:, 1] ** 2 + 0.05 * rng.standard_normal(N)

    # Hold out a test set and cross-validate on the remaining rows.
    test = segm_ts(N, 60, random_state=0)[0][0]
    train = np.setdiff1d(np.arange(N), test)
    X_train, y_train, X_test, y_test = X[train], y[train], X[test], y[test]
    segm = segm_kf(train.size, 4, rep=2, random_state=0)

    pars = mpar(A_dis=[0, 5], h=[1.0, 2.5, np.inf], k=[30, 60])
    res = gridcv_lv(
        X_train, y_train, segm, rmsep, LWPLSR, nlv=range(0, 11), pars=pars, verbose=True
    ).res
    best = res.loc[res["y1"].idxmin()]
    print(res.sort_values("y1").head(10))

    model = LWPLSR(A_dis=int(best["A_dis"]), h=float(best["h"]), k=int(best["k"]))
    model.fit(X_train, y_train, A=int(best["nlv"]))
    print("LWPLSR", rmsep(model.predict(X_test), y_test))

    res = gridcv_lv(X_train, y_train, segm, rmsep, PLS, nlv=range(0, 21)).res
    A = int(res.loc[res["y1"].idxmin(), "nlv"])
    pls = PLS().fit(X_train, y_train, A=A)
    print("PLS", rmsep(pls.predict(X_test, n_components=A), y_test))

    avg = PLSRAvg(policy="aic").fit(X_train, y_train, nlv="0:20")
    print("PLSRAvg", rmsep(avg.predict(X_test), y_test))
