"""
This file contains an example implementation of fast weighted cross-validation using
the PLS class of localpls.fast_cross_validation. The training set statistics and
matrix products of every segment are derived from those of the whole data set
instead of being recomputed. The segments are replicated K-fold segments from
`localpls.segments.segm_kf`.

The code includes the following functions:
- `wrmsep_for_each_target`: A function to compute the weighted root mean squared
    error of prediction for each target and each number of components.

To run the cross-validation, execute the file.

Note: The code assumes the availability of the `localpls` package and its
dependencies.
"""

import numpy as np

from localpls.fast_cross_validation.pls import PLS
from localpls.segments import segm_kf


def wrmsep_for_each_target(Y_true, Y_pred, weights):
    """
    Computes the weighted RMSEP for each number of components and target.
    """
    # Y_true has shape (N_val, M)
    # Y_pred has shape (A + 1, N_val, M)
    # weights has shape (N_val,)
    se = (Y_true - Y_pred) ** 2
    return np.sqrt(np.average(se, axis=-2, weights=weights))  # Shape (A + 1, M).


if __name__ == "__main__":
    rng = np.random.default_rng(42)
    N = 100  # Number of samples.
    K = 50  # Number of features.
    M = 10  # Number of targets.
    A = 20  # Number of latent variables (PLS components).

    X = rng.uniform(size=(N, K))
    Y = rng.uniform(size=(N, M))
    weights = rng.uniform(size=N)  # Random weights for each sample.

    # Three replications of 5-fold segments.
    segm = segm_kf(N, 5, rep=3, random_state=42)

    fast_cv_pls = PLS(algorithm=1, scale_X=True, scale_Y=True, ddof=0)
    wrmseps = []
    for listsegm in segm:
        # One result per segment, in the order of `listsegm`.
        wrmseps.extend(
            fast_cv_pls.cross_validate(
                X=X,
                Y=Y,
                A=A,
                segments=listsegm,
                metric_function=wrmsep_for_each_target,
                weights=weights,
                n_jobs=-1,
                verbose=10,
            )
        )

    # Mean over replications and segments. Shape (A + 1, M).
    mean_wrmsep = np.mean(wrmseps, axis=0)

    # 0 is a valid number of components: it predicts the training mean.
    best_num_components = np.argmin(mean_wrmsep, axis=0)
    print(best_num_components)
