"""
This file contains an example implementation of weighted cross-validation using the
PLS class of localpls. It demonstrates how to perform weighted cross-validation with
column-wise centering and scaling, and how to compute and evaluate a weighted metric.

The code includes the following functions:
- `wmse_for_each_target`: A function to compute the weighted mean squared error for
    each target and the number of components that achieves the lowest WMSE for each
    target.

To run the cross-validation, execute the file.

Note: The code assumes the availability of the `localpls` package and its
dependencies.
"""

import numpy as np

from localpls.pls import PLS


def wmse_for_each_target(
    Y_true: np.ndarray, Y_pred: np.ndarray, val_weights: np.ndarray
) -> dict:
    """
    We can return anything we want. Here, we compute the weighted mean squared error
    for each target and the number of components that achieves the lowest WMSE for
    each target.
    """
    # Y_true has shape (N_val, M)
    # Y_pred has shape (A, N_val, M)
    se = (Y_true - Y_pred) ** 2  # Shape (A, N_val, M)

    # Compute the weighted mean over samples. Shape (A, M).
    wmse = np.average(se, axis=-2, weights=val_weights)

    # The number of components that minimizes the WMSE for each target. Shape (M,).
    row_idxs = np.argmin(wmse, axis=0)
    lowest_wmses = wmse[row_idxs, np.arange(wmse.shape[1])]

    # Indices are 0-indexed but number of components is 1-indexed.
    num_components = row_idxs + 1

    names = [f"lowest_wmse_target_{i}" for i in range(wmse.shape[1])] + [
        f"num_components_lowest_wmse_target_{i}" for i in range(wmse.shape[1])
    ]
    return dict(zip(names, np.concatenate((lowest_wmses, num_components))))


if __name__ == "__main__":
    rng = np.random.default_rng(42)
    N = 100  # Number of samples.
    K = 50  # Number of features.
    M = 10  # Number of targets.
    A = 20  # Number of latent variables (PLS components).
    splits = rng.integers(0, 5, size=N)  # Randomly assign each sample to a split.

    X = rng.uniform(size=(N, K))
    Y = rng.uniform(size=(N, M))
    weights = rng.uniform(low=0, high=2, size=(N,))

    # Centering and scaling are computed over the weighted training splits only to
    # avoid data leakage from the validation splits.
    pls = PLS(algorithm=1, center_X=True, center_Y=True, scale_X=True, scale_Y=True)
    results = pls.cross_validate(
        X=X,
        Y=Y,
        A=A,
        folds=splits,
        metric_function=wmse_for_each_target,
        weights=weights,
        n_jobs=-1,
        verbose=10,
    )

    # `results` maps every unique value of `splits` to the output of
    # `wmse_for_each_target` on that split. Shape (M, splits).
    unique_splits = np.unique(splits)
    best_num_components = np.asarray(
        [
            [
                results[split][f"num_components_lowest_wmse_target_{i}"]
                for split in unique_splits
            ]
            for i in range(M)
        ]
    )
    print(best_num_components)
