"""
Contains the prediction scores used to validate models. Every score compares
predictions `pred` with observed values `Y` column by column and returns an array
of shape (1, M).
"""

import numpy as np
import numpy.typing as npt

from .weighted_linalg import as_2d


def residreg(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Regression residuals `Y - pred`."""
    Y = as_2d(Y)
    return Y - as_2d(pred).reshape(Y.shape)


def residcla(pred: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.bool_]:
    """Misclassification indicator `pred != y`, of shape (N, 1)."""
    y = np.asarray(y).reshape(-1, 1)
    return np.asarray(pred).reshape(-1, 1) != y


def ssr(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Sum of squared residuals."""
    return np.sum(residreg(pred, Y) ** 2, axis=0, keepdims=True)


def msep(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Mean squared error of prediction."""
    return np.mean(residreg(pred, Y) ** 2, axis=0, keepdims=True)


def rmsep(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Root mean squared error of prediction."""
    return np.sqrt(msep(pred, Y))


def bias(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Mean of `pred - Y`."""
    return -np.mean(residreg(pred, Y), axis=0, keepdims=True)


def sep(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Standard error of prediction corrected for bias."""
    return np.sqrt(np.maximum(msep(pred, Y) - bias(pred, Y) ** 2, 0))


def cor2(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Squared correlation between `pred` and `Y`."""
    Y = as_2d(Y)
    pred = as_2d(pred).reshape(Y.shape)
    pc = pred - pred.mean(axis=0)
    yc = Y - Y.mean(axis=0)
    r = np.sum(pc * yc, axis=0) / np.sqrt(np.sum(pc**2, axis=0) * np.sum(yc**2, axis=0))
    return (r**2).reshape(1, -1)


def r2(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Coefficient of determination :math:`1 - MSEP / Var(Y)`."""
    Y = as_2d(Y)
    return 1 - msep(pred, Y) / np.var(Y, axis=0, keepdims=True)


def rpd(pred: npt.ArrayLike, Y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Ratio of the standard deviation of `Y` to the RMSEP."""
    Y = as_2d(Y)
    return np.std(Y, axis=0, keepdims=True) / rmsep(pred, Y)


def err(pred: npt.ArrayLike, y: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Classification error rate."""
    return np.mean(residcla(pred, y), axis=0, keepdims=True).astype(np.float64)
