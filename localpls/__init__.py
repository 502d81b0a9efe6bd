__version__ = "1.0.0"
__all__ = [
    "clusterwise",
    "discrimination",
    "ensemble",
    "exceptions",
    "fast_cross_validation",
    "gridcv",
    "importance",
    "kernel_pls",
    "local",
    "local_models",
    "multiblock",
    "neighbors",
    "pca",
    "pls",
    "ridge",
    "scores",
    "segments",
    "weighted_linalg",
]

from . import (
    clusterwise,
    discrimination,
    ensemble,
    exceptions,
    fast_cross_validation,
    gridcv,
    importance,
    kernel_pls,
    local,
    local_models,
    multiblock,
    neighbors,
    pca,
    pls,
    ridge,
    scores,
    segments,
    weighted_linalg,
)
