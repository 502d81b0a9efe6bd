"""
Contains the exceptions and warnings raised by localpls.

The exceptions subclass the builtin (or NumPy) exceptions a caller would otherwise
expect, so existing ``except ValueError`` or ``except LinAlgError`` clauses keep
working.
"""

import numpy.linalg as la


class DimensionError(ValueError):
    """Row or column counts of `X`, `Y`, `weights` or a parameter grid disagree."""


class RangeError(ValueError):
    """A latent-variable or lambda specification is empty or out of bounds."""


class SingularityError(la.LinAlgError):
    """A Cholesky factorization was attempted on a rank-deficient matrix."""


class InsufficientNeighborsError(ValueError):
    """Too few (effective) neighbors to fit a local model."""


class FallbackWarning(UserWarning):
    """A fast numerical path failed and a robust path was used instead."""


class LocalFitWarning(UserWarning):
    """One or more local models could not be fitted; their rows are NaN."""
