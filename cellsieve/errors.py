"""Exception types raised by cellsieve.

All errors are raised synchronously by the call that detects them. A failed
step never returns a partial artifact.
"""


class CellSieveError(Exception):
    """Base class for all cellsieve errors."""


class EmptyMatrixError(CellSieveError):
    """Input matrix or embedding has zero rows or zero columns."""


class EmptyResultError(CellSieveError):
    """A filter step would remove every cell or every gene."""


class InvalidConfigurationError(CellSieveError):
    """A configuration value is out of range, unknown, or missing.

    Examples are negative thresholds, ``k_max < 1``, an unknown edge-weight
    scheme or clustering method, or a missing seed when reproducibility is
    required.
    """


class NonConvergenceError(CellSieveError):
    """A clustering routine failed to produce a stable partition."""
