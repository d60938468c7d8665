class CoresetError(Exception):
    """Base class for errors raised while building a coreset."""


class InvalidMetricError(CoresetError, ValueError):
    """The metric returned a negative or NaN distance."""


class InfeasibleContractionError(CoresetError, ValueError):
    """The requested number of facilities after contraction is not positive."""


class WeightInvariantViolation(CoresetError, AssertionError):
    """The facility weights no longer sum to the ingested weight.

    Seeing this error means there is a bug in the library, not in the caller.
    """
