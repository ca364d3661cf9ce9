"""
Exception hierarchy for the compositional analysis pipeline.

Every error names the pipeline stage that raised it and the precondition that
was violated, so callers can tell a data-quality problem (e.g. rarefaction
depth above a sample's total) from a configuration problem (e.g. a prevalence
threshold outside (0, 1)).

Hierarchy:
    BalanceFinderError
    ├── ConfigurationError (also a ValueError)
    ├── DataQualityError
    │   ├── SampleAlignmentError
    │   ├── InsufficientPrevalenceError
    │   ├── RowSumTooLowError
    │   ├── UndefinedLogRatioError
    │   └── SingularDistanceMatrixError
    ├── EmptyBalanceSetsError
    └── NonConvergenceError

Examples:
    >>> try:
    ...     rarefied_diversity(matrix, depth=50_000, repetitions=10, seed=1)
    ... except DataQualityError as e:
    ...     print(e.stage, e.precondition)
    rarefaction sample total >= depth
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    'BalanceFinderError',
    'ConfigurationError',
    'DataQualityError',
    'SampleAlignmentError',
    'InsufficientPrevalenceError',
    'RowSumTooLowError',
    'UndefinedLogRatioError',
    'SingularDistanceMatrixError',
    'EmptyBalanceSetsError',
    'NonConvergenceError',
]


class BalanceFinderError(Exception):
    """
    Base class for all pipeline errors.

    Attributes:
        stage: Pipeline stage that raised (e.g. "taxon_filter", "ordination")
        precondition: Short statement of the violated precondition
    """

    def __init__(self, message: str, stage: str = "", precondition: str = ""):
        super().__init__(message)
        self.stage = stage
        self.precondition = precondition

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            return f"[{self.stage}] {message}"
        return message


class ConfigurationError(BalanceFinderError, ValueError):
    """Raised when analysis parameters are invalid, before any computation runs."""
    pass


class DataQualityError(BalanceFinderError):
    """Raised when the input data cannot satisfy a stage's preconditions."""
    pass


class SampleAlignmentError(DataQualityError):
    """Raised when count and metadata tables disagree on sample identifiers."""
    pass


class InsufficientPrevalenceError(DataQualityError):
    """Raised when prevalence filtering leaves no taxa."""
    pass


class RowSumTooLowError(DataQualityError):
    """Raised when a sample's total count is below the requested rarefaction depth."""

    def __init__(self, message: str, samples: Optional[list] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.samples = list(samples or [])


class UndefinedLogRatioError(DataQualityError):
    """Raised when a zero (or negative) value reaches a log-ratio computation."""
    pass


class SingularDistanceMatrixError(DataQualityError):
    """Raised when principal coordinates finds no positive eigenvalue."""
    pass


class EmptyBalanceSetsError(BalanceFinderError):
    """Raised when no opening taxon pair improves over a null association."""
    pass


class NonConvergenceError(BalanceFinderError):
    """
    Raised when balance selection exhausts its budget with improving moves left.

    This is a soft condition: the selector returns the partial result unless
    asked to be strict, in which case the partial result travels on the error.

    Attributes:
        result: The partial SelectionResult at the time the budget ran out
    """

    def __init__(self, message: str, result: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.result = result
