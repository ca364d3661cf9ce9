"""
Base transformation framework for immutable taxon-matrix operations.

Compositional pipelines are a chain of steps, each of which must be
reproducible and must leave its input intact:

    1. Remove empty samples/taxa and low-prevalence taxa
    2. Replace zeros so log-ratios are defined
    3. Close rows to proportions
    4. Map compositions to CLR coordinates

Each step is a Transform: a pure function from TaxonMatrix to a new
TaxonMatrix, with its parameters recorded for the methods section.

Examples:
    >>> from balancefinder.core.transform import Transform
    >>>
    >>> class Closure(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="Closure", params={})
    ...
    ...     def apply(self, matrix):
    ...         totals = matrix.data.sum(axis=1, keepdims=True)
    ...         return matrix.with_data(matrix.data / totals)
    >>>
    >>> closed = Closure().apply(counts)
    >>> # counts is unchanged
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from balancefinder.core.taxonmatrix import TaxonMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for all taxon-matrix transformations.

    Transformations take a matrix and parameters and return a new matrix.
    The input matrix is never modified.

    Attributes:
        name: Human-readable transformation name (e.g., "PrevalenceFilter")
        params: Dictionary of parameters used for this transformation
        timestamp: When this transform instance was created (for audit trail)
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        """
        Initialize transformation with name and parameters.

        Args:
            name: Human-readable transformation name
            params: Dictionary of parameters. Must be JSON-serializable for
                provenance tracking, e.g. {"min_prevalence": 0.1}
        """
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: TaxonMatrix) -> TaxonMatrix:
        """
        Execute transformation and return new matrix.

        Must never modify the input matrix.

        Args:
            matrix: Input TaxonMatrix to transform

        Returns:
            New TaxonMatrix with transformation applied (input unchanged)

        Raises:
            DataQualityError: If the data cannot satisfy the transform's
                preconditions (check validate() first)
        """
        pass

    def validate(self, matrix: TaxonMatrix) -> list[str]:
        """
        Check preconditions before applying transformation.

        Subclasses should override and call super().validate() first.

        Args:
            matrix: TaxonMatrix to validate

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if matrix.data.size == 0:
            errors.append("Cannot process empty matrix")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Provenance record for this transform (JSON-compatible)."""
        return {
            "name": self.name,
            "params": dict(self.params),
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        """
        String representation for logging and debugging.

        Returns:
            String like "PrevalenceFilter(min_prevalence=0.1, stratify_by=None)"
        """
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
