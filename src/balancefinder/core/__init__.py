"""
Core data structures for compositional taxon-table analysis.

1. TaxonMatrix: samples × taxa table with keyed sample metadata and quality flags
2. QualityFlag: Bitwise flags for per-cell provenance (zero replacement)
3. Transform: Abstract base class for immutable matrix transformations
4. errors: Exception hierarchy naming the failing stage and precondition

Design Philosophy:
    - Immutability: All operations return new instances
    - Keyed joins: metadata is matched by sample identifier, never by position
    - Composability: Small transforms chain into the analysis pipeline
"""

from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.core.quality import QualityFlag
from balancefinder.core.transform import Transform
from balancefinder.core.errors import (
    BalanceFinderError,
    ConfigurationError,
    DataQualityError,
    SampleAlignmentError,
    InsufficientPrevalenceError,
    RowSumTooLowError,
    UndefinedLogRatioError,
    SingularDistanceMatrixError,
    EmptyBalanceSetsError,
    NonConvergenceError,
)

__all__ = [
    'TaxonMatrix',
    'QualityFlag',
    'Transform',
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
