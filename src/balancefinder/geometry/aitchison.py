"""
Aitchison geometry: centered log-ratio transform and Aitchison distance.

A composition carries relative information only, so distances between
samples must not change when a sample's total is rescaled. The CLR transform
maps a strictly positive composition into real coordinates where Euclidean
distance is the Aitchison distance:

    clr(x)_j = ln x_j - (1/D) Σ_k ln x_k

    d_A(x, y) = || clr(x) - clr(y) ||_2

CLR rows sum to zero, and clr(c·x) = clr(x) for any c > 0.

Examples:
    >>> import numpy as np
    >>> clr(np.array([[0.5, 0.5]]))
    array([[0., 0.]])
    >>> dm = aitchison_distance(composition)
    >>> dm.data.shape == (composition.n_samples, composition.n_samples)
    True
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from skbio import DistanceMatrix
from skbio.stats.distance import DissimilarityMatrixError

from balancefinder.core.errors import DataQualityError, UndefinedLogRatioError
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'check_positive',
    'closure',
    'clr',
    'CLRTransform',
    'DistanceMatrix',
    'as_distance_matrix',
    'aitchison_distance',
]

# Tolerances for validating distance matrices
_SYMMETRY_ATOL = 1e-8
_DIAGONAL_ATOL = 1e-10


def check_positive(values: np.ndarray, stage: str = "log_ratio") -> np.ndarray:
    """
    Return values as a float array, raising if any entry is not strictly positive.

    Raises:
        UndefinedLogRatioError: On zero, negative or non-finite entries
    """
    values = np.asarray(values, dtype=float)
    bad = ~(np.isfinite(values) & (values > 0))
    if bad.any():
        raise UndefinedLogRatioError(
            f"{int(bad.sum())} entries are zero, negative or non-finite; "
            "replace zeros before taking log-ratios",
            stage=stage, precondition="strictly positive composition",
        )
    return values


def closure(values: np.ndarray) -> np.ndarray:
    """Rescale each row to sum to 1."""
    values = np.atleast_2d(np.asarray(values, dtype=float))
    return values / values.sum(axis=1, keepdims=True)


def clr(values: np.ndarray) -> np.ndarray:
    """
    Centered log-ratio transform of each row.

    Args:
        values: Strictly positive matrix (samples × taxa) or a single row

    Returns:
        Array of the same shape; every row sums to 0

    Raises:
        UndefinedLogRatioError: If any entry is not strictly positive
    """
    values = check_positive(values, stage="clr")
    log_values = np.log(values)
    return log_values - log_values.mean(axis=-1, keepdims=True)


class CLRTransform(Transform):
    """
    Centered log-ratio transform of a strictly positive composition.

    Quality flags are carried unchanged, so zero-replaced cells stay
    identifiable in CLR space.
    """

    def __init__(self):
        super().__init__(name="CLRTransform", params={})

    def apply(self, matrix: TaxonMatrix) -> TaxonMatrix:
        transformed = clr(matrix.data)
        logger.info(f"CLR transform: {matrix.n_samples} samples × {matrix.n_taxa} taxa")
        return matrix.with_data(transformed)

    def validate(self, matrix: TaxonMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data <= 0):
            errors.append("Matrix contains zero or negative values")
        return errors


def as_distance_matrix(data: np.ndarray, ids) -> DistanceMatrix:
    """
    Validated scikit-bio DistanceMatrix from a square array.

    skbio checks symmetry and the zero diagonal exactly, so entries within
    round-off of either are snapped before construction.

    Args:
        data: n × n pairwise distances
        ids: Sample identifiers labelling rows and columns

    Returns:
        skbio DistanceMatrix with string ids

    Raises:
        DataQualityError: If data is not square, not finite, not symmetric,
            has a non-zero diagonal or negative entries, or ids do not label
            the rows one-to-one
    """
    data = np.asarray(data, dtype=float)
    ids = [str(i) for i in ids]
    if data.ndim != 2 or data.shape[0] != data.shape[1]:
        raise DataQualityError(
            f"Distance matrix must be square, got shape {data.shape}",
            stage="distance", precondition="square matrix",
        )
    if not np.all(np.isfinite(data)):
        raise DataQualityError(
            "Distance matrix contains non-finite values",
            stage="distance", precondition="finite distances",
        )
    if not np.allclose(data, data.T, atol=_SYMMETRY_ATOL):
        raise DataQualityError(
            "Distance matrix is not symmetric",
            stage="distance", precondition="symmetric distances",
        )
    if np.any(np.abs(np.diag(data)) > _DIAGONAL_ATOL):
        raise DataQualityError(
            "Distance matrix has non-zero diagonal",
            stage="distance", precondition="zero self-distance",
        )
    if np.any(data < 0):
        raise DataQualityError(
            "Distance matrix has negative entries",
            stage="distance", precondition="non-negative distances",
        )

    data = (data + data.T) / 2.0
    np.fill_diagonal(data, 0.0)
    try:
        return DistanceMatrix(data, ids=ids)
    except DissimilarityMatrixError as e:
        raise DataQualityError(
            f"Invalid distance matrix ids: {e}",
            stage="distance", precondition="one unique id per row",
        ) from e


def aitchison_distance(matrix: TaxonMatrix | np.ndarray, ids: pd.Index | None = None) -> DistanceMatrix:
    """
    Pairwise Aitchison distances between samples.

    Args:
        matrix: Strictly positive composition (TaxonMatrix or samples × taxa array)
        ids: Sample identifiers when matrix is an array (default 0..n-1)

    Returns:
        skbio DistanceMatrix over the samples

    Raises:
        UndefinedLogRatioError: If any entry is not strictly positive
    """
    if isinstance(matrix, TaxonMatrix):
        values = matrix.data
        ids = matrix.sample_ids
    else:
        values = np.atleast_2d(np.asarray(matrix, dtype=float))
        ids = pd.RangeIndex(values.shape[0]) if ids is None else pd.Index(ids)

    coordinates = clr(values)
    distances = squareform(pdist(coordinates, metric="euclidean"))

    result = as_distance_matrix(distances, ids)
    if result.shape[0] > 1:
        logger.info(f"Aitchison distances for {result.shape[0]} samples: "
                    f"median={np.median(result.condensed_form()):.3f}")
    return result
