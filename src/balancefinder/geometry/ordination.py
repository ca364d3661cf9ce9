"""
Principal coordinates analysis (classical multidimensional scaling).

Algorithm:
    1. A = -0.5 · D∘D, Gower-centered: G = (I - 11'/n) A (I - 11'/n)
    2. Symmetric eigendecomposition G = U Λ U'
    3. Sort eigenvalues descending; eigenvalues within a relative tolerance
       of zero are set to zero
    4. Keep positive axes; coordinates = U_k · sqrt(λ_k)
    5. Percent explained = 100 · λ_k / Σ positive λ

Aitchison distances are Euclidean, so G is positive semi-definite up to
round-off. Non-Euclidean inputs produce negative eigenvalues; those axes
carry no real coordinates and are discarded.

Eigenvector signs are arbitrary. Each axis is oriented so its
largest-magnitude loading is positive, which makes coordinates reproducible
across platforms and LAPACK builds.

Coordinates and eigenvalues of the positive axes agree with
skbio.stats.ordination.pcoa up to axis sign. Percent explained differs when
there are negative eigenvalues: skbio divides by the sum of all eigenvalues.

References:
    Gower, J. C. (1966). "Some distance properties of latent root and vector
    methods used in multivariate analysis." Biometrika 53: 325-338.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy import linalg
from skbio import DistanceMatrix

from balancefinder.core.errors import ConfigurationError, SingularDistanceMatrixError
from balancefinder.utils.statistics import gower_center

logger = logging.getLogger(__name__)

__all__ = ['Ordination', 'pcoa']

# Eigenvalues with |λ| <= _EIGEN_RTOL · max|λ| are treated as zero
_EIGEN_RTOL = 1e-10


@dataclass
class Ordination:
    """
    Principal coordinates of a distance matrix.

    Attributes:
        coordinates: Samples × axes DataFrame (columns PC1..PCk)
        eigenvalues: Positive eigenvalues, descending (length k)
        proportion_explained: Percent of total positive variance per axis
    """
    coordinates: pd.DataFrame
    eigenvalues: np.ndarray
    proportion_explained: pd.Series

    @property
    def n_axes(self) -> int:
        return len(self.eigenvalues)

    def to_dict(self) -> dict:
        return {
            "n_axes": self.n_axes,
            "eigenvalues": [float(v) for v in self.eigenvalues],
            "percent_explained": {str(k): float(v) for k, v in self.proportion_explained.items()},
        }


def _orient(vectors: np.ndarray) -> np.ndarray:
    """Flip each column so its largest-magnitude entry is positive."""
    if vectors.size == 0:
        return vectors
    pivots = np.argmax(np.abs(vectors), axis=0)
    signs = np.sign(vectors[pivots, np.arange(vectors.shape[1])])
    signs[signs == 0] = 1.0
    return vectors * signs


def pcoa(distance_matrix: DistanceMatrix, n_axes: Optional[int] = None) -> Ordination:
    """
    Principal coordinates analysis of a distance matrix.

    Args:
        distance_matrix: skbio DistanceMatrix over the samples
        n_axes: Keep at most this many axes (default: all positive axes)

    Returns:
        Ordination with coordinates, positive eigenvalues and percent explained

    Raises:
        ConfigurationError: If n_axes < 1
        SingularDistanceMatrixError: If no eigenvalue is positive (e.g. all
            samples identical, or a single sample)
    """
    if n_axes is not None and n_axes < 1:
        raise ConfigurationError(
            f"n_axes must be >= 1, got {n_axes}",
            stage="ordination", precondition="n_axes >= 1",
        )

    centered = gower_center(distance_matrix.data)
    eigenvalues, eigenvectors = linalg.eigh(centered)

    order = np.argsort(eigenvalues)[::-1]
    eigenvalues = eigenvalues[order]
    eigenvectors = eigenvectors[:, order]

    scale = np.max(np.abs(eigenvalues)) if eigenvalues.size else 0.0
    eigenvalues = np.where(np.abs(eigenvalues) <= _EIGEN_RTOL * scale, 0.0, eigenvalues)

    positive = eigenvalues > 0
    n_negative = int((eigenvalues < 0).sum())
    if not positive.any():
        raise SingularDistanceMatrixError(
            f"No positive eigenvalue among {len(eigenvalues)}; samples are indistinguishable",
            stage="ordination", precondition="at least one positive eigenvalue",
        )
    if n_negative:
        logger.info(f"Discarding {n_negative} negative eigenvalues (non-Euclidean distances)")

    eigenvalues = eigenvalues[positive]
    eigenvectors = _orient(eigenvectors[:, positive])

    percent = eigenvalues / eigenvalues.sum() * 100.0

    if n_axes is not None:
        eigenvalues = eigenvalues[:n_axes]
        eigenvectors = eigenvectors[:, :n_axes]
        percent = percent[:n_axes]

    axis_names = [f"PC{i + 1}" for i in range(len(eigenvalues))]
    coordinates = pd.DataFrame(
        eigenvectors * np.sqrt(eigenvalues),
        index=pd.Index(distance_matrix.ids),
        columns=axis_names,
    )

    logger.info(f"PCoA: {len(eigenvalues)} positive axes; "
                f"PC1 explains {percent[0]:.1f}%")

    return Ordination(
        coordinates=coordinates,
        eigenvalues=eigenvalues,
        proportion_explained=pd.Series(percent, index=axis_names, name="percent_explained"),
    )
