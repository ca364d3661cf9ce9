"""
Shared numerical utilities for distance-based analysis.

Functions:
    gower_center: Double-center -0.5 * D^2 (shared by PCoA and PERMANOVA)
    first_max_index: Deterministic argmax with a relative tie tolerance
"""

from __future__ import annotations

import numpy as np


__all__ = [
    'gower_center',
    'first_max_index',
]


def gower_center(distances: np.ndarray) -> np.ndarray:
    """
    Gower-centered matrix of a distance matrix.

    G = (I - 11'/n) A (I - 11'/n) with A = -0.5 * D∘D. For a Euclidean
    distance matrix G is the Gram matrix of the centered configuration, so
    trace(G) equals the total sum of squares (1/n) Σ_{i<j} d_ij².

    Args:
        distances: Square symmetric distance matrix (n × n)

    Returns:
        Centered matrix (n × n), symmetric, rows and columns summing to 0

    References:
        Gower, J. C. (1966). "Some distance properties of latent root and
        vector methods used in multivariate analysis." Biometrika 53: 325-338.
    """
    distances = np.asarray(distances, dtype=float)
    a = -0.5 * distances ** 2
    row_means = a.mean(axis=1, keepdims=True)
    col_means = a.mean(axis=0, keepdims=True)
    grand_mean = a.mean()
    centered = a - row_means - col_means + grand_mean
    # Symmetrize to remove floating round-off
    return (centered + centered.T) / 2.0


def first_max_index(scores: np.ndarray, rtol: float = 1e-12) -> int:
    """
    Index of the first score within rtol of the maximum.

    Candidates are enumerated in a fixed order, so near-ties caused by
    floating round-off resolve to the earliest candidate.

    Args:
        scores: 1D array of scores; NaN entries never win, +inf beats any finite score
        rtol: Relative tolerance defining a tie

    Returns:
        Index of the winning candidate, or -1 if every score is NaN

    Examples:
        >>> first_max_index(np.array([1.0, 3.0, 3.0 + 1e-15, 2.0]))
        1
    """
    scores = np.asarray(scores, dtype=float)
    valid = ~np.isnan(scores)
    if not valid.any():
        return -1
    best = np.max(scores[valid])
    if np.isinf(best):
        winners = np.flatnonzero(scores == best)
    else:
        tolerance = rtol * max(1.0, abs(best))
        winners = np.flatnonzero(valid & (scores >= best - tolerance))
    return int(winners[0])
