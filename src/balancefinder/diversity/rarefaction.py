"""
Rarefied alpha diversity.

Sequencing depth varies by an order of magnitude between libraries, and
richness-sensitive indices grow with depth. Rarefaction subsamples every
sample to a common number of reads before computing the index, and repeats
the draw so the estimate does not hinge on one random subsample.

Algorithm:
    For each repetition r = 1..R (independent generator per repetition):
        For each sample i: draw exactly `depth` reads without replacement
        from its counts (multivariate hypergeometric)
        Compute the diversity index of the subsampled row
    Report the arithmetic mean over repetitions per sample.

Indices:
    shannon:  H = -Σ p_j ln p_j over taxa with p_j > 0 (natural log)
    simpson:  1 - Σ p_j²  (Gini-Simpson)
    observed: number of taxa with a non-zero subsampled count

Examples:
    >>> from balancefinder.diversity import rarefied_diversity
    >>> diversity = rarefied_diversity(counts, depth=5000, repetitions=10, seed=42)
    >>> diversity.name
    'diversity'
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np
import pandas as pd

from balancefinder.core.errors import ConfigurationError, DataQualityError, RowSumTooLowError
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.utils.seeding import map_parallel, spawn_generators

logger = logging.getLogger(__name__)

__all__ = [
    'rarefy',
    'rarefied_diversity',
    'shannon',
    'simpson',
    'observed',
    'DIVERSITY_METRICS',
]

_STAGE = "rarefaction"


def shannon(counts: np.ndarray) -> np.ndarray:
    """Shannon entropy (natural log) of each row of a count matrix."""
    counts = np.atleast_2d(np.asarray(counts, dtype=float))
    totals = counts.sum(axis=1, keepdims=True)
    p = np.divide(counts, totals, out=np.zeros_like(counts), where=totals > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(p > 0, p * np.log(p), 0.0)
    return -terms.sum(axis=1)


def simpson(counts: np.ndarray) -> np.ndarray:
    """Gini-Simpson index 1 - Σ p² of each row."""
    counts = np.atleast_2d(np.asarray(counts, dtype=float))
    totals = counts.sum(axis=1, keepdims=True)
    p = np.divide(counts, totals, out=np.zeros_like(counts), where=totals > 0)
    return 1.0 - (p ** 2).sum(axis=1)


def observed(counts: np.ndarray) -> np.ndarray:
    """Number of taxa with non-zero count in each row."""
    counts = np.atleast_2d(np.asarray(counts))
    return (counts > 0).sum(axis=1).astype(float)


DIVERSITY_METRICS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "shannon": shannon,
    "simpson": simpson,
    "observed": observed,
}


def _as_counts(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if np.any(values < 0) or np.any(~np.isfinite(values)):
        raise DataQualityError(
            "Rarefaction requires finite, non-negative counts",
            stage=_STAGE, precondition="non-negative integer counts",
        )
    rounded = np.rint(values)
    if not np.allclose(values, rounded):
        raise DataQualityError(
            "Rarefaction requires integer counts (got non-integer values)",
            stage=_STAGE, precondition="non-negative integer counts",
        )
    return rounded.astype(np.int64)


def rarefy(counts: np.ndarray, depth: int, rng: np.random.Generator) -> np.ndarray:
    """
    Subsample each row to exactly `depth` reads without replacement.

    Args:
        counts: Integer counts, 1D (one sample) or 2D (samples × taxa)
        depth: Reads to keep per sample
        rng: Random generator driving the draw

    Returns:
        Integer array of the same shape whose rows each sum to depth

    Raises:
        ConfigurationError: If depth <= 0
        DataQualityError: If counts are not non-negative integers
        RowSumTooLowError: If any row has fewer than depth reads
    """
    if depth <= 0:
        raise ConfigurationError(
            f"Rarefaction depth must be positive, got {depth}",
            stage=_STAGE, precondition="depth > 0",
        )
    counts = _as_counts(counts)
    single = counts.ndim == 1
    rows = np.atleast_2d(counts)

    totals = rows.sum(axis=1)
    shallow = np.flatnonzero(totals < depth)
    if len(shallow):
        raise RowSumTooLowError(
            f"{len(shallow)} rows have fewer than {depth} reads",
            samples=[int(i) for i in shallow],
            stage=_STAGE, precondition="sample total >= depth",
        )

    subsampled = np.empty_like(rows)
    for i, row in enumerate(rows):
        subsampled[i] = rng.multivariate_hypergeometric(row, depth)

    return subsampled[0] if single else subsampled


def rarefied_diversity(
    matrix: TaxonMatrix,
    depth: int,
    repetitions: int = 10,
    seed: Optional[int] = None,
    metric: str = "shannon",
    n_jobs: int = 1,
) -> pd.Series:
    """
    Mean diversity index per sample over repeated rarefactions.

    Each repetition draws from its own generator spawned from
    SeedSequence(seed), so the result depends only on seed, never on n_jobs.

    Args:
        matrix: Count matrix (samples × taxa)
        depth: Reads kept per sample in each repetition
        repetitions: Number of independent rarefactions
        seed: Seed for the repetition generators (None = not reproducible)
        metric: One of 'shannon', 'simpson', 'observed'
        n_jobs: Worker threads running repetitions

    Returns:
        Series named 'diversity' indexed by sample id

    Raises:
        ConfigurationError: On non-positive depth or repetitions, unknown metric
        RowSumTooLowError: If any sample total is below depth; lists the sample ids
    """
    if depth <= 0:
        raise ConfigurationError(
            f"Rarefaction depth must be positive, got {depth}",
            stage=_STAGE, precondition="depth > 0",
        )
    if repetitions < 1:
        raise ConfigurationError(
            f"repetitions must be >= 1, got {repetitions}",
            stage=_STAGE, precondition="repetitions >= 1",
        )
    if metric not in DIVERSITY_METRICS:
        raise ConfigurationError(
            f"Unknown diversity metric '{metric}'. Valid: {sorted(DIVERSITY_METRICS)}",
            stage=_STAGE, precondition="known diversity metric",
        )

    counts = _as_counts(matrix.data)
    totals = counts.sum(axis=1)
    shallow = matrix.sample_ids[totals < depth]
    if len(shallow):
        raise RowSumTooLowError(
            f"{len(shallow)} samples have fewer than {depth} reads: {list(shallow[:10])}"
            f" (minimum total is {int(totals.min())})",
            samples=list(shallow),
            stage=_STAGE, precondition="sample total >= depth",
        )

    index_fn = DIVERSITY_METRICS[metric]
    generators = spawn_generators(seed, repetitions)

    logger.info(f"Rarefying {matrix.n_samples} samples to depth {depth} "
                f"({repetitions} repetitions, metric={metric}, n_jobs={n_jobs})")

    def one_repetition(rng: np.random.Generator) -> np.ndarray:
        return index_fn(rarefy(counts, depth, rng))

    per_repetition = map_parallel(one_repetition, generators, n_jobs=n_jobs)
    mean_index = np.mean(np.vstack(per_repetition), axis=0)

    result = pd.Series(mean_index, index=matrix.sample_ids, name="diversity")
    logger.info(f"Rarefied {metric} diversity: mean={result.mean():.3f}, "
                f"range=[{result.min():.3f}, {result.max():.3f}]")
    return result
