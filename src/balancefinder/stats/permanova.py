"""
PERMANOVA: permutational multivariate analysis of variance on a distance matrix.

Tests whether samples from different outcome groups are further apart than
samples from the same group, using only pairwise distances. Under Aitchison
distance this is a test of compositional differences between groups.

Pseudo-F from the Gower-centered matrix G of the distances:

    SS_T = trace(G)                      (= (1/n) Σ_{i<j} d_ij²)
    SS_A = Σ_g (1/n_g) 1_g' G 1_g        (between-group)
    SS_W = SS_T - SS_A                   (within-group)

    F   = (SS_A / (k - 1)) / (SS_W / (n - k))
    R²  = SS_A / SS_T

Null distribution:
    Labels are permuted (freely, or within strata) and F recomputed from the
    same G. Distances are never recomputed.
    The observed pseudo-F equals the test statistic of
    skbio.stats.distance.permanova for the same grouping.

Reproducibility:
    Permutations are generated in fixed-size chunks; chunk c draws from the
    c-th child of SeedSequence(seed). The null distribution is therefore the
    same for any number of worker threads.

References:
    Anderson, M. J. (2001). "A new method for non-parametric multivariate
    analysis of variance." Austral Ecology 26: 32-46.
    McArdle, B. H. & Anderson, M. J. (2001). "Fitting multivariate models to
    community data: a comment on distance-based redundancy analysis."
    Ecology 82: 290-297.

Examples:
    >>> result = permanova(distance_matrix, outcome, n_permutations=999, seed=42)
    >>> print(f"F={result.statistic:.2f}, p={result.p_value:.3f}, R²={result.r_squared:.3f}")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from skbio import DistanceMatrix

from balancefinder.core.errors import ConfigurationError, DataQualityError
from balancefinder.io.metadata import align_series
from balancefinder.stats.label_permutation import (
    generate_free_permutation,
    generate_stratified_permutation,
    permutation_pvalue,
)
from balancefinder.utils.seeding import chunk_sizes, map_parallel, spawn_generators
from balancefinder.utils.statistics import gower_center

logger = logging.getLogger(__name__)

__all__ = ['PermanovaResult', 'permanova', 'pseudo_f']

_STAGE = "permanova"

# Permutations per seeded chunk; fixed so results do not depend on n_jobs
PERMUTATION_CHUNK_SIZE = 100


@dataclass
class PermanovaResult:
    """Result of a PERMANOVA test.

    Attributes:
        statistic: Observed pseudo-F.
        p_value: Permutation p-value, (1 + #{F_perm >= F}) / (N + 1).
        r_squared: Fraction of total dispersion explained by the grouping.
        n_permutations: Number of label permutations.
        n_samples: Samples in the test.
        group_sizes: Samples per group.
        null_distribution: Pseudo-F under each permutation.
        stratified: Whether permutations were restricted to strata.
    """

    statistic: float
    p_value: float
    r_squared: float
    n_permutations: int
    n_samples: int
    group_sizes: dict[str, int]
    null_distribution: NDArray[np.float64] = field(repr=False)
    stratified: bool = False
    method: str = "PERMANOVA"
    test_statistic_name: str = "pseudo-F"

    @property
    def n_groups(self) -> int:
        return len(self.group_sizes)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        null = self.null_distribution[np.isfinite(self.null_distribution)]
        quantiles = {}
        if len(null):
            quantiles = {
                "q05": float(np.percentile(null, 5)),
                "q50": float(np.percentile(null, 50)),
                "q95": float(np.percentile(null, 95)),
            }
        return {
            "method": self.method,
            "test_statistic_name": self.test_statistic_name,
            "statistic": float(self.statistic),
            "p_value": float(self.p_value),
            "r_squared": float(self.r_squared),
            "n_permutations": self.n_permutations,
            "n_samples": self.n_samples,
            "n_groups": self.n_groups,
            "group_sizes": dict(self.group_sizes),
            "stratified": self.stratified,
            "null_quantiles": quantiles,
        }


def _between_group_ss(centered: NDArray, codes: NDArray, inv_sizes: NDArray) -> float:
    """SS_A = Σ_g (1/n_g) 1_g' G 1_g for integer group codes."""
    indicator = np.zeros((len(codes), len(inv_sizes)))
    indicator[np.arange(len(codes)), codes] = 1.0
    per_group = (indicator * (centered @ indicator)).sum(axis=0)
    return float(per_group @ inv_sizes)


def pseudo_f(centered: NDArray, codes: NDArray, n_groups: int) -> tuple[float, float]:
    """
    Pseudo-F and R² for one labeling.

    Args:
        centered: Gower-centered distance matrix G (n × n)
        codes: Integer group codes 0..k-1 (n,)
        n_groups: k

    Returns:
        (F, R²). F is +inf when every within-group distance is zero.
    """
    n = len(codes)
    sizes = np.bincount(codes, minlength=n_groups).astype(float)
    ss_total = float(np.trace(centered))
    ss_between = _between_group_ss(centered, codes, 1.0 / sizes)
    ss_within = ss_total - ss_between

    # Round-off can leave a tiny negative SS_W for perfectly separated groups
    if ss_within <= 1e-12 * ss_total:
        return np.inf, 1.0

    f_stat = (ss_between / (n_groups - 1)) / (ss_within / (n - n_groups))
    return f_stat, ss_between / ss_total


def permanova(
    distance_matrix: DistanceMatrix,
    grouping: pd.Series,
    n_permutations: int = 999,
    seed: Optional[int] = None,
    strata: Optional[pd.Series] = None,
    n_jobs: int = 1,
) -> PermanovaResult:
    """
    PERMANOVA test of a categorical grouping on a distance matrix.

    Args:
        distance_matrix: skbio DistanceMatrix over the samples
        grouping: Group label per sample, keyed by sample id. Extra ids are
            ignored; every distance-matrix id must be present.
        n_permutations: Number of label permutations (>= 1)
        seed: Seed for the permutation generators
        strata: Optional stratum per sample (keyed by sample id); labels are
            then permuted within strata only
        n_jobs: Worker threads running permutation chunks

    Returns:
        PermanovaResult

    Raises:
        ConfigurationError: If n_permutations < 1
        SampleAlignmentError: If a sample has no group (or stratum)
        DataQualityError: If there are fewer than 2 groups, n <= k, or all
            distances are zero
    """
    if n_permutations < 1:
        raise ConfigurationError(
            f"n_permutations must be >= 1, got {n_permutations}",
            stage=_STAGE, precondition="n_permutations >= 1",
        )

    labels = align_series(grouping, distance_matrix.ids, stage=_STAGE)
    codes, levels = pd.factorize(labels.astype(str), sort=True)
    n = len(codes)
    k = len(levels)

    if k < 2:
        raise DataQualityError(
            f"PERMANOVA needs at least 2 groups, got {k}",
            stage=_STAGE, precondition="at least 2 groups",
        )
    if n <= k:
        raise DataQualityError(
            f"PERMANOVA needs more samples than groups (n={n}, k={k})",
            stage=_STAGE, precondition="n > k",
        )

    stratum_codes = None
    if strata is not None:
        aligned_strata = align_series(strata, distance_matrix.ids, stage=_STAGE)
        stratum_codes, _ = pd.factorize(aligned_strata.astype(str), sort=True)

    centered = gower_center(distance_matrix.data)
    if float(np.trace(centered)) <= 0:
        raise DataQualityError(
            "All pairwise distances are zero; there is no dispersion to partition",
            stage=_STAGE, precondition="positive total dispersion",
        )

    observed_f, r_squared = pseudo_f(centered, codes, k)

    sizes = chunk_sizes(n_permutations, PERMUTATION_CHUNK_SIZE)
    generators = spawn_generators(seed, len(sizes))

    logger.info(f"PERMANOVA: {n} samples, {k} groups, {n_permutations} permutations "
                f"({'stratified' if stratum_codes is not None else 'free'}, n_jobs={n_jobs})")

    def run_chunk(task: tuple[int, np.random.Generator]) -> NDArray[np.float64]:
        size, rng = task
        out = np.empty(size)
        for i in range(size):
            if stratum_codes is None:
                permuted = generate_free_permutation(codes, rng)
            else:
                permuted = generate_stratified_permutation(codes, stratum_codes, rng)
            out[i] = pseudo_f(centered, permuted, k)[0]
        return out

    chunks = map_parallel(run_chunk, list(zip(sizes, generators)), n_jobs=n_jobs)
    null_distribution = np.concatenate(chunks)

    p_value = permutation_pvalue(observed_f, null_distribution)

    group_sizes = {str(level): int(count) for level, count in
                   zip(levels, np.bincount(codes, minlength=k))}

    logger.info(f"PERMANOVA result: pseudo-F={observed_f:.3f}, R²={r_squared:.3f}, p={p_value:.4f}")

    return PermanovaResult(
        statistic=float(observed_f),
        p_value=float(p_value),
        r_squared=float(r_squared),
        n_permutations=n_permutations,
        n_samples=n,
        group_sizes=group_sizes,
        null_distribution=null_distribution,
        stratified=stratum_codes is not None,
    )
