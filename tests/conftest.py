"""
Pytest configuration and shared fixtures.

This module provides synthetic count-table generators and shared fixtures
for all test suites.
"""

import numpy as np
import pandas as pd
import pytest

from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.quality.imputation import MultiplicativeReplacement


UP_TAXA = ("taxon_00", "taxon_01")
DOWN_TAXA = ("taxon_02", "taxon_03")


def generate_synthetic_counts(
    n_samples: int = 40,
    n_taxa: int = 12,
    effect: float = 1.5,
    noise: float = 0.3,
    depth_range: tuple[int, int] = (2000, 6000),
    rare_taxon: bool = True,
    seed: int = 0,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate a samples × taxa count table with a planted log-ratio signal.

    Args:
        n_samples: Number of samples (half 'control', half 'case')
        n_taxa: Number of taxa
        effect: Log-abundance shift of the signal taxa in 'case' samples.
            UP_TAXA go up by effect, DOWN_TAXA go down by effect.
        noise: Per-sample, per-taxon log-abundance noise (sd)
        depth_range: Library sizes are drawn uniformly from this range
        rare_taxon: If True, the last taxon is observed in only two samples
        seed: Random seed for reproducibility

    Returns:
        (counts, metadata): counts indexed by sample id; metadata with
        'diagnosis', 'age' and 'batch' columns, rows in shuffled order

    Design:
        - Baseline log-abundances differ per taxon (uneven community)
        - Counts are multinomial draws from the softmax composition
        - Metadata is shuffled so tests exercise keyed joins
    """
    rng = np.random.default_rng(seed)
    sample_ids = [f"S{i:03d}" for i in range(n_samples)]
    taxon_ids = [f"taxon_{j:02d}" for j in range(n_taxa)]

    diagnosis = np.array(["control"] * (n_samples // 2) + ["case"] * (n_samples - n_samples // 2))
    is_case = diagnosis == "case"

    baseline = rng.normal(0.0, 0.7, size=n_taxa)
    log_abundance = baseline[None, :] + rng.normal(0.0, noise, size=(n_samples, n_taxa))
    log_abundance[np.ix_(is_case, [0, 1])] += effect
    log_abundance[np.ix_(is_case, [2, 3])] -= effect

    proportions = np.exp(log_abundance)
    proportions /= proportions.sum(axis=1, keepdims=True)

    depths = rng.integers(depth_range[0], depth_range[1], size=n_samples)
    counts = np.vstack([rng.multinomial(d, p) for d, p in zip(depths, proportions)])

    if rare_taxon:
        counts[:, -1] = 0
        counts[0, -1] = 3
        counts[1, -1] = 1

    counts_df = pd.DataFrame(counts, index=sample_ids, columns=taxon_ids)
    metadata = pd.DataFrame(
        {
            "diagnosis": diagnosis,
            "age": rng.normal(50.0, 10.0, size=n_samples).round(1),
            "batch": np.where(np.arange(n_samples) % 2 == 0, "b1", "b2"),
        },
        index=pd.Index(sample_ids, name="sample_id"),
    )
    metadata = metadata.iloc[rng.permutation(n_samples)]
    return counts_df, metadata


@pytest.fixture
def synthetic_tables():
    """Counts and shuffled metadata with a planted diagnosis signal."""
    return generate_synthetic_counts()


@pytest.fixture
def count_matrix(synthetic_tables):
    """Synthetic counts as a TaxonMatrix with aligned metadata."""
    counts, metadata = synthetic_tables
    return TaxonMatrix.from_frames(counts, metadata)


@pytest.fixture
def composition(count_matrix):
    """Strictly positive composition (rare taxon removed, zeros replaced)."""
    keep = count_matrix.data.astype(bool).mean(axis=0) >= 0.5
    return MultiplicativeReplacement().apply(count_matrix.select_taxa(keep))


@pytest.fixture
def outcome(composition):
    """Diagnosis per sample, keyed by sample id."""
    return composition.sample_metadata["diagnosis"].astype(str)
