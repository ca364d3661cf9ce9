"""
End-to-end compositional analysis of one count table.

Stages:
    1. Keyed join of counts and metadata
    2. Drop empty samples/taxa; prevalence filter
    3. Multiplicative zero replacement -> strictly positive composition
    4. Rarefied alpha diversity on the raw counts of the retained samples
    5. Aitchison distance, principal coordinates
    6. PERMANOVA of the outcome on the Aitchison distances
    7. Greedy balance selection and association model
    8. Per-taxon CLR mean differences and their balance approximation

Examples:
    >>> from balancefinder import AnalysisConfig, run_analysis
    >>> config = AnalysisConfig(outcome="diagnosis", seed=42)
    >>> result = run_analysis(counts, metadata, config)
    >>> result.permanova.p_value, str(result.selection.balance)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from balancefinder.balance.evaluation import approximate_mean_difference, clr_mean_difference
from balancefinder.balance.selection import BalanceSelector, SelectionResult
from balancefinder.config import AnalysisConfig
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.diversity.rarefaction import rarefied_diversity
from balancefinder.geometry.aitchison import aitchison_distance
from balancefinder.geometry.ordination import Ordination, pcoa
from balancefinder.io.metadata import extract_covariates, extract_outcome
from balancefinder.quality.filtering import PrevalenceFilter, drop_empty
from balancefinder.quality.imputation import MultiplicativeReplacement
from balancefinder.stats.permanova import PermanovaResult, permanova

logger = logging.getLogger(__name__)

__all__ = ['AnalysisResult', 'run_analysis']


@dataclass
class AnalysisResult:
    """
    All outputs of one analysis run.

    Attributes:
        samples: Per-sample table: metadata, coverage, diversity, balance and
            ordination coordinates
        taxa: Per-taxon table: sbp, balance contrast, CLR mean difference and
            its balance approximation per non-reference level
        ordination: Principal coordinates of the Aitchison distances
        permanova: PERMANOVA of the outcome
        selection: Greedy balance selection result
        depth: Rarefaction depth used
        config: Configuration of the run
    """
    samples: pd.DataFrame = field(repr=False)
    taxa: pd.DataFrame = field(repr=False)
    ordination: Ordination
    permanova: PermanovaResult
    selection: SelectionResult
    depth: int
    config: AnalysisConfig
    n_samples_input: int = 0
    n_taxa_input: int = 0

    @property
    def percent_explained(self) -> pd.Series:
        return self.ordination.proportion_explained

    def to_dict(self) -> dict:
        """Summary of the run (tables excluded)."""
        return {
            "n_samples_input": self.n_samples_input,
            "n_taxa_input": self.n_taxa_input,
            "n_samples": len(self.samples),
            "n_taxa": len(self.taxa),
            "rarefaction_depth": self.depth,
            "diversity_metric": self.config.rarefaction.metric,
            "ordination": self.ordination.to_dict(),
            "permanova": self.permanova.to_dict(),
            "selection": self.selection.to_dict(),
            "config": self.config.to_dict(),
        }


def run_analysis(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    config: AnalysisConfig,
    n_axes: Optional[int] = None,
) -> AnalysisResult:
    """
    Run the full analysis on a samples × taxa count table.

    Args:
        counts: Samples × taxa counts, index = sample ids
        metadata: Sample metadata, index = sample ids (any order)
        config: Analysis configuration; validated before anything runs
        n_axes: Ordination axes reported in the sample table (default: all)

    Returns:
        AnalysisResult

    Raises:
        ConfigurationError: If the configuration is invalid
        DataQualityError: If the data cannot satisfy a stage's preconditions
        EmptyBalanceSetsError: If no balance is associated with the outcome
    """
    config.check()

    matrix = TaxonMatrix.from_frames(counts, metadata, required_columns=config.metadata_columns())
    logger.info(f"Loaded {matrix.n_samples} samples × {matrix.n_taxa} taxa")

    # --- Filtering and zero replacement ---
    nonempty = drop_empty(matrix)
    filtered = PrevalenceFilter(
        min_prevalence=config.filter.min_prevalence,
        stratify_by=config.filter.stratify_by or None,
        min_group_size=config.filter.min_group_size,
    ).apply(nonempty)
    composition = MultiplicativeReplacement(fraction=config.zero_replacement.fraction).apply(filtered)

    # --- Alpha diversity on raw counts of the retained samples ---
    raw = nonempty.select_samples(pd.Series(True, index=composition.sample_ids))
    coverage = raw.row_totals
    depth = config.rarefaction.depth
    if depth is None:
        depth = int(coverage.min())
        logger.info(f"No rarefaction depth configured; using smallest library size {depth}")
    diversity = rarefied_diversity(
        raw,
        depth=depth,
        repetitions=config.rarefaction.repetitions,
        seed=config.seed,
        metric=config.rarefaction.metric,
        n_jobs=config.n_jobs,
    )

    # --- Beta diversity ---
    distances = aitchison_distance(composition)
    ordination = pcoa(distances, n_axes=n_axes)

    sample_metadata = composition.sample_metadata
    outcome = extract_outcome(sample_metadata, config.outcome)
    covariates = extract_covariates(sample_metadata, config.covariates)
    strata = None
    if config.permutation.strata:
        strata = sample_metadata[config.permutation.strata].astype(str)

    permanova_result = permanova(
        distances,
        outcome,
        n_permutations=config.permutation.n_permutations,
        seed=config.seed,
        strata=strata,
        n_jobs=config.n_jobs,
    )

    # --- Balance selection and evaluation ---
    selector = BalanceSelector(
        scoring=config.selection.scoring,
        min_improvement=config.selection.min_improvement,
        max_taxa=config.selection.max_taxa,
        max_iterations=config.selection.max_iterations,
        time_budget=config.selection.time_budget,
        reference=config.selection.reference,
    )
    selection = selector.select(composition, outcome, covariates, strict=config.selection.strict)

    clr_difference = clr_mean_difference(selection.model)
    approx_difference = approximate_mean_difference(selection.model)

    samples = sample_metadata.copy()
    samples["coverage"] = coverage
    samples["diversity"] = diversity
    samples["balance"] = selection.values
    samples = samples.join(ordination.coordinates)

    taxa = pd.DataFrame({
        "sbp": selection.balance.sbp,
        "contrast": selection.balance.contrast,
    })
    for level in clr_difference.columns:
        taxa[f"clr_difference[{level}]"] = clr_difference[level]
        taxa[f"approximate_difference[{level}]"] = approx_difference[level]
    taxa.index.name = "taxon"

    logger.info(f"Analysis complete: {len(samples)} samples, {len(taxa)} taxa, "
                f"balance {selection.balance}")

    return AnalysisResult(
        samples=samples,
        taxa=taxa,
        ordination=ordination,
        permanova=permanova_result,
        selection=selection,
        depth=depth,
        config=config,
        n_samples_input=matrix.n_samples,
        n_taxa_input=matrix.n_taxa,
    )
