"""
Prevalence filtering for taxon count tables.

Rare taxa are mostly zeros. Every zero must be replaced before a log-ratio is
taken, so a taxon seen in two of two hundred samples contributes almost
nothing but imputed values. Prevalence filtering removes such taxa up front.

Engineering Design:
    - Pure functions (Transform): input matrix -> output matrix
    - Empty samples and taxa are dropped before prevalence is computed
    - Stratified filtering: a taxon specific to one outcome group is kept if
      it is prevalent within that group
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import numpy as np
import pandas as pd

from balancefinder.core.errors import (
    ConfigurationError,
    DataQualityError,
    InsufficientPrevalenceError,
)
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['PrevalenceFilter', 'PrevalenceFilterResult', 'drop_empty']

# Prevalence fractions are compared with this slack so that e.g. 2/4 >= 0.5
# holds despite floating representation of the threshold.
_PREVALENCE_TOL = 1e-12


@dataclass
class PrevalenceFilterResult:
    """Results from prevalence filtering with full provenance."""
    passed_taxa: Set[str]
    failed_taxa: Set[str]
    stratum_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    # stratum_stats format: {"CD": {"passed": 120, "failed": 380, "n_samples": 60}}
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_passed(self) -> int:
        return len(self.passed_taxa)

    @property
    def n_failed(self) -> int:
        return len(self.failed_taxa)

    @property
    def pass_rate(self) -> float:
        total = self.n_passed + self.n_failed
        return self.n_passed / total if total > 0 else 0.0


def drop_empty(matrix: TaxonMatrix) -> TaxonMatrix:
    """
    Remove samples and taxa whose total count is zero.

    Samples are removed first; taxa are then evaluated on the remaining
    samples.
    """
    sample_mask = matrix.data.sum(axis=1) > 0
    n_empty_samples = int((~sample_mask).sum())
    if n_empty_samples:
        dropped = list(matrix.sample_ids[~sample_mask])
        logger.warning(f"Dropping {n_empty_samples} samples with zero total count: {dropped[:10]}")
        matrix = matrix.select_samples(sample_mask)

    taxon_mask = matrix.data.sum(axis=0) > 0
    n_empty_taxa = int((~taxon_mask).sum())
    if n_empty_taxa:
        logger.info(f"Dropping {n_empty_taxa} taxa with zero total count")
        matrix = matrix.select_taxa(taxon_mask)

    return matrix


class PrevalenceFilter(Transform):
    """
    Keep taxa present (count > 0) in at least a fraction of samples.

    Params:
        min_prevalence: Fraction of samples, in (0, 1), in which a taxon must
            be observed.
        stratify_by: Optional metadata columns defining groups (e.g. ['diagnosis']).
            A taxon passes if it meets min_prevalence in at least one group.
        min_group_size: Groups smaller than this are skipped when stratifying.

    Examples:
        >>> prevalence_filter = PrevalenceFilter(min_prevalence=0.1)
        >>> filtered = prevalence_filter.apply(counts)
        >>>
        >>> # Keep disease-specific taxa
        >>> PrevalenceFilter(min_prevalence=0.25, stratify_by=['diagnosis']).apply(counts)
    """

    def __init__(
        self,
        min_prevalence: float = 0.1,
        stratify_by: Optional[List[str]] = None,
        min_group_size: int = 5,
    ):
        if not 0 < min_prevalence < 1:
            raise ConfigurationError(
                f"min_prevalence must be in (0, 1), got {min_prevalence}",
                stage="taxon_filter", precondition="0 < min_prevalence < 1",
            )
        if min_group_size < 1:
            raise ConfigurationError(
                f"min_group_size must be >= 1, got {min_group_size}",
                stage="taxon_filter", precondition="min_group_size >= 1",
            )
        super().__init__(
            name="PrevalenceFilter",
            params={
                "min_prevalence": min_prevalence,
                "stratify_by": stratify_by,
                "min_group_size": min_group_size,
            }
        )
        self.min_prevalence = min_prevalence
        self.stratify_by = stratify_by or []
        self.min_group_size = min_group_size

    def _compute_keep_mask(self, matrix: TaxonMatrix) -> tuple[np.ndarray, Dict[str, Dict[str, int]]]:
        """
        Core filtering logic: compute which taxa to keep.

        Returns:
            keep_mask: Boolean array indicating which taxa pass
            stratum_stats: Dictionary with per-group statistics
        """
        present = matrix.data > 0

        if self.stratify_by:
            missing_cols = [c for c in self.stratify_by if c not in matrix.sample_metadata.columns]
            if missing_cols:
                raise ConfigurationError(
                    f"Stratification columns not found in metadata: {missing_cols}",
                    stage="taxon_filter", precondition="stratify_by columns present",
                )
            groups = matrix.sample_metadata[self.stratify_by].astype(str).agg('_'.join, axis=1)
        else:
            groups = pd.Series("Global", index=matrix.sample_ids)

        unique_groups = groups.unique()
        if self.stratify_by:
            logger.info(f"Identified {len(unique_groups)} groups for stratification: {list(unique_groups)}")

        keep_mask = np.zeros(matrix.n_taxa, dtype=bool)
        stratum_stats: Dict[str, Dict[str, int]] = {}

        for group in unique_groups:
            group_mask = (groups == group).to_numpy()
            n_samples = int(group_mask.sum())

            # The global group is never skipped
            if self.stratify_by and n_samples < self.min_group_size:
                logger.info(f"Skipping small group '{group}' (n={n_samples})")
                continue

            prevalence = present[group_mask, :].mean(axis=0)
            group_pass = prevalence >= self.min_prevalence - _PREVALENCE_TOL
            keep_mask |= group_pass

            n_passed = int(group_pass.sum())
            stratum_stats[str(group)] = {
                "passed": n_passed,
                "failed": int(matrix.n_taxa - n_passed),
                "n_samples": n_samples,
            }
            logger.info(f"  Group '{group}' (n={n_samples}): {n_passed} taxa passed")

        if not stratum_stats:
            sizes = {str(g): int((groups == g).sum()) for g in unique_groups}
            raise ConfigurationError(
                f"No stratum of {self.stratify_by} has at least min_group_size="
                f"{self.min_group_size} samples (group sizes: {sizes}); lower "
                f"min_group_size or drop stratify_by",
                stage="taxon_filter", precondition="at least one stratum of min_group_size samples",
            )

        return keep_mask, stratum_stats

    def apply(self, matrix: TaxonMatrix) -> TaxonMatrix:
        """
        Drop empty samples/taxa, then keep sufficiently prevalent taxa.

        Raises:
            InsufficientPrevalenceError: If no taxon passes
        """
        logger.info(f"Applying PrevalenceFilter: min_prevalence={self.min_prevalence}, "
                    f"stratify_by={self.stratify_by}")

        errors = self.validate(matrix)
        if errors:
            raise DataQualityError(
                "; ".join(errors), stage="taxon_filter",
                precondition="non-empty, finite, non-negative count matrix",
            )

        matrix = drop_empty(matrix)
        keep_mask, _ = self._compute_keep_mask(matrix)

        n_kept = int(keep_mask.sum())
        if n_kept == 0:
            raise InsufficientPrevalenceError(
                f"No taxon is present in at least {self.min_prevalence:.1%} of samples "
                f"({matrix.n_samples} samples, {matrix.n_taxa} taxa)",
                stage="taxon_filter", precondition="at least one taxon passes prevalence",
            )

        logger.info(f"Filtering complete: Kept {n_kept}/{matrix.n_taxa} taxa "
                    f"({100 * n_kept / matrix.n_taxa:.1f}%), Removed {matrix.n_taxa - n_kept}")

        filtered = matrix.select_taxa(keep_mask)

        # Removing taxa can leave a sample with nothing observed
        return drop_empty(filtered)

    def get_passing_taxa(self, matrix: TaxonMatrix) -> PrevalenceFilterResult:
        """
        Get taxa passing the prevalence filter without transforming the matrix.

        Args:
            matrix: TaxonMatrix with counts and sample_metadata

        Returns:
            PrevalenceFilterResult with passed/failed taxa and statistics
        """
        matrix = drop_empty(matrix)
        keep_mask, stratum_stats = self._compute_keep_mask(matrix)

        result = PrevalenceFilterResult(
            passed_taxa=set(matrix.taxon_ids[keep_mask]),
            failed_taxa=set(matrix.taxon_ids[~keep_mask]),
            stratum_stats=stratum_stats,
            parameters=dict(self.params),
        )

        logger.info(f"Taxon filtering complete: {result.n_passed}/{result.n_passed + result.n_failed} "
                    f"taxa passed ({result.pass_rate * 100:.1f}%)")

        return result

    def validate(self, matrix: TaxonMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data < 0):
            errors.append("Matrix contains negative values (expected counts)")
        if np.any(~np.isfinite(matrix.data)):
            errors.append("Matrix contains NaN or infinite values")
        return errors
