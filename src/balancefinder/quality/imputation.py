"""
Zero replacement for compositional count tables.

Log-ratio methods (CLR, balances, Aitchison distance) are undefined at zero,
and zeros are the norm in microbiome tables: a taxon below the detection
limit of a shallow library reads as 0. This module replaces those zeros with
small positive values while keeping every row's total and the ratios between
its observed taxa intact.

Multiplicative simple replacement:
    For taxon j, the detection limit is estimated from the data as the
    smallest positive proportion observed for j in any sample, and the
    substitute is a fixed fraction of it:

        delta_j = fraction × min_i { x_ij / T_i : x_ij > 0 }

    In row i with zero set Z_i:

        x'_ij = delta_j                          j in Z_i
        x'_ij = (x_ij / T_i) × (1 - Σ_{k in Z_i} delta_k)   otherwise

    The row closes to 1 and is rescaled to T_i unless normalized. Ratios
    between observed taxa in a row are unchanged, so log-ratios that do not
    involve a replaced cell are unaffected.

Caveats:
    - Replaced cells are synthetic; they carry QualityFlag.ZERO_REPLACED
    - A taxon with no positive value anywhere has no detection limit and must
      be filtered out first
    - Rows where the substitutes would take the whole row total cannot be
      closed and are rejected

References:
    - Martín-Fernández, Barceló-Vidal & Pawlowsky-Glahn (2003) "Dealing with
      zeros and missing values in compositional data sets using nonparametric
      imputation." Mathematical Geology 35: 253-278.
    - Palarea-Albaladejo & Martín-Fernández (2015) "zCompositions - R package
      for multivariate imputation of left-censored data under a compositional
      approach." Chemometrics and Intelligent Laboratory Systems 143: 85-96.

Examples:
    >>> from balancefinder.quality.imputation import MultiplicativeReplacement
    >>> replacer = MultiplicativeReplacement(fraction=0.65)
    >>> composition = replacer.apply(filtered_counts)
    >>> bool((composition.data > 0).all())
    True
"""

from __future__ import annotations

import logging

import numpy as np

from balancefinder.core.errors import ConfigurationError, UndefinedLogRatioError
from balancefinder.core.quality import QualityFlag
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ["MultiplicativeReplacement", "multiplicative_replacement", "detection_limits"]

_STAGE = "zero_replacement"


def detection_limits(values: np.ndarray, fraction: float = 0.65) -> np.ndarray:
    """
    Per-taxon zero substitutes in proportion space.

    Args:
        values: Non-negative matrix (samples × taxa), counts or proportions
        fraction: Fraction of the smallest positive proportion, in (0, 1)

    Returns:
        Array (n_taxa,) of substitutes

    Raises:
        UndefinedLogRatioError: If a sample total is zero or a taxon has no
            positive value in any sample
    """
    totals = values.sum(axis=1)
    if np.any(totals <= 0):
        raise UndefinedLogRatioError(
            f"{int(np.sum(totals <= 0))} samples have zero total; remove empty samples first",
            stage=_STAGE, precondition="every row total > 0",
        )
    proportions = values / totals[:, None]
    positive = proportions > 0
    never_observed = ~positive.any(axis=0)
    if never_observed.any():
        raise UndefinedLogRatioError(
            f"{int(never_observed.sum())} taxa are zero in every sample; "
            "filter them before zero replacement",
            stage=_STAGE, precondition="every taxon observed in at least one sample",
        )
    min_positive = np.where(positive, proportions, np.inf).min(axis=0)
    return fraction * min_positive


def multiplicative_replacement(
    values: np.ndarray,
    fraction: float = 0.65,
    normalize: bool = True,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Replace zeros multiplicatively, preserving row totals.

    Args:
        values: Non-negative matrix (samples × taxa)
        fraction: Fraction of each taxon's smallest positive proportion used
            as its substitute
        normalize: If True rows sum to 1, otherwise to their original totals

    Returns:
        (replaced, zero_mask): strictly positive matrix and the boolean mask
        of replaced cells

    Raises:
        UndefinedLogRatioError: On negative values, empty rows, never-observed
            taxa, or rows whose substitutes would exhaust the row total
    """
    values = np.asarray(values, dtype=float)
    if np.any(values < 0) or np.any(~np.isfinite(values)):
        raise UndefinedLogRatioError(
            "Zero replacement requires finite, non-negative values",
            stage=_STAGE, precondition="finite non-negative input",
        )

    deltas = detection_limits(values, fraction=fraction)
    totals = values.sum(axis=1)
    proportions = values / totals[:, None]
    zero_mask = values == 0

    substitute_mass = (zero_mask * deltas[None, :]).sum(axis=1)
    overfull = substitute_mass >= 1.0
    if overfull.any():
        raise UndefinedLogRatioError(
            f"{int(overfull.sum())} samples would be filled entirely by zero substitutes; "
            "lower the replacement fraction or filter sparse taxa",
            stage=_STAGE, precondition="zero substitutes sum to less than the row total",
        )

    replaced = np.where(
        zero_mask,
        deltas[None, :],
        proportions * (1.0 - substitute_mass)[:, None],
    )

    if not normalize:
        replaced = replaced * totals[:, None]

    return replaced, zero_mask


class MultiplicativeReplacement(Transform):
    """
    Zero replacement transform producing a strictly positive composition.

    Attributes:
        fraction: Fraction of each taxon's smallest positive proportion used
            as its substitute (0.65 is the customary detection-limit fraction)
        normalize: If True (default) output rows sum to 1; otherwise rows keep
            their original totals

    Examples:
        >>> replacer = MultiplicativeReplacement(fraction=0.65, normalize=False)
        >>> replaced = replacer.apply(counts)
        >>> np.allclose(replaced.data.sum(axis=1), counts.data.sum(axis=1))
        True
    """

    def __init__(self, fraction: float = 0.65, normalize: bool = True):
        if not 0 < fraction < 1:
            raise ConfigurationError(
                f"fraction must be in (0, 1), got {fraction}",
                stage=_STAGE, precondition="0 < fraction < 1",
            )
        super().__init__(
            name="MultiplicativeReplacement",
            params={"fraction": fraction, "normalize": normalize},
        )
        self.fraction = fraction
        self.normalize = normalize

    def apply(self, matrix: TaxonMatrix) -> TaxonMatrix:
        """
        Replace zeros and mark replaced cells.

        Raises:
            UndefinedLogRatioError: If zeros cannot be replaced
        """
        replaced, zero_mask = multiplicative_replacement(
            matrix.data, fraction=self.fraction, normalize=self.normalize,
        )

        new_flags = matrix.quality_flags.copy()
        new_flags[zero_mask] |= QualityFlag.ZERO_REPLACED

        n_replaced = int(zero_mask.sum())
        logger.info(
            f"Replaced {n_replaced} zeros ({100 * n_replaced / max(zero_mask.size, 1):.1f}% of cells) "
            f"with fraction={self.fraction}"
        )

        return matrix.with_data(replaced, quality_flags=new_flags)

    def validate(self, matrix: TaxonMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data < 0):
            errors.append("Matrix contains negative values")
        if np.any(matrix.data.sum(axis=1) <= 0):
            errors.append("Matrix contains empty samples")
        if np.any(matrix.data.sum(axis=0) <= 0):
            errors.append("Matrix contains taxa never observed")
        return errors
