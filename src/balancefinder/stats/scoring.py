"""
Association scores between candidate balances and a categorical outcome.

Greedy balance search compares thousands of candidate balances per step, so
every rule is a pure function of the candidate's per-sample values and is
vectorized over candidates: `score_many(Y)` scores each column of Y.

Rules:
    f_statistic: Partial F of the outcome term in OLS of the balance on
        outcome dummies + covariates (default).
            F = ((RSS_reduced - RSS_full) / q) / (RSS_full / (n - p))
    r_squared: Partial R² of the outcome term.
            R²_partial = (RSS_reduced - RSS_full) / RSS_reduced
    kruskal: Kruskal-Wallis H across outcome groups (tie-corrected).
        Rank-based; covariates are not supported.

All rules score 0 for a balance with no association (constant values).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats

from balancefinder.core.errors import ConfigurationError
from balancefinder.stats.design_matrix import OutcomeDesign, build_outcome_design

logger = logging.getLogger(__name__)

__all__ = ['ScoringRule', 'AssociationScorer']


class ScoringRule(Enum):
    """Association score used to rank candidate balances."""

    F_STATISTIC = "f_statistic"
    R_SQUARED = "r_squared"
    KRUSKAL = "kruskal"

    @classmethod
    def parse(cls, value: "ScoringRule | str") -> "ScoringRule":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown scoring rule '{value}'. Valid: {[r.value for r in cls]}",
                stage="balance_selection", precondition="known scoring rule",
            ) from None


class AssociationScorer:
    """
    Vectorized association scores for a fixed outcome design.

    Projections onto the full and reduced designs are factored once at
    construction; scoring a batch of candidates is then two matrix products.

    Examples:
        >>> scorer = AssociationScorer(outcome, rule="f_statistic")
        >>> scores = scorer.score_many(candidate_values)   # (n_samples, n_candidates)
    """

    def __init__(
        self,
        outcome: pd.Series,
        covariates: Optional[pd.DataFrame] = None,
        rule: ScoringRule | str = ScoringRule.F_STATISTIC,
        reference: Optional[str] = None,
    ):
        self.rule = ScoringRule.parse(rule)
        if self.rule is ScoringRule.KRUSKAL and covariates is not None and len(covariates.columns):
            raise ConfigurationError(
                "The kruskal scoring rule does not support covariates",
                stage="balance_selection", precondition="no covariates with kruskal",
            )
        self.design: OutcomeDesign = build_outcome_design(outcome, covariates, reference=reference)

        self._q_full, _ = np.linalg.qr(self.design.X)
        self._q_reduced, _ = np.linalg.qr(self.design.X_reduced)
        self._df_numerator = self.design.n_outcome_params
        self._df_residual = self.design.df_residual

        codes = pd.Categorical(outcome.astype(str).to_numpy(), categories=self.design.levels).codes
        self._group_codes = np.asarray(codes)
        self._group_sizes = np.bincount(self._group_codes, minlength=len(self.design.levels))

    @property
    def n_samples(self) -> int:
        return self.design.n_samples

    def _residual_ss(self, q: NDArray, Y: NDArray) -> NDArray:
        residual = Y - q @ (q.T @ Y)
        return np.einsum("ij,ij->j", residual, residual)

    def _f_and_r2(self, Y: NDArray) -> tuple[NDArray, NDArray]:
        rss_full = self._residual_ss(self._q_full, Y)
        rss_reduced = self._residual_ss(self._q_reduced, Y)
        explained = np.maximum(rss_reduced - rss_full, 0.0)

        # Constant balances (rss_reduced == 0) carry no association
        scale = np.maximum(rss_reduced, 1e-300)
        no_signal = rss_reduced <= 1e-12 * np.maximum(1.0, np.einsum("ij,ij->j", Y, Y))
        r2 = np.where(no_signal, 0.0, explained / scale)

        with np.errstate(divide="ignore", invalid="ignore"):
            f_stat = (explained / self._df_numerator) / (rss_full / self._df_residual)
        f_stat = np.where(no_signal, 0.0, f_stat)
        f_stat = np.where(~no_signal & (rss_full <= 1e-12 * scale), np.inf, f_stat)
        return f_stat, r2

    def _kruskal(self, Y: NDArray) -> NDArray:
        n = Y.shape[0]
        ranks = stats.rankdata(Y, axis=0)
        rank_sums = np.zeros((len(self._group_sizes), Y.shape[1]))
        np.add.at(rank_sums, self._group_codes, ranks)
        h = 12.0 / (n * (n + 1)) * (rank_sums ** 2 / self._group_sizes[:, None]).sum(axis=0) - 3 * (n + 1)
        correction = np.array([stats.tiecorrect(ranks[:, j]) for j in range(Y.shape[1])])
        with np.errstate(divide="ignore", invalid="ignore"):
            h = np.where(correction > 0, h / correction, 0.0)
        return np.maximum(h, 0.0)

    def score_many(self, Y: NDArray) -> NDArray[np.float64]:
        """
        Score every column of Y.

        Args:
            Y: Candidate balance values (n_samples, n_candidates)

        Returns:
            Scores (n_candidates,); higher means stronger association
        """
        Y = np.asarray(Y, dtype=float)
        if Y.ndim == 1:
            Y = Y[:, None]
        if Y.shape[0] != self.n_samples:
            raise ValueError(
                f"Y has {Y.shape[0]} rows but the design has {self.n_samples} samples"
            )
        if self.rule is ScoringRule.KRUSKAL:
            return self._kruskal(Y)
        f_stat, r2 = self._f_and_r2(Y)
        return f_stat if self.rule is ScoringRule.F_STATISTIC else r2

    def score(self, values: NDArray | pd.Series) -> float:
        """Score one balance (n_samples,)."""
        return float(self.score_many(np.asarray(values, dtype=float)[:, None])[0])
