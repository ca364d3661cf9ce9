"""
Greedy forward selection of an outcome-associated balance.

Search:
    1. Opening move: score every ordered taxon pair (i, j), i before j in
       taxon order, as the two-taxon balance B1={i}, B2={j}. The best pair
       must beat the null association (score 0) by more than min_improvement.
    2. Each later move adds one unassigned taxon to B1 or to B2. Candidates
       are enumerated in taxon order, B1 before B2 for each taxon, and all
       candidates of a step are scored at once.
    3. The best candidate is committed if it improves the current score by
       more than min_improvement.

Ties within a relative tolerance of 1e-12 go to the earliest candidate, so
the search is deterministic.

Incremental evaluation:
    The state caches per-sample Σ ln x over B1 and over B2. Adding taxon t to
    B1 changes the balance to

        sqrt((r+1)s/(r+1+s)) · ((S1 + ln x_t)/(r+1) - S2/s)

    which is one vectorized update per candidate instead of a recomputation
    over the whole partition.

Stopping:
    Converged (normal):  no improving move, |B1|+|B2| == max_taxa, or every
                         taxon assigned.
    Not converged:       max_iterations moves committed while an improving
                         move remains, or time_budget seconds elapsed. The
                         partial result is returned with converged=False and
                         a warning, or NonConvergenceError is raised when
                         strict=True.

Examples:
    >>> selector = BalanceSelector(scoring="f_statistic", max_taxa=10)
    >>> result = selector.select(composition, outcome)
    >>> print(result.balance, result.score, result.stop_reason)
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from balancefinder.balance.basis import Balance
from balancefinder.balance.model import LinearAssociationModel, fit_association_model
from balancefinder.core.errors import (
    ConfigurationError,
    EmptyBalanceSetsError,
    NonConvergenceError,
)
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.geometry.aitchison import check_positive
from balancefinder.io.metadata import align_frame, align_series
from balancefinder.stats.scoring import AssociationScorer, ScoringRule
from balancefinder.utils.statistics import first_max_index

logger = logging.getLogger(__name__)

__all__ = ['BalanceSelector', 'SelectionResult']

_STAGE = "balance_selection"

NUMERATOR = "numerator"
DENOMINATOR = "denominator"


def _coefficient(r: int, s: int) -> float:
    return float(np.sqrt(r * s / (r + s)))


def _improvement(candidate: float, current: float) -> float:
    if np.isinf(candidate) and np.isinf(current):
        return 0.0
    return candidate - current


class _PartitionState:
    """Current B1/B2 assignment with cached per-sample log-sums."""

    def __init__(self, log_values: NDArray[np.float64]):
        self.log_values = log_values
        n_samples, n_taxa = log_values.shape
        self.sum_numerator = np.zeros(n_samples)
        self.sum_denominator = np.zeros(n_samples)
        self.numerator: list[int] = []
        self.denominator: list[int] = []
        self.assigned = np.zeros(n_taxa, dtype=bool)

    @property
    def n_assigned(self) -> int:
        return len(self.numerator) + len(self.denominator)

    def add(self, taxon: int, side: str) -> None:
        if side == NUMERATOR:
            self.numerator.append(taxon)
            self.sum_numerator += self.log_values[:, taxon]
        else:
            self.denominator.append(taxon)
            self.sum_denominator += self.log_values[:, taxon]
        self.assigned[taxon] = True

    def unassigned(self) -> NDArray[np.intp]:
        return np.flatnonzero(~self.assigned)

    def values(self) -> NDArray[np.float64]:
        r, s = len(self.numerator), len(self.denominator)
        return _coefficient(r, s) * (self.sum_numerator / r - self.sum_denominator / s)

    def candidate_values(self, candidates: NDArray[np.intp]) -> NDArray[np.float64]:
        """
        Balance values for every single-taxon extension.

        Returns:
            (n_samples, 2·len(candidates)); column 2k adds candidates[k] to
            B1, column 2k+1 adds it to B2
        """
        r, s = len(self.numerator), len(self.denominator)
        added = self.log_values[:, candidates]
        mean_numerator = (self.sum_numerator / r)[:, None]
        mean_denominator = (self.sum_denominator / s)[:, None]

        to_numerator = _coefficient(r + 1, s) * (
            (self.sum_numerator[:, None] + added) / (r + 1) - mean_denominator
        )
        to_denominator = _coefficient(r, s + 1) * (
            mean_numerator - (self.sum_denominator[:, None] + added) / (s + 1)
        )

        out = np.empty((added.shape[0], 2 * added.shape[1]))
        out[:, 0::2] = to_numerator
        out[:, 1::2] = to_denominator
        return out


@dataclass
class SelectionResult:
    """Outcome of a greedy balance search.

    Attributes:
        balance: Selected balance.
        model: Association model fitted on the selected balance's basis.
        values: Per-sample balance values.
        history: One row per taxon committed (step, taxon, set, score, improvement).
        score: Final score under the scoring rule.
        scoring: Scoring rule name.
        converged: False if the iteration cap or time budget stopped the
            search while an improving move remained.
        stop_reason: 'no_improvement', 'max_taxa', 'exhausted',
            'max_iterations' or 'time_budget'.
        n_iterations: Committed moves (the opening pair counts as one).
        elapsed_seconds: Wall-clock time of the search.
    """

    balance: Balance
    model: LinearAssociationModel
    values: pd.Series = field(repr=False)
    history: pd.DataFrame = field(repr=False)
    score: float
    scoring: str
    converged: bool
    stop_reason: str
    n_iterations: int
    elapsed_seconds: float

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "balance": self.balance.to_dict(),
            "score": float(self.score),
            "scoring": self.scoring,
            "converged": self.converged,
            "stop_reason": self.stop_reason,
            "n_iterations": self.n_iterations,
            "elapsed_seconds": float(self.elapsed_seconds),
            "model": self.model.to_dict(),
            "history": self.history.to_dict(orient="records"),
        }


class BalanceSelector:
    """
    Greedy search for the balance most associated with a categorical outcome.

    Params:
        scoring: 'f_statistic' (default), 'r_squared' or 'kruskal'
        min_improvement: A move must raise the score by more than this (>= 0)
        max_taxa: Stop once this many taxa are in the balance (>= 2)
        max_iterations: Cap on committed moves (>= 1)
        time_budget: Wall-clock limit in seconds, or None
        reference: Reference outcome level for the association model
    """

    def __init__(
        self,
        scoring: ScoringRule | str = ScoringRule.F_STATISTIC,
        min_improvement: float = 0.0,
        max_taxa: int = 20,
        max_iterations: int = 50,
        time_budget: Optional[float] = None,
        reference: Optional[str] = None,
    ):
        self.scoring = ScoringRule.parse(scoring)
        if not min_improvement >= 0:
            raise ConfigurationError(
                f"min_improvement must be >= 0, got {min_improvement}",
                stage=_STAGE, precondition="min_improvement >= 0",
            )
        if max_taxa < 2:
            raise ConfigurationError(
                f"max_taxa must be >= 2, got {max_taxa}",
                stage=_STAGE, precondition="max_taxa >= 2",
            )
        if max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be >= 1, got {max_iterations}",
                stage=_STAGE, precondition="max_iterations >= 1",
            )
        if time_budget is not None and not time_budget > 0:
            raise ConfigurationError(
                f"time_budget must be positive, got {time_budget}",
                stage=_STAGE, precondition="time_budget > 0",
            )
        self.min_improvement = float(min_improvement)
        self.max_taxa = int(max_taxa)
        self.max_iterations = int(max_iterations)
        self.time_budget = time_budget
        self.reference = reference

    def _score_opening_pairs(
        self,
        log_values: NDArray[np.float64],
        scorer: AssociationScorer,
    ) -> tuple[NDArray[np.float64], list[tuple[int, int]]]:
        n_taxa = log_values.shape[1]
        coefficient = _coefficient(1, 1)
        scores: list[NDArray[np.float64]] = []
        pairs: list[tuple[int, int]] = []
        for i in range(n_taxa - 1):
            partners = np.arange(i + 1, n_taxa)
            candidates = coefficient * (log_values[:, [i]] - log_values[:, partners])
            scores.append(scorer.score_many(candidates))
            pairs.extend((i, int(j)) for j in partners)
        return np.concatenate(scores), pairs

    def select(
        self,
        composition: TaxonMatrix,
        outcome: pd.Series,
        covariates: Optional[pd.DataFrame] = None,
        strict: bool = False,
    ) -> SelectionResult:
        """
        Run the greedy search.

        Args:
            composition: Strictly positive composition (samples × taxa)
            outcome: Categorical outcome keyed by sample id
            covariates: Numeric covariates keyed by sample id, or None
            strict: Raise NonConvergenceError instead of warning when the
                search stops before converging

        Returns:
            SelectionResult

        Raises:
            UndefinedLogRatioError: If the composition has zeros
            SampleAlignmentError: If a sample lacks an outcome or covariate value
            EmptyBalanceSetsError: If no taxon pair beats the null association
            NonConvergenceError: With strict=True, if the search did not converge
        """
        start = time.perf_counter()

        outcome = align_series(outcome, composition.sample_ids, stage=_STAGE)
        if covariates is not None:
            covariates = align_frame(covariates, composition.sample_ids, stage=_STAGE)

        log_values = np.log(check_positive(composition.data, stage=_STAGE))
        taxa = composition.taxon_ids
        if len(taxa) < 2:
            raise EmptyBalanceSetsError(
                f"Balance selection needs at least 2 taxa, got {len(taxa)}",
                stage=_STAGE, precondition="at least 2 taxa",
            )

        scorer = AssociationScorer(outcome, covariates, rule=self.scoring, reference=self.reference)

        logger.info(f"Balance selection: {composition.n_samples} samples, {len(taxa)} taxa, "
                    f"scoring={self.scoring.value}, max_taxa={self.max_taxa}")

        # --- Opening move: best ordered pair ---
        pair_scores, pairs = self._score_opening_pairs(log_values, scorer)
        best = first_max_index(pair_scores)
        if best < 0 or not pair_scores[best] > self.min_improvement:
            best_score = float(pair_scores[best]) if best >= 0 else float("nan")
            raise EmptyBalanceSetsError(
                f"No taxon pair is associated with the outcome (best {self.scoring.value}="
                f"{best_score:.4g}, min_improvement={self.min_improvement})",
                stage=_STAGE, precondition="an opening pair scores above the null association",
            )

        state = _PartitionState(log_values)
        first, second = pairs[best]
        state.add(first, NUMERATOR)
        state.add(second, DENOMINATOR)
        current = float(pair_scores[best])
        n_iterations = 1
        history = [
            (1, str(taxa[first]), NUMERATOR, current, current, 1),
            (1, str(taxa[second]), DENOMINATOR, current, current, 2),
        ]
        logger.info(f"  Opening pair: {taxa[first]} / {taxa[second]} "
                    f"({self.scoring.value}={current:.4g})")

        # --- Forward moves ---
        while True:
            if state.n_assigned >= self.max_taxa:
                stop_reason, converged = "max_taxa", True
                break
            candidates = state.unassigned()
            if len(candidates) == 0:
                stop_reason, converged = "exhausted", True
                break
            if self.time_budget is not None and time.perf_counter() - start > self.time_budget:
                stop_reason, converged = "time_budget", False
                break

            candidate_scores = scorer.score_many(state.candidate_values(candidates))
            best = first_max_index(candidate_scores)
            improvement = _improvement(candidate_scores[best], current) if best >= 0 else 0.0
            if best < 0 or not improvement > self.min_improvement:
                stop_reason, converged = "no_improvement", True
                break
            if n_iterations >= self.max_iterations:
                stop_reason, converged = "max_iterations", False
                break

            taxon = int(candidates[best // 2])
            side = NUMERATOR if best % 2 == 0 else DENOMINATOR
            state.add(taxon, side)
            current = float(candidate_scores[best])
            n_iterations += 1
            history.append((n_iterations, str(taxa[taxon]), side, current, improvement, state.n_assigned))
            logger.info(f"  Step {n_iterations}: +{taxa[taxon]} to {side} "
                        f"({self.scoring.value}={current:.4g}, +{improvement:.4g})")

        elapsed = time.perf_counter() - start

        balance = Balance(
            numerator=tuple(str(taxa[i]) for i in state.numerator),
            denominator=tuple(str(taxa[i]) for i in state.denominator),
            taxon_ids=tuple(str(t) for t in taxa),
        )
        values = pd.Series(state.values(), index=composition.sample_ids, name="balance")
        model = fit_association_model(composition, balance, outcome, covariates, reference=self.reference)

        result = SelectionResult(
            balance=balance,
            model=model,
            values=values,
            history=pd.DataFrame(
                history, columns=["step", "taxon", "set", "score", "improvement", "n_taxa"],
            ),
            score=current,
            scoring=self.scoring.value,
            converged=converged,
            stop_reason=stop_reason,
            n_iterations=n_iterations,
            elapsed_seconds=elapsed,
        )

        logger.info(f"Balance selection finished ({stop_reason}): {balance.r} numerator, "
                    f"{balance.s} denominator taxa, {self.scoring.value}={current:.4g}")

        if not converged:
            message = (
                f"Balance selection stopped by {stop_reason} after {n_iterations} moves "
                f"with an improving move still available"
                if stop_reason == "max_iterations"
                else f"Balance selection exceeded its time budget of {self.time_budget}s "
                     f"after {n_iterations} moves"
            )
            if strict:
                raise NonConvergenceError(
                    message, result=result, stage=_STAGE,
                    precondition="search converges within its budget",
                )
            warnings.warn(message, UserWarning)

        return result
