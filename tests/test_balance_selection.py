"""Tests for greedy balance selection."""

import warnings

import numpy as np
import pandas as pd
import pytest

from balancefinder.balance.evaluation import balance_values
from balancefinder.balance.selection import BalanceSelector
from balancefinder.core.errors import (
    ConfigurationError,
    EmptyBalanceSetsError,
    NonConvergenceError,
    SampleAlignmentError,
    UndefinedLogRatioError,
)
from balancefinder.core.taxonmatrix import TaxonMatrix

from conftest import DOWN_TAXA, UP_TAXA


class TestBalanceSelector:
    """Tests for BalanceSelector.select()."""

    def test_recovers_planted_signal(self, composition, outcome):
        """Taxa raised in cases land in B1, taxa lowered in cases in B2."""
        result = BalanceSelector(scoring="f_statistic").select(composition, outcome)

        assert set(UP_TAXA) <= set(result.balance.numerator)
        assert set(DOWN_TAXA) <= set(result.balance.denominator)
        assert result.converged
        assert result.model.p_value < 1e-6

    @pytest.mark.parametrize("scoring", ["r_squared", "kruskal"])
    def test_other_rules_find_signal(self, composition, outcome, scoring):
        result = BalanceSelector(scoring=scoring).select(composition, outcome)

        first_pair = set(result.history["taxon"].iloc[:2])
        assert first_pair & set(UP_TAXA)
        assert first_pair & set(DOWN_TAXA)
        assert result.scoring == scoring

    def test_values_match_balance(self, composition, outcome):
        result = BalanceSelector().select(composition, outcome)
        expected = balance_values(composition, result.balance)

        np.testing.assert_allclose(result.values.to_numpy(), expected.to_numpy(), atol=1e-10)
        assert list(result.values.index) == list(composition.sample_ids)

    def test_score_matches_model(self, composition, outcome):
        """Without covariates the search score is the model's F."""
        result = BalanceSelector().select(composition, outcome)
        assert result.score == pytest.approx(result.model.f_statistic, rel=1e-8)

    def test_history(self, composition, outcome):
        result = BalanceSelector().select(composition, outcome)
        history = result.history

        assert list(history.columns) == ["step", "taxon", "set", "score", "improvement", "n_taxa"]
        assert history["step"].iloc[0] == history["step"].iloc[1] == 1
        assert list(history["set"].iloc[:2]) == ["numerator", "denominator"]
        assert history["step"].max() == result.n_iterations
        assert len(history) == result.balance.n_taxa
        assert (np.diff(history["score"].to_numpy()) >= 0).all()
        assert (history["improvement"].iloc[2:] > 0).all()

    def test_max_taxa_two_stops_after_pair(self, composition, outcome):
        result = BalanceSelector(max_taxa=2).select(composition, outcome)

        assert result.balance.n_taxa == 2
        assert result.stop_reason == "max_taxa"
        assert result.converged

    def test_max_taxa_caps_size(self, composition, outcome):
        result = BalanceSelector(max_taxa=3).select(composition, outcome)
        assert result.balance.n_taxa <= 3

    def test_iteration_cap_warns(self, composition, outcome):
        """Stopping with an improving move left returns a partial result and warns."""
        with pytest.warns(UserWarning, match="max_iterations"):
            result = BalanceSelector(max_iterations=1).select(composition, outcome)

        assert not result.converged
        assert result.stop_reason == "max_iterations"
        assert result.balance.n_taxa == 2

    def test_iteration_cap_strict_raises_with_result(self, composition, outcome):
        with pytest.raises(NonConvergenceError) as excinfo:
            BalanceSelector(max_iterations=1).select(composition, outcome, strict=True)

        partial = excinfo.value.result
        assert partial is not None
        assert partial.stop_reason == "max_iterations"
        assert partial.balance.n_taxa == 2

    def test_time_budget(self, composition, outcome):
        with pytest.warns(UserWarning, match="time budget"):
            result = BalanceSelector(time_budget=1e-9).select(composition, outcome)

        assert result.stop_reason == "time_budget"
        assert not result.converged

    def test_converged_search_does_not_warn(self, composition, outcome):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            BalanceSelector(max_taxa=4).select(composition, outcome)

    def test_exhausts_small_composition(self, composition, outcome):
        """With a generous cap on a 3-taxon composition, every taxon may be used."""
        small = composition.select_taxa(composition.taxon_ids.isin(["taxon_00", "taxon_02", "taxon_05"]))
        result = BalanceSelector().select(small, outcome)

        assert result.stop_reason in {"exhausted", "no_improvement"}
        assert result.converged

    def test_unreachable_improvement_raises(self, composition, outcome):
        with pytest.raises(EmptyBalanceSetsError):
            BalanceSelector(min_improvement=1e12).select(composition, outcome)

    def test_single_taxon_raises(self, composition, outcome):
        single = composition.select_taxa(composition.taxon_ids == "taxon_00")
        with pytest.raises(EmptyBalanceSetsError):
            BalanceSelector().select(single, outcome)

    def test_zeros_raise(self, count_matrix, outcome):
        with pytest.raises(UndefinedLogRatioError):
            BalanceSelector().select(count_matrix, outcome)

    def test_missing_outcome_raises(self, composition, outcome):
        with pytest.raises(SampleAlignmentError):
            BalanceSelector().select(composition, outcome.iloc[:-1])

    def test_unlabelled_sample_raises(self, composition, outcome):
        labels = outcome.astype(object)
        labels.iloc[0] = np.nan
        with pytest.raises(SampleAlignmentError, match="missing values"):
            BalanceSelector(max_taxa=2).select(composition, labels)

    def test_deterministic(self, composition, outcome):
        a = BalanceSelector().select(composition, outcome)
        b = BalanceSelector().select(composition, outcome)

        assert a.balance == b.balance
        pd.testing.assert_frame_equal(a.history, b.history)

    def test_with_covariates(self, composition, outcome):
        covariates = composition.sample_metadata[["age"]]
        result = BalanceSelector().select(composition, outcome, covariates)

        assert result.model.design.n_params == 3
        assert set(UP_TAXA) & set(result.balance.numerator)

    @pytest.mark.parametrize("kwargs", [
        {"max_taxa": 1},
        {"max_iterations": 0},
        {"time_budget": 0},
        {"min_improvement": -1.0},
        {"scoring": "aic"},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ConfigurationError):
            BalanceSelector(**kwargs)

    def test_to_dict(self, composition, outcome):
        summary = BalanceSelector(max_taxa=3).select(composition, outcome).to_dict()

        assert summary["stop_reason"] == "max_taxa"
        assert len(summary["history"]) == 3
        assert summary["model"]["reference"] == "case"


def test_two_sample_groups_minimal():
    """A tiny composition with an obvious ratio shift selects that ratio."""
    rng = np.random.default_rng(2)
    n = 12
    data = rng.dirichlet(np.full(4, 20.0), size=n)
    data[n // 2:, 0] *= 8.0
    frame = pd.DataFrame(data, index=[f"S{i}" for i in range(n)], columns=["w", "x", "y", "z"])
    outcome = pd.Series(["lo"] * (n // 2) + ["hi"] * (n // 2), index=frame.index)

    result = BalanceSelector(max_taxa=2).select(TaxonMatrix.from_frames(frame), outcome)
    assert "w" in result.balance.numerator
