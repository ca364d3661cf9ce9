"""Tests for rarefaction and rarefied alpha diversity."""

import numpy as np
import pandas as pd
import pytest
from skbio.diversity import alpha as skbio_alpha

from balancefinder.core.errors import ConfigurationError, DataQualityError, RowSumTooLowError
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.diversity.rarefaction import (
    observed,
    rarefied_diversity,
    rarefy,
    shannon,
    simpson,
)


def _matrix(values, sample_ids=None):
    values = np.asarray(values, dtype=float)
    sample_ids = sample_ids or [f"S{i}" for i in range(values.shape[0])]
    frame = pd.DataFrame(values, index=sample_ids,
                         columns=[f"T{j}" for j in range(values.shape[1])])
    return TaxonMatrix.from_frames(frame)


class TestRarefy:
    """Tests for rarefy()."""

    def test_subsample_totals_equal_depth(self, synthetic_tables):
        """Every rarefied row sums to exactly the depth, for every repetition."""
        counts, _ = synthetic_tables
        values = counts.to_numpy()
        rng = np.random.default_rng(1)

        for _ in range(5):
            subsampled = rarefy(values, 1500, rng)
            assert (subsampled.sum(axis=1) == 1500).all()

    def test_never_exceeds_original_counts(self):
        """Sampling without replacement never draws more than a taxon has."""
        values = np.array([[50, 3, 0, 47], [10, 10, 10, 70]])
        subsampled = rarefy(values, 60, np.random.default_rng(3))
        assert (subsampled <= values).all()

    def test_depth_equal_to_total_returns_row(self):
        """Rarefying a row to its own total returns the row unchanged."""
        row = np.array([4, 0, 6, 10])
        subsampled = rarefy(row, 20, np.random.default_rng(0))
        np.testing.assert_array_equal(subsampled, row)

    def test_row_below_depth_raises(self):
        """A row with fewer reads than the depth raises RowSumTooLowError."""
        with pytest.raises(RowSumTooLowError):
            rarefy(np.array([[5, 5], [50, 50]]), 20, np.random.default_rng(0))

    def test_non_integer_counts_raise(self):
        """Proportions are not counts."""
        with pytest.raises(DataQualityError):
            rarefy(np.array([[0.5, 0.5]]), 1, np.random.default_rng(0))

    def test_non_positive_depth_raises(self):
        """Depth must be positive."""
        with pytest.raises(ConfigurationError):
            rarefy(np.array([[5, 5]]), 0, np.random.default_rng(0))


class TestDiversityIndices:
    """Tests for the per-row diversity indices."""

    def test_shannon_even_community(self):
        """Shannon entropy of k equally abundant taxa is ln k."""
        assert shannon(np.array([[5, 5, 5, 5]]))[0] == pytest.approx(np.log(4))

    def test_shannon_ignores_absent_taxa(self):
        """Zero counts contribute nothing."""
        assert shannon(np.array([[5, 0, 5]]))[0] == pytest.approx(np.log(2))

    def test_shannon_single_taxon_is_zero(self):
        """A community of one taxon has zero entropy."""
        assert shannon(np.array([[0, 9, 0]]))[0] == pytest.approx(0.0)

    def test_simpson_and_observed(self):
        """Gini-Simpson and richness of a simple community."""
        row = np.array([[2, 2, 0, 4]])
        assert simpson(row)[0] == pytest.approx(1 - (0.25 ** 2 + 0.25 ** 2 + 0.5 ** 2))
        assert observed(row)[0] == 3

    def test_indices_match_scikit_bio(self, synthetic_tables):
        """Natural-log Shannon and Gini-Simpson agree with skbio.diversity.alpha."""
        counts, _ = synthetic_tables
        rows = counts.to_numpy().astype(np.int64)

        expected_shannon = [skbio_alpha.shannon(row, base=np.e) for row in rows]
        expected_simpson = [skbio_alpha.simpson(row) for row in rows]

        np.testing.assert_allclose(shannon(rows), expected_shannon, rtol=1e-10)
        np.testing.assert_allclose(simpson(rows), expected_simpson, rtol=1e-10)


class TestRarefiedDiversity:
    """Tests for rarefied_diversity()."""

    def test_returns_series_keyed_by_sample(self, count_matrix):
        """One value per sample, indexed by sample id."""
        diversity = rarefied_diversity(count_matrix, depth=1000, repetitions=3, seed=7)

        assert isinstance(diversity, pd.Series)
        assert diversity.name == "diversity"
        assert list(diversity.index) == list(count_matrix.sample_ids)
        assert (diversity > 0).all()

    def test_reproducible_with_seed(self, count_matrix):
        """The same seed gives the same result."""
        a = rarefied_diversity(count_matrix, depth=1000, repetitions=4, seed=11)
        b = rarefied_diversity(count_matrix, depth=1000, repetitions=4, seed=11)
        pd.testing.assert_series_equal(a, b)

    def test_independent_of_worker_count(self, count_matrix):
        """Results do not depend on the number of worker threads."""
        serial = rarefied_diversity(count_matrix, depth=1000, repetitions=6, seed=5, n_jobs=1)
        parallel = rarefied_diversity(count_matrix, depth=1000, repetitions=6, seed=5, n_jobs=3)
        pd.testing.assert_series_equal(serial, parallel)

    def test_mean_over_repetitions(self, count_matrix):
        """The result is the arithmetic mean of the per-repetition indices."""
        from balancefinder.utils.seeding import spawn_generators

        values = count_matrix.data.astype(np.int64)
        expected = np.mean(
            [shannon(rarefy(values, 800, rng)) for rng in spawn_generators(21, 3)],
            axis=0,
        )
        result = rarefied_diversity(count_matrix, depth=800, repetitions=3, seed=21)
        np.testing.assert_allclose(result.to_numpy(), expected)

    def test_full_depth_equals_unrarefied_index(self):
        """Rarefying every sample to its own (equal) total reproduces the raw index."""
        matrix = _matrix([[5, 5, 10], [1, 9, 10]])
        result = rarefied_diversity(matrix, depth=20, repetitions=2, seed=0)
        np.testing.assert_allclose(result.to_numpy(), shannon(matrix.data))

    def test_shallow_samples_are_named(self):
        """RowSumTooLowError lists the samples below the depth."""
        matrix = _matrix([[50, 50], [3, 2], [40, 80]], sample_ids=["deep", "shallow", "deeper"])
        with pytest.raises(RowSumTooLowError) as excinfo:
            rarefied_diversity(matrix, depth=10, repetitions=2, seed=0)

        assert excinfo.value.samples == ["shallow"]
        assert excinfo.value.stage == "rarefaction"

    @pytest.mark.parametrize("kwargs", [
        {"depth": 0, "repetitions": 1},
        {"depth": -5, "repetitions": 1},
        {"depth": 10, "repetitions": 0},
        {"depth": 10, "repetitions": 1, "metric": "chao1"},
    ])
    def test_invalid_configuration(self, count_matrix, kwargs):
        """Bad parameters are rejected before any sampling."""
        with pytest.raises(ConfigurationError):
            rarefied_diversity(count_matrix, seed=0, **kwargs)
