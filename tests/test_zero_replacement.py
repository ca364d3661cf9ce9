"""Tests for multiplicative zero replacement."""

import numpy as np
import pandas as pd
import pytest

from balancefinder.core.errors import ConfigurationError, UndefinedLogRatioError
from balancefinder.core.quality import QualityFlag
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.geometry.aitchison import check_positive, clr
from balancefinder.quality.imputation import (
    MultiplicativeReplacement,
    detection_limits,
    multiplicative_replacement,
)


COUNTS = np.array([
    [10.0, 0.0, 5.0],
    [0.0, 8.0, 2.0],
    [5.0, 5.0, 5.0],
    [1.0, 1.0, 8.0],
])


def _matrix(values):
    values = np.asarray(values, dtype=float)
    frame = pd.DataFrame(
        values,
        index=[f"S{i}" for i in range(values.shape[0])],
        columns=[f"T{j}" for j in range(values.shape[1])],
    )
    return TaxonMatrix.from_frames(frame)


class TestMultiplicativeReplacement:
    """Tests for multiplicative_replacement() and its Transform."""

    def test_all_entries_positive(self):
        """No zero or negative entries remain."""
        replaced, _ = multiplicative_replacement(COUNTS)
        assert (replaced > 0).all()

    def test_row_totals_preserved_without_normalization(self):
        """Row sums equal the input row sums within 1e-9 relative tolerance."""
        replaced, _ = multiplicative_replacement(COUNTS, normalize=False)
        np.testing.assert_allclose(replaced.sum(axis=1), COUNTS.sum(axis=1), rtol=1e-9)

    def test_rows_close_to_one_when_normalized(self):
        """Normalized output rows sum to 1."""
        replaced, _ = multiplicative_replacement(COUNTS, normalize=True)
        np.testing.assert_allclose(replaced.sum(axis=1), 1.0, rtol=1e-9)

    def test_synthetic_table_properties(self, synthetic_tables):
        """Positivity and row totals hold on a realistic sparse table."""
        counts, _ = synthetic_tables
        values = counts.to_numpy(dtype=float)
        replaced, zero_mask = multiplicative_replacement(values, normalize=False)

        assert (replaced > 0).all()
        np.testing.assert_allclose(replaced.sum(axis=1), values.sum(axis=1), rtol=1e-9)
        assert zero_mask.sum() == (values == 0).sum()

    def test_substitute_is_fraction_of_smallest_proportion(self):
        """Zero cells take fraction × the taxon's smallest positive proportion."""
        replaced, zero_mask = multiplicative_replacement(COUNTS, fraction=0.65, normalize=True)
        deltas = detection_limits(COUNTS, fraction=0.65)

        # T0 is zero in S1; its smallest positive proportion is 1/10 (S3)
        assert deltas[0] == pytest.approx(0.65 * 0.1)
        assert replaced[1, 0] == pytest.approx(deltas[0])
        assert zero_mask[1, 0] and zero_mask[0, 1]

    def test_ratios_between_observed_taxa_preserved(self):
        """Non-zero cells of a row are rescaled by a common factor."""
        replaced, _ = multiplicative_replacement(COUNTS, normalize=False)
        assert replaced[0, 0] / replaced[0, 2] == pytest.approx(10.0 / 5.0)
        assert replaced[1, 1] / replaced[1, 2] == pytest.approx(8.0 / 2.0)

    def test_rows_without_zeros_only_closed(self):
        """A row without zeros is only rescaled."""
        replaced, _ = multiplicative_replacement(COUNTS, normalize=False)
        np.testing.assert_allclose(replaced[2], COUNTS[2])
        np.testing.assert_allclose(replaced[3], COUNTS[3])

    def test_transform_flags_replaced_cells(self):
        """Replaced cells carry ZERO_REPLACED; others stay ORIGINAL."""
        result = MultiplicativeReplacement().apply(_matrix(COUNTS))

        flags = result.quality_flags
        assert flags[0, 1] & QualityFlag.ZERO_REPLACED
        assert flags[1, 0] & QualityFlag.ZERO_REPLACED
        assert flags[2, 0] == QualityFlag.ORIGINAL
        assert int((flags & QualityFlag.ZERO_REPLACED).astype(bool).sum()) == 2

    def test_transform_does_not_mutate_input(self):
        """The input matrix keeps its zeros."""
        matrix = _matrix(COUNTS)
        MultiplicativeReplacement().apply(matrix)
        assert (matrix.data == 0).sum() == 2

    def test_taxon_never_observed_raises(self):
        """A taxon zero in every sample has no detection limit."""
        with pytest.raises(UndefinedLogRatioError):
            multiplicative_replacement(np.array([[1.0, 0.0], [2.0, 0.0]]))

    def test_negative_values_raise(self):
        """Negative values cannot be replaced."""
        with pytest.raises(UndefinedLogRatioError):
            multiplicative_replacement(np.array([[1.0, -1.0], [2.0, 3.0]]))

    def test_empty_row_raises(self):
        """A sample with zero total cannot be closed."""
        with pytest.raises(UndefinedLogRatioError):
            multiplicative_replacement(np.array([[0.0, 0.0], [2.0, 3.0]]))

    @pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5])
    def test_fraction_outside_open_interval(self, fraction):
        """fraction must be in (0, 1)."""
        with pytest.raises(ConfigurationError):
            MultiplicativeReplacement(fraction=fraction)


class TestLogRatioGuard:
    """Zeros must never reach a log-ratio step."""

    def test_clr_of_raw_counts_raises(self):
        """CLR of a matrix with zeros raises UndefinedLogRatioError."""
        with pytest.raises(UndefinedLogRatioError):
            clr(COUNTS)

    def test_clr_after_replacement_is_defined(self):
        """CLR of the replaced composition is finite."""
        replaced, _ = multiplicative_replacement(COUNTS)
        assert np.isfinite(clr(replaced)).all()

    def test_check_positive_names_stage(self):
        """The raised error names the calling stage."""
        with pytest.raises(UndefinedLogRatioError) as excinfo:
            check_positive(np.array([1.0, 0.0]), stage="balance")
        assert excinfo.value.stage == "balance"


class TestProvenance:
    """Flags and transform records describe what was done to the table."""

    def test_describe_flags(self):
        assert QualityFlag.describe(QualityFlag.ORIGINAL) == "ORIGINAL"
        assert QualityFlag.describe(QualityFlag.ZERO_REPLACED) == "ZERO_REPLACED"

    def test_transform_record(self):
        replacer = MultiplicativeReplacement(fraction=0.5)
        record = replacer.to_dict()

        assert record["name"] == "MultiplicativeReplacement"
        assert record["params"] == {"fraction": 0.5, "normalize": True}
        assert repr(replacer) == "MultiplicativeReplacement(fraction=0.5, normalize=True)"

    def test_validate_reports_problems(self):
        problems = MultiplicativeReplacement().validate(_matrix([[0.0, 0.0], [1.0, 0.0]]))
        assert "Matrix contains empty samples" in problems
        assert "Matrix contains taxa never observed" in problems
