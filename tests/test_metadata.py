"""Tests for keyed joins between count tables and metadata."""

import numpy as np
import pandas as pd
import pytest

from balancefinder.core.errors import SampleAlignmentError
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.io.metadata import (
    align_frame,
    align_metadata,
    align_series,
    extract_covariates,
    extract_outcome,
)


@pytest.fixture
def metadata():
    return pd.DataFrame(
        {"diagnosis": ["CD", "nonIBD", "UC"], "age": [31.0, 45.0, 52.0]},
        index=pd.Index(["S3", "S1", "S2"], name="sample_id"),
    )


class TestAlignMetadata:
    """Tests for align_metadata()."""

    def test_reorders_by_identifier(self, metadata):
        aligned = align_metadata(pd.Index(["S1", "S2", "S3"]), metadata)

        assert list(aligned.index) == ["S1", "S2", "S3"]
        assert list(aligned["diagnosis"]) == ["nonIBD", "UC", "CD"]

    def test_numeric_identifiers_match_strings(self):
        metadata = pd.DataFrame({"g": ["a", "b"]}, index=[2, 1])
        aligned = align_metadata(pd.Index(["1", "2"]), metadata)
        assert list(aligned["g"]) == ["b", "a"]

    def test_missing_sample_raises(self, metadata):
        with pytest.raises(SampleAlignmentError, match="no metadata"):
            align_metadata(pd.Index(["S1", "S2", "S3", "S4"]), metadata)

    def test_extra_metadata_row_raises(self, metadata):
        with pytest.raises(SampleAlignmentError, match="no counts"):
            align_metadata(pd.Index(["S1", "S2"]), metadata)

    def test_duplicate_metadata_raises(self):
        metadata = pd.DataFrame({"g": ["a", "b"]}, index=["S1", "S1"])
        with pytest.raises(SampleAlignmentError, match="Duplicate"):
            align_metadata(pd.Index(["S1"]), metadata)

    def test_required_column_missing(self, metadata):
        with pytest.raises(SampleAlignmentError, match="Required"):
            align_metadata(pd.Index(["S1", "S2", "S3"]), metadata, required_columns=["sex"])

    def test_taxon_matrix_join_is_keyed(self, synthetic_tables):
        """Every sample keeps its own diagnosis although metadata is shuffled."""
        counts, metadata = synthetic_tables
        matrix = TaxonMatrix.from_frames(counts, metadata)

        expected = metadata["diagnosis"].loc[counts.index]
        np.testing.assert_array_equal(matrix.sample_metadata["diagnosis"].to_numpy(),
                                      expected.to_numpy())


class TestAlignSeriesAndFrame:
    """Tests for align_series() and align_frame()."""

    def test_series_extra_ids_ignored(self):
        values = pd.Series([1, 2, 3], index=["c", "a", "b"])
        aligned = align_series(values, pd.Index(["a", "b"]), stage="test")
        assert aligned.tolist() == [2, 3]

    def test_series_missing_id_raises(self):
        values = pd.Series([1, 2], index=["a", "b"])
        with pytest.raises(SampleAlignmentError) as excinfo:
            align_series(values, pd.Index(["a", "z"]), stage="permanova")
        assert excinfo.value.stage == "permanova"

    def test_series_requires_series(self):
        with pytest.raises(SampleAlignmentError):
            align_series(np.array([1, 2]), pd.Index(["a", "b"]), stage="test")

    def test_frame_reindexed(self):
        frame = pd.DataFrame({"age": [1.0, 2.0, 3.0]}, index=["c", "a", "b"])
        aligned = align_frame(frame, pd.Index(["b", "c"]), stage="test")
        assert aligned["age"].tolist() == [3.0, 1.0]

    def test_frame_duplicate_raises(self):
        frame = pd.DataFrame({"age": [1.0, 2.0]}, index=["a", "a"])
        with pytest.raises(SampleAlignmentError):
            align_frame(frame, pd.Index(["a"]), stage="test")

    def test_series_missing_value_raises(self):
        values = pd.Series(["x", None, "y"], index=["a", "b", "c"])
        with pytest.raises(SampleAlignmentError, match="missing values: b"):
            align_series(values, pd.Index(["a", "b"]), stage="test")
        # Missing values outside sample_ids are ignored
        assert align_series(values, pd.Index(["c", "a"]), stage="test").tolist() == ["y", "x"]

    def test_frame_missing_value_raises(self):
        frame = pd.DataFrame({"age": [1.0, np.nan]}, index=["a", "b"])
        with pytest.raises(SampleAlignmentError):
            align_frame(frame, pd.Index(["a", "b"]), stage="test")


class TestExtract:
    """Tests for extract_outcome() and extract_covariates()."""

    def test_outcome_as_strings(self):
        metadata = pd.DataFrame({"group": [1, 2, 1]}, index=["a", "b", "c"])
        outcome = extract_outcome(metadata, "group")

        assert outcome.tolist() == ["1", "2", "1"]
        assert outcome.name == "group"

    def test_outcome_missing_values(self):
        metadata = pd.DataFrame({"group": ["x", None]}, index=["a", "b"])
        with pytest.raises(SampleAlignmentError, match="missing"):
            extract_outcome(metadata, "group")

    def test_outcome_missing_column(self, metadata):
        with pytest.raises(SampleAlignmentError):
            extract_outcome(metadata, "site")

    def test_covariates_none(self, metadata):
        assert extract_covariates(metadata, []) is None
        assert extract_covariates(metadata, None) is None

    def test_covariates_numeric(self, metadata):
        covariates = extract_covariates(metadata, ["age"])
        assert list(covariates.columns) == ["age"]
        assert covariates["age"].dtype == float

    def test_covariates_non_numeric(self, metadata):
        with pytest.raises(SampleAlignmentError, match="numeric"):
            extract_covariates(metadata, ["diagnosis"])

    def test_covariates_missing_values(self, metadata):
        metadata.loc["S1", "age"] = np.nan
        with pytest.raises(SampleAlignmentError):
            extract_covariates(metadata, ["age"])
