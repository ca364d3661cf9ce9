"""
Keyed joins between taxon tables and sample metadata.

Count tables and metadata tables come from different sources and are rarely
in the same row order. Joining them by position silently attaches the wrong
diagnosis to a sample; every join here is by sample identifier, and any
disagreement between the two tables is an error rather than a dropped row.

Examples:
    >>> from balancefinder.io.metadata import align_metadata, extract_outcome
    >>> aligned = align_metadata(counts.index, metadata, required_columns=["diagnosis"])
    >>> outcome = extract_outcome(aligned, "diagnosis")
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import pandas as pd

from balancefinder.core.errors import SampleAlignmentError

logger = logging.getLogger(__name__)

__all__ = ['align_metadata', 'align_series', 'align_frame', 'extract_outcome', 'extract_covariates']

_MAX_LISTED = 10


def _preview(ids: Iterable) -> str:
    ids = sorted(str(i) for i in ids)
    head = ", ".join(ids[:_MAX_LISTED])
    if len(ids) > _MAX_LISTED:
        head += f", ... ({len(ids) - _MAX_LISTED} more)"
    return head


def align_metadata(
    sample_ids: pd.Index,
    metadata: pd.DataFrame,
    required_columns: Optional[list[str]] = None,
    stage: str = "metadata_join",
) -> pd.DataFrame:
    """
    Reorder metadata rows to match sample_ids, failing on any mismatch.

    Args:
        sample_ids: Identifiers of the count table rows
        metadata: Metadata indexed by sample identifier (any order)
        required_columns: Columns that must exist in metadata
        stage: Stage name recorded on raised errors

    Returns:
        Copy of metadata indexed exactly by sample_ids

    Raises:
        SampleAlignmentError: If either table has duplicate identifiers, if
            identifiers differ between the tables, or if a required column
            is missing
    """
    sample_ids = pd.Index(sample_ids).astype(str)
    meta_index = metadata.index.astype(str)

    if sample_ids.has_duplicates:
        dupes = sample_ids[sample_ids.duplicated()].unique()
        raise SampleAlignmentError(
            f"Duplicate sample identifiers in count table: {_preview(dupes)}",
            stage=stage, precondition="unique sample identifiers",
        )
    if meta_index.has_duplicates:
        dupes = meta_index[meta_index.duplicated()].unique()
        raise SampleAlignmentError(
            f"Duplicate sample identifiers in metadata: {_preview(dupes)}",
            stage=stage, precondition="unique sample identifiers",
        )

    missing_in_metadata = sample_ids.difference(meta_index)
    missing_in_counts = meta_index.difference(sample_ids)
    if len(missing_in_metadata) or len(missing_in_counts):
        parts = []
        if len(missing_in_metadata):
            parts.append(f"{len(missing_in_metadata)} samples have no metadata "
                         f"({_preview(missing_in_metadata)})")
        if len(missing_in_counts):
            parts.append(f"{len(missing_in_counts)} metadata rows have no counts "
                         f"({_preview(missing_in_counts)})")
        raise SampleAlignmentError(
            "Sample identifiers differ between count table and metadata: " + "; ".join(parts),
            stage=stage, precondition="identical sample identifier sets",
        )

    if required_columns:
        missing_cols = [c for c in required_columns if c not in metadata.columns]
        if missing_cols:
            raise SampleAlignmentError(
                f"Required metadata columns not found: {missing_cols}",
                stage=stage, precondition="required metadata columns present",
            )

    aligned = metadata.copy()
    aligned.index = meta_index
    aligned = aligned.loc[sample_ids]
    aligned.index.name = metadata.index.name
    logger.info(f"Aligned metadata for {len(sample_ids)} samples by identifier")
    return aligned


def align_series(
    values: pd.Series,
    sample_ids: pd.Index,
    stage: str,
) -> pd.Series:
    """
    Reindex a per-sample Series onto sample_ids.

    Extra entries in values are ignored (upstream filtering may have dropped
    samples); any sample_id without a value is an error.

    Raises:
        SampleAlignmentError: If values is not a Series, has duplicate
            identifiers, lacks any of sample_ids, or has a missing value
            for one of them
    """
    if not isinstance(values, pd.Series):
        raise SampleAlignmentError(
            f"Expected a pandas Series keyed by sample identifier, got {type(values).__name__}",
            stage=stage, precondition="per-sample values keyed by identifier",
        )
    index = values.index.astype(str)
    if index.has_duplicates:
        raise SampleAlignmentError(
            f"Duplicate sample identifiers: {_preview(index[index.duplicated()].unique())}",
            stage=stage, precondition="unique sample identifiers",
        )
    keys = pd.Index(sample_ids).astype(str)
    missing = keys.difference(index)
    if len(missing):
        raise SampleAlignmentError(
            f"{len(missing)} samples have no value: {_preview(missing)}",
            stage=stage, precondition="a value for every sample",
        )
    reindexed = pd.Series(values.to_numpy(), index=index, name=values.name).loc[keys]
    _reject_missing(reindexed.isna().to_numpy(), keys, stage)
    return reindexed


def _reject_missing(missing_mask, keys: pd.Index, stage: str) -> None:
    if missing_mask.any():
        missing = keys[missing_mask]
        raise SampleAlignmentError(
            f"{len(missing)} samples have missing values: {_preview(missing)}",
            stage=stage, precondition="no missing values",
        )


def extract_outcome(metadata: pd.DataFrame, column: str) -> pd.Series:
    """
    Categorical outcome column as a string Series keyed by sample identifier.

    Raises:
        SampleAlignmentError: If the column is missing or has missing values
    """
    if column not in metadata.columns:
        raise SampleAlignmentError(
            f"Outcome column '{column}' not found in metadata",
            stage="metadata_join", precondition="outcome column present",
        )
    outcome = metadata[column]
    if outcome.isna().any():
        missing = outcome.index[outcome.isna()]
        raise SampleAlignmentError(
            f"Outcome '{column}' is missing for {len(missing)} samples: {_preview(missing)}",
            stage="metadata_join", precondition="outcome recorded for every sample",
        )
    return outcome.astype(str).rename(column)


def extract_covariates(metadata: pd.DataFrame, columns: Optional[list[str]]) -> Optional[pd.DataFrame]:
    """
    Numeric covariate columns keyed by sample identifier, or None.

    Raises:
        SampleAlignmentError: If a column is missing, non-numeric, or has
            missing values
    """
    if not columns:
        return None
    missing_cols = [c for c in columns if c not in metadata.columns]
    if missing_cols:
        raise SampleAlignmentError(
            f"Covariate columns not found in metadata: {missing_cols}",
            stage="metadata_join", precondition="covariate columns present",
        )
    covariates = metadata[columns]
    non_numeric = [c for c in columns if not pd.api.types.is_numeric_dtype(covariates[c])]
    if non_numeric:
        raise SampleAlignmentError(
            f"Covariate columns must be numeric: {non_numeric}",
            stage="metadata_join", precondition="numeric covariates",
        )
    if covariates.isna().any().any():
        raise SampleAlignmentError(
            "Covariates contain missing values",
            stage="metadata_join", precondition="complete covariates",
        )
    return covariates.astype(float)


def align_frame(
    frame: pd.DataFrame,
    sample_ids: pd.Index,
    stage: str,
) -> pd.DataFrame:
    """
    Reindex a per-sample DataFrame onto sample_ids.

    Same contract as align_series: extra rows are ignored, missing samples
    are an error.

    Raises:
        SampleAlignmentError: On duplicate identifiers, missing samples, or
            missing values in a retained row
    """
    index = frame.index.astype(str)
    if index.has_duplicates:
        raise SampleAlignmentError(
            f"Duplicate sample identifiers: {_preview(index[index.duplicated()].unique())}",
            stage=stage, precondition="unique sample identifiers",
        )
    keys = pd.Index(sample_ids).astype(str)
    missing = keys.difference(index)
    if len(missing):
        raise SampleAlignmentError(
            f"{len(missing)} samples have no row: {_preview(missing)}",
            stage=stage, precondition="a row for every sample",
        )
    reindexed = frame.copy()
    reindexed.index = index
    reindexed = reindexed.loc[keys]
    _reject_missing(reindexed.isna().any(axis=1).to_numpy(), keys, stage)
    return reindexed
