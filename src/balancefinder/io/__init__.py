"""Keyed joins between count tables and sample metadata."""

from balancefinder.io.metadata import (
    align_metadata,
    align_series,
    align_frame,
    extract_outcome,
    extract_covariates,
)

__all__ = [
    'align_metadata',
    'align_series',
    'align_frame',
    'extract_outcome',
    'extract_covariates',
]
