"""
Core data structure for per-sample taxon tables.

TaxonMatrix unifies numerical data (read counts or proportions) with sample
metadata (outcome labels, covariates) and per-cell quality provenance (which
values were zero-replaced).

Biological Context:
    Microbiome profiles are compositional:
    - Rows = samples (stool, swab, biopsy)
    - Columns = taxa (species, genera, ASVs)
    - Values = read counts, whose totals reflect sequencing depth rather
      than absolute abundance

    The same container carries the table through every stage:
    - CountMatrix: non-negative integers
    - CompositionMatrix: strictly positive proportions, rows sum to 1
    - CLR matrix: real log-ratio coordinates, rows sum to 0

Engineering Design:
    - Immutable: Operations return new instances (functional style)
    - Keyed: sample_metadata is indexed by sample_ids and is never aligned
      by position
    - Validated: Constructor checks shape and index consistency

Examples:
    >>> import pandas as pd
    >>> from balancefinder.core.taxonmatrix import TaxonMatrix
    >>>
    >>> counts = pd.DataFrame(
    ...     [[10, 0, 5], [0, 8, 2]],
    ...     index=["S1", "S2"],
    ...     columns=["Bacteroides", "Prevotella", "Akkermansia"],
    ... )
    >>> metadata = pd.DataFrame({"diagnosis": ["CD", "nonIBD"]}, index=["S2", "S1"])
    >>> matrix = TaxonMatrix.from_frames(counts, metadata)
    >>> matrix.sample_metadata.loc["S1", "diagnosis"]
    'nonIBD'
"""

from __future__ import annotations

from typing import Optional
import numpy as np
import pandas as pd

from balancefinder.core.quality import QualityFlag

__all__ = ['TaxonMatrix']


class TaxonMatrix:
    """
    Immutable container for a samples × taxa table + sample metadata + quality flags.

    Attributes:
        data: Numerical matrix (samples × taxa)
        sample_ids: Row identifiers
        taxon_ids: Column identifiers
        sample_metadata: Sample annotations indexed by sample_ids
        quality_flags: Per-cell QualityFlag values (same shape as data)

    Shape Invariants:
        - data.shape[0] == len(sample_ids)
        - data.shape[1] == len(taxon_ids)
        - quality_flags.shape == data.shape
        - sample_metadata.index equals sample_ids
    """

    def __init__(
        self,
        data: np.ndarray,
        sample_ids: pd.Index,
        taxon_ids: pd.Index,
        sample_metadata: Optional[pd.DataFrame] = None,
        quality_flags: Optional[np.ndarray] = None,
    ):
        """
        Initialize TaxonMatrix with validation.

        Args:
            data: Matrix (samples × taxa)
            sample_ids: Row identifiers; must be unique
            taxon_ids: Column identifiers; must be unique
            sample_metadata: DataFrame indexed exactly by sample_ids.
                Defaults to an empty frame over sample_ids.
            quality_flags: Per-cell flags, defaults to all ORIGINAL

        Raises:
            ValueError: If shapes are inconsistent or indices don't match
            TypeError: If data types are incorrect
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(taxon_ids, pd.Index):
            raise TypeError(f"taxon_ids must be pd.Index, got {type(taxon_ids)}")

        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")

        n_samples, n_taxa = data.shape

        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data rows ({n_samples})"
            )
        if len(taxon_ids) != n_taxa:
            raise ValueError(
                f"taxon_ids length ({len(taxon_ids)}) must match data columns ({n_taxa})"
            )
        if not sample_ids.is_unique:
            raise ValueError("sample_ids must be unique")
        if not taxon_ids.is_unique:
            raise ValueError("taxon_ids must be unique")

        if sample_metadata is None:
            sample_metadata = pd.DataFrame(index=sample_ids)
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")
        if not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples."
            )

        if quality_flags is None:
            quality_flags = np.full(data.shape, QualityFlag.ORIGINAL, dtype=np.uint8)
        if not isinstance(quality_flags, np.ndarray):
            raise TypeError(f"quality_flags must be np.ndarray, got {type(quality_flags)}")
        if quality_flags.shape != data.shape:
            raise ValueError(
                f"quality_flags shape {quality_flags.shape} must match data shape {data.shape}"
            )

        self._data = data
        self._sample_ids = sample_ids
        self._taxon_ids = taxon_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags

    @classmethod
    def from_frames(
        cls,
        counts: pd.DataFrame,
        metadata: Optional[pd.DataFrame] = None,
        required_columns: Optional[list[str]] = None,
    ) -> TaxonMatrix:
        """
        Build a matrix from a samples × taxa DataFrame and keyed metadata.

        Metadata rows are matched to count rows by sample identifier. Any
        identifier present in one table but not the other is an error.

        Args:
            counts: Samples × taxa table, index = sample ids
            metadata: Sample annotations, index = sample ids (any order)
            required_columns: Metadata columns that must be present

        Raises:
            SampleAlignmentError: On duplicate or mismatched identifiers
        """
        from balancefinder.io.metadata import align_metadata

        sample_ids = pd.Index(counts.index.astype(str), name=counts.index.name)
        taxon_ids = pd.Index(counts.columns.astype(str), name=counts.columns.name)

        if metadata is None:
            aligned = pd.DataFrame(index=sample_ids)
        else:
            aligned = align_metadata(sample_ids, metadata, required_columns=required_columns)

        return cls(
            data=counts.to_numpy(dtype=float, copy=True),
            sample_ids=sample_ids,
            taxon_ids=taxon_ids,
            sample_metadata=aligned,
        )

    @property
    def data(self) -> np.ndarray:
        """Numerical matrix (samples × taxa)."""
        return self._data

    @property
    def sample_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._sample_ids

    @property
    def taxon_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._taxon_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        """Sample annotations, indexed by sample_ids."""
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        """Quality tracking matrix (same shape as data)."""
        return self._quality_flags

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_samples, n_taxa)."""
        return self._data.shape

    @property
    def n_samples(self) -> int:
        return self._data.shape[0]

    @property
    def n_taxa(self) -> int:
        return self._data.shape[1]

    @property
    def row_totals(self) -> pd.Series:
        """Per-sample totals (sequencing depth for count tables)."""
        return pd.Series(self._data.sum(axis=1), index=self._sample_ids, name="coverage")

    def select_samples(self, mask: np.ndarray | pd.Series) -> TaxonMatrix:
        """
        Subset matrix by samples (rows), preserving metadata and flags.

        Args:
            mask: Boolean array/Series over samples. A Series is aligned to
                sample_ids by label.

        Raises:
            ValueError: If mask length doesn't match n_samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.reindex(self._sample_ids, fill_value=False).to_numpy(dtype=bool)
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        kept = self._sample_ids[mask]
        return TaxonMatrix(
            data=self._data[mask, :],
            sample_ids=kept,
            taxon_ids=self._taxon_ids,
            sample_metadata=self._sample_metadata.loc[kept],
            quality_flags=self._quality_flags[mask, :],
        )

    def select_taxa(self, mask: np.ndarray | pd.Series) -> TaxonMatrix:
        """
        Subset matrix by taxa (columns), preserving metadata and flags.

        Args:
            mask: Boolean array/Series over taxa. A Series is aligned to
                taxon_ids by label.

        Raises:
            ValueError: If mask length doesn't match n_taxa
        """
        if isinstance(mask, pd.Series):
            mask = mask.reindex(self._taxon_ids, fill_value=False).to_numpy(dtype=bool)
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_taxa:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_taxa ({self.n_taxa})"
            )

        return TaxonMatrix(
            data=self._data[:, mask],
            sample_ids=self._sample_ids,
            taxon_ids=self._taxon_ids[mask],
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags[:, mask],
        )

    def with_data(
        self,
        data: np.ndarray,
        quality_flags: Optional[np.ndarray] = None,
    ) -> TaxonMatrix:
        """
        New matrix with replaced values and the same identifiers and metadata.

        Args:
            data: Replacement matrix, same shape as self.data
            quality_flags: Replacement flags; defaults to a copy of the current flags
        """
        if quality_flags is None:
            quality_flags = self._quality_flags.copy()
        return TaxonMatrix(
            data=data,
            sample_ids=self._sample_ids,
            taxon_ids=self._taxon_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=quality_flags,
        )

    def __repr__(self) -> str:
        if self.n_samples == 0 or self.n_taxa == 0:
            return f"TaxonMatrix({self.n_samples} samples × {self.n_taxa} taxa)"
        return (
            f"TaxonMatrix({self.n_samples} samples × {self.n_taxa} taxa)\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Taxa: {self.taxon_ids[0]}...{self.taxon_ids[-1]}\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
