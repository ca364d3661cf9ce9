"""
Count-table quality steps that precede log-ratio analysis.

- PrevalenceFilter / drop_empty: remove empty samples, empty and rare taxa
- MultiplicativeReplacement: replace zeros with detection-limit substitutes

Examples:
    >>> from balancefinder.quality import PrevalenceFilter, MultiplicativeReplacement
    >>> filtered = PrevalenceFilter(min_prevalence=0.1).apply(counts)
    >>> composition = MultiplicativeReplacement(fraction=0.65).apply(filtered)
"""

from balancefinder.quality.filtering import (
    PrevalenceFilter,
    PrevalenceFilterResult,
    drop_empty,
)
from balancefinder.quality.imputation import (
    MultiplicativeReplacement,
    multiplicative_replacement,
    detection_limits,
)

__all__ = [
    'PrevalenceFilter',
    'PrevalenceFilterResult',
    'drop_empty',
    'MultiplicativeReplacement',
    'multiplicative_replacement',
    'detection_limits',
]
