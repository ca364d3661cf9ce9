"""
Within-sample (alpha) diversity under rarefaction.

Examples:
    >>> from balancefinder.diversity import rarefied_diversity
    >>> diversity = rarefied_diversity(counts, depth=1000, repetitions=10, seed=0)
"""

from balancefinder.diversity.rarefaction import (
    rarefy,
    rarefied_diversity,
    shannon,
    simpson,
    observed,
    DIVERSITY_METRICS,
)

__all__ = [
    'rarefy',
    'rarefied_diversity',
    'shannon',
    'simpson',
    'observed',
    'DIVERSITY_METRICS',
]
