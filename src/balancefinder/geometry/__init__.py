"""
Aitchison geometry of compositions: CLR coordinates, distances, ordination.

Examples:
    >>> from balancefinder.geometry import aitchison_distance, pcoa
    >>> ordination = pcoa(aitchison_distance(composition))
    >>> ordination.proportion_explained.sum() <= 100.0 + 1e-9
    True
"""

from balancefinder.geometry.aitchison import (
    check_positive,
    closure,
    clr,
    CLRTransform,
    DistanceMatrix,
    as_distance_matrix,
    aitchison_distance,
)
from balancefinder.geometry.ordination import Ordination, pcoa

__all__ = [
    'check_positive',
    'closure',
    'clr',
    'CLRTransform',
    'DistanceMatrix',
    'as_distance_matrix',
    'aitchison_distance',
    'Ordination',
    'pcoa',
]
