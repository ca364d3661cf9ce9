"""
Statistical tests and association scores.

- permanova: distance-based test of group differences with a seeded,
  chunked label-permutation null
- label_permutation: free and within-stratum label permutations
- design_matrix: treatment-coded outcome designs with covariates
- scoring: vectorized association scores for candidate balances
"""

from balancefinder.stats.label_permutation import (
    generate_free_permutation,
    generate_stratified_permutation,
    permutation_pvalue,
)
from balancefinder.stats.permanova import PermanovaResult, permanova, pseudo_f
from balancefinder.stats.design_matrix import OutcomeDesign, build_outcome_design
from balancefinder.stats.scoring import AssociationScorer, ScoringRule

__all__ = [
    'generate_free_permutation',
    'generate_stratified_permutation',
    'permutation_pvalue',
    'PermanovaResult',
    'permanova',
    'pseudo_f',
    'OutcomeDesign',
    'build_outcome_design',
    'AssociationScorer',
    'ScoringRule',
]
