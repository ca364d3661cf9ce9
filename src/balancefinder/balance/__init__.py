"""
Outcome-associated balances: selection, modelling and evaluation.

- basis: Balance definition, contrast vector, orthonormal basis
- selection: greedy forward search (BalanceSelector)
- model: outcome model on every basis coordinate
- evaluation: balance values and CLR mean differences

Examples:
    >>> from balancefinder.balance import BalanceSelector, clr_mean_difference
    >>> result = BalanceSelector(max_taxa=10).select(composition, outcome)
    >>> clr_mean_difference(result.model).head()
"""

from balancefinder.balance.basis import Balance, balance_basis
from balancefinder.balance.model import LinearAssociationModel, fit_association_model
from balancefinder.balance.evaluation import (
    balance_values,
    clr_mean_difference,
    approximate_mean_difference,
)
from balancefinder.balance.selection import BalanceSelector, SelectionResult

__all__ = [
    'Balance',
    'balance_basis',
    'LinearAssociationModel',
    'fit_association_model',
    'balance_values',
    'clr_mean_difference',
    'approximate_mean_difference',
    'BalanceSelector',
    'SelectionResult',
]
