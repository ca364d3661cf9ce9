"""
Balances and the orthonormal log-ratio bases built around them.

A balance contrasts two disjoint taxon groups B1 (numerator, r taxa) and
B2 (denominator, s taxa):

    b(x) = sqrt(r·s / (r+s)) · ln( gm(x_B1) / gm(x_B2) )

where gm is the geometric mean. Equivalently b(x) = <clr(x), v> with the
contrast vector

    v_j = +sqrt(s / (r·(r+s)))   j in B1
    v_j = -sqrt(r / (s·(r+s)))   j in B2
    v_j = 0                      otherwise

v sums to zero and has unit norm, so it is one axis of an orthonormal basis
of the CLR hyperplane. The remaining D-2 axes are completed from the null
space of [1, v]; the model on those axes recovers full CLR mean differences.

Sequential binary partition (SBP) notation: +1 for B1, -1 for B2, 0 for
taxa not in the balance.

References:
    Egozcue, J. J. & Pawlowsky-Glahn, V. (2005). "Groups of parts and their
    balances in compositional data analysis." Mathematical Geology 37: 795-828.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import linalg

from balancefinder.core.errors import ConfigurationError, EmptyBalanceSetsError

__all__ = ['Balance', 'balance_basis']


@dataclass(frozen=True)
class Balance:
    """
    Log-ratio contrast between two disjoint taxon groups.

    Attributes:
        numerator: Taxa in B1, in the order they were added
        denominator: Taxa in B2, in the order they were added
        taxon_ids: All taxa of the composition the balance is defined on

    Examples:
        >>> b = Balance(("Bacteroides",), ("Prevotella",), ("Bacteroides", "Prevotella", "Akkermansia"))
        >>> b.sbp.tolist()
        [1, -1, 0]
    """
    numerator: tuple[str, ...]
    denominator: tuple[str, ...]
    taxon_ids: tuple[str, ...]

    def __post_init__(self):
        numerator = tuple(str(t) for t in self.numerator)
        denominator = tuple(str(t) for t in self.denominator)
        taxon_ids = tuple(str(t) for t in self.taxon_ids)
        object.__setattr__(self, "numerator", numerator)
        object.__setattr__(self, "denominator", denominator)
        object.__setattr__(self, "taxon_ids", taxon_ids)

        if not numerator or not denominator:
            raise EmptyBalanceSetsError(
                "A balance needs at least one taxon in both numerator and denominator",
                stage="balance", precondition="both taxon sets non-empty",
            )
        overlap = set(numerator) & set(denominator)
        if overlap:
            raise ConfigurationError(
                f"Taxa in both numerator and denominator: {sorted(overlap)}",
                stage="balance", precondition="disjoint taxon sets",
            )
        unknown = (set(numerator) | set(denominator)) - set(taxon_ids)
        if unknown:
            raise ConfigurationError(
                f"Balance taxa not in the composition: {sorted(unknown)}",
                stage="balance", precondition="balance taxa belong to the composition",
            )
        if len(set(numerator)) != len(numerator) or len(set(denominator)) != len(denominator):
            raise ConfigurationError(
                "Balance taxon sets contain duplicates",
                stage="balance", precondition="unique taxa per set",
            )

    @classmethod
    def from_sbp(cls, sbp: pd.Series) -> Balance:
        """Balance from a +1/-1/0 Series indexed by taxon id."""
        taxon_ids = tuple(str(t) for t in sbp.index)
        numerator = tuple(str(t) for t, v in sbp.items() if v > 0)
        denominator = tuple(str(t) for t, v in sbp.items() if v < 0)
        return cls(numerator, denominator, taxon_ids)

    @property
    def r(self) -> int:
        return len(self.numerator)

    @property
    def s(self) -> int:
        return len(self.denominator)

    @property
    def n_taxa(self) -> int:
        return self.r + self.s

    @property
    def coefficient(self) -> float:
        """Normalizing constant sqrt(r·s / (r+s))."""
        return float(np.sqrt(self.r * self.s / (self.r + self.s)))

    @property
    def sbp(self) -> pd.Series:
        """+1 for numerator taxa, -1 for denominator taxa, 0 otherwise."""
        values = pd.Series(0, index=pd.Index(self.taxon_ids, name="taxon"), name="sbp", dtype=int)
        values.loc[list(self.numerator)] = 1
        values.loc[list(self.denominator)] = -1
        return values

    @property
    def contrast(self) -> pd.Series:
        """Unit-norm CLR direction of the balance."""
        r, s = self.r, self.s
        sbp = self.sbp
        values = np.zeros(len(sbp))
        values[sbp.to_numpy() > 0] = np.sqrt(s / (r * (r + s)))
        values[sbp.to_numpy() < 0] = -np.sqrt(r / (s * (r + s)))
        return pd.Series(values, index=sbp.index, name="contrast")

    def restrict(self, taxon_ids: Sequence[str]) -> Balance:
        """The same balance defined over a different taxon universe."""
        return Balance(self.numerator, self.denominator, tuple(taxon_ids))

    def to_dict(self) -> dict:
        return {
            "numerator": list(self.numerator),
            "denominator": list(self.denominator),
            "n_numerator": self.r,
            "n_denominator": self.s,
        }

    def __str__(self) -> str:
        return f"[{' · '.join(self.numerator)}] / [{' · '.join(self.denominator)}]"


def balance_basis(balance: Balance) -> pd.DataFrame:
    """
    Orthonormal basis of the CLR hyperplane whose first axis is the balance.

    Args:
        balance: Balance over D taxa

    Returns:
        DataFrame taxa × (D-1). Column 'balance' is the balance contrast;
        columns 'axis_2'.. complete the basis. Columns are orthonormal and
        each sums to zero.
    """
    v = balance.contrast.to_numpy()
    d = len(v)
    constraints = np.vstack([np.ones(d), v])
    complement = linalg.null_space(constraints)
    basis = np.column_stack([v, complement])
    columns = ["balance"] + [f"axis_{i + 2}" for i in range(complement.shape[1])]
    return pd.DataFrame(basis, index=balance.contrast.index, columns=columns)
