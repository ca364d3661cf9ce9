"""
Evaluation of a selected balance: per-sample values and mean differences.

clr_mean_difference maps the outcome coefficients on every basis axis back
to CLR space (basis · β), giving the full per-taxon CLR mean difference
between each outcome level and the reference. approximate_mean_difference
keeps only its component along the balance direction, (d · v) v, which is
the part of the difference the single balance explains.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from balancefinder.balance.basis import Balance
from balancefinder.balance.model import LinearAssociationModel
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.geometry.aitchison import check_positive

__all__ = ['balance_values', 'clr_mean_difference', 'approximate_mean_difference']


def balance_values(composition: TaxonMatrix, balance: Balance) -> pd.Series:
    """
    Balance value of every sample.

    Raises:
        UndefinedLogRatioError: If any entry of the composition is not positive
    """
    balance = balance.restrict(composition.taxon_ids)
    log_values = np.log(check_positive(composition.data, stage="balance"))
    values = log_values @ balance.contrast.to_numpy()
    return pd.Series(values, index=composition.sample_ids, name="balance")


def clr_mean_difference(model: LinearAssociationModel) -> pd.DataFrame:
    """
    CLR mean difference of each non-reference level from the reference.

    Returns:
        DataFrame taxa × non-reference levels; each column sums to zero
    """
    beta = model.outcome_coefficients
    difference = model.basis.to_numpy() @ beta.to_numpy().T
    return pd.DataFrame(difference, index=model.basis.index, columns=beta.index)


def approximate_mean_difference(model: LinearAssociationModel) -> pd.DataFrame:
    """
    Projection of each CLR mean difference onto the balance direction.

    Returns:
        DataFrame taxa × non-reference levels; column = (d · v) v
    """
    exact = clr_mean_difference(model)
    v = model.basis["balance"].to_numpy()
    along = exact.to_numpy().T @ v
    return pd.DataFrame(np.outer(v, along), index=exact.index, columns=exact.columns)
