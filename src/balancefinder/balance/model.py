"""
Linear association model of the outcome on balance coordinates.

The composition is expressed in an orthonormal log-ratio basis whose first
axis is the selected balance (see basis.balance_basis). Every coordinate is
regressed on the same treatment-coded outcome design (plus covariates), so
the coefficient of an outcome level on all axes together describes the full
CLR mean difference between that level and the reference:

    Z = clr(X) · V          (n × (D-1) coordinates)
    Z = design · B + E      (least squares, one column of B per axis)

The balance axis alone is refitted with statsmodels OLS for the inferential
summary (partial F of the outcome term, p-value, R²).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm

from balancefinder.balance.basis import Balance, balance_basis
from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.geometry.aitchison import clr
from balancefinder.io.metadata import align_frame, align_series
from balancefinder.stats.design_matrix import OutcomeDesign, build_outcome_design

logger = logging.getLogger(__name__)

__all__ = ['LinearAssociationModel', 'fit_association_model']

_STAGE = "association_model"


@dataclass
class LinearAssociationModel:
    """
    Fitted outcome model on every balance-basis coordinate.

    Attributes:
        balance: The balance forming the first basis axis
        basis: Orthonormal basis (taxa × axes), first column 'balance'
        design: Outcome design used for every axis
        coefficients: Parameters × axes coefficient table
        f_statistic: Partial F of the outcome term on the balance axis
        p_value: p-value of that F test
        r_squared: R² of the balance-axis regression
        balance_fit: statsmodels results for the balance axis
    """
    balance: Balance
    basis: pd.DataFrame
    design: OutcomeDesign
    coefficients: pd.DataFrame
    f_statistic: float
    p_value: float
    r_squared: float
    balance_fit: Any = field(default=None, repr=False)

    @property
    def reference(self) -> str:
        return self.design.reference

    @property
    def levels(self) -> list[str]:
        return list(self.design.levels)

    @property
    def outcome_coefficients(self) -> pd.DataFrame:
        """Non-reference levels × axes: mean difference from the reference per axis."""
        rows = [self.design.col_names[i] for i in self.design.outcome_cols]
        table = self.coefficients.loc[rows]
        table.index = pd.Index(self.levels[1:], name="level")
        return table

    @property
    def balance_coefficients(self) -> pd.Series:
        """Outcome-level coefficients on the balance axis."""
        return self.outcome_coefficients["balance"]

    def to_dict(self) -> dict:
        return {
            "balance": self.balance.to_dict(),
            "reference": self.reference,
            "levels": self.levels,
            "f_statistic": float(self.f_statistic),
            "p_value": float(self.p_value),
            "r_squared": float(self.r_squared),
            "balance_coefficients": {str(k): float(v) for k, v in self.balance_coefficients.items()},
            "n_samples": self.design.n_samples,
            "covariates": [self.design.col_names[i] for i in self.design.covariate_cols],
        }


def fit_association_model(
    composition: TaxonMatrix,
    balance: Balance,
    outcome: pd.Series,
    covariates: Optional[pd.DataFrame] = None,
    reference: Optional[str] = None,
) -> LinearAssociationModel:
    """
    Fit the outcome design on every coordinate of the balance basis.

    Args:
        composition: Strictly positive composition (samples × taxa)
        balance: Balance over the composition's taxa
        outcome: Categorical outcome keyed by sample id
        covariates: Numeric covariates keyed by sample id, or None
        reference: Reference outcome level (default: first in sorted order)

    Returns:
        LinearAssociationModel

    Raises:
        UndefinedLogRatioError: If the composition has zeros
        SampleAlignmentError: If a sample lacks an outcome or covariate value
        DataQualityError: If the design is degenerate
    """
    balance = balance.restrict(composition.taxon_ids)
    outcome = align_series(outcome, composition.sample_ids, stage=_STAGE)
    if covariates is not None:
        covariates = align_frame(covariates, composition.sample_ids, stage=_STAGE)

    design = build_outcome_design(outcome, covariates, reference=reference)
    basis = balance_basis(balance)

    coordinates = clr(composition.data) @ basis.to_numpy()
    beta, *_ = np.linalg.lstsq(design.X, coordinates, rcond=None)
    coefficients = pd.DataFrame(beta, index=design.col_names, columns=basis.columns)

    exog = design.to_frame()
    endog = pd.Series(coordinates[:, 0], index=design.sample_ids, name="balance")
    fit = sm.OLS(endog, exog).fit()

    restriction = np.zeros((design.n_outcome_params, design.n_params))
    restriction[np.arange(design.n_outcome_params), design.outcome_cols] = 1.0
    f_test = fit.f_test(restriction)
    f_statistic = float(np.squeeze(f_test.fvalue))
    p_value = float(np.squeeze(f_test.pvalue))

    logger.info(f"Association model: balance {balance.r}:{balance.s} taxa, "
                f"F={f_statistic:.3f}, p={p_value:.3g}, R²={fit.rsquared:.3f}")

    return LinearAssociationModel(
        balance=balance,
        basis=basis,
        design=design,
        coefficients=coefficients,
        f_statistic=f_statistic,
        p_value=p_value,
        r_squared=float(fit.rsquared),
        balance_fit=fit,
    )
