"""
Outcome design matrices for balance association models.

Design matrix structure:
    X = [intercept | outcome_dummies | covariate_columns]

The outcome is treatment-coded: the reference level is absorbed into the
intercept and each other level gets one indicator column, so its
coefficient is the mean difference from the reference. Numeric covariates
are standardized and treated as nuisance terms; the reduced design
(intercept + covariates) is what the outcome term is tested against.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from numpy.typing import NDArray

from balancefinder.core.errors import ConfigurationError, DataQualityError

__all__ = ['OutcomeDesign', 'build_outcome_design']


@dataclass(frozen=True)
class OutcomeDesign:
    """Outcome + covariate design matrix with column bookkeeping.

    Attributes:
        X: Design matrix (n_samples, n_params), full column rank.
        sample_ids: Row identifiers.
        col_names: Human-readable names for all columns.
        outcome_cols: Column indices of the outcome dummies.
        covariate_cols: Column indices of covariate columns.
        levels: Outcome levels, reference first.
        reference: Reference level (absorbed into the intercept).
    """

    X: NDArray[np.float64]
    sample_ids: pd.Index
    col_names: list[str]
    outcome_cols: list[int]
    covariate_cols: list[int]
    levels: list[str]
    reference: str

    @property
    def n_params(self) -> int:
        return self.X.shape[1]

    @property
    def n_samples(self) -> int:
        return self.X.shape[0]

    @property
    def df_residual(self) -> int:
        return self.n_samples - self.n_params

    @property
    def n_outcome_params(self) -> int:
        return len(self.outcome_cols)

    @property
    def X_reduced(self) -> NDArray[np.float64]:
        """Design without the outcome columns (intercept + covariates)."""
        keep = [i for i in range(self.n_params) if i not in self.outcome_cols]
        return self.X[:, keep]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.X, index=self.sample_ids, columns=self.col_names)


def build_outcome_design(
    outcome: pd.Series,
    covariates: Optional[pd.DataFrame] = None,
    reference: Optional[str] = None,
) -> OutcomeDesign:
    """
    Build a treatment-coded design matrix with optional covariates.

    Args:
        outcome: Categorical outcome per sample (index = sample ids).
        covariates: Numeric covariates indexed by the same sample ids, or None.
        reference: Reference level; defaults to the first level in sorted order.

    Returns:
        OutcomeDesign with full design matrix and column bookkeeping.

    Raises:
        ConfigurationError: If reference is not an outcome level.
        DataQualityError: If the outcome has fewer than 2 levels, a covariate
            has zero variance, there are no residual degrees of freedom, or
            the design is rank-deficient.
    """
    outcome = outcome.astype(str)
    levels = sorted(outcome.unique())
    if len(levels) < 2:
        raise DataQualityError(
            f"Outcome needs at least 2 levels, got {levels}",
            stage="association_model", precondition="at least 2 outcome levels",
        )
    if reference is None:
        reference = levels[0]
    elif reference not in levels:
        raise ConfigurationError(
            f"Reference level '{reference}' not in outcome levels {levels}",
            stage="association_model", precondition="reference is an outcome level",
        )
    ordered = [reference] + [lvl for lvl in levels if lvl != reference]

    # drop_first=True means the reference level is the intercept
    outcome_cat = pd.Categorical(outcome.to_numpy(), categories=ordered)
    X_outcome = pd.get_dummies(
        pd.Series(outcome_cat, index=outcome.index, name=outcome.name),
        drop_first=True, dtype=float,
    )
    X_outcome = sm.add_constant(X_outcome, has_constant="add")
    col_names = ["const"] + [str(c) for c in X_outcome.columns[1:]]
    X_np = X_outcome.to_numpy(dtype=np.float64)
    outcome_cols = list(range(1, X_np.shape[1]))

    covariate_cols: list[int] = []
    if covariates is not None and len(covariates.columns) > 0:
        cov_parts: list[NDArray] = []
        for col in covariates.columns:
            vals = covariates[col].to_numpy(dtype=np.float64)
            sigma = np.std(vals, ddof=1)
            if not sigma > 1e-10:
                raise DataQualityError(
                    f"Covariate '{col}' has zero variance; cannot standardize",
                    stage="association_model", precondition="covariates vary",
                )
            cov_parts.append(((vals - vals.mean()) / sigma).reshape(-1, 1))
            col_names.append(str(col))
        covariate_cols = list(range(X_np.shape[1], X_np.shape[1] + len(cov_parts)))
        X_np = np.hstack([X_np] + cov_parts)

    n_samples, n_params = X_np.shape
    if n_samples <= n_params:
        raise DataQualityError(
            f"Too few samples for the design: n={n_samples}, parameters={n_params}",
            stage="association_model", precondition="n > number of parameters",
        )

    rank = np.linalg.matrix_rank(X_np)
    if rank < n_params:
        raise DataQualityError(
            f"Design matrix is rank-deficient: rank={rank}, n_params={n_params}. "
            f"Columns: {col_names}. A covariate may be collinear with the "
            f"outcome or another covariate.",
            stage="association_model", precondition="full-rank design",
        )

    return OutcomeDesign(
        X=X_np,
        sample_ids=pd.Index(outcome.index),
        col_names=col_names,
        outcome_cols=outcome_cols,
        covariate_cols=covariate_cols,
        levels=ordered,
        reference=reference,
    )
