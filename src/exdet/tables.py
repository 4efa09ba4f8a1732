"""Reference sample / prediction grid validation.

Both inputs are :class:`pandas.DataFrame` objects sharing a covariate
schema.  This module checks that the requested covariates exist and
are complete, and pulls them out as float matrices in the declared
column order.  Row order is never changed.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import (
    EmptySubsetEnumeration,
    InvalidCovariateName,
    MissingCovariateValues,
)

__all__ = [
    "check_covariates",
    "covariate_matrix",
    "coordinates",
]


def check_covariates(
    covariate_names: Sequence[str],
    samples: pd.DataFrame,
    prediction_grid: Optional[pd.DataFrame] = None,
) -> Tuple[str, ...]:
    """Validate *covariate_names* against the reference (and grid) table.

    Returns
    -------
    tuple of str
        The covariate names, in declared order.

    Raises
    ------
    EmptySubsetEnumeration
        If no covariate is requested.
    InvalidCovariateName
        If a covariate is absent from either table.
    MissingCovariateValues
        If a covariate column holds NaN values in either table.
    """
    if isinstance(covariate_names, str):
        covariate_names = [covariate_names]
    names = tuple(covariate_names)
    if not names:
        raise EmptySubsetEnumeration("No covariates supplied")
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate covariate names in {list(names)}")

    tables = [("samples", samples)]
    if prediction_grid is not None:
        tables.append(("prediction_grid", prediction_grid))
    for table, df in tables:
        missing = [n for n in names if n not in df.columns]
        if missing:
            raise InvalidCovariateName(missing, table)
        na_cols = [n for n in names if df[n].isna().any()]
        if na_cols:
            raise MissingCovariateValues(
                f"Missing values in {table} column(s) {na_cols}")
    return names


def covariate_matrix(
    df: pd.DataFrame, covariate_names: Sequence[str],
) -> np.ndarray:
    """Return the (n_rows, p) float matrix of the named covariates."""
    return df.loc[:, list(covariate_names)].to_numpy(dtype=float)


def coordinates(
    df: pd.DataFrame, coordinate_names: Optional[Sequence[str]],
) -> Optional[np.ndarray]:
    """Return the (n_rows, 2) coordinate matrix, or None if absent.

    Coordinates are passed through untouched for downstream mapping;
    they take no part in any computation.
    """
    if not coordinate_names:
        return None
    cols = list(coordinate_names)
    if not all(c in df.columns for c in cols):
        return None
    return df.loc[:, cols].to_numpy()
