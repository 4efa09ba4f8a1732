"""Univariate extrapolation: per-covariate range checks.

A prediction value is out of range when it lies strictly outside the
``[min, max]`` interval observed for that covariate in the reference
sample; the bounds themselves are in range.  A prediction row is
univariate-novel when at least one covariate is out of range.

The NT1 score quantifies how far outside the range a row sits: each
covariate contributes ``min(x − min, 0, max − x) / (max − min)``, a
non-positive departure measured in units of the reference range, and
NT1 is their sum.  Rows inside every range score exactly 0.  The
univariate MIC is the covariate with the most negative contribution.

No covariance is involved, so this check stays valid for covariate
subsets whose combinatorial metric cannot be computed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .tables import check_covariates, covariate_matrix

__all__ = [
    "UnivariateScores",
    "univariate_scores",
    "compute_univariate",
]


@dataclass(frozen=True, eq=False)
class UnivariateScores:
    """Range-check outcome for every prediction row.

    Attributes
    ----------
    covariate_names : tuple[str, ...]
    lower, upper : ndarray, shape (p,)
        Reference minimum and maximum per covariate.
    out_of_range : ndarray of bool, shape (n_grid, p)
    nt1 : ndarray, shape (n_grid,)
        Summed range-normalised departure (≤ 0).
    mic_index : ndarray of int, shape (n_grid,)
        Most-departing covariate, or ``-1`` for in-range rows.
    """

    covariate_names: Tuple[str, ...]
    lower: np.ndarray
    upper: np.ndarray
    out_of_range: np.ndarray
    nt1: np.ndarray
    mic_index: np.ndarray

    @property
    def n_out_of_range(self) -> np.ndarray:
        return self.out_of_range.sum(axis=1)

    @property
    def percent_out_of_range(self) -> np.ndarray:
        return 100.0 * self.n_out_of_range / len(self.covariate_names)

    @property
    def is_novel(self) -> np.ndarray:
        return self.n_out_of_range >= 1

    @property
    def n_novel(self) -> int:
        return int(self.is_novel.sum())

    @property
    def percent_novel(self) -> float:
        n = len(self.nt1)
        return 100.0 * self.n_novel / n if n else 0.0

    @property
    def mic(self) -> List[Optional[str]]:
        return [
            self.covariate_names[i] if i >= 0 else None
            for i in self.mic_index
        ]


def univariate_scores(
    reference: np.ndarray,
    grid: np.ndarray,
    covariate_names: Sequence[str],
) -> UnivariateScores:
    """Range-check *grid* rows against the ranges of *reference*."""
    reference = np.asarray(reference, dtype=float)
    grid = np.asarray(grid, dtype=float)
    lower = reference.min(axis=0)
    upper = reference.max(axis=0)

    out_of_range = (grid < lower) | (grid > upper)

    span = upper - lower
    span = np.where(span > 0, span, 1.0)
    departure = np.minimum(
        np.minimum(grid - lower, 0.0), upper - grid) / span
    nt1 = departure.sum(axis=1)

    mic_index = np.where(
        out_of_range.any(axis=1), np.argmin(departure, axis=1), -1)

    return UnivariateScores(
        covariate_names=tuple(covariate_names),
        lower=lower,
        upper=upper,
        out_of_range=out_of_range,
        nt1=nt1,
        mic_index=mic_index.astype(int),
    )


def compute_univariate(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    prediction_grid: pd.DataFrame,
) -> UnivariateScores:
    """Flag covariate values of *prediction_grid* outside the reference range.

    Raises
    ------
    InvalidCovariateName
        If a covariate is missing from either table.
    """
    names = check_covariates(covariate_names, samples, prediction_grid)
    return univariate_scores(
        covariate_matrix(samples, names),
        covariate_matrix(prediction_grid, names),
        names,
    )
