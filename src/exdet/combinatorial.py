"""Combinatorial extrapolation: the NT2 score and its MIC.

A prediction location can sit inside the observed range of every
covariate and still describe a combination never seen in the
reference data (warm *and* deep, say, when warm water was only ever
sampled on the shelf).  NT2 captures this with a Mahalanobis distance
that respects the reference correlation structure:

    D(p)  = (x_p − c)ᵗ · Σ⁻¹ · (x_p − c)
    D̄     = mean of D over the reference rows themselves
    NT2(p) = D(p) / D̄

NT2 ≤ 1 places the location inside the combinatorial envelope of the
reference data; NT2 > 1 is combinatorial extrapolation, and the
magnitude is the degree of novelty.  By construction the mean NT2 of
the reference rows is exactly 1.

The most influential covariate (MIC) of an extrapolating location is
the covariate whose removal from the distance produces the largest
reduction in D.  Ties go to the covariate declared first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .covariance import CovariateSpace, space_from_matrix
from .errors import DegenerateCalibration
from .tables import check_covariates, covariate_matrix
from .thresholds import DEFAULT_THRESHOLDS, ThresholdRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "CombinatorialScores",
    "combinatorial_scores",
    "compute_combinatorial",
]


@dataclass(frozen=True, eq=False)
class CombinatorialScores:
    """NT2 scores for every prediction row.

    Attributes
    ----------
    covariate_names : tuple[str, ...]
    distance : ndarray, shape (n_grid,)
        Squared Mahalanobis distance D(p).
    calibration : float
        Mean reference distance D̄.
    nt2 : ndarray, shape (n_grid,)
        ``distance / calibration``.
    mic_index : ndarray of int, shape (n_grid,)
        Index into ``covariate_names`` of the most influential
        covariate, or ``-1`` where the row is not extrapolating.
    cutoff : float
        NT2 value above which a row counts as extrapolating.
    """

    covariate_names: Tuple[str, ...]
    distance: np.ndarray
    calibration: float
    nt2: np.ndarray
    mic_index: np.ndarray
    cutoff: float = 1.0

    @property
    def is_novel(self) -> np.ndarray:
        return self.nt2 > self.cutoff

    @property
    def n_novel(self) -> int:
        return int(self.is_novel.sum())

    @property
    def percent_novel(self) -> float:
        n = len(self.nt2)
        return 100.0 * self.n_novel / n if n else 0.0

    @property
    def mic(self) -> List[Optional[str]]:
        """MIC label per row (``None`` where not extrapolating)."""
        return [
            self.covariate_names[i] if i >= 0 else None
            for i in self.mic_index
        ]


def combinatorial_scores(
    space: CovariateSpace,
    reference: np.ndarray,
    grid: np.ndarray,
    thresholds: Optional[ThresholdRegistry] = None,
) -> CombinatorialScores:
    """Score *grid* rows against *space*, calibrated on *reference* rows.

    Parameters
    ----------
    space : CovariateSpace
        Built from *reference*.
    reference, grid : ndarray, shape (n, p)
        Columns ordered as ``space.covariate_names``.
    thresholds : ThresholdRegistry, optional

    Raises
    ------
    DegenerateCalibration
        If the mean reference distance is not above
        ``calibration.min_distance``.
    """
    reg = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
    reference = np.asarray(reference, dtype=float)
    grid = np.asarray(grid, dtype=float)

    calibration = float(space.distance_sq(reference).mean())
    if not calibration > reg["calibration.min_distance"]:
        raise DegenerateCalibration(
            f"Mean reference distance is {calibration!r} for "
            f"{list(space.covariate_names)}; NT2 is undefined")
    logger.debug("NT2 calibration D̄=%.6g for %s",
                 calibration, space.covariate_names)

    distance = space.distance_sq(grid)
    nt2 = distance / calibration
    cutoff = reg["novelty.nt2_cutoff"]

    mic_index = np.full(len(nt2), -1, dtype=int)
    novel = nt2 > cutoff
    if novel.any():
        rows = grid[novel]
        reductions = np.empty((rows.shape[0], space.dimension))
        for k, name in enumerate(space.covariate_names):
            sub = space.drop(name)
            reductions[:, k] = (
                distance[novel] - sub.distance_sq(np.delete(rows, k, axis=1)))
        # argmax returns the first maximum, i.e. declared order on ties
        mic_index[novel] = np.argmax(reductions, axis=1)

    return CombinatorialScores(
        covariate_names=space.covariate_names,
        distance=distance,
        calibration=calibration,
        nt2=nt2,
        mic_index=mic_index,
        cutoff=cutoff,
    )


def compute_combinatorial(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    prediction_grid: pd.DataFrame,
    thresholds: Optional[ThresholdRegistry] = None,
) -> CombinatorialScores:
    """Compute NT2 and MIC for every row of *prediction_grid*.

    Raises
    ------
    InvalidCovariateName
    SingularCovarianceMatrix
    DegenerateCalibration
    """
    names = check_covariates(covariate_names, samples, prediction_grid)
    reference = covariate_matrix(samples, names)
    space = space_from_matrix(reference, names, thresholds)
    return combinatorial_scores(
        space, reference, covariate_matrix(prediction_grid, names),
        thresholds)
