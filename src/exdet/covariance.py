"""Covariate space model: centroid, covariance and its inverse.

The covariate space of a reference sample is the statistical envelope
against which prediction locations are judged.  It is rebuilt from
scratch whenever the active covariate subset changes; nothing is
cached between calls.

Singularity
-----------
A covariance matrix that cannot be inverted makes the Mahalanobis
distance meaningless, so it is detected numerically and reported as
:class:`~exdet.errors.SingularCovarianceMatrix`:

1. fewer than two reference rows;
2. a covariate whose standard deviation is negligible relative to its
   magnitude (``covariance.variance_rtol``);
3. a correlation matrix whose smallest/largest eigenvalue ratio falls
   below ``covariance.eigen_rtol`` (perfect or near-perfect
   collinearity).

The check runs on the correlation matrix rather than the covariance so
that covariates measured on very different scales (depth in metres vs.
eddy kinetic energy) are not mistaken for collinear ones.  The inverse
is assembled from the same eigendecomposition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import SingularCovarianceMatrix
from .tables import check_covariates, covariate_matrix
from .thresholds import DEFAULT_THRESHOLDS, ThresholdRegistry

__all__ = [
    "CovariateSpace",
    "build_covariate_space",
    "space_from_matrix",
    "mahalanobis_sq",
]


# ═══════════════════════════════════════════════════════════════════
# Distance kernel
# ═══════════════════════════════════════════════════════════════════

def mahalanobis_sq(
    X: np.ndarray, centroid: np.ndarray, inverse: np.ndarray,
) -> np.ndarray:
    """Vectorised squared Mahalanobis distance of every row of *X*.

    Parameters
    ----------
    X : ndarray, shape (n, p)
    centroid : ndarray, shape (p,)
    inverse : ndarray, shape (p, p)
        Inverse covariance matrix.

    Returns
    -------
    ndarray, shape (n,)
        ``(x - centroid)ᵗ · inverse · (x - centroid)`` per row,
        clipped at zero against round-off.
    """
    diff = np.asarray(X, dtype=float) - centroid
    d2 = np.einsum("ij,jk,ik->i", diff, inverse, diff)
    return np.maximum(d2, 0.0)


# ═══════════════════════════════════════════════════════════════════
# CovariateSpace
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class CovariateSpace:
    """Immutable description of a reference covariate distribution.

    Attributes
    ----------
    covariate_names : tuple[str, ...]
        Active covariates, in declared order.
    centroid : ndarray, shape (p,)
        Column means of the reference sample.
    covariance : ndarray, shape (p, p)
        Sample covariance (``n - 1`` denominator).
    inverse : ndarray, shape (p, p)
        Inverse of ``covariance``.
    n_samples : int
        Number of reference rows the space was estimated from.
    """

    covariate_names: Tuple[str, ...]
    centroid: np.ndarray
    covariance: np.ndarray
    inverse: np.ndarray
    n_samples: int

    @property
    def dimension(self) -> int:
        return len(self.covariate_names)

    def distance_sq(self, X: np.ndarray) -> np.ndarray:
        """Squared Mahalanobis distance of each row of *X* from the centroid.

        *X* must have one column per covariate in ``covariate_names``.
        """
        X = np.asarray(X, dtype=float)
        if self.dimension == 0:
            return np.zeros(X.shape[0])
        return mahalanobis_sq(X, self.centroid, self.inverse)

    def drop(self, name: str) -> "CovariateSpace":
        """Return the sub-space with covariate *name* removed.

        The sub-covariance of a positive-definite matrix is itself
        positive definite, so the reduced space is always invertible.
        """
        k = self.covariate_names.index(name)
        keep = [i for i in range(self.dimension) if i != k]
        sub_cov = self.covariance[np.ix_(keep, keep)]
        return CovariateSpace(
            covariate_names=tuple(self.covariate_names[i] for i in keep),
            centroid=self.centroid[keep],
            covariance=sub_cov,
            inverse=_invert(sub_cov),
            n_samples=self.n_samples,
        )

    def summary(self) -> str:
        """One-line summary."""
        return (
            f"CovariateSpace({', '.join(self.covariate_names)}: "
            f"p={self.dimension}, n={self.n_samples})"
        )


# ═══════════════════════════════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════════════════════════════

def _invert(cov: np.ndarray) -> np.ndarray:
    """Invert a positive-definite covariance via its correlation matrix."""
    if cov.shape[0] == 0:
        return np.zeros((0, 0))
    std = np.sqrt(np.diag(cov))
    corr = cov / np.outer(std, std)
    evals, evecs = np.linalg.eigh(corr)
    corr_inv = (evecs / evals) @ evecs.T
    inv = corr_inv / np.outer(std, std)
    return (inv + inv.T) / 2.0


def space_from_matrix(
    X: np.ndarray,
    covariate_names: Sequence[str],
    thresholds: Optional[ThresholdRegistry] = None,
) -> CovariateSpace:
    """Build a :class:`CovariateSpace` from an (n, p) reference matrix.

    Raises
    ------
    SingularCovarianceMatrix
        If the covariance cannot be inverted (see module docstring).
    """
    reg = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
    names = tuple(covariate_names)
    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or X.shape[1] != len(names):
        raise ValueError(
            f"Matrix shape {X.shape} does not match {len(names)} covariates")

    n = X.shape[0]
    if n < 2:
        raise SingularCovarianceMatrix(
            f"Covariance of {list(names)} needs at least 2 reference "
            f"rows, got {n}")

    centroid = X.mean(axis=0)
    cov = np.atleast_2d(np.cov(X, rowvar=False))
    std = np.sqrt(np.clip(np.diag(cov), 0.0, None))

    scale = np.abs(X).max(axis=0)
    constant = std <= reg["covariance.variance_rtol"] * scale
    if constant.any():
        flat = [nm for nm, c in zip(names, constant) if c]
        raise SingularCovarianceMatrix(
            f"Zero variance in reference sample for {flat}")

    corr = cov / np.outer(std, std)
    evals = np.linalg.eigvalsh(corr)
    if evals[0] <= reg["covariance.eigen_rtol"] * evals[-1]:
        raise SingularCovarianceMatrix(
            f"Covariance of {list(names)} is singular "
            f"(correlation eigenvalue ratio {evals[0] / evals[-1]:.3g}); "
            f"covariates are collinear")

    return CovariateSpace(
        covariate_names=names,
        centroid=centroid,
        covariance=cov,
        inverse=_invert(cov),
        n_samples=n,
    )


def build_covariate_space(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    thresholds: Optional[ThresholdRegistry] = None,
) -> CovariateSpace:
    """Build the covariate space of *samples* for *covariate_names*.

    Parameters
    ----------
    samples : DataFrame
        Reference sample.
    covariate_names : sequence of str
        Covariates to include, in order.
    thresholds : ThresholdRegistry, optional
        Singularity tolerances.  Defaults to ``DEFAULT_THRESHOLDS``.

    Returns
    -------
    CovariateSpace

    Raises
    ------
    InvalidCovariateName
        If a covariate is not a column of *samples*.
    SingularCovarianceMatrix
        If the covariance is not invertible.
    """
    names = check_covariates(covariate_names, samples)
    return space_from_matrix(
        covariate_matrix(samples, names), names, thresholds)
