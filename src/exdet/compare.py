"""Covariate combination comparator.

Which covariates should go into a model so that its predictions
extrapolate least?  :func:`compare_covariates` enumerates every subset
of 1..k covariates, re-runs the univariate and/or combinatorial checks
on each, and ranks the subsets by the share of the prediction grid
flagged as novel.

Each subset is evaluated independently: the covariate space is rebuilt
from the reference sample for that subset, and a subset whose
covariance is singular (or whose calibration is degenerate) is
recorded as a failed combinatorial entry without stopping the
enumeration.  The univariate check of the same subset still runs.

Usage
-----
>>> from exdet.compare import compare_covariates
>>> cmp = compare_covariates(segs, ["Depth", "SST", "EKE"], predgrid,
...                          extrapolation_type="both")
>>> print(cmp.summary())
>>> cmp.best("combinatorial").covariates
('Depth',)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .combinatorial import combinatorial_scores
from .covariance import space_from_matrix
from .errors import (
    DegenerateCalibration,
    EmptySubsetEnumeration,
    SingularCovarianceMatrix,
)
from .tables import check_covariates, covariate_matrix
from .thresholds import DEFAULT_THRESHOLDS, ThresholdRegistry
from .univariate import univariate_scores

logger = logging.getLogger(__name__)

__all__ = [
    "EXTRAPOLATION_TYPES",
    "CombinationResult",
    "CovariateComparison",
    "enumerate_subsets",
    "compare_covariates",
]

EXTRAPOLATION_TYPES: Tuple[str, ...] = ("univariate", "combinatorial", "both")


# ═══════════════════════════════════════════════════════════════════
# Data types
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CombinationResult:
    """Extrapolation summary for one covariate subset and one type.

    ``n_flagged`` and ``percent`` are ``None`` when the metric could
    not be computed for this subset; ``error`` then holds the reason.
    """
    covariates: Tuple[str, ...]
    extrapolation_type: str
    n_flagged: Optional[int]
    percent: Optional[float]
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def n_covariates(self) -> int:
        return len(self.covariates)

    @property
    def label(self) -> str:
        return " + ".join(self.covariates)

    def __repr__(self) -> str:
        value = "failed" if self.failed else f"{self.percent:.2f}%"
        return (f"CombinationResult({self.label!r}, "
                f"{self.extrapolation_type}, {value})")


@dataclass(frozen=True)
class CovariateComparison:
    """All subset results, sorted by ascending extrapolation percentage."""

    results: Tuple[CombinationResult, ...]
    covariate_names: Tuple[str, ...]
    extrapolation_type: str
    n_covariates: int
    n_rows: int

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)

    @property
    def successful(self) -> List[CombinationResult]:
        return [r for r in self.results if not r.failed]

    @property
    def failed(self) -> List[CombinationResult]:
        return [r for r in self.results if r.failed]

    def for_type(self, extrapolation_type: str) -> List[CombinationResult]:
        """Results of a single extrapolation type, still sorted."""
        return [r for r in self.results
                if r.extrapolation_type == extrapolation_type]

    def best(
        self, extrapolation_type: Optional[str] = None,
    ) -> Optional[CombinationResult]:
        """Lowest-extrapolation successful subset (first in declared order on ties)."""
        pool = (self.results if extrapolation_type is None
                else self.for_type(extrapolation_type))
        for r in pool:
            if not r.failed:
                return r
        return None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "covariates": [r.label for r in self.results],
            "n_covariates": [r.n_covariates for r in self.results],
            "type": [r.extrapolation_type for r in self.results],
            "n_flagged": [r.n_flagged for r in self.results],
            "percent": [r.percent for r in self.results],
            "error": [r.error for r in self.results],
        })

    def summary(self, top: int = 10) -> str:
        """Text table of the *top* subsets per extrapolation type."""
        types = (("univariate", "combinatorial")
                 if self.extrapolation_type == "both"
                 else (self.extrapolation_type,))
        lines = [
            f"Covariate comparison: {len(self.results)} results over "
            f"{self.n_rows} cells, subsets of 1–{self.n_covariates} of "
            f"{len(self.covariate_names)} covariates",
        ]
        for t in types:
            rows = self.for_type(t)
            n_failed = sum(1 for r in rows if r.failed)
            lines.append(f"  {t} ({len(rows)} subsets, {n_failed} failed)")
            for r in rows[:top]:
                value = "  failed" if r.failed else f"{r.percent:>7.2f}%"
                lines.append(f"    {value}  {r.label}")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════
# Enumeration
# ═══════════════════════════════════════════════════════════════════

def enumerate_subsets(
    covariate_names: Sequence[str],
    n_covariates: Union[int, str, None] = None,
) -> List[Tuple[str, ...]]:
    """All covariate subsets of size 1..*n_covariates*, in declared order.

    Parameters
    ----------
    covariate_names : str or sequence of str
        A single name is a one-covariate set.
    n_covariates : int, ``"all"`` or None
        Largest subset size.  ``None`` and ``"all"`` mean the full set;
        larger values are clamped to it.

    Raises
    ------
    EmptySubsetEnumeration
        If *covariate_names* is empty or *n_covariates* ≤ 0.
    """
    if isinstance(covariate_names, str):
        covariate_names = [covariate_names]
    names = tuple(covariate_names)
    if not names:
        raise EmptySubsetEnumeration("No covariates to enumerate")
    k = _max_subset_size(n_covariates, len(names))
    subsets: List[Tuple[str, ...]] = []
    for size in range(1, k + 1):
        subsets.extend(combinations(names, size))
    return subsets


def _max_subset_size(n_covariates: Union[int, str, None], n: int) -> int:
    if n_covariates is None or n_covariates == "all":
        return n
    if isinstance(n_covariates, str):
        raise ValueError(
            f"n_covariates must be a positive integer or 'all', "
            f"got {n_covariates!r}")
    k = int(n_covariates)
    if k <= 0:
        raise EmptySubsetEnumeration(
            f"Maximum subset size must be positive, got {k}")
    if k > n:
        logger.warning(
            "n_covariates=%d exceeds the %d available covariates; "
            "using %d", k, n, n)
        k = n
    return k


# ═══════════════════════════════════════════════════════════════════
# Per-subset evaluation
# ═══════════════════════════════════════════════════════════════════

def _evaluate_subset(
    subset: Tuple[str, ...],
    columns: List[int],
    reference: np.ndarray,
    grid: np.ndarray,
    types: Tuple[str, ...],
    reg: ThresholdRegistry,
) -> List[CombinationResult]:
    ref_sub = reference[:, columns]
    grid_sub = grid[:, columns]
    out: List[CombinationResult] = []

    if "univariate" in types:
        uni = univariate_scores(ref_sub, grid_sub, subset)
        out.append(CombinationResult(
            covariates=subset,
            extrapolation_type="univariate",
            n_flagged=uni.n_novel,
            percent=uni.percent_novel,
        ))

    if "combinatorial" in types:
        try:
            space = space_from_matrix(ref_sub, subset, reg)
            comb = combinatorial_scores(space, ref_sub, grid_sub, reg)
        except (SingularCovarianceMatrix, DegenerateCalibration) as exc:
            logger.warning("Skipping combinatorial check for %s: %s",
                           " + ".join(subset), exc)
            out.append(CombinationResult(
                covariates=subset,
                extrapolation_type="combinatorial",
                n_flagged=None,
                percent=None,
                error=f"{type(exc).__name__}: {exc}",
            ))
        else:
            out.append(CombinationResult(
                covariates=subset,
                extrapolation_type="combinatorial",
                n_flagged=comb.n_novel,
                percent=comb.percent_novel,
            ))

    return out


def compare_covariates(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    prediction_grid: pd.DataFrame,
    extrapolation_type: str = "both",
    n_covariates: Union[int, str, None] = None,
    n_jobs: int = 1,
    thresholds: Optional[ThresholdRegistry] = None,
) -> CovariateComparison:
    """Compare extrapolation across all covariate subsets.

    Parameters
    ----------
    samples : DataFrame
        Reference sample.
    covariate_names : sequence of str
        Full covariate set.
    prediction_grid : DataFrame
    extrapolation_type : {"univariate", "combinatorial", "both"}
    n_covariates : int, ``"all"`` or None
        Largest subset size (default: all covariates).
    n_jobs : int
        Threads used across subsets (joblib semantics).
    thresholds : ThresholdRegistry, optional

    Returns
    -------
    CovariateComparison
        ``Σ_{i=1..k} C(n, i)`` results per extrapolation type, sorted
        by ascending percentage with failed subsets last.

    Raises
    ------
    EmptySubsetEnumeration, InvalidCovariateName, MissingCovariateValues
        Before any subset is evaluated.
    ValueError
        For an unknown *extrapolation_type*.
    """
    if extrapolation_type not in EXTRAPOLATION_TYPES:
        raise ValueError(
            f"extrapolation_type must be one of {EXTRAPOLATION_TYPES}, "
            f"got {extrapolation_type!r}")
    reg = thresholds if thresholds is not None else DEFAULT_THRESHOLDS

    names = check_covariates(covariate_names, samples, prediction_grid)
    subsets = enumerate_subsets(names, n_covariates)
    k = max(len(s) for s in subsets)
    reference = covariate_matrix(samples, names)
    grid = covariate_matrix(prediction_grid, names)
    index = {name: i for i, name in enumerate(names)}
    types = (("univariate", "combinatorial")
             if extrapolation_type == "both" else (extrapolation_type,))

    logger.info("Comparing %d covariate subsets (%s)",
                len(subsets), extrapolation_type)

    jobs = [
        (subset, [index[n] for n in subset]) for subset in subsets
    ]
    if n_jobs == 1:
        per_subset = [
            _evaluate_subset(s, cols, reference, grid, types, reg)
            for s, cols in jobs
        ]
    else:
        per_subset = Parallel(n_jobs=n_jobs, backend="threading")(
            delayed(_evaluate_subset)(s, cols, reference, grid, types, reg)
            for s, cols in jobs
        )

    flat = [r for results in per_subset for r in results]
    # sorted() is stable: ties keep enumeration order
    ranked = sorted(
        flat, key=lambda r: (r.failed, r.percent if r.percent is not None
                             else 0.0))

    return CovariateComparison(
        results=tuple(ranked),
        covariate_names=names,
        extrapolation_type=extrapolation_type,
        n_covariates=k,
        n_rows=grid.shape[0],
    )
