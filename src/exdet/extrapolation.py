"""Extrapolation result: univariate and combinatorial novelty per row.

Runs the univariate range check and the NT2 metric over the same
prediction grid and folds them into a single :class:`ExtrapolationResult`
whose rows line up with the rows of the grid.

Each row falls into exactly one category, with univariate novelty
taking precedence:

* ``"univariate"``   : at least one covariate outside its reference range
* ``"combinatorial"``: every covariate in range, but NT2 > 1
* ``"analogue"``     : neither

The combined ExDet value follows the same precedence: NT1 (negative)
for univariate rows, NT2 otherwise.  ``is_combinatorial`` is the raw
NT2 > 1 flag and is independent of the univariate check.

Usage
-----
>>> from exdet import compute_extrapolation
>>> ex = compute_extrapolation(segs, ["Depth", "SST", "NPP"], predgrid)
>>> print(ex.summary())
>>> df = ex.to_frame()          # one row per grid cell, for mapping
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .combinatorial import CombinatorialScores, combinatorial_scores
from .covariance import space_from_matrix
from .errors import DegenerateCalibration, SingularCovarianceMatrix
from .tables import check_covariates, coordinates, covariate_matrix
from .thresholds import DEFAULT_THRESHOLDS, ThresholdRegistry
from .univariate import UnivariateScores, univariate_scores

__all__ = [
    "CATEGORIES",
    "ExtrapolationRecord",
    "ExtrapolationResult",
    "compute_extrapolation",
]

CATEGORIES: Tuple[str, ...] = ("univariate", "combinatorial", "analogue")


def _numpy_safe(obj: Any) -> Any:
    """Recursively convert numpy scalars/arrays to native Python types."""
    if isinstance(obj, dict):
        return {k: _numpy_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_numpy_safe(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj


# ═══════════════════════════════════════════════════════════════════
# Per-row record
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExtrapolationRecord:
    """Extrapolation outcome for one prediction location."""
    index: int
    nt2: float
    nt1: float
    n_out_of_range: int
    percent_out_of_range: float
    category: str
    mic_combinatorial: Optional[str] = None
    mic_univariate: Optional[str] = None
    coordinates: Optional[Tuple[Any, ...]] = None

    @property
    def is_univariate(self) -> bool:
        return self.n_out_of_range >= 1

    @property
    def exdet(self) -> float:
        return self.nt1 if self.is_univariate else self.nt2

    @property
    def mic(self) -> Optional[str]:
        """MIC matching the row's category."""
        if self.category == "univariate":
            return self.mic_univariate
        if self.category == "combinatorial":
            return self.mic_combinatorial
        return None


# ═══════════════════════════════════════════════════════════════════
# ExtrapolationResult: columnar, row-aligned with the grid
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class ExtrapolationResult:
    """Univariate and combinatorial extrapolation for a prediction grid.

    Attributes
    ----------
    univariate : UnivariateScores
    combinatorial : CombinatorialScores
    coordinates : ndarray or None
        Coordinate columns of the grid, passed through for mapping.
    coordinate_names : tuple[str, ...]
    """

    univariate: UnivariateScores
    combinatorial: CombinatorialScores
    coordinates: Optional[np.ndarray] = None
    coordinate_names: Tuple[str, ...] = ()

    # ── columns ─────────────────────────────────────────────────

    @property
    def covariate_names(self) -> Tuple[str, ...]:
        return self.univariate.covariate_names

    @property
    def n_rows(self) -> int:
        return len(self.combinatorial.nt2)

    def __len__(self) -> int:
        return self.n_rows

    @property
    def nt2(self) -> np.ndarray:
        return self.combinatorial.nt2

    @property
    def nt1(self) -> np.ndarray:
        return self.univariate.nt1

    @property
    def is_univariate(self) -> np.ndarray:
        return self.univariate.is_novel

    @property
    def is_combinatorial(self) -> np.ndarray:
        return self.combinatorial.is_novel

    @property
    def category(self) -> np.ndarray:
        """Per-row category, univariate taking precedence."""
        return np.where(
            self.is_univariate, "univariate",
            np.where(self.is_combinatorial, "combinatorial", "analogue"))

    @property
    def exdet(self) -> np.ndarray:
        """Combined ExDet value: NT1 where univariate, NT2 elsewhere."""
        return np.where(self.is_univariate, self.nt1, self.nt2)

    # ── row access ──────────────────────────────────────────────

    def records(self) -> List[ExtrapolationRecord]:
        """One :class:`ExtrapolationRecord` per grid row, in grid order."""
        uni, comb = self.univariate, self.combinatorial
        n_out = uni.n_out_of_range
        pct_out = uni.percent_out_of_range
        category = self.category
        mic_c, mic_u = comb.mic, uni.mic
        out = []
        for i in range(self.n_rows):
            coords = (tuple(self.coordinates[i].tolist())
                      if self.coordinates is not None else None)
            out.append(ExtrapolationRecord(
                index=i,
                nt2=float(comb.nt2[i]),
                nt1=float(uni.nt1[i]),
                n_out_of_range=int(n_out[i]),
                percent_out_of_range=float(pct_out[i]),
                category=str(category[i]),
                mic_combinatorial=mic_c[i],
                mic_univariate=mic_u[i],
                coordinates=coords,
            ))
        return out

    def to_frame(self) -> pd.DataFrame:
        """Return a DataFrame with one row per grid row."""
        data: Dict[str, Any] = {}
        if self.coordinates is not None:
            for j, name in enumerate(self.coordinate_names):
                data[name] = self.coordinates[:, j]
        data.update({
            "exdet": self.exdet,
            "nt1": self.nt1,
            "nt2": self.nt2,
            "n_out_of_range": self.univariate.n_out_of_range,
            "percent_out_of_range": self.univariate.percent_out_of_range,
            "category": self.category,
            "mic_univariate": self.univariate.mic,
            "mic_combinatorial": self.combinatorial.mic,
        })
        return pd.DataFrame(data)

    # ── summary ─────────────────────────────────────────────────

    def counts(self) -> Dict[str, int]:
        """Number of grid rows per category."""
        c = Counter(self.category.tolist())
        return {cat: c.get(cat, 0) for cat in CATEGORIES}

    def percentages(self) -> Dict[str, float]:
        n = self.n_rows
        return {
            cat: (100.0 * k / n if n else 0.0)
            for cat, k in self.counts().items()
        }

    def mic_counts(self) -> Dict[str, Dict[str, int]]:
        """Per-category tally of the most influential covariate."""
        out: Dict[str, Dict[str, int]] = {}
        for cat, labels in (("univariate", self.univariate.mic),
                            ("combinatorial", self.combinatorial.mic)):
            mask = self.category == cat
            tally = Counter(
                lab for lab, m in zip(labels, mask) if m and lab is not None)
            out[cat] = dict(sorted(tally.items(), key=lambda kv: -kv[1]))
        return out

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe summary (no per-row data)."""
        return _numpy_safe({
            "covariate_names": self.covariate_names,
            "n_rows": self.n_rows,
            "calibration": self.combinatorial.calibration,
            "counts": self.counts(),
            "percentages": self.percentages(),
            "mic_counts": self.mic_counts(),
        })

    def summary(self) -> str:
        """Multi-line summary table of extrapolation per category."""
        counts = self.counts()
        pct = self.percentages()
        lines = [
            f"Extrapolation over {self.n_rows} cells "
            f"({', '.join(self.covariate_names)})",
            f"  {'type':<15} {'cells':>8} {'%':>8}",
        ]
        for cat in CATEGORIES:
            lines.append(f"  {cat:<15} {counts[cat]:>8d} {pct[cat]:>8.2f}")
        for cat, tally in self.mic_counts().items():
            if tally:
                parts = ", ".join(f"{k}={v}" for k, v in tally.items())
                lines.append(f"  MIC ({cat}): {parts}")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════

def compute_extrapolation(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    prediction_grid: pd.DataFrame,
    coordinate_names: Optional[Sequence[str]] = ("x", "y"),
    thresholds: Optional[ThresholdRegistry] = None,
) -> ExtrapolationResult:
    """Assess univariate and combinatorial extrapolation of *prediction_grid*.

    Parameters
    ----------
    samples : DataFrame
        Reference sample (e.g. survey segments).
    covariate_names : sequence of str
        Covariates to assess, in order.
    prediction_grid : DataFrame
        Prediction locations.
    coordinate_names : sequence of str, optional
        Grid columns carried through to the result for mapping.
        Ignored when absent from the grid.
    thresholds : ThresholdRegistry, optional

    Returns
    -------
    ExtrapolationResult

    Raises
    ------
    InvalidCovariateName, MissingCovariateValues
        On invalid input, before any computation.
    SingularCovarianceMatrix, DegenerateCalibration
        When NT2 cannot be computed for these covariates.  The range
        check still runs; its :class:`UnivariateScores` is attached to
        the exception as ``univariate``.
    """
    reg = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
    names = check_covariates(covariate_names, samples, prediction_grid)
    reference = covariate_matrix(samples, names)
    grid = covariate_matrix(prediction_grid, names)

    uni = univariate_scores(reference, grid, names)
    try:
        space = space_from_matrix(reference, names, reg)
        comb = combinatorial_scores(space, reference, grid, reg)
    except (SingularCovarianceMatrix, DegenerateCalibration) as exc:
        exc.univariate = uni
        raise

    coords = coordinates(prediction_grid, coordinate_names)
    return ExtrapolationResult(
        univariate=uni,
        combinatorial=comb,
        coordinates=coords,
        coordinate_names=tuple(coordinate_names) if coords is not None else (),
    )
