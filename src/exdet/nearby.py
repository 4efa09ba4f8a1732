"""Nearby fraction: share of reference points close to each grid cell.

For every prediction location we count the reference points lying
within a calibrated Gower dissimilarity of it.  A high fraction means
the model is well informed there; a low one means that, even inside
the univariate and combinatorial envelopes, predictions rest on few
nearby observations.

Gower dissimilarity
-------------------
Per covariate ``k``:

* numeric: ``|a_k − b_k| / range_k`` with the range taken from the
  reference sample (values outside that range may exceed 1);
* categorical (object / category / bool columns) and numeric
  covariates that are constant in the reference: 0 if equal, else 1.

The dissimilarity is the mean over covariates.

Calibration
-----------
The *geometric variability* is the mean Gower dissimilarity over all
distinct pairs of reference points.  A reference point is nearby when
its dissimilarity is strictly below ``nearby × geometric variability``.

Partitioning
------------
The full computation needs an ``n_reference × n_grid`` block of
dissimilarities.  When that product exceeds ``max_size`` the grid is
split into ``no_partitions`` contiguous chunks (never more chunks than
grid rows), each compared with the whole reference sample, and the
per-chunk fractions are concatenated back in row order.  Each grid row
sees exactly the same arithmetic whatever the chunking, so results do
not depend on ``no_partitions`` or ``n_jobs``.  Chunks may run on
several threads via joblib.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.spatial.distance import cdist

from .errors import DegenerateCalibration
from .tables import check_covariates, coordinates
from .thresholds import DEFAULT_THRESHOLDS, ThresholdRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "GowerEncoder",
    "GowerMatrix",
    "gower_distances",
    "geometric_variability",
    "partition_rows",
    "NearbyResult",
    "compute_nearby",
]


# ═══════════════════════════════════════════════════════════════════
# Gower encoding
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class GowerMatrix:
    """Covariates encoded for Gower dissimilarity.

    ``numeric`` holds range-scaled numeric covariates; ``categorical``
    holds integer codes compared by equality.
    """

    numeric: np.ndarray
    categorical: np.ndarray

    def __len__(self) -> int:
        return self.numeric.shape[0]

    @property
    def n_covariates(self) -> int:
        return self.numeric.shape[1] + self.categorical.shape[1]

    def rows(self, start: int, stop: int) -> "GowerMatrix":
        return GowerMatrix(self.numeric[start:stop],
                           self.categorical[start:stop])


def _is_categorical(series: pd.Series) -> bool:
    return (not pd.api.types.is_numeric_dtype(series)
            or pd.api.types.is_bool_dtype(series))


class GowerEncoder:
    """Fit Gower scaling on a reference table and encode tables with it.

    Parameters
    ----------
    samples : DataFrame
        Reference sample; numeric ranges come from here.
    covariate_names : sequence of str
    prediction_grid : DataFrame, optional
        Categorical levels seen only in the grid still get their own
        code (and so never match a reference level).
    """

    def __init__(
        self,
        samples: pd.DataFrame,
        covariate_names: Sequence[str],
        prediction_grid: Optional[pd.DataFrame] = None,
    ):
        self.covariate_names = tuple(covariate_names)
        numeric: List[str] = []
        categorical: List[str] = []
        lower: List[float] = []
        span: List[float] = []
        levels: Dict[str, pd.Index] = {}

        for name in self.covariate_names:
            col = samples[name]
            if _is_categorical(col):
                categorical.append(name)
            else:
                lo, hi = float(col.min()), float(col.max())
                if hi > lo:
                    numeric.append(name)
                    lower.append(lo)
                    span.append(hi - lo)
                else:
                    categorical.append(name)

        for name in categorical:
            values = [samples[name]]
            if prediction_grid is not None:
                values.append(prediction_grid[name])
            levels[name] = pd.Index(pd.concat(values).unique())

        self.numeric_names = tuple(numeric)
        self.categorical_names = tuple(categorical)
        self.lower = np.asarray(lower, dtype=float)
        self.span = np.asarray(span, dtype=float)
        self._levels = levels

    def encode(self, df: pd.DataFrame) -> GowerMatrix:
        """Encode *df* into a :class:`GowerMatrix`."""
        n = len(df)
        if self.numeric_names:
            num = df.loc[:, list(self.numeric_names)].to_numpy(dtype=float)
            num = (num - self.lower) / self.span
        else:
            num = np.zeros((n, 0))
        if self.categorical_names:
            cat = np.column_stack([
                self._levels[name].get_indexer(df[name]).astype(float)
                for name in self.categorical_names
            ])
        else:
            cat = np.zeros((n, 0))
        return GowerMatrix(num, cat)


def gower_distances(a: GowerMatrix, b: GowerMatrix) -> np.ndarray:
    """Pairwise Gower dissimilarity, shape ``(len(a), len(b))``."""
    total = np.zeros((len(a), len(b)))
    if total.size == 0:
        return total
    n_num = a.numeric.shape[1]
    n_cat = a.categorical.shape[1]
    if n_num:
        total += cdist(a.numeric, b.numeric, "cityblock")
    if n_cat:
        total += cdist(a.categorical, b.categorical, "hamming") * n_cat
    return total / (n_num + n_cat)


# ═══════════════════════════════════════════════════════════════════
# Partitioning
# ═══════════════════════════════════════════════════════════════════

def partition_rows(n_rows: int, n_partitions: int) -> List[Tuple[int, int]]:
    """Split ``range(n_rows)`` into contiguous ``(start, stop)`` chunks.

    *n_partitions* is clamped to ``[1, n_rows]``; chunk sizes differ
    by at most one row.
    """
    n_partitions = max(1, min(int(n_partitions), n_rows))
    sizes = [len(c) for c in np.array_split(np.arange(n_rows), n_partitions)]
    bounds = []
    start = 0
    for size in sizes:
        bounds.append((start, start + size))
        start += size
    return bounds


def _run_chunks(
    func: Callable[[int, int], np.ndarray],
    bounds: Sequence[Tuple[int, int]],
    n_jobs: int,
) -> List[np.ndarray]:
    if n_jobs == 1 or len(bounds) <= 1:
        return [func(start, stop) for start, stop in bounds]
    # joblib preserves input order in its output list
    return Parallel(n_jobs=n_jobs, backend="threading")(
        delayed(func)(start, stop) for start, stop in bounds)


def geometric_variability(
    reference: GowerMatrix,
    max_size: float = 1e7,
    n_jobs: int = 1,
) -> float:
    """Mean Gower dissimilarity over all distinct pairs of reference rows.

    The ``n × n`` block is evaluated in row chunks of at most
    *max_size* entries.

    Raises
    ------
    DegenerateCalibration
        With fewer than two reference rows.
    """
    n = len(reference)
    if n < 2:
        raise DegenerateCalibration(
            f"Geometric variability needs at least 2 reference rows, got {n}")
    n_chunks = min(n, max(1, math.ceil(n * n / max_size)))

    def _chunk_sum(start: int, stop: int) -> np.ndarray:
        return np.array([gower_distances(
            reference.rows(start, stop), reference).sum()])

    sums = _run_chunks(_chunk_sum, partition_rows(n, n_chunks), n_jobs)
    # the diagonal is zero, so the ordered-pair sum covers each pair twice
    return float(np.sum(sums) / (n * (n - 1)))


# ═══════════════════════════════════════════════════════════════════
# NearbyResult
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class NearbyResult:
    """Fraction of nearby reference points for every grid row.

    Attributes
    ----------
    covariate_names : tuple[str, ...]
    fraction : ndarray, shape (n_grid,)
        Share of reference points within ``threshold`` (0–1).
    threshold : float
        ``multiplier × mean_distance``.
    mean_distance : float
        Geometric variability of the reference sample.
    multiplier : float
    n_partitions : int
        Number of grid chunks actually used (1 when unpartitioned).
    partition_bounds : tuple of (start, stop)
    coordinates : ndarray or None
    coordinate_names : tuple[str, ...]
    """

    covariate_names: Tuple[str, ...]
    fraction: np.ndarray
    threshold: float
    mean_distance: float
    multiplier: float
    n_partitions: int
    partition_bounds: Tuple[Tuple[int, int], ...]
    coordinates: Optional[np.ndarray] = None
    coordinate_names: Tuple[str, ...] = ()

    @property
    def percent(self) -> np.ndarray:
        return 100.0 * self.fraction

    @property
    def partitioned(self) -> bool:
        return self.n_partitions > 1

    def __len__(self) -> int:
        return len(self.fraction)

    def to_frame(self) -> pd.DataFrame:
        data: Dict[str, Any] = {}
        if self.coordinates is not None:
            for j, name in enumerate(self.coordinate_names):
                data[name] = self.coordinates[:, j]
        data["fraction"] = self.fraction
        data["percent"] = self.percent
        return pd.DataFrame(data)

    def summary(self) -> str:
        if len(self.fraction):
            stats = (f"median={np.median(self.percent):.2f}%, "
                     f"min={self.percent.min():.2f}%, "
                     f"max={self.percent.max():.2f}%")
        else:
            stats = "empty grid"
        return (
            f"NearbyResult({len(self.fraction)} cells, "
            f"threshold={self.threshold:.4g} "
            f"[{self.multiplier:g} × {self.mean_distance:.4g}], "
            f"partitions={self.n_partitions}, {stats})"
        )


# ═══════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════

def compute_nearby(
    samples: pd.DataFrame,
    covariate_names: Sequence[str],
    prediction_grid: pd.DataFrame,
    nearby: Optional[float] = None,
    max_size: Optional[float] = None,
    no_partitions: Optional[int] = None,
    n_jobs: int = 1,
    coordinate_names: Optional[Sequence[str]] = ("x", "y"),
    thresholds: Optional[ThresholdRegistry] = None,
) -> NearbyResult:
    """Compute the nearby fraction of every row of *prediction_grid*.

    Parameters
    ----------
    samples : DataFrame
        Reference sample.
    covariate_names : sequence of str
        Numeric or categorical covariate columns.
    prediction_grid : DataFrame
    nearby : float, optional
        Multiplier on the geometric variability.  Defaults to
        ``nearby.multiplier``.
    max_size : float, optional
        ``n_reference × n_grid`` above which the grid is partitioned.
        Defaults to ``nearby.max_size``.
    no_partitions : int, optional
        Number of grid chunks when partitioning.  Defaults to
        ``nearby.no_partitions``; clamped to the number of grid rows.
    n_jobs : int
        Threads used across chunks (joblib semantics, ``-1`` = all).
    coordinate_names : sequence of str, optional
        Grid columns carried through to the result.
    thresholds : ThresholdRegistry, optional

    Returns
    -------
    NearbyResult

    Raises
    ------
    InvalidCovariateName, MissingCovariateValues
    DegenerateCalibration
        With fewer than two reference rows.
    """
    reg = thresholds if thresholds is not None else DEFAULT_THRESHOLDS
    multiplier = float(nearby if nearby is not None
                       else reg["nearby.multiplier"])
    max_size = float(max_size if max_size is not None
                     else reg["nearby.max_size"])
    no_partitions = int(no_partitions if no_partitions is not None
                        else reg["nearby.no_partitions"])
    if multiplier <= 0:
        raise ValueError(f"nearby must be positive, got {multiplier}")
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if no_partitions < 1:
        raise ValueError(
            f"no_partitions must be at least 1, got {no_partitions}")

    names = check_covariates(covariate_names, samples, prediction_grid)
    encoder = GowerEncoder(samples, names, prediction_grid)
    reference = encoder.encode(samples)
    grid = encoder.encode(prediction_grid)
    n_ref, n_grid = len(reference), len(grid)

    mean_distance = geometric_variability(reference, max_size, n_jobs)
    threshold = multiplier * mean_distance
    logger.debug("Geometric variability %.6g, nearby threshold %.6g",
                 mean_distance, threshold)

    if n_ref * n_grid > max_size:
        bounds = partition_rows(n_grid, no_partitions)
        logger.info(
            "%d × %d comparisons exceed max_size %g; "
            "splitting prediction grid into %d partitions",
            n_ref, n_grid, max_size, len(bounds))
    else:
        bounds = partition_rows(n_grid, 1)

    def _chunk_fraction(start: int, stop: int) -> np.ndarray:
        d = gower_distances(grid.rows(start, stop), reference)
        return (d < threshold).mean(axis=1)

    fraction = np.concatenate(_run_chunks(_chunk_fraction, bounds, n_jobs))

    coords = coordinates(prediction_grid, coordinate_names)
    return NearbyResult(
        covariate_names=names,
        fraction=fraction,
        threshold=threshold,
        mean_distance=mean_distance,
        multiplier=multiplier,
        n_partitions=len(bounds),
        partition_bounds=tuple(bounds),
        coordinates=coords,
        coordinate_names=tuple(coordinate_names) if coords is not None else (),
    )
