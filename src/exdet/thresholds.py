"""ThresholdRegistry: every tunable number in one place.

Collects the numerical knobs of the extrapolation engine (nearby
multiplier, partitioning policy, singularity tolerances, novelty
cutoff) into one immutable registry.  Every public computation accepts
``thresholds=`` and falls back to :data:`DEFAULT_THRESHOLDS`.  Explicit
keyword arguments such as ``nearby=`` or ``max_size=`` take precedence
over the registry.

Usage
-----
>>> from exdet.thresholds import DEFAULT_THRESHOLDS
>>> DEFAULT_THRESHOLDS["nearby.max_size"]           # 1e7
>>> coarse = DEFAULT_THRESHOLDS.replace({"nearby.max_size": 1e5})
"""

from __future__ import annotations

from typing import Dict, Optional

__all__ = [
    "ThresholdRegistry",
    "DEFAULT_THRESHOLDS",
]


# ═══════════════════════════════════════════════════════════════════
# ThresholdRegistry
# ═══════════════════════════════════════════════════════════════════

class ThresholdRegistry:
    """Immutable mapping of dotted threshold keys → float values.

    Parameters
    ----------
    data : dict[str, float]
        ``{"section.name": value, ...}``.
    name : str, optional
        Label shown in ``repr`` (e.g. ``"default"``, ``"sweep-042"``).
    """

    def __init__(self, data: Dict[str, float], *, name: str = "custom"):
        self._data: Dict[str, float] = {k: float(v) for k, v in data.items()}
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def __getitem__(self, key: str) -> float:
        return self._data[key]

    def __setitem__(self, key: str, value: float):
        raise TypeError(
            "ThresholdRegistry is immutable: use .replace() instead")

    def __repr__(self) -> str:
        return f"ThresholdRegistry({self._name!r}, {len(self._data)} keys)"

    def replace(
        self,
        overrides: Dict[str, float],
        *,
        name: Optional[str] = None,
    ) -> "ThresholdRegistry":
        """Return a new registry with selected keys overridden.

        Raises
        ------
        KeyError
            If any key in *overrides* is not in the registry.
        """
        unknown = sorted(set(overrides) - set(self._data))
        if unknown:
            raise KeyError(
                f"Unknown threshold key(s) {unknown}. "
                f"Valid keys: {sorted(self._data)}"
            )
        merged = dict(self._data)
        merged.update(overrides)
        return ThresholdRegistry(merged, name=name or (self._name + "+"))


# ═══════════════════════════════════════════════════════════════════

# ═══════════════════════════════════════════════════════════════════
# DEFAULT_THRESHOLDS
# ═══════════════════════════════════════════════════════════════════
#
# Naming convention: section.descriptive_name
#   section ∈ {nearby, covariance, calibration, novelty}
# ═══════════════════════════════════════════════════════════════════

_DEFAULT_DATA: Dict[str, float] = {

    # ── nearby: Gower neighbourhood computation ────────────────
    "nearby.multiplier": 1.0,           # × mean reference Gower distance
    "nearby.max_size": 1e7,             # n_ref × n_grid before partitioning
    "nearby.no_partitions": 10.0,       # grid chunks when partitioning

    # ── covariance: singularity detection ──────────────────────
    "covariance.variance_rtol": 1e-10,  # std / max|x| below → constant
    "covariance.eigen_rtol": 1e-10,     # λ_min / λ_max of correlation

    # ── calibration: reference mean distance ───────────────────
    "calibration.min_distance": 0.0,    # D̄ at or below → degenerate

    # ── novelty: classification cutoffs ────────────────────────
    "novelty.nt2_cutoff": 1.0,          # NT2 above → combinatorial
}


DEFAULT_THRESHOLDS: ThresholdRegistry = ThresholdRegistry(
    _DEFAULT_DATA, name="default",
)
"""The default threshold registry."""
