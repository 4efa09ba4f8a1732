"""Exception types raised by the extrapolation detection engine."""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "ExtrapolationError",
    "InvalidCovariateName",
    "MissingCovariateValues",
    "SingularCovarianceMatrix",
    "DegenerateCalibration",
    "EmptySubsetEnumeration",
]


class ExtrapolationError(Exception):
    """Base exception for extrapolation-related errors."""


class InvalidCovariateName(ExtrapolationError, KeyError):
    """Raised when a requested covariate is absent from an input table."""

    def __init__(self, missing: Sequence[str], table: str):
        self.missing = tuple(missing)
        self.table = table
        super().__init__(
            f"Covariate(s) {list(self.missing)} not found in {table}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class MissingCovariateValues(ExtrapolationError, ValueError):
    """Raised when a covariate column holds missing values."""


class SingularCovarianceMatrix(ExtrapolationError, ValueError):
    """Raised when a covariate subset yields a non-invertible covariance."""


class DegenerateCalibration(ExtrapolationError, ValueError):
    """Raised when the reference calibration distance is zero."""


class EmptySubsetEnumeration(ExtrapolationError, ValueError):
    """Raised when there is no covariate subset to enumerate."""
