"""exdet: extrapolation detection for spatial prediction surfaces.

Tells you where a prediction grid leaves the conditions sampled by a
reference dataset (e.g. survey segments behind a density surface model):

* **univariate** extrapolation: a covariate outside its sampled range;
* **combinatorial** extrapolation: an unsampled covariate combination,
  scored by the NT2 Mahalanobis ratio with its most influential covariate;
* **nearby** fraction: share of reference points within a calibrated
  Gower dissimilarity, partitioned to bound memory on large grids;
* **covariate comparison**: every covariate subset ranked by how much
  of the grid it extrapolates over.

All computations are pure functions of their input tables.  Mapping,
console reporting and table ingestion are left to the caller.
"""
from .errors import (
    ExtrapolationError, InvalidCovariateName, MissingCovariateValues,
    SingularCovarianceMatrix, DegenerateCalibration, EmptySubsetEnumeration,
)
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

# Covariate space and the two ExDet metrics
from .covariance import (
    CovariateSpace, build_covariate_space, space_from_matrix, mahalanobis_sq,
)
from .combinatorial import (
    CombinatorialScores, combinatorial_scores, compute_combinatorial,
)
from .univariate import UnivariateScores, univariate_scores, compute_univariate
from .extrapolation import (
    CATEGORIES, ExtrapolationRecord, ExtrapolationResult,
    compute_extrapolation,
)

# Neighbourhood
from .nearby import (
    GowerEncoder, GowerMatrix, gower_distances, geometric_variability,
    partition_rows, NearbyResult, compute_nearby,
)

# Covariate subsets
from .compare import (
    EXTRAPOLATION_TYPES, CombinationResult, CovariateComparison,
    enumerate_subsets, compare_covariates,
)

__all__ = [
    # Errors
    "ExtrapolationError", "InvalidCovariateName", "MissingCovariateValues",
    "SingularCovarianceMatrix", "DegenerateCalibration",
    "EmptySubsetEnumeration",
    # Configuration
    "ThresholdRegistry", "DEFAULT_THRESHOLDS",
    # Covariate space
    "CovariateSpace", "build_covariate_space", "space_from_matrix",
    "mahalanobis_sq",
    # ExDet metrics
    "CombinatorialScores", "combinatorial_scores", "compute_combinatorial",
    "UnivariateScores", "univariate_scores", "compute_univariate",
    "CATEGORIES", "ExtrapolationRecord", "ExtrapolationResult",
    "compute_extrapolation",
    # Neighbourhood
    "GowerEncoder", "GowerMatrix", "gower_distances",
    "geometric_variability", "partition_rows",
    "NearbyResult", "compute_nearby",
    # Covariate subsets
    "EXTRAPOLATION_TYPES", "CombinationResult", "CovariateComparison",
    "enumerate_subsets", "compare_covariates",
]
