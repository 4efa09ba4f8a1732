"""Tests for the nearby fraction (exdet.nearby).

Gower encoding, geometric variability, partition policy and
partition invariance.
"""

import numpy as np
import pandas as pd
import pytest

from exdet.errors import DegenerateCalibration, InvalidCovariateName
from exdet.nearby import (
    GowerEncoder,
    NearbyResult,
    compute_nearby,
    geometric_variability,
    gower_distances,
    partition_rows,
)


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def segs():
    rng = np.random.default_rng(5)
    return pd.DataFrame({
        "x": rng.uniform(0, 1e5, 80),
        "y": rng.uniform(0, 1e5, 80),
        "Depth": rng.uniform(100, 3000, 80),
        "SST": rng.normal(18, 2, 80),
    })


@pytest.fixture
def predgrid():
    rng = np.random.default_rng(6)
    return pd.DataFrame({
        "x": rng.uniform(0, 1e5, 57),
        "y": rng.uniform(0, 1e5, 57),
        "Depth": rng.uniform(0, 4000, 57),
        "SST": rng.normal(17, 3, 57),
    })


# ═══════════════════════════════════════════════════════════════════
# Gower dissimilarity
# ═══════════════════════════════════════════════════════════════════

class TestGower:

    def test_numeric_scaled_by_reference_range(self):
        ref = pd.DataFrame({"a": [0.0, 10.0], "b": [0.0, 2.0]})
        enc = GowerEncoder(ref, ["a", "b"])
        d = gower_distances(enc.encode(ref), enc.encode(ref))
        # both covariates differ by a full range
        np.testing.assert_allclose(d, [[0.0, 1.0], [1.0, 0.0]])

    def test_mean_over_covariates(self):
        ref = pd.DataFrame({"a": [0.0, 10.0], "b": [0.0, 2.0]})
        grid = pd.DataFrame({"a": [5.0], "b": [0.0]})
        enc = GowerEncoder(ref, ["a", "b"], grid)
        d = gower_distances(enc.encode(grid), enc.encode(ref))
        np.testing.assert_allclose(d, [[0.25, 0.75]])

    def test_categorical_mismatch(self):
        ref = pd.DataFrame({"a": [0.0, 10.0], "habitat": ["shelf", "slope"]})
        grid = pd.DataFrame({"a": [0.0], "habitat": ["slope"]})
        enc = GowerEncoder(ref, ["a", "habitat"], grid)
        assert enc.categorical_names == ("habitat",)
        d = gower_distances(enc.encode(grid), enc.encode(ref))
        np.testing.assert_allclose(d, [[0.5, 0.5]])

    def test_unseen_level_never_matches(self):
        ref = pd.DataFrame({"habitat": ["shelf", "slope"]})
        grid = pd.DataFrame({"habitat": ["canyon"]})
        enc = GowerEncoder(ref, ["habitat"], grid)
        d = gower_distances(enc.encode(grid), enc.encode(ref))
        np.testing.assert_allclose(d, [[1.0, 1.0]])

    def test_constant_numeric_treated_as_match(self):
        ref = pd.DataFrame({"a": [0.0, 4.0], "c": [1.0, 1.0]})
        grid = pd.DataFrame({"a": [0.0, 0.0], "c": [1.0, 7.0]})
        enc = GowerEncoder(ref, ["a", "c"], grid)
        assert enc.numeric_names == ("a",)
        d = gower_distances(enc.encode(grid), enc.encode(ref))
        np.testing.assert_allclose(d[:, 0], [0.0, 0.5])

    def test_geometric_variability(self):
        ref = pd.DataFrame({"a": [0.0, 1.0, 2.0]})
        enc = GowerEncoder(ref, ["a"])
        # pairs: 0.5, 1.0, 0.5
        assert geometric_variability(enc.encode(ref)) == pytest.approx(2 / 3)

    def test_geometric_variability_chunked(self, segs):
        enc = GowerEncoder(segs, ["Depth", "SST"])
        m = enc.encode(segs)
        assert geometric_variability(m, max_size=100) == pytest.approx(
            geometric_variability(m))

    def test_geometric_variability_needs_two_rows(self):
        ref = pd.DataFrame({"a": [1.0]})
        enc = GowerEncoder(ref, ["a"])
        with pytest.raises(DegenerateCalibration):
            geometric_variability(enc.encode(ref))


# ═══════════════════════════════════════════════════════════════════
# Partitioning
# ═══════════════════════════════════════════════════════════════════

class TestPartitionRows:

    def test_contiguous_cover(self):
        bounds = partition_rows(57, 10)
        assert len(bounds) == 10
        assert bounds[0][0] == 0
        assert bounds[-1][1] == 57
        for (_, stop), (start, _) in zip(bounds, bounds[1:]):
            assert stop == start

    def test_sizes_differ_by_at_most_one(self):
        sizes = [b - a for a, b in partition_rows(57, 10)]
        assert max(sizes) - min(sizes) <= 1

    def test_clamped_to_row_count(self):
        bounds = partition_rows(4, 10)
        assert bounds == [(0, 1), (1, 2), (2, 3), (3, 4)]

    def test_at_least_one(self):
        assert partition_rows(5, 0) == [(0, 5)]


class TestComputeNearby:

    def test_unpartitioned_below_max_size(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid)
        assert res.n_partitions == 1
        assert not res.partitioned

    def test_partitioned_above_max_size(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid,
                             max_size=100, no_partitions=10)
        assert res.n_partitions == 10
        assert res.partitioned
        assert res.partition_bounds[-1][1] == len(predgrid)

    def test_partition_count_clamped(self, segs, predgrid):
        small = predgrid.head(3)
        res = compute_nearby(segs, ["Depth", "SST"], small,
                             max_size=1, no_partitions=10)
        assert res.n_partitions == 3

    @pytest.mark.parametrize("n_jobs", [1, 2])
    def test_partition_invariance(self, segs, predgrid, n_jobs):
        one = compute_nearby(segs, ["Depth", "SST"], predgrid,
                             max_size=1, no_partitions=1)
        ten = compute_nearby(segs, ["Depth", "SST"], predgrid,
                             max_size=1, no_partitions=10, n_jobs=n_jobs)
        np.testing.assert_allclose(one.fraction, ten.fraction)
        assert one.threshold == pytest.approx(ten.threshold)

    def test_fraction_bounds(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid)
        assert np.all((res.fraction >= 0) & (res.fraction <= 1))
        np.testing.assert_allclose(res.percent, 100 * res.fraction)

    def test_matches_brute_force(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid, nearby=0.8)
        lo = segs[["Depth", "SST"]].min().to_numpy()
        span = segs[["Depth", "SST"]].max().to_numpy() - lo
        r = (segs[["Depth", "SST"]].to_numpy() - lo) / span
        g = (predgrid[["Depth", "SST"]].to_numpy() - lo) / span
        ref_d = np.abs(r[:, None, :] - r[None, :, :]).mean(axis=2)
        n = len(r)
        gv = ref_d.sum() / (n * (n - 1))
        d = np.abs(g[:, None, :] - r[None, :, :]).mean(axis=2)
        expected = (d < 0.8 * gv).mean(axis=1)
        assert res.mean_distance == pytest.approx(gv)
        np.testing.assert_allclose(res.fraction, expected)

    def test_larger_multiplier_never_decreases(self, segs, predgrid):
        a = compute_nearby(segs, ["Depth", "SST"], predgrid, nearby=0.5)
        b = compute_nearby(segs, ["Depth", "SST"], predgrid, nearby=2.0)
        assert np.all(b.fraction >= a.fraction)

    def test_point_at_threshold_not_nearby(self):
        # geometric variability 1.0, threshold 0.5
        ref = pd.DataFrame({"a": [0.0, 1.0]})
        grid = pd.DataFrame({"a": [0.5, 0.25]})
        res = compute_nearby(ref, ["a"], grid, nearby=0.5)
        assert res.threshold == 0.5
        np.testing.assert_array_equal(res.fraction, [0.0, 0.5])

    def test_far_point_has_no_neighbours(self, segs):
        grid = pd.DataFrame({"Depth": [1e6], "SST": [100.0]})
        res = compute_nearby(segs, ["Depth", "SST"], grid)
        assert res.fraction[0] == 0.0

    def test_coordinates_and_frame(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid)
        df = res.to_frame()
        assert list(df.columns) == ["x", "y", "fraction", "percent"]
        np.testing.assert_array_equal(df["x"], predgrid["x"])
        assert isinstance(res, NearbyResult)
        assert "partitions=1" in res.summary()

    def test_idempotent(self, segs, predgrid):
        a = compute_nearby(segs, ["Depth", "SST"], predgrid)
        b = compute_nearby(segs, ["Depth", "SST"], predgrid)
        np.testing.assert_array_equal(a.fraction, b.fraction)

    def test_empty_grid(self, segs, predgrid):
        res = compute_nearby(segs, ["Depth", "SST"], predgrid.head(0))
        assert len(res) == 0

    @pytest.mark.parametrize("kwargs", [
        {"nearby": 0},
        {"max_size": -1},
        {"no_partitions": 0},
    ])
    def test_invalid_parameters(self, segs, predgrid, kwargs):
        with pytest.raises(ValueError):
            compute_nearby(segs, ["Depth", "SST"], predgrid, **kwargs)

    def test_invalid_covariate(self, segs, predgrid):
        with pytest.raises(InvalidCovariateName):
            compute_nearby(segs, ["Depth", "EKE"], predgrid)
