"""Tests for the combined extrapolation result (exdet.extrapolation)."""

import json

import numpy as np
import pandas as pd
import pytest

from exdet import compute_extrapolation
from exdet.errors import InvalidCovariateName, SingularCovarianceMatrix
from exdet.extrapolation import (
    CATEGORIES,
    ExtrapolationRecord,
    ExtrapolationResult,
)


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def segs():
    rng = np.random.default_rng(11)
    a = rng.normal(0, 1, 300)
    b = a + rng.normal(0, 0.2, 300)
    return pd.DataFrame({
        "x": rng.uniform(0, 100, 300),
        "y": rng.uniform(0, 100, 300),
        "a": a,
        "b": b,
    })


@pytest.fixture
def predgrid():
    """Analogue, combinatorial and univariate cells, in that order."""
    return pd.DataFrame({
        "x": [1.0, 2.0, 3.0],
        "y": [10.0, 20.0, 30.0],
        "a": [0.0, 1.0, 50.0],
        "b": [0.0, -1.0, 50.0],
    })


@pytest.fixture
def result(segs, predgrid):
    return compute_extrapolation(segs, ["a", "b"], predgrid)


# ═══════════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════════

class TestCategories:

    def test_category_per_row(self, result):
        assert list(result.category) == [
            "analogue", "combinatorial", "univariate"]

    def test_univariate_takes_precedence(self, result):
        # the univariate row also has NT2 > 1
        assert result.is_combinatorial[2]
        assert result.category[2] == "univariate"

    def test_exdet_combines_nt1_and_nt2(self, result):
        assert result.exdet[2] == pytest.approx(result.nt1[2])
        assert result.exdet[2] < 0
        assert result.exdet[1] == pytest.approx(result.nt2[1])
        assert 0 <= result.exdet[0] <= 1

    def test_counts_and_percentages(self, result):
        assert result.counts() == {
            "univariate": 1, "combinatorial": 1, "analogue": 1}
        assert sum(result.percentages().values()) == pytest.approx(100.0)
        assert tuple(result.counts()) == CATEGORIES


# ═══════════════════════════════════════════════════════════════════
# Row records and frames
# ═══════════════════════════════════════════════════════════════════

class TestRecords:

    def test_one_record_per_row_in_order(self, result, predgrid):
        records = result.records()
        assert len(records) == len(predgrid) == len(result)
        assert [r.index for r in records] == [0, 1, 2]
        assert all(isinstance(r, ExtrapolationRecord) for r in records)

    def test_coordinates_passed_through(self, result):
        assert result.records()[1].coordinates == (2.0, 20.0)

    def test_record_mic_matches_category(self, result):
        rec = result.records()
        assert rec[0].mic is None
        assert rec[1].mic == rec[1].mic_combinatorial
        assert rec[1].mic in ("a", "b")
        assert rec[2].mic == rec[2].mic_univariate

    def test_records_are_frozen(self, result):
        rec = result.records()[0]
        with pytest.raises(Exception):
            rec.nt2 = 5.0

    def test_to_frame(self, result):
        df = result.to_frame()
        assert list(df.columns[:2]) == ["x", "y"]
        assert len(df) == 3
        assert df["category"].tolist()[1] == "combinatorial"
        assert df["n_out_of_range"].tolist() == [0, 0, 2]

    def test_no_coordinates(self, segs, predgrid):
        res = compute_extrapolation(
            segs, ["a", "b"], predgrid.drop(columns=["x", "y"]))
        assert res.coordinates is None
        assert res.records()[0].coordinates is None
        assert "x" not in res.to_frame().columns

    def test_to_dict_is_json_safe(self, result):
        d = result.to_dict()
        json.dumps(d)
        assert d["n_rows"] == 3

    def test_summary(self, result):
        text = result.summary()
        assert "combinatorial" in text
        assert "3 cells" in text


# ═══════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════

class TestErrors:

    def test_invalid_name(self, segs, predgrid):
        with pytest.raises(InvalidCovariateName):
            compute_extrapolation(segs, ["a", "SST"], predgrid)

    def test_singular_propagates(self, segs, predgrid):
        segs = segs.assign(c=segs["a"] * 3)
        predgrid = predgrid.assign(c=predgrid["a"] * 3)
        with pytest.raises(SingularCovarianceMatrix):
            compute_extrapolation(segs, ["a", "c"], predgrid)

    def test_singular_keeps_univariate_scores(self, segs, predgrid):
        from exdet import compute_univariate
        segs = segs.assign(c=segs["a"] * 3)
        predgrid = predgrid.assign(c=predgrid["a"] * 3)
        with pytest.raises(SingularCovarianceMatrix) as info:
            compute_extrapolation(segs, ["a", "c"], predgrid)
        uni = info.value.univariate
        direct = compute_univariate(segs, ["a", "c"], predgrid)
        assert uni.covariate_names == ("a", "c")
        np.testing.assert_array_equal(uni.out_of_range, direct.out_of_range)
        np.testing.assert_allclose(uni.nt1, direct.nt1)

    def test_idempotent(self, segs, predgrid):
        r1 = compute_extrapolation(segs, ["a", "b"], predgrid)
        r2 = compute_extrapolation(segs, ["a", "b"], predgrid)
        assert isinstance(r1, ExtrapolationResult)
        np.testing.assert_array_equal(r1.exdet, r2.exdet)
        assert r1.to_dict() == r2.to_dict()
