"""Tests for price reconciliation and cash check-in differences."""

import math

import pytest
from courier.pricing.reconciliation import (
    CASH_MATCHED,
    CASH_OVER,
    CASH_SHORT,
    cash_difference,
    ratio,
    reconcile,
    volume_m3,
)


class TestRatio:
    def test_plain_ratio(self):
        assert ratio(3, 2) == 1.5

    @pytest.mark.parametrize(
        "actual, estimated",
        [(None, 2), (2, None), (0, 2), (2, 0), (-1, 2), ("abc", 2), (math.inf, 2), (math.nan, 2), (True, 2)],
    )
    def test_unusable_sides_fall_back_to_one(self, actual, estimated):
        assert ratio(actual, estimated) == 1.0

    def test_numeric_strings_are_accepted(self):
        assert ratio("4", "2") == 2.0


class TestVolume:
    def test_volume_in_cubic_metres(self):
        assert volume_m3(100, 100, 100) == 1.0
        assert volume_m3(30, 20, 10) == pytest.approx(0.006)

    def test_missing_dimension_has_no_volume(self):
        assert volume_m3(30, 0, 10) is None
        assert volume_m3(30, None, 10) is None


class TestReconcile:
    def test_larger_parcel_doubles_fee(self):
        result = reconcile(
            estimated_fee=100000,
            estimated_volume=0.0015,
            estimated_weight=2000,
            actual_volume=0.003,
            actual_weight=2000,
        )
        assert result.scale == pytest.approx(2.0)
        assert result.actual_fee == 200000
        assert result.price_difference == 100000
        assert result.adjusted is True

    def test_matching_measurements_keep_fee(self):
        result = reconcile(100000, 0.0015, 2000, 0.0015, 2000)
        assert result.actual_fee == 100000
        assert result.price_difference == 0
        assert result.adjusted is False

    def test_difference_is_exact_for_fractional_fee(self):
        result = reconcile(100000.4, 0.0015, 2000, 0.003, 2000)
        assert result.actual_fee == 200001
        assert result.price_difference == pytest.approx(100000.6)

    def test_scale_never_below_one(self):
        result = reconcile(100000, 0.003, 4000, 0.0015, 1000)
        assert result.scale == 1.0
        assert result.actual_fee == 100000

    def test_weight_ratio_wins_when_larger(self):
        result = reconcile(50000, 0.001, 1000, 0.0015, 3000)
        assert result.volume_ratio == pytest.approx(1.5)
        assert result.weight_ratio == pytest.approx(3.0)
        assert result.actual_fee == 150000

    def test_unknown_fee_gives_unknown_actual_fee(self):
        result = reconcile(None, 0.0015, 2000, 0.003, 2000)
        assert result.actual_fee is None
        assert result.price_difference is None
        assert result.scale == pytest.approx(2.0)

    def test_bad_measurements_keep_fee(self):
        result = reconcile(100000, "n/a", 0, -1, None)
        assert result.scale == 1.0
        assert result.actual_fee == 100000

    def test_half_rounds_up(self):
        result = reconcile(101, 1, 1, 1.5, 1)
        assert result.actual_fee == 152


class TestCashDifference:
    def test_matched(self):
        assert cash_difference(35000, 35000) == (0.0, CASH_MATCHED)

    def test_over(self):
        assert cash_difference(40000, 35000) == (5000.0, CASH_OVER)

    def test_short(self):
        assert cash_difference(30000, 35000) == (-5000.0, CASH_SHORT)
