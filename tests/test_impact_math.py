"""
Tests for the pure impact calculations.
"""

from decimal import Decimal

import pytest

from src.monetization import (
    calculate_impact,
    extrapolate_to_monthly,
    calculate_prediction_error,
    calculate_prediction_accuracy,
    get_measurement_config,
    MEASUREMENT_CONFIG,
)


class TestCalculateImpact:
    """Test baseline vs measured difference."""

    def test_zero_baseline(self):
        """No division by zero: percent is 0."""
        result = calculate_impact(0, 5)

        assert result.absolute_impact == Decimal("5")
        assert result.percent_impact == Decimal("0")

    def test_increase(self):
        result = calculate_impact(100, 150)

        assert result.absolute_impact == Decimal("50")
        assert result.percent_impact == Decimal("50")

    def test_decrease(self):
        result = calculate_impact(Decimal("80"), Decimal("60"))

        assert result.absolute_impact == Decimal("-20")
        assert result.percent_impact == Decimal("-25")

    def test_accepts_floats_and_none(self):
        result = calculate_impact(None, 2.5)

        assert result.absolute_impact == Decimal("2.5")


class TestExtrapolation:
    """Test projection to a monthly figure."""

    def test_fourteen_day_window(self):
        assert extrapolate_to_monthly(Decimal("14"), 14) == Decimal("30")

    def test_seven_day_window(self):
        assert extrapolate_to_monthly(Decimal("7"), 7) == Decimal("30")

    def test_empty_window(self):
        assert extrapolate_to_monthly(Decimal("5"), 0) == Decimal("0")


class TestPredictionAccuracy:
    """Test prediction scoring."""

    def test_exact_prediction(self):
        error = calculate_prediction_error(Decimal("100"), Decimal("100"))

        assert error == Decimal("0")
        assert calculate_prediction_accuracy(error) == Decimal("1")

    def test_no_estimate(self):
        assert calculate_prediction_error(Decimal("42"), Decimal("0")) == Decimal("0")
        assert calculate_prediction_error(Decimal("42"), None) == Decimal("0")

    def test_half_wrong(self):
        error = calculate_prediction_error(Decimal("50"), Decimal("100"))

        assert error == Decimal("-0.5")
        assert calculate_prediction_accuracy(error) == Decimal("0.5")

    @pytest.mark.parametrize("error", [
        Decimal("0"), Decimal("0.3"), Decimal("-0.3"), Decimal("1"), Decimal("-1"),
        Decimal("2.5"), Decimal("-7"), Decimal("1000000"), Decimal("-1000000"),
    ])
    def test_always_within_bounds(self, error):
        accuracy = calculate_prediction_accuracy(error)

        assert Decimal("0") <= accuracy <= Decimal("1")

    def test_overshoot_floors_at_zero(self):
        error = calculate_prediction_error(Decimal("500"), Decimal("100"))

        assert calculate_prediction_accuracy(error) == Decimal("0")


class TestMeasurementConfig:
    """Test per-action-type measurement settings."""

    def test_known_types(self):
        assert get_measurement_config("ADD_AFFILIATE_LINK").measurement_type == "affiliate_clicks"
        assert get_measurement_config("UPDATE_META_DESCRIPTION").measurement_window == 21
        assert get_measurement_config("ADD_TO_COLLECTION").baseline_window == 7

    def test_unknown_type_falls_back_to_default(self):
        assert get_measurement_config("SOMETHING_NEW") == MEASUREMENT_CONFIG["DEFAULT"]
