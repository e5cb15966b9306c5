"""
Valuation formula tests.

Pure functions, no database: WAC, price variance, consumption, manday cost,
expected closing and PO line amounts.
"""

from decimal import Decimal

import pytest

from stockms.services.calculations import (
    calculate_consumption,
    calculate_expected_closing,
    calculate_manday_cost,
    calculate_po_line_amounts,
    calculate_wac,
    check_price_variance,
)


# =============================================================================
# WEIGHTED AVERAGE COST
# =============================================================================


class TestWAC:

    def test_first_receipt_takes_received_price(self):
        result = calculate_wac(0, 0, 50, "12.5")
        assert result.new_wac == Decimal("12.5000")
        assert result.new_quantity == Decimal("50")
        assert result.new_value == Decimal("625.00")

    def test_weighted_average(self):
        # 100 @ 10 + 50 @ 13 = 1650 / 150 = 11
        result = calculate_wac(100, 10, 50, 13)
        assert result.new_wac == Decimal("11.0000")
        assert result.previous_wac == Decimal("10")

    def test_rounds_half_up_to_four_places(self):
        # (1 * 1 + 2 * 2) / 3 = 1.66666...
        result = calculate_wac(1, 1, 2, 2)
        assert result.new_wac == Decimal("1.6667")

    @pytest.mark.parametrize(
        "args",
        [
            (-1, 10, 5, 10),
            (5, -1, 5, 10),
            (5, 10, 0, 10),
            (5, 10, 5, -1),
        ],
    )
    def test_rejects_invalid_inputs(self, args):
        with pytest.raises(ValueError):
            calculate_wac(*args)


# =============================================================================
# PRICE VARIANCE
# =============================================================================


class TestPriceVariance:

    def test_no_variance(self):
        result = check_price_variance("10.00", "10.00", 5)
        assert result.has_variance is False
        assert result.exceeds_threshold is False

    def test_zero_thresholds_flag_any_variance(self):
        result = check_price_variance("10.50", "10.00", 10)
        assert result.has_variance is True
        assert result.variance == Decimal("0.5000")
        assert result.variance_percent == Decimal("5.00")
        assert result.variance_amount == Decimal("5.00")
        assert result.exceeds_threshold is True
        assert result.direction == "increase"

    def test_percent_threshold_tolerates_small_variance(self):
        result = check_price_variance("10.20", "10.00", 10, threshold_percent=5)
        assert result.has_variance is True
        assert result.exceeds_threshold is False

    def test_amount_threshold_exceeded(self):
        result = check_price_variance("9.00", "10.00", 100, threshold_percent=50, threshold_amount=50)
        assert result.variance_amount == Decimal("-100.00")
        assert result.exceeds_threshold is True
        assert result.direction == "decrease"

    def test_zero_expected_price_counts_as_full_increase(self):
        result = check_price_variance("4.00", "0", 1)
        assert result.variance_percent == Decimal("100.00")


# =============================================================================
# CONSUMPTION / MANDAY COST / EXPECTED CLOSING
# =============================================================================


class TestConsumption:

    def test_consumption_formula(self):
        result = calculate_consumption(
            opening_stock=1000,
            receipts=500,
            transfers_in=100,
            transfers_out=50,
            closing_stock=800,
            adjustments=10,
            back_charges=20,
            credits=30,
            condemnations=5,
        )
        # 1000 + 500 + 100 - 50 - 800 + (20 - 30 - 5 + 10)
        assert result.consumption == Decimal("745.00")
        assert result.total_adjustments == Decimal("-5.00")

    def test_negative_movement_rejected(self):
        with pytest.raises(ValueError):
            calculate_consumption(
                opening_stock=-1, receipts=0, transfers_in=0, transfers_out=0, closing_stock=0,
            )

    def test_manday_cost(self):
        assert calculate_manday_cost("745.00", 149) == Decimal("5.00")

    @pytest.mark.parametrize("mandays", [0, -3])
    def test_manday_cost_requires_positive_mandays(self, mandays):
        with pytest.raises(ValueError):
            calculate_manday_cost(100, mandays)

    def test_expected_closing_variance(self):
        result = calculate_expected_closing(
            opening_stock=1000,
            receipts=500,
            transfers_in=0,
            transfers_out=100,
            issues=300,
            actual_closing=1090,
            credits=10,
            condemnations=5,
        )
        assert result.calculated_closing == Decimal("1105.00")
        assert result.variance == Decimal("-15.00")


# =============================================================================
# PO LINE AMOUNTS
# =============================================================================


class TestPOLineAmounts:

    def test_discount_then_vat(self):
        amounts = calculate_po_line_amounts(10, "25.00", discount_percent=10)
        assert amounts["total_before_discount"] == Decimal("250.00")
        assert amounts["discount_amount"] == Decimal("25.00")
        assert amounts["total_before_vat"] == Decimal("225.00")
        assert amounts["vat_amount"] == Decimal("33.75")
        assert amounts["total_after_vat"] == Decimal("258.75")

    def test_zero_vat(self):
        amounts = calculate_po_line_amounts(3, "1.10", vat_percent=0)
        assert amounts["vat_amount"] == Decimal("0.00")
        assert amounts["total_after_vat"] == Decimal("3.30")
