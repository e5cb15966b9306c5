# Overview: Pure valuation formulas (WAC, price variance, consumption, manday cost).

"""
Inventory valuation formulas.

No database access here: services call these inside their transaction and
persist the results. All inputs are coerced to Decimal; outputs are rounded
with ROUND_HALF_UP (WAC to 4 dp, money to 2 dp).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from stockms.money import ZERO, round2, round4, to_decimal


@dataclass(frozen=True)
class WACResult:
    new_wac: Decimal
    new_quantity: Decimal
    new_value: Decimal
    previous_wac: Decimal


@dataclass(frozen=True)
class PriceVarianceResult:
    has_variance: bool
    variance: Decimal
    variance_percent: Decimal
    variance_amount: Decimal
    exceeds_threshold: bool

    @property
    def direction(self) -> str:
        return "increase" if self.variance > 0 else "decrease"


@dataclass(frozen=True)
class ConsumptionResult:
    consumption: Decimal
    total_adjustments: Decimal


@dataclass(frozen=True)
class ExpectedClosingResult:
    calculated_closing: Decimal
    variance: Decimal


def calculate_wac(current_qty, current_wac, received_qty, received_price) -> WACResult:
    """
    Weighted average cost after receiving stock.

        new_wac = (current_qty * current_wac + received_qty * received_price)
                  / (current_qty + received_qty)

    With no stock on hand the received price becomes the WAC.

    Raises ValueError on negative stock/cost, non-positive received quantity
    or a negative price.
    """
    current_qty = to_decimal(current_qty, "current_qty")
    current_wac = to_decimal(current_wac, "current_wac")
    received_qty = to_decimal(received_qty, "received_qty")
    received_price = to_decimal(received_price, "received_price")

    if current_qty < 0:
        raise ValueError("current_qty cannot be negative")
    if current_wac < 0:
        raise ValueError("current_wac cannot be negative")
    if received_qty <= 0:
        raise ValueError("received_qty must be greater than zero")
    if received_price < 0:
        raise ValueError("received_price cannot be negative")

    new_quantity = current_qty + received_qty

    if current_qty == 0:
        new_wac = round4(received_price)
    else:
        total_value = current_qty * current_wac + received_qty * received_price
        new_wac = round4(total_value / new_quantity)

    return WACResult(
        new_wac=new_wac,
        new_quantity=new_quantity,
        new_value=round2(new_quantity * new_wac),
        previous_wac=current_wac,
    )


def check_price_variance(
    actual_price,
    expected_price,
    quantity,
    *,
    threshold_percent=0,
    threshold_amount=0,
) -> PriceVarianceResult:
    """
    Compare a delivered price against the period-locked price.

    variance_percent is relative to the expected price; when the expected
    price is zero any positive actual price counts as a 100% increase.

    Thresholds of zero mean "no tolerance": any non-zero variance exceeds.
    When a threshold is set, exceeding either the percent or the amount
    threshold is enough.
    """
    actual = to_decimal(actual_price, "actual_price")
    expected = to_decimal(expected_price, "expected_price")
    qty = to_decimal(quantity, "quantity")
    pct_limit = to_decimal(threshold_percent or 0, "threshold_percent")
    amount_limit = to_decimal(threshold_amount or 0, "threshold_amount")

    variance = actual - expected
    has_variance = variance != 0

    if expected == 0:
        variance_percent = Decimal("100") if actual > 0 else ZERO
    else:
        variance_percent = variance / expected * 100

    variance_amount = variance * qty

    exceeds = False
    if has_variance:
        if pct_limit == 0 and amount_limit == 0:
            exceeds = True
        elif pct_limit > 0 and abs(variance_percent) > pct_limit:
            exceeds = True
        elif amount_limit > 0 and abs(variance_amount) > amount_limit:
            exceeds = True

    return PriceVarianceResult(
        has_variance=has_variance,
        variance=round4(variance),
        variance_percent=round2(variance_percent),
        variance_amount=round2(variance_amount),
        exceeds_threshold=exceeds,
    )


def price_variance_reason(item_name: str, quantity, expected_price, actual_price, result: PriceVarianceResult) -> str:
    return (
        f"Price variance detected for {item_name}: "
        f"Qty {to_decimal(quantity).normalize():f}, "
        f"Expected {round2(expected_price)}, Actual {round2(actual_price)}, "
        f"Variance {result.variance_percent}% ({result.direction}), "
        f"Total {abs(result.variance_amount)}"
    )


def calculate_consumption(
    *,
    opening_stock,
    receipts,
    transfers_in,
    transfers_out,
    closing_stock,
    adjustments=0,
    back_charges=0,
    credits=0,
    condemnations=0,
) -> ConsumptionResult:
    """
    Consumption = Opening + Receipts + TransfersIn - TransfersOut - Closing
                  + (BackCharges - Credits - Condemnations + Adjustments)
    """
    opening_stock = to_decimal(opening_stock, "opening_stock")
    receipts = to_decimal(receipts, "receipts")
    transfers_in = to_decimal(transfers_in, "transfers_in")
    transfers_out = to_decimal(transfers_out, "transfers_out")
    closing_stock = to_decimal(closing_stock, "closing_stock")

    for name, value in (
        ("opening_stock", opening_stock),
        ("receipts", receipts),
        ("transfers_in", transfers_in),
        ("transfers_out", transfers_out),
        ("closing_stock", closing_stock),
    ):
        if value < 0:
            raise ValueError(f"{name} cannot be negative")

    total_adjustments = (
        to_decimal(back_charges, "back_charges")
        - to_decimal(credits, "credits")
        - to_decimal(condemnations, "condemnations")
        + to_decimal(adjustments, "adjustments")
    )

    consumption = opening_stock + receipts + transfers_in - transfers_out - closing_stock + total_adjustments

    return ConsumptionResult(
        consumption=round2(consumption),
        total_adjustments=round2(total_adjustments),
    )


def calculate_manday_cost(consumption, total_mandays) -> Decimal:
    consumption = to_decimal(consumption, "consumption")
    total_mandays = to_decimal(total_mandays, "total_mandays")
    if total_mandays <= 0:
        raise ValueError("total_mandays must be greater than zero")
    return round2(consumption / total_mandays)


def calculate_expected_closing(
    *,
    opening_stock,
    receipts,
    transfers_in,
    transfers_out,
    issues,
    actual_closing,
    adjustments=0,
    back_charges=0,
    credits=0,
    condemnations=0,
) -> ExpectedClosingResult:
    """
    Book closing value from movements, compared against the counted stock value.

    Back-charges and condemnations leave the books; credits come back in.
    """
    calculated = (
        to_decimal(opening_stock)
        + to_decimal(receipts)
        + to_decimal(transfers_in)
        - to_decimal(transfers_out)
        - to_decimal(issues)
        + to_decimal(adjustments)
        - to_decimal(back_charges)
        + to_decimal(credits)
        - to_decimal(condemnations)
    )
    calculated = round2(calculated)
    return ExpectedClosingResult(
        calculated_closing=calculated,
        variance=round2(to_decimal(actual_closing) - calculated),
    )


def calculate_po_line_amounts(quantity, unit_price, discount_percent=0, vat_percent=15) -> dict:
    """
    PO line money breakdown, every amount rounded to 2 dp:
    gross -> discount -> total before VAT -> VAT -> total after VAT.
    """
    quantity = to_decimal(quantity, "quantity")
    unit_price = to_decimal(unit_price, "unit_price")
    discount_percent = to_decimal(discount_percent or 0, "discount_percent")
    vat_percent = to_decimal(vat_percent if vat_percent is not None else 15, "vat_percent")

    gross = round2(quantity * unit_price)
    discount = round2(gross * discount_percent / 100)
    before_vat = round2(gross - discount)
    vat = round2(before_vat * vat_percent / 100)
    return {
        "total_before_discount": gross,
        "discount_amount": discount,
        "total_before_vat": before_vat,
        "vat_amount": vat,
        "total_after_vat": round2(before_vat + vat),
    }
