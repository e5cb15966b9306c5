# Overview: Service-layer operations for location stock balances; WAC on receipt, capture on issue.

"""
Stock Balance Invariants (authoritative)

- One LocationStock row per (location, item); created lazily on first receipt.
- on_hand never goes negative. apply_issue refuses, and the table carries a
  CHECK constraint as a backstop.
- wac changes ONLY on receipt (delivery or incoming transfer) through
  calculate_wac. Issues and outgoing transfers capture the current wac on
  their lines and leave the balance's wac untouched.
- These helpers never commit. Callers run them inside run_with_retry
  together with the document rows and ledger events they belong to.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Item, Location, LocationStock
from stockms.money import ZERO, round2, to_decimal
from stockms.validation import ConflictError
from .calculations import calculate_wac
from .concurrency import lock_for_update


class InsufficientStockError(ConflictError):
    """Raised when a decrement would take on_hand below zero."""
    default_code = "INSUFFICIENT_STOCK"


def get_stock(location_id: int, item_id: int, *, lock: bool = False) -> LocationStock | None:
    query = db.session.query(LocationStock).filter_by(location_id=location_id, item_id=item_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def list_location_stock(
    location_id: int,
    *,
    category: str | None = None,
    low_stock: bool = False,
    include_zero: bool = True,
) -> list[LocationStock]:
    query = (
        db.session.query(LocationStock)
        .join(Item, Item.id == LocationStock.item_id)
        .filter(LocationStock.location_id == location_id)
    )
    if category:
        query = query.filter(Item.category == category)
    if low_stock:
        query = query.filter(
            LocationStock.min_stock.isnot(None),
            LocationStock.on_hand < LocationStock.min_stock,
        )
    if not include_zero:
        query = query.filter(LocationStock.on_hand > 0)
    return query.order_by(Item.name.asc()).all()


def location_stock_value(location_id: int) -> Decimal:
    """Sum of on_hand * wac over every balance at the location (2 dp)."""
    rows = db.session.query(LocationStock).filter_by(location_id=location_id).all()
    total = sum((to_decimal(r.on_hand) * to_decimal(r.wac) for r in rows), ZERO)
    return round2(total)


def apply_receipt(location_id: int, item_id: int, quantity, unit_price):
    """
    Receive stock into a location and recompute its WAC.

    Returns (stock, wac_before, wac_after).
    """
    quantity = to_decimal(quantity, "quantity")
    unit_price = to_decimal(unit_price, "unit_price")

    stock = get_stock(location_id, item_id, lock=True)
    if stock is None:
        stock = LocationStock(location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO)
        db.session.add(stock)

    wac_before = to_decimal(stock.wac or 0)
    result = calculate_wac(stock.on_hand or 0, wac_before, quantity, unit_price)

    stock.on_hand = result.new_quantity
    stock.wac = result.new_wac
    db.session.flush()

    return stock, wac_before, result.new_wac


def apply_issue(location_id: int, item_id: int, quantity) -> LocationStock:
    """
    Take stock out of a location. WAC is left as it is.

    Raises InsufficientStockError when on_hand would go negative.
    """
    quantity = to_decimal(quantity, "quantity")
    stock = get_stock(location_id, item_id, lock=True)
    available = to_decimal(stock.on_hand) if stock else ZERO

    if stock is None or available < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for item {item_id}: available {available}, requested {quantity}",
            details=[{
                "item_id": item_id,
                "requested": float(quantity),
                "available": float(available),
                "shortfall": float(quantity - available),
            }],
        )

    stock.on_hand = available - quantity
    db.session.flush()
    return stock


def check_stock_sufficiency(location_id: int, lines) -> list[dict]:
    """
    Return one entry per item whose requested quantity exceeds on_hand.

    Quantities for the same item are summed first, so two lines of 6 against
    a balance of 10 are reported as a shortfall of 2.
    """
    requested: dict[int, Decimal] = {}
    for line in lines:
        item_id = int(line["item_id"])
        requested[item_id] = requested.get(item_id, ZERO) + to_decimal(line["quantity"], "quantity")

    shortfalls = []
    for item_id, qty in requested.items():
        stock = get_stock(location_id, item_id)
        available = to_decimal(stock.on_hand) if stock else ZERO
        if qty > available:
            item = db.session.get(Item, item_id)
            shortfalls.append({
                "item_id": item_id,
                "item_code": item.code if item else None,
                "item_name": item.name if item else None,
                "requested": float(qty),
                "available": float(available),
                "shortfall": float(qty - available),
            })
    return shortfalls


def current_wac(location_id: int, item_id: int) -> Decimal:
    stock = get_stock(location_id, item_id)
    return to_decimal(stock.wac) if stock else ZERO


def consolidated_stock(*, category: str | None = None, low_stock: bool = False) -> dict:
    """
    Stock of every active item across every active location.

    Items are listed by name with one entry per holding location. low_stock
    keeps items that are under min_stock somewhere. Location totals always
    cover the full (category-filtered) stock.
    """
    locations = (
        db.session.query(Location)
        .filter(Location.is_active.is_(True))
        .order_by(Location.name.asc())
        .all()
    )
    query = (
        db.session.query(LocationStock)
        .join(Item, Item.id == LocationStock.item_id)
        .join(Location, Location.id == LocationStock.location_id)
        .filter(Item.is_active.is_(True), Location.is_active.is_(True))
    )
    if category:
        query = query.filter(Item.category == category)
    rows = query.order_by(Item.name.asc(), Location.name.asc()).all()

    by_item: dict[int, dict] = {}
    location_values: dict[int, Decimal] = {loc.id: ZERO for loc in locations}
    location_counts: dict[int, int] = {loc.id: 0 for loc in locations}
    for row in rows:
        on_hand = to_decimal(row.on_hand)
        value = round2(on_hand * to_decimal(row.wac))
        is_low = row.min_stock is not None and on_hand < to_decimal(row.min_stock)

        entry = by_item.get(row.item_id)
        if entry is None:
            entry = by_item[row.item_id] = {
                "item_id": row.item_id,
                "item_code": row.item.code,
                "item_name": row.item.name,
                "item_unit": row.item.unit,
                "item_category": row.item.category,
                "item_sub_category": row.item.sub_category,
                "total_on_hand": ZERO,
                "total_value": ZERO,
                "locations": [],
            }
        entry["total_on_hand"] += on_hand
        entry["total_value"] += value
        entry["locations"].append({
            **row.location.to_summary(),
            "on_hand": float(on_hand),
            "wac": float(row.wac),
            "value": float(value),
            "min_stock": float(row.min_stock) if row.min_stock is not None else None,
            "max_stock": float(row.max_stock) if row.max_stock is not None else None,
            "is_low_stock": is_low,
        })
        location_values[row.location_id] += value
        location_counts[row.location_id] += 1

    items = list(by_item.values())
    if low_stock:
        items = [i for i in items if any(loc["is_low_stock"] for loc in i["locations"])]

    grand_total = round2(sum((i["total_value"] for i in items), ZERO))
    for entry in items:
        entry["total_on_hand"] = float(entry["total_on_hand"])
        entry["total_value"] = float(round2(entry["total_value"]))

    return {
        "items": items,
        "location_totals": [
            {
                **loc.to_summary(),
                "total_value": float(round2(location_values[loc.id])),
                "item_count": location_counts[loc.id],
            }
            for loc in locations
        ],
        "grand_total_value": float(grand_total),
        "total_items": len(items),
        "total_locations": len(locations),
    }
