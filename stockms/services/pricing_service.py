# Overview: Service-layer operations for period-locked item prices.

"""
Pricing Service

WHY: Every posted delivery is compared with the price locked for its item
in the current period; a mismatch raises a PRICE_VARIANCE NCR. One price
per (item, period).

Prices are freely editable while the period is DRAFT. After that every
existing price is locked; an item that still has no price in a running
period may get one once, so it can be received. CLOSED periods accept
nothing.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Item, ItemPrice, Period, User
from stockms.money import round4, to_decimal
from stockms.time_utils import utcnow
from stockms.validation import ConflictError, ValidationError, parse_decimal, parse_int
from .concurrency import run_with_retry
from .ledger_service import append_ledger_event
from .period_service import (
    PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_CLOSED,
    PERIOD_STATUS_DRAFT,
    get_period,
)


class PricingValidationError(ValidationError):
    pass


class PricingStateError(ConflictError):
    pass


def _require_draft(period: Period) -> None:
    if period.status != PERIOD_STATUS_DRAFT:
        raise PricingStateError(
            f"Prices are locked: period {period.name} is {period.status}",
            code="PRICES_LOCKED",
        )


def _upsert_price(*, item_id: int, period_id: int, price: Decimal, user_id: int | None) -> ItemPrice:
    row = db.session.query(ItemPrice).filter_by(item_id=item_id, period_id=period_id).first()
    if row is None:
        row = ItemPrice(
            item_id=item_id,
            period_id=period_id,
            currency=current_app.config.get("DEFAULT_CURRENCY", "SAR"),
        )
        db.session.add(row)
    row.price = round4(price)
    row.set_by_user_id = user_id
    row.set_at = utcnow()
    return row


def set_period_prices(period_id: int, prices: list[dict], *, user: User) -> list[ItemPrice]:
    """
    Bulk upsert of {item_id, price} pairs.

    A DRAFT period takes any change. An OPEN or PENDING_CLOSE period only
    takes prices for items that have none yet.

    Raises:
        PricingValidationError: empty list, bad price, duplicate item,
            unknown or inactive item (INVALID_ITEMS)
        PricingStateError: period closed, or an item is already priced (PRICES_LOCKED)
    """
    if not isinstance(prices, list) or not prices:
        raise PricingValidationError("At least one price is required")

    parsed: dict[int, Decimal] = {}
    for idx, entry in enumerate(prices):
        if not isinstance(entry, dict):
            raise PricingValidationError(f"prices[{idx}] must be an object")
        item_id = parse_int(entry.get("item_id"), f"prices[{idx}].item_id")
        if item_id in parsed:
            raise PricingValidationError(f"Item {item_id} appears more than once", code="DUPLICATE_ITEM")
        parsed[item_id] = parse_decimal(entry.get("price"), f"prices[{idx}].price", positive=True)

    def _op():
        period = get_period(period_id)
        if period.status in (PERIOD_STATUS_APPROVED, PERIOD_STATUS_CLOSED):
            raise PricingStateError(
                f"Prices are locked: period {period.name} is {period.status}",
                code="PRICES_LOCKED",
            )

        active = {
            item.id
            for item in db.session.query(Item)
            .filter(Item.id.in_(parsed.keys()), Item.is_active.is_(True))
            .all()
        }
        invalid = sorted(set(parsed) - active)
        if invalid:
            raise PricingValidationError(
                "One or more items not found or inactive",
                code="INVALID_ITEMS",
                details={"item_ids": invalid},
            )

        if period.status != PERIOD_STATUS_DRAFT:
            locked = sorted(get_price_map(period.id, parsed.keys()))
            if locked:
                raise PricingStateError(
                    f"Prices are locked: period {period.name} is {period.status}",
                    code="PRICES_LOCKED",
                    details={"item_ids": locked},
                )

        rows = [
            _upsert_price(item_id=item_id, period_id=period.id, price=price, user_id=user.id)
            for item_id, price in parsed.items()
        ]
        db.session.flush()

        append_ledger_event(
            event_type="prices.set",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"{len(rows)} price(s) set for {period.name}",
        )

        db.session.commit()
        return rows

    return run_with_retry(_op)


def copy_period_prices(source_period_id: int, target_period_id: int, *, user_id: int | None) -> int:
    """Copy prices of active items between periods (no commit). Returns count."""
    rows = (
        db.session.query(ItemPrice)
        .join(Item, Item.id == ItemPrice.item_id)
        .filter(ItemPrice.period_id == source_period_id, Item.is_active.is_(True))
        .all()
    )
    for row in rows:
        _upsert_price(item_id=row.item_id, period_id=target_period_id, price=to_decimal(row.price), user_id=user_id)
    db.session.flush()
    return len(rows)


def copy_prices_from_previous(period_id: int, *, user: User) -> tuple[int, Period]:
    """
    Copy prices into a DRAFT period from the latest CLOSED period that ends
    before it starts.

    Returns (count, source_period).
    """
    def _op():
        target = get_period(period_id)
        _require_draft(target)

        source = (
            db.session.query(Period)
            .filter(Period.status == PERIOD_STATUS_CLOSED, Period.end_date < target.start_date)
            .order_by(Period.end_date.desc())
            .first()
        )
        if source is None:
            raise PricingStateError("No closed period to copy prices from", code="NO_SOURCE_PERIOD")

        count = copy_period_prices(source.id, target.id, user_id=user.id)

        append_ledger_event(
            event_type="prices.copied",
            event_category="periods",
            entity_type="period",
            entity_id=target.id,
            actor_user_id=user.id,
            note=f"{count} price(s) copied from {source.name}",
            payload={"source_period_id": source.id},
        )

        db.session.commit()
        return count, source

    return run_with_retry(_op)


def get_period_prices(period_id: int) -> list[ItemPrice]:
    get_period(period_id)
    return (
        db.session.query(ItemPrice)
        .join(Item, Item.id == ItemPrice.item_id)
        .filter(ItemPrice.period_id == period_id)
        .order_by(Item.code.asc())
        .all()
    )


def get_price_map(period_id: int, item_ids) -> dict[int, Decimal]:
    ids = list(item_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(ItemPrice)
        .filter(ItemPrice.period_id == period_id, ItemPrice.item_id.in_(ids))
        .all()
    )
    return {row.item_id: to_decimal(row.price) for row in rows}
