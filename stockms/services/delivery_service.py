# Overview: Service-layer operations for supplier deliveries; posting receives stock and raises variance NCRs.

"""
Delivery Service

WHY: A delivery is the only way supplier stock enters a location. Posting one
recomputes WAC, checks every price against the period-locked price and keeps
the purchase order's delivered quantities current.

LIFECYCLE:
1. DRAFT: Saved, no stock effect; may be edited away (deleted)
2. POSTED: Stock received, PO updated, price-variance NCRs raised

IMMUTABLE: Once POSTED, a delivery cannot be changed or deleted.

POSTING (one transaction):
- OPEN period for the location, locked price for every item
- invoice_no present and unique
- PO (optional) OPEN, same supplier; over-delivery needs approval
- per line: variance vs period price, receipt into stock (WAC), PO delivered_qty
- variance above the configured thresholds -> PRICE_VARIANCE NCR
- PO closes itself once every line is fully delivered
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..models import Delivery, DeliveryLine, Item, Location, PurchaseOrder, Supplier, User
from stockms.money import ZERO, round2, round4, to_decimal
from stockms.time_utils import today, utcnow
from stockms.validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    parse_date,
    parse_decimal,
    parse_int,
)
from . import ncr_service, po_service
from .access_service import require_location_access
from .calculations import check_price_variance
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_yearly_number
from .inventory_service import apply_receipt
from .ledger_service import append_ledger_event
from .period_service import PeriodStateError, get_latest_period, get_open_period, require_open_period_for_location
from .pricing_service import get_price_map


STATUS_DRAFT = "DRAFT"
STATUS_POSTED = "POSTED"

STATUSES = {STATUS_DRAFT, STATUS_POSTED}


class DeliveryNotFoundError(NotFoundError):
    default_code = "DELIVERY_NOT_FOUND"


class DeliveryValidationError(ValidationError):
    pass


class DeliveryStateError(ConflictError):
    pass


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise DeliveryValidationError("At least one line is required")

    parsed = []
    seen = set()
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise DeliveryValidationError(f"lines[{idx}] must be an object")
        item_id = parse_int(line.get("item_id"), f"lines[{idx}].item_id")
        if item_id in seen:
            raise DeliveryValidationError(
                f"Item {item_id} appears more than once",
                code="DUPLICATE_ITEMS",
                details={"item_id": item_id},
            )
        seen.add(item_id)
        po_line_id = line.get("po_line_id")
        parsed.append({
            "item_id": item_id,
            "quantity": parse_decimal(line.get("quantity"), f"lines[{idx}].quantity", positive=True),
            "unit_price": parse_decimal(line.get("unit_price"), f"lines[{idx}].unit_price", non_negative=True),
            "po_line_id": parse_int(po_line_id, f"lines[{idx}].po_line_id") if po_line_id not in (None, "") else None,
            "over_delivery_approved": bool(line.get("over_delivery_approved", False)),
        })
    return parsed


def _require_active_items(item_ids) -> dict[int, Item]:
    ids = set(item_ids)
    items = {
        item.id: item
        for item in db.session.query(Item).filter(Item.id.in_(ids), Item.is_active.is_(True)).all()
    }
    missing = sorted(ids - set(items))
    if missing:
        raise DeliveryValidationError(
            "One or more items not found or inactive",
            code="INVALID_ITEMS",
            details={"item_ids": missing},
        )
    return items


def _require_unique_invoice(invoice_no: str | None, *, exclude_id: int | None = None) -> None:
    if not invoice_no:
        return
    query = db.session.query(Delivery.id).filter(Delivery.invoice_no == invoice_no)
    if exclude_id is not None:
        query = query.filter(Delivery.id != exclude_id)
    if query.first():
        raise DeliveryStateError(
            f"Invoice {invoice_no} has already been recorded",
            code="DUPLICATE_INVOICE",
        )


def _lock_po(po_id: int, supplier_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if not po:
        raise DeliveryValidationError(f"PO {po_id} not found", code="PO_NOT_FOUND")
    if po.status != po_service.STATUS_OPEN:
        raise DeliveryStateError(f"PO {po.po_no} is {po.status}", code="PO_CLOSED")
    if po.supplier_id != supplier_id:
        raise DeliveryValidationError(
            f"PO {po.po_no} belongs to a different supplier",
            code="PO_SUPPLIER_MISMATCH",
        )
    return po


def _match_po_line(po: PurchaseOrder, item_id: int, po_line_id: int | None):
    """Explicit po_line_id first, else the first PO line for the same item."""
    if po_line_id is not None:
        for po_line in po.lines:
            if po_line.id == po_line_id:
                if po_line.item_id is not None and po_line.item_id != item_id:
                    raise DeliveryValidationError(
                        f"PO line {po_line_id} is for a different item",
                        code="PO_LINE_MISMATCH",
                    )
                return po_line
        raise DeliveryValidationError(f"PO line {po_line_id} is not on PO {po.po_no}", code="PO_LINE_NOT_FOUND")

    for po_line in po.lines:
        if po_line.item_id == item_id:
            return po_line
    return None


def _check_over_delivery(delivery: Delivery, po: PurchaseOrder, user: User) -> None:
    """
    A line may exceed its PO line's remaining quantity only when approved.

    Supervisors and administrators approve implicitly by posting.
    """
    by_id = {po_line.id: po_line for po_line in po.lines}
    excess = []
    for line in delivery.lines:
        po_line = by_id.get(line.po_line_id)
        if po_line is None:
            continue
        remaining = max(ZERO, to_decimal(po_line.quantity) - to_decimal(po_line.delivered_qty or 0))
        qty = to_decimal(line.quantity)
        if qty <= remaining or line.over_delivery_approved:
            continue
        if user.is_supervisor_or_admin:
            line.over_delivery_approved = True
            continue
        excess.append({
            "item_id": line.item_id,
            "po_line_id": po_line.id,
            "ordered": float(po_line.quantity),
            "delivered": float(po_line.delivered_qty or 0),
            "remaining": float(remaining),
            "quantity": float(qty),
            "excess": float(qty - remaining),
        })

    if excess:
        raise DeliveryValidationError(
            "Delivered quantity exceeds the PO's remaining quantity",
            code="OVER_DELIVERY_NOT_APPROVED",
            details=excess,
        )


def _post(delivery: Delivery, user: User) -> Delivery:
    """Post a delivery inside the caller's transaction (no commit)."""
    period, _ = require_open_period_for_location(delivery.location_id)
    delivery.period_id = period.id

    if not delivery.invoice_no:
        raise DeliveryValidationError("invoice_no is required to post a delivery", code="INVOICE_REQUIRED")
    _require_unique_invoice(delivery.invoice_no, exclude_id=delivery.id)

    items = _require_active_items(line.item_id for line in delivery.lines)
    prices = get_price_map(period.id, items.keys())
    missing = sorted(item_id for item_id in items if item_id not in prices)
    if missing:
        raise DeliveryValidationError(
            f"No locked price in {period.name} for one or more items",
            code="MISSING_PERIOD_PRICES",
            details=[
                {"item_id": item_id, "item_code": items[item_id].code, "item_name": items[item_id].name}
                for item_id in missing
            ],
        )

    po = None
    if delivery.po_id is not None:
        po = _lock_po(delivery.po_id, delivery.supplier_id)
        _check_over_delivery(delivery, po, user)
    po_lines = {po_line.id: po_line for po_line in po.lines} if po else {}

    threshold_percent = current_app.config.get("NCR_VARIANCE_THRESHOLD_PERCENT", 0)
    threshold_amount = current_app.config.get("NCR_VARIANCE_THRESHOLD_AMOUNT", 0)

    total = ZERO
    ncrs = []
    for line in delivery.lines:
        item = items[line.item_id]
        qty = to_decimal(line.quantity)
        unit_price = to_decimal(line.unit_price)
        period_price = prices[line.item_id]

        variance = check_price_variance(
            unit_price,
            period_price,
            qty,
            threshold_percent=threshold_percent,
            threshold_amount=threshold_amount,
        )
        line.period_price = round4(period_price)
        line.price_variance = variance.variance
        line.line_value = round2(qty * unit_price)
        total += line.line_value

        _, wac_before, wac_after = apply_receipt(delivery.location_id, line.item_id, qty, unit_price)
        line.wac_before = wac_before
        line.wac_after = wac_after

        po_line = po_lines.get(line.po_line_id)
        if po_line is not None:
            po_line.delivered_qty = to_decimal(po_line.delivered_qty or 0) + qty

        if variance.exceeds_threshold:
            db.session.flush()
            ncrs.append(ncr_service.create_price_variance_ncr(
                delivery=delivery,
                line=line,
                item=item,
                variance=variance,
                user_id=user.id,
            ))

    delivery.total_amount = round2(total)
    delivery.has_variance = bool(ncrs)
    delivery.status = STATUS_POSTED
    delivery.posted_by_user_id = user.id
    delivery.posted_at = utcnow()
    db.session.flush()

    append_ledger_event(
        location_id=delivery.location_id,
        event_type="delivery.posted",
        event_category="deliveries",
        entity_type="delivery",
        entity_id=delivery.id,
        actor_user_id=user.id,
        note=f"{delivery.delivery_no} posted",
        payload={
            "total_amount": str(delivery.total_amount),
            "line_count": len(delivery.lines),
            "ncr_count": len(ncrs),
            "po_id": delivery.po_id,
        },
    )

    if po is not None:
        po_service.auto_close_if_fulfilled(po, user_id=user.id)

    return delivery


def create_delivery(
    *,
    location_id: int,
    supplier_id: int,
    delivery_date: date | str | None,
    lines,
    user: User,
    invoice_no: str | None = None,
    delivery_note: str | None = None,
    po_id: int | None = None,
    status: str = STATUS_POSTED,
) -> Delivery:
    """
    Record a delivery, posting it straight away unless status is DRAFT.

    Raises:
        DeliveryValidationError: bad input, inactive master data, missing prices,
            unapproved over-delivery
        DeliveryStateError: duplicate invoice, closed PO
        PeriodStateError: no OPEN period for the location (when posting)
    """
    if status not in STATUSES:
        raise DeliveryValidationError(f"Invalid status. Must be one of: {', '.join(sorted(STATUSES))}")
    parsed = _parse_lines(lines)
    delivery_date = parse_date(delivery_date, "delivery_date", required=False) or today()
    invoice_no = clean_text(invoice_no, "invoice_no", max_length=128)
    delivery_note = clean_text(delivery_note, "delivery_note")
    if po_id in ("",):
        po_id = None

    def _op():
        location = db.session.get(Location, location_id)
        if not location:
            raise DeliveryNotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
        if not location.is_active:
            raise DeliveryValidationError("Location is inactive", code="LOCATION_INACTIVE")
        require_location_access(user, location_id, post=True)

        supplier = db.session.get(Supplier, supplier_id)
        if not supplier:
            raise DeliveryNotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")
        if not supplier.is_active:
            raise DeliveryValidationError("Supplier is inactive", code="SUPPLIER_INACTIVE")

        _require_active_items(line["item_id"] for line in parsed)
        _require_unique_invoice(invoice_no)

        if status == STATUS_POSTED:
            period, _ = require_open_period_for_location(location_id)
        else:
            period = get_open_period() or get_latest_period()
            if period is None:
                raise PeriodStateError("No period exists yet", code="NO_OPEN_PERIOD")

        po = _lock_po(parse_int(po_id, "po_id"), supplier.id) if po_id is not None else None

        delivery = Delivery(
            delivery_no=next_yearly_number("DELIVERY", "DEL"),
            location_id=location_id,
            supplier_id=supplier.id,
            period_id=period.id,
            po_id=po.id if po else None,
            invoice_no=invoice_no,
            delivery_note=delivery_note,
            delivery_date=delivery_date,
            status=STATUS_DRAFT,
            created_by_user_id=user.id,
        )
        rows = []
        for line in parsed:
            po_line = _match_po_line(po, line["item_id"], line["po_line_id"]) if po else None
            qty = line["quantity"]
            rows.append(DeliveryLine(
                item_id=line["item_id"],
                po_line_id=po_line.id if po_line else None,
                quantity=qty,
                unit_price=round4(line["unit_price"]),
                line_value=round2(qty * line["unit_price"]),
                over_delivery_approved=line["over_delivery_approved"],
            ))
        delivery.lines = rows
        delivery.total_amount = round2(sum((r.line_value for r in rows), ZERO))
        db.session.add(delivery)
        db.session.flush()

        if status == STATUS_POSTED:
            _post(delivery, user)
        else:
            append_ledger_event(
                location_id=location_id,
                event_type="delivery.drafted",
                event_category="deliveries",
                entity_type="delivery",
                entity_id=delivery.id,
                actor_user_id=user.id,
                note=f"{delivery.delivery_no} saved as draft",
            )

        db.session.commit()
        return delivery

    return run_with_retry(_op)


def post_delivery(delivery_id: int, *, user: User) -> Delivery:
    """Post a DRAFT delivery under the same rules as create_delivery."""
    def _op():
        delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
        if not delivery:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
        if delivery.status != STATUS_DRAFT:
            raise DeliveryStateError(
                f"Delivery {delivery.delivery_no} is already {delivery.status}",
                code="ALREADY_POSTED",
            )
        require_location_access(user, delivery.location_id, post=True)

        _post(delivery, user)
        db.session.commit()
        return delivery

    return run_with_retry(_op)


def delete_delivery(delivery_id: int, *, user: User) -> None:
    def _op():
        delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
        if not delivery:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
        if delivery.status != STATUS_DRAFT:
            raise DeliveryStateError(
                f"Delivery {delivery.delivery_no} is {delivery.status} and cannot be deleted",
                code="DELIVERY_POSTED",
            )
        require_location_access(user, delivery.location_id, post=True)

        append_ledger_event(
            location_id=delivery.location_id,
            event_type="delivery.deleted",
            event_category="deliveries",
            entity_type="delivery",
            entity_id=delivery.id,
            actor_user_id=user.id,
            note=f"{delivery.delivery_no} deleted",
        )
        db.session.delete(delivery)
        db.session.commit()

    run_with_retry(_op)


def get_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if not delivery:
        raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
    return delivery


def list_deliveries(
    *,
    location_id: int | None = None,
    location_ids: set[int] | None = None,
    period_id: int | None = None,
    supplier_id: int | None = None,
    po_id: int | None = None,
    status: str | None = None,
    has_variance: bool | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Delivery], int]:
    query = db.session.query(Delivery)
    if location_id:
        query = query.filter(Delivery.location_id == location_id)
    if location_ids is not None:
        query = query.filter(Delivery.location_id.in_(location_ids or {-1}))
    if period_id:
        query = query.filter(Delivery.period_id == period_id)
    if supplier_id:
        query = query.filter(Delivery.supplier_id == supplier_id)
    if po_id:
        query = query.filter(Delivery.po_id == po_id)
    if status:
        query = query.filter(Delivery.status == status)
    if has_variance is not None:
        query = query.filter(Delivery.has_variance.is_(has_variance))
    if from_date:
        query = query.filter(Delivery.delivery_date >= from_date)
    if to_date:
        query = query.filter(Delivery.delivery_date <= to_date)

    total = query.count()
    deliveries = (
        query.order_by(Delivery.delivery_date.desc(), Delivery.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return deliveries, total
