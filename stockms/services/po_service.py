# Overview: Service-layer operations for purchase orders raised against approved PRFs.

"""
Purchase Order Service

WHY: Procurement turns an APPROVED PRF into exactly one purchase order with a
supplier. Deliveries against the PO accumulate delivered_qty per line; the PO
closes itself once everything has arrived, or is closed by a supervisor with
a reason when the supplier falls short.

LIFECYCLE:
1. OPEN: Editable; deliveries may reference it
2. CLOSED: Fully delivered (automatic) or closed manually; the PRF is CLOSED too
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import PRF, DeliveryLine, PurchaseOrder, POLine, Item, Location, Supplier, User
from ..models.masterdata import ITEM_UNITS
from stockms.money import ZERO, round2, round4, to_decimal
from stockms.time_utils import format_document_date, utcnow
from stockms.validation import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    parse_decimal,
    parse_int,
)
from .calculations import calculate_po_line_amounts
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_location_number
from .ledger_service import append_ledger_event


STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"

STATUSES = {STATUS_OPEN, STATUS_CLOSED}

HEADER_FIELDS = (
    "quotation_ref",
    "ship_to_location_id",
    "ship_to_contact",
    "ship_to_phone",
    "payment_terms",
    "delivery_terms",
    "duration_days",
    "terms_conditions",
    "notes",
)


class PONotFoundError(NotFoundError):
    default_code = "PO_NOT_FOUND"


class POValidationError(ValidationError):
    pass


class POStateError(ConflictError):
    pass


class POPermissionError(AccessDeniedError):
    pass


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise POValidationError("At least one line is required")

    default_vat = current_app.config.get("DEFAULT_VAT_PERCENT", 15)
    parsed = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise POValidationError(f"lines[{idx}] must be an object")
        item_id = line.get("item_id")
        vat = line.get("vat_percent")
        parsed.append({
            "id": parse_int(line["id"], f"lines[{idx}].id") if line.get("id") not in (None, "") else None,
            "item_id": parse_int(item_id, f"lines[{idx}].item_id") if item_id not in (None, "") else None,
            "item_description": clean_text(line.get("item_description"), f"lines[{idx}].item_description", max_length=500),
            "unit": line.get("unit"),
            "quantity": parse_decimal(line.get("quantity"), f"lines[{idx}].quantity", positive=True),
            "unit_price": parse_decimal(line.get("unit_price"), f"lines[{idx}].unit_price", non_negative=True),
            "discount_percent": parse_decimal(
                line.get("discount_percent", 0) or 0, f"lines[{idx}].discount_percent",
                non_negative=True, maximum=100,
            ),
            "vat_percent": parse_decimal(
                vat if vat is not None else default_vat, f"lines[{idx}].vat_percent",
                non_negative=True, maximum=100,
            ),
            "notes": clean_text(line.get("notes"), f"lines[{idx}].notes"),
        })
    return parsed


def _fill_line(row: POLine, line: dict, item: Item | None, number: int) -> POLine:
    description = line["item_description"] or (item.name if item else None)
    unit = line["unit"] or (item.unit if item else None)
    if not description:
        raise POValidationError(f"Line {number}: item_description is required")
    if unit not in ITEM_UNITS:
        raise POValidationError(f"Line {number}: unit must be one of {', '.join(sorted(ITEM_UNITS))}")

    amounts = calculate_po_line_amounts(
        line["quantity"], line["unit_price"], line["discount_percent"], line["vat_percent"]
    )
    row.item_id = line["item_id"]
    row.item_code = item.code if item else None
    row.item_description = description
    row.unit = unit
    row.quantity = line["quantity"]
    row.unit_price = round4(line["unit_price"])
    row.discount_percent = line["discount_percent"]
    row.vat_percent = line["vat_percent"]
    row.notes = line["notes"]
    for key, value in amounts.items():
        setattr(row, key, value)
    return row


def _load_items(parsed: list[dict]) -> dict[int, Item]:
    item_ids = {line["item_id"] for line in parsed if line["item_id"] is not None}
    if not item_ids:
        return {}
    items = {item.id: item for item in db.session.query(Item).filter(Item.id.in_(item_ids)).all()}
    missing = sorted(item_ids - set(items))
    if missing:
        raise POValidationError(
            "One or more items not found",
            code="INVALID_ITEMS",
            details={"item_ids": missing},
        )
    return items


def _recalculate_totals(po: PurchaseOrder) -> None:
    po.total_before_discount = round2(sum((to_decimal(l.total_before_discount) for l in po.lines), ZERO))
    po.total_discount = round2(sum((to_decimal(l.discount_amount) for l in po.lines), ZERO))
    po.total_before_vat = round2(sum((to_decimal(l.total_before_vat) for l in po.lines), ZERO))
    po.total_vat = round2(sum((to_decimal(l.vat_amount) for l in po.lines), ZERO))
    po.total_amount = round2(sum((to_decimal(l.total_after_vat) for l in po.lines), ZERO))


def _require_ship_to(location_id) -> int | None:
    if location_id in (None, ""):
        return None
    location_id = parse_int(location_id, "ship_to_location_id")
    location = db.session.get(Location, location_id)
    if not location or not location.is_active:
        raise POValidationError("Ship-to location not found or inactive", code="INVALID_SHIP_TO")
    return location_id


def _get_locked(po_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if not po:
        raise PONotFoundError(f"PO {po_id} not found")
    return po


def _lines_with_deliveries(po: PurchaseOrder) -> set[int]:
    """Ids of PO lines referenced by any delivery line, DRAFT or POSTED."""
    line_ids = [line.id for line in po.lines if line.id is not None]
    if not line_ids:
        return set()
    rows = (
        db.session.query(DeliveryLine.po_line_id)
        .filter(DeliveryLine.po_line_id.in_(line_ids))
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def create_po(
    *,
    prf_id: int,
    supplier_id: int,
    lines,
    user: User,
    ship_to_location_id: int | None = None,
    ship_to_contact: str | None = None,
    ship_to_phone: str | None = None,
    quotation_ref: str | None = None,
    payment_terms: str | None = None,
    delivery_terms: str | None = None,
    duration_days: int | None = None,
    terms_conditions: str | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Raise the purchase order for an APPROVED PRF.

    Number: PO-{PRF LOCATION}-{DD-Mon-YYYY}-NN.

    Raises:
        PONotFoundError: PRF or supplier missing
        POValidationError: bad lines, inactive supplier, invalid ship-to
        POStateError: PRF not APPROVED (PRF_NOT_APPROVED) or already ordered (PRF_HAS_PO)
    """
    if prf_id in (None, ""):
        raise POValidationError("prf_id is required", code="PRF_REQUIRED")
    parsed = _parse_lines(lines)
    if duration_days not in (None, ""):
        duration_days = parse_int(duration_days, "duration_days", non_negative=True)
    else:
        duration_days = None

    def _op():
        prf = lock_for_update(db.session.query(PRF).filter_by(id=prf_id)).first()
        if not prf:
            raise PONotFoundError(f"PRF {prf_id} not found", code="PRF_NOT_FOUND")
        if prf.status != "APPROVED":
            raise POStateError(
                f"PRF {prf.prf_no} must be APPROVED to raise a PO (it is {prf.status})",
                code="PRF_NOT_APPROVED",
            )
        if db.session.query(PurchaseOrder.id).filter_by(prf_id=prf.id).first():
            raise POStateError(f"PRF {prf.prf_no} already has a purchase order", code="PRF_HAS_PO")

        supplier = db.session.get(Supplier, supplier_id)
        if not supplier:
            raise PONotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")
        if not supplier.is_active:
            raise POValidationError("Supplier is inactive", code="SUPPLIER_INACTIVE")

        ship_to = _require_ship_to(ship_to_location_id)
        items = _load_items(parsed)

        po = PurchaseOrder(
            po_no=next_location_number("PO", "PO", prf.location_id),
            prf_id=prf.id,
            supplier_id=supplier.id,
            quotation_ref=clean_text(quotation_ref, "quotation_ref", max_length=100),
            ship_to_location_id=ship_to,
            ship_to_contact=clean_text(ship_to_contact, "ship_to_contact", max_length=100),
            ship_to_phone=clean_text(ship_to_phone, "ship_to_phone", max_length=50),
            payment_terms=clean_text(payment_terms, "payment_terms", max_length=200),
            delivery_terms=clean_text(delivery_terms, "delivery_terms", max_length=200),
            duration_days=duration_days,
            terms_conditions=clean_text(terms_conditions, "terms_conditions"),
            notes=clean_text(notes, "notes"),
            status=STATUS_OPEN,
            created_by_user_id=user.id,
        )
        po.lines = [
            _fill_line(POLine(delivered_qty=ZERO), line, items.get(line["item_id"]), number)
            for number, line in enumerate(parsed, start=1)
        ]
        _recalculate_totals(po)
        db.session.add(po)
        db.session.flush()

        append_ledger_event(
            location_id=prf.location_id,
            event_type="po.created",
            event_category="procurement",
            entity_type="po",
            entity_id=po.id,
            actor_user_id=user.id,
            note=f"PO {po.po_no} raised for {prf.prf_no}",
            payload={"supplier_id": supplier.id, "total_amount": str(po.total_amount)},
        )

        db.session.commit()
        return po

    return run_with_retry(_op)


def update_po(po_id: int, *, user: User, lines=None, supplier_id: int | None = None, **changes) -> PurchaseOrder:
    """
    Edit an OPEN purchase order.

    When lines are given, entries carrying an id update that line and
    entries without one are added. Existing lines missing from the list are
    removed unless a delivery (draft or posted) references them
    (LINE_HAS_DELIVERIES).
    """
    unknown = set(changes) - set(HEADER_FIELDS)
    if unknown:
        raise POValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    parsed = _parse_lines(lines) if lines is not None else None

    def _op():
        po = _get_locked(po_id)
        if po.status != STATUS_OPEN:
            raise POStateError(f"PO {po.po_no} is {po.status}; only OPEN POs can be edited", code="PO_CLOSED")

        if supplier_id is not None and supplier_id != po.supplier_id:
            supplier = db.session.get(Supplier, supplier_id)
            if not supplier or not supplier.is_active:
                raise POValidationError("Supplier not found or inactive", code="SUPPLIER_INACTIVE")
            if po.deliveries:
                raise POStateError("Cannot change the supplier of a PO with deliveries", code="PO_HAS_DELIVERIES")
            po.supplier_id = supplier.id

        for key, value in changes.items():
            if key == "ship_to_location_id":
                value = _require_ship_to(value)
            elif key == "duration_days":
                value = parse_int(value, key, non_negative=True) if value not in (None, "") else None
            else:
                value = clean_text(value, key)
            setattr(po, key, value)

        if parsed is not None:
            items = _load_items(parsed)
            existing = {line.id: line for line in po.lines}
            delivered = _lines_with_deliveries(po)
            kept = []
            for number, line in enumerate(parsed, start=1):
                if line["id"] is not None:
                    row = existing.get(line["id"])
                    if row is None:
                        raise POValidationError(f"Line {line['id']} does not belong to this PO")
                    if row.id in delivered and line["item_id"] != row.item_id:
                        raise POStateError(
                            f"Line {number}: cannot change the item of a line with deliveries",
                            code="LINE_HAS_DELIVERIES",
                        )
                else:
                    row = POLine(delivered_qty=ZERO)
                kept.append(_fill_line(row, line, items.get(line["item_id"]), number))

            kept_ids = {row.id for row in kept if row.id is not None}
            for line_id, row in existing.items():
                if line_id not in kept_ids and line_id in delivered:
                    raise POStateError(
                        f"Line {line_id} has deliveries and cannot be removed",
                        code="LINE_HAS_DELIVERIES",
                    )
            po.lines = kept
            db.session.flush()

        _recalculate_totals(po)

        append_ledger_event(
            location_id=po.prf.location_id if po.prf else None,
            event_type="po.updated",
            event_category="procurement",
            entity_type="po",
            entity_id=po.id,
            actor_user_id=user.id,
            note=f"PO {po.po_no} updated",
        )

        db.session.commit()
        return po

    return run_with_retry(_op)


def line_fulfillment(po: PurchaseOrder) -> list[dict]:
    result = []
    for line in po.lines:
        ordered = to_decimal(line.quantity)
        delivered = to_decimal(line.delivered_qty or 0)
        remaining = max(ZERO, ordered - delivered)
        result.append({
            "po_line_id": line.id,
            "item_description": line.item_description,
            "unit": line.unit,
            "ordered_qty": float(ordered),
            "delivered_qty": float(delivered),
            "remaining_qty": float(remaining),
            "is_fulfilled": remaining == 0,
        })
    return result


def fulfillment_percent(po: PurchaseOrder) -> int:
    ordered = sum((to_decimal(l.quantity) for l in po.lines), ZERO)
    delivered = sum((to_decimal(l.delivered_qty or 0) for l in po.lines), ZERO)
    if ordered <= 0:
        return 0
    return int((delivered / ordered * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _close(po: PurchaseOrder, *, user_id: int, note: str) -> None:
    """Mark the PO CLOSED and close its PRF (no commit)."""
    po.status = STATUS_CLOSED
    po.closed_by_user_id = user_id
    po.closed_at = utcnow()
    po.notes = f"{po.notes}\n\n{note}" if po.notes else note
    if po.prf is not None and po.prf.status == "APPROVED":
        po.prf.status = "CLOSED"


def close_po(po_id: int, *, user: User, closure_reason: str | None = None, notes: str | None = None) -> PurchaseOrder:
    """
    Close a PO by hand. Supervisors and administrators only.

    A closure_reason is mandatory when any line still has a remaining quantity.
    """
    if not user.is_supervisor_or_admin:
        raise POPermissionError("Only supervisors and administrators can close POs", code="PERMISSION_DENIED")
    reason = clean_text(closure_reason, "closure_reason", max_length=1000)
    extra = clean_text(notes, "notes", max_length=1000)

    def _op():
        po = _get_locked(po_id)
        if po.status == STATUS_CLOSED:
            raise POStateError(f"PO {po.po_no} is already closed", code="PO_ALREADY_CLOSED")

        lines = line_fulfillment(po)
        unfulfilled = [line for line in lines if not line["is_fulfilled"]]
        percent = fulfillment_percent(po)
        if unfulfilled and not reason:
            raise POValidationError(
                "A closure reason is required when closing a PO with unfulfilled quantities",
                code="CLOSURE_REASON_REQUIRED",
                details={"unfulfilled_items": unfulfilled, "fulfillment_percent": percent},
            )

        stamp = f"Closed by {user.username} on {format_document_date(utcnow())}"
        note = f"[Closed with {percent}% fulfilled] {reason}" if reason else f"[Closed with {percent}% fulfilled]"
        note = f"{note}\n{stamp}"
        if extra:
            note += f"\nAdditional notes: {extra}"
        _close(po, user_id=user.id, note=note)

        append_ledger_event(
            location_id=po.prf.location_id if po.prf else None,
            event_type="po.closed",
            event_category="procurement",
            entity_type="po",
            entity_id=po.id,
            actor_user_id=user.id,
            note=f"PO {po.po_no} closed ({percent}% fulfilled)",
            payload={"closure_reason": reason, "unfulfilled_lines": len(unfulfilled)},
        )

        db.session.commit()
        return po

    return run_with_retry(_op)


def auto_close_if_fulfilled(po: PurchaseOrder, *, user_id: int) -> bool:
    """
    Close the PO when every line is fully delivered (no commit).

    Called by delivery posting inside its own transaction.
    """
    if po.status != STATUS_OPEN or not po.lines:
        return False
    if any(to_decimal(l.delivered_qty or 0) < to_decimal(l.quantity) for l in po.lines):
        return False

    _close(po, user_id=user_id, note="[Closed with 100% fulfilled] All lines delivered")
    append_ledger_event(
        location_id=po.prf.location_id if po.prf else None,
        event_type="po.auto_closed",
        event_category="procurement",
        entity_type="po",
        entity_id=po.id,
        actor_user_id=user_id,
        note=f"PO {po.po_no} fully delivered",
    )
    current_app.logger.info("PO %s fully delivered and closed", po.po_no)
    return True


def get_po(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise PONotFoundError(f"PO {po_id} not found")
    return po


def list_pos(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    prf_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if prf_id:
        query = query.filter(PurchaseOrder.prf_id == prf_id)

    total = query.count()
    pos = (
        query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return pos, total


def list_open_pos(supplier_id: int | None = None) -> list[PurchaseOrder]:
    """OPEN purchase orders, for picking one when recording a delivery."""
    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.status == STATUS_OPEN)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    return query.order_by(PurchaseOrder.po_no.asc()).all()
