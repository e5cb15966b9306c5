# Overview: Service-layer operations for non-conformance reports (manual and price-variance).

"""
NCR Service

WHY: A supplier price that differs from the period-locked price must be
followed up, either as a credit from the supplier or as a loss. Posted
deliveries raise PRICE_VARIANCE NCRs automatically; staff raise MANUAL
NCRs for anything else (damaged goods, short delivery, ...).

LIFECYCLE:
1. OPEN: Raised
2. SENT: Sent to the supplier
3. CREDITED: Supplier issued a credit (financial_impact CREDIT)
4. REJECTED: Supplier refused (financial_impact LOSS)
5. RESOLVED: Settled some other way; financial_impact CREDIT or LOSS required

CREDITED, REJECTED and RESOLVED are final.
"""

from __future__ import annotations

from datetime import datetime, time

from flask import current_app
from sqlalchemy import and_, or_

from ..extensions import db
from ..models import NCR, Delivery, DeliveryLine, Item, Location, User
from stockms.money import ZERO, round2, to_decimal
from stockms.time_utils import utcnow
from stockms.validation import ConflictError, NotFoundError, ValidationError, parse_decimal
from .calculations import PriceVarianceResult, price_variance_reason
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_yearly_number
from .ledger_service import append_ledger_event
from .period_service import get_period


TYPE_MANUAL = "MANUAL"
TYPE_PRICE_VARIANCE = "PRICE_VARIANCE"

STATUS_OPEN = "OPEN"
STATUS_SENT = "SENT"
STATUS_CREDITED = "CREDITED"
STATUS_REJECTED = "REJECTED"
STATUS_RESOLVED = "RESOLVED"

STATUSES = {STATUS_OPEN, STATUS_SENT, STATUS_CREDITED, STATUS_REJECTED, STATUS_RESOLVED}
FINAL_STATUSES = {STATUS_CREDITED, STATUS_REJECTED, STATUS_RESOLVED}

IMPACT_NONE = "NONE"
IMPACT_CREDIT = "CREDIT"
IMPACT_LOSS = "LOSS"

FINANCIAL_IMPACTS = {IMPACT_NONE, IMPACT_CREDIT, IMPACT_LOSS}


class NCRNotFoundError(NotFoundError):
    default_code = "NCR_NOT_FOUND"


class NCRValidationError(ValidationError):
    pass


class NCRStateError(ConflictError):
    pass


def _allocate_ncr_no() -> str:
    return next_yearly_number("NCR", "NCR")


def create_price_variance_ncr(
    *,
    delivery: Delivery,
    line: DeliveryLine,
    item: Item,
    variance: PriceVarianceResult,
    user_id: int,
) -> NCR:
    """
    Raise the automatic NCR for one delivery line (no commit).

    Runs inside the delivery posting transaction; value is the absolute
    variance amount.
    """
    ncr = NCR(
        ncr_no=_allocate_ncr_no(),
        location_id=delivery.location_id,
        delivery_id=delivery.id,
        delivery_line_id=line.id,
        item_id=item.id,
        type=TYPE_PRICE_VARIANCE,
        reason=price_variance_reason(item.name, line.quantity, line.period_price, line.unit_price, variance),
        quantity=line.quantity,
        value=abs(variance.variance_amount),
        status=STATUS_OPEN,
        financial_impact=IMPACT_NONE,
        auto_generated=True,
        created_by_user_id=user_id,
    )
    db.session.add(ncr)
    db.session.flush()

    append_ledger_event(
        location_id=delivery.location_id,
        event_type="ncr.auto_created",
        event_category="ncrs",
        entity_type="ncr",
        entity_id=ncr.id,
        actor_user_id=user_id,
        note=f"{ncr.ncr_no} raised for {delivery.delivery_no}",
        payload={
            "delivery_id": delivery.id,
            "item_id": item.id,
            "variance_percent": str(variance.variance_percent),
            "variance_amount": str(variance.variance_amount),
        },
    )
    current_app.logger.info(
        "Price variance NCR %s: %s on %s (%s%%)",
        ncr.ncr_no, item.code, delivery.delivery_no, variance.variance_percent,
    )
    return ncr


def create_ncr(
    *,
    location_id: int,
    reason: str,
    user: User,
    delivery_id: int | None = None,
    item_id: int | None = None,
    quantity=None,
    value=0,
) -> NCR:
    """Raise a MANUAL NCR."""
    if not reason or not str(reason).strip():
        raise NCRValidationError("reason is required")
    quantity = parse_decimal(quantity, "quantity", positive=True) if quantity is not None else None
    value = parse_decimal(value if value is not None else 0, "value", non_negative=True)

    def _op():
        location = db.session.get(Location, location_id)
        if not location:
            raise NCRNotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")

        if delivery_id is not None:
            delivery = db.session.get(Delivery, delivery_id)
            if not delivery:
                raise NCRNotFoundError(f"Delivery {delivery_id} not found", code="DELIVERY_NOT_FOUND")
            if delivery.location_id != location_id:
                raise NCRValidationError("Delivery belongs to a different location")

        if item_id is not None and not db.session.get(Item, item_id):
            raise NCRNotFoundError(f"Item {item_id} not found", code="ITEM_NOT_FOUND")

        ncr = NCR(
            ncr_no=_allocate_ncr_no(),
            location_id=location_id,
            delivery_id=delivery_id,
            item_id=item_id,
            type=TYPE_MANUAL,
            reason=str(reason).strip(),
            quantity=quantity,
            value=round2(value),
            status=STATUS_OPEN,
            financial_impact=IMPACT_NONE,
            auto_generated=False,
            created_by_user_id=user.id,
        )
        db.session.add(ncr)
        db.session.flush()

        append_ledger_event(
            location_id=location_id,
            event_type="ncr.created",
            event_category="ncrs",
            entity_type="ncr",
            entity_id=ncr.id,
            actor_user_id=user.id,
            note=f"{ncr.ncr_no} raised",
        )

        db.session.commit()
        return ncr

    return run_with_retry(_op)


def update_ncr_status(
    ncr_id: int,
    *,
    user: User,
    status: str,
    resolution_notes: str | None = None,
    financial_impact: str | None = None,
) -> NCR:
    """
    Move an NCR along its lifecycle.

    CREDITED forces financial_impact CREDIT, REJECTED forces LOSS, and
    RESOLVED needs an explicit CREDIT or LOSS.
    """
    if status not in STATUSES:
        raise NCRValidationError(f"Invalid status. Must be one of: {', '.join(sorted(STATUSES))}")
    if financial_impact is not None and financial_impact not in FINANCIAL_IMPACTS:
        raise NCRValidationError(
            f"Invalid financial_impact. Must be one of: {', '.join(sorted(FINANCIAL_IMPACTS))}"
        )

    if status == STATUS_CREDITED:
        impact = IMPACT_CREDIT
    elif status == STATUS_REJECTED:
        impact = IMPACT_LOSS
    elif status == STATUS_RESOLVED:
        if financial_impact not in (IMPACT_CREDIT, IMPACT_LOSS):
            raise NCRValidationError(
                "Resolving an NCR requires financial_impact CREDIT or LOSS",
                code="FINANCIAL_IMPACT_REQUIRED",
            )
        impact = financial_impact
    else:
        impact = IMPACT_NONE

    def _op():
        ncr = lock_for_update(db.session.query(NCR).filter_by(id=ncr_id)).first()
        if not ncr:
            raise NCRNotFoundError(f"NCR {ncr_id} not found")
        if ncr.status in FINAL_STATUSES:
            raise NCRStateError(f"NCR {ncr.ncr_no} is already {ncr.status}", code="NCR_CLOSED")

        previous = ncr.status
        ncr.status = status
        ncr.financial_impact = impact
        if resolution_notes is not None:
            ncr.resolution_notes = resolution_notes
        if status in FINAL_STATUSES:
            ncr.resolved_at = utcnow()

        append_ledger_event(
            location_id=ncr.location_id,
            event_type="ncr.status_changed",
            event_category="ncrs",
            entity_type="ncr",
            entity_id=ncr.id,
            actor_user_id=user.id,
            note=f"{ncr.ncr_no}: {previous} -> {status}",
            payload={"financial_impact": impact},
        )

        db.session.commit()
        return ncr

    return run_with_retry(_op)


def get_ncr(ncr_id: int) -> NCR:
    ncr = db.session.get(NCR, ncr_id)
    if not ncr:
        raise NCRNotFoundError(f"NCR {ncr_id} not found")
    return ncr


def _period_filter(period):
    """NCRs belong to a period through their delivery, or by created_at when manual."""
    start = datetime.combine(period.start_date, time.min)
    end = datetime.combine(period.end_date, time.max)
    return or_(
        NCR.delivery_id.in_(
            db.session.query(Delivery.id).filter(Delivery.period_id == period.id)
        ),
        and_(NCR.delivery_id.is_(None), NCR.created_at >= start, NCR.created_at <= end),
    )


def list_ncrs(
    *,
    location_id: int | None = None,
    status: str | None = None,
    ncr_type: str | None = None,
    delivery_id: int | None = None,
    period_id: int | None = None,
    location_ids: set[int] | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[NCR], int]:
    query = db.session.query(NCR)
    if location_id:
        query = query.filter(NCR.location_id == location_id)
    if location_ids is not None:
        query = query.filter(NCR.location_id.in_(location_ids or {-1}))
    if status:
        query = query.filter(NCR.status == status)
    if ncr_type:
        query = query.filter(NCR.type == ncr_type)
    if delivery_id:
        query = query.filter(NCR.delivery_id == delivery_id)
    if period_id:
        query = query.filter(_period_filter(get_period(period_id)))

    total = query.count()
    ncrs = (
        query.order_by(NCR.created_at.desc(), NCR.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return ncrs, total


def _bucket_for(ncr: NCR) -> str | None:
    if ncr.status == STATUS_CREDITED or (ncr.status == STATUS_RESOLVED and ncr.financial_impact == IMPACT_CREDIT):
        return "credited"
    if ncr.status == STATUS_REJECTED or (ncr.status == STATUS_RESOLVED and ncr.financial_impact == IMPACT_LOSS):
        return "losses"
    if ncr.status == STATUS_SENT:
        return "pending"
    if ncr.status == STATUS_OPEN:
        return "open"
    return None


def ncr_period_summary(period_id: int, location_id: int | None = None) -> dict:
    """
    Totals of a period's NCRs split into credited / losses / pending / open.

    credited: CREDITED, or RESOLVED with CREDIT
    losses:   REJECTED, or RESOLVED with LOSS
    pending:  SENT
    open:     OPEN
    """
    period = get_period(period_id)
    query = db.session.query(NCR).filter(_period_filter(period))
    if location_id:
        query = query.filter(NCR.location_id == location_id)

    buckets = {name: {"count": 0, "total": ZERO, "items": []} for name in ("credited", "losses", "pending", "open")}
    for ncr in query.order_by(NCR.created_at.asc(), NCR.id.asc()).all():
        name = _bucket_for(ncr)
        if name is None:
            continue
        bucket = buckets[name]
        bucket["count"] += 1
        bucket["total"] += to_decimal(ncr.value or 0)
        bucket["items"].append({
            "id": ncr.id,
            "ncr_no": ncr.ncr_no,
            "type": ncr.type,
            "status": ncr.status,
            "value": float(ncr.value or 0),
            "delivery_id": ncr.delivery_id,
        })

    result = {"period_id": period.id, "location_id": location_id}
    for name, bucket in buckets.items():
        result[name] = {"count": bucket["count"], "total": float(round2(bucket["total"])), "items": bucket["items"]}
    result["net_loss"] = float(round2(buckets["losses"]["total"]))
    result["net_credit"] = float(round2(buckets["credited"]["total"]))
    return result
