# Overview: Period-end stock reconciliation per location; movement totals plus manual adjustments.

"""
Reconciliation Service

WHY: Before a location can be marked READY for period close, someone has to
look at its movements for the period and book the adjustments the system
cannot know about (back-charges, supplier credits, condemned stock).

Movement values are always recomputed from posted documents:
- opening_stock: previous period's closing snapshot, else its saved closing,
  else PeriodLocation.opening_value
- receipts: POSTED deliveries of the period
- transfers_in / transfers_out: COMPLETED transfers approved in the period
- issues: issues of the period
- closing_stock: current stock value (the snapshot value once CLOSED)

consumption = opening + receipts + transfers_in - transfers_out - closing
              + (back_charges - credits - condemnations + adjustments)
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Delivery, Issue, Location, POB, Period, PeriodLocation, Reconciliation, Transfer, User
from stockms.money import ZERO, round2, to_decimal
from stockms.validation import AccessDeniedError, ConflictError, ValidationError, parse_decimal
from .access_service import require_location_access
from .calculations import calculate_consumption, calculate_manday_cost
from .concurrency import run_with_retry
from .inventory_service import location_stock_value
from .ledger_service import append_ledger_event
from .period_service import (
    LOCATION_STATUS_CLOSED,
    PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_CLOSED,
    get_period,
    get_period_location,
)


MANUAL_FIELDS = ("adjustments", "back_charges", "credits", "condemnations")


class ReconciliationValidationError(ValidationError):
    pass


class ReconciliationStateError(ConflictError):
    pass


class ReconciliationPermissionError(AccessDeniedError):
    pass


def _sum(column, *criteria) -> Decimal:
    value = db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
    return round2(to_decimal(value or 0))


def _opening_value(period: Period, location_id: int) -> Decimal:
    previous = (
        db.session.query(Period)
        .filter(Period.end_date < period.start_date)
        .order_by(Period.end_date.desc())
        .first()
    )
    if previous is not None:
        closed = (
            db.session.query(PeriodLocation)
            .filter_by(period_id=previous.id, location_id=location_id, status=LOCATION_STATUS_CLOSED)
            .first()
        )
        if closed is not None and closed.closing_value is not None:
            return round2(to_decimal(closed.closing_value))
        saved = (
            db.session.query(Reconciliation)
            .filter_by(period_id=previous.id, location_id=location_id)
            .first()
        )
        if saved is not None:
            return round2(to_decimal(saved.closing_stock))

    pl = (
        db.session.query(PeriodLocation)
        .filter_by(period_id=period.id, location_id=location_id)
        .first()
    )
    return round2(to_decimal(pl.opening_value)) if pl else ZERO


def compute_auto_values(period: Period, location_id: int) -> dict[str, Decimal]:
    """Movement totals for one location and period, as Decimals (2 dp)."""
    receipts = _sum(
        Delivery.total_amount,
        Delivery.location_id == location_id,
        Delivery.period_id == period.id,
        Delivery.status == "POSTED",
    )
    in_period = (Transfer.status == "COMPLETED", Transfer.period_id == period.id)
    transfers_in = _sum(Transfer.total_value, Transfer.to_location_id == location_id, *in_period)
    transfers_out = _sum(Transfer.total_value, Transfer.from_location_id == location_id, *in_period)
    issues = _sum(Issue.total_value, Issue.location_id == location_id, Issue.period_id == period.id)

    pl = (
        db.session.query(PeriodLocation)
        .filter_by(period_id=period.id, location_id=location_id)
        .first()
    )
    if pl is not None and pl.status == LOCATION_STATUS_CLOSED and pl.closing_value is not None:
        closing = round2(to_decimal(pl.closing_value))
    else:
        closing = location_stock_value(location_id)

    return {
        "opening_stock": _opening_value(period, location_id),
        "receipts": receipts,
        "transfers_in": transfers_in,
        "transfers_out": transfers_out,
        "issues": issues,
        "closing_stock": round2(closing),
    }


def total_mandays(period_id: int, location_id: int) -> int:
    value = (
        db.session.query(func.coalesce(func.sum(POB.crew_count + POB.extra_count), 0))
        .filter(POB.period_id == period_id, POB.location_id == location_id)
        .scalar()
    )
    return int(value or 0)


def get_or_build_reconciliation(period_id: int, location_id: int) -> dict:
    """
    Saved manual values merged with freshly computed movements.

    manday_cost is None until POB entries exist for the period.
    """
    period = get_period(period_id)
    get_period_location(period_id, location_id)

    auto = compute_auto_values(period, location_id)
    saved = (
        db.session.query(Reconciliation)
        .filter_by(period_id=period_id, location_id=location_id)
        .first()
    )
    manual = {
        name: round2(to_decimal(getattr(saved, name))) if saved else ZERO
        for name in MANUAL_FIELDS
    }

    consumption = calculate_consumption(
        opening_stock=auto["opening_stock"],
        receipts=auto["receipts"],
        transfers_in=auto["transfers_in"],
        transfers_out=auto["transfers_out"],
        closing_stock=auto["closing_stock"],
        **manual,
    )
    mandays = total_mandays(period_id, location_id)
    manday_cost = calculate_manday_cost(consumption.consumption, mandays) if mandays > 0 else None

    data = {key: float(value) for key, value in {**auto, **manual}.items()}
    data.update({
        "id": saved.id if saved else None,
        "period_id": period_id,
        "location_id": location_id,
        "is_saved": saved is not None,
        "total_adjustments": float(consumption.total_adjustments),
        "consumption": float(consumption.consumption),
        "total_mandays": mandays,
        "manday_cost": float(manday_cost) if manday_cost is not None else None,
    })
    return data


def save_reconciliation(
    period_id: int,
    location_id: int,
    *,
    user: User,
    adjustments=None,
    back_charges=None,
    credits=None,
    condemnations=None,
) -> dict:
    """
    Upsert the reconciliation row with recomputed movements plus manual values.

    Omitted manual values keep what was saved before (zero on first save).
    Adjustments may be negative; the other three may not.
    """
    if not user.is_supervisor_or_admin:
        raise ReconciliationPermissionError(
            "Only supervisors and administrators can update reconciliations",
            code="PERMISSION_DENIED",
        )

    given = {
        "adjustments": adjustments,
        "back_charges": back_charges,
        "credits": credits,
        "condemnations": condemnations,
    }
    parsed = {}
    for name, value in given.items():
        if value is None:
            continue
        parsed[name] = round2(parse_decimal(value, name, non_negative=(name != "adjustments")))

    def _op():
        period = get_period(period_id)
        if period.status in (PERIOD_STATUS_APPROVED, PERIOD_STATUS_CLOSED):
            raise ReconciliationStateError(
                f"Period {period.name} is {period.status}",
                code="PERIOD_CLOSED",
            )
        pl = get_period_location(period_id, location_id)
        if pl.status == LOCATION_STATUS_CLOSED:
            raise ReconciliationStateError("Location is closed for this period", code="PERIOD_CLOSED")
        require_location_access(user, location_id, post=True)

        row = (
            db.session.query(Reconciliation)
            .filter_by(period_id=period_id, location_id=location_id)
            .first()
        )
        if row is None:
            row = Reconciliation(period_id=period_id, location_id=location_id)
            for name in MANUAL_FIELDS:
                setattr(row, name, ZERO)
            db.session.add(row)

        for name, value in compute_auto_values(period, location_id).items():
            setattr(row, name, value)
        for name, value in parsed.items():
            setattr(row, name, value)
        row.updated_by_user_id = user.id
        db.session.flush()

        append_ledger_event(
            location_id=location_id,
            event_type="reconciliation.saved",
            event_category="periods",
            entity_type="reconciliation",
            entity_id=row.id,
            actor_user_id=user.id,
            note=f"Reconciliation saved for {period.name}",
            payload={name: str(getattr(row, name)) for name in MANUAL_FIELDS},
        )

        db.session.commit()
        return row

    run_with_retry(_op)
    return get_or_build_reconciliation(period_id, location_id)


_TOTAL_FIELDS = (
    "opening_stock", "receipts", "transfers_in", "transfers_out", "issues", "closing_stock",
    *MANUAL_FIELDS, "consumption",
)


def consolidated_reconciliation(period_id: int) -> dict:
    """
    Reconciliation of every active location in a period plus grand totals.

    Locations without a saved row are computed on the fly (is_saved False).
    average_manday_cost is total consumption over total mandays, None
    without POB entries.
    """
    period = get_period(period_id)
    rows = (
        db.session.query(PeriodLocation)
        .join(Location, Location.id == PeriodLocation.location_id)
        .filter(PeriodLocation.period_id == period.id, Location.is_active.is_(True))
        .order_by(Location.code.asc())
        .all()
    )

    locations = []
    totals = {name: ZERO for name in _TOTAL_FIELDS}
    mandays = 0
    for pl in rows:
        data = get_or_build_reconciliation(period.id, pl.location_id)
        locations.append({
            "location": pl.location.to_summary(),
            "location_status": pl.status,
            "reconciliation": data,
        })
        for name in _TOTAL_FIELDS:
            totals[name] += to_decimal(data[name])
        mandays += data["total_mandays"]

    average = calculate_manday_cost(totals["consumption"], mandays) if mandays > 0 else None
    saved = sum(1 for entry in locations if entry["reconciliation"]["is_saved"])

    return {
        "period": {
            "id": period.id,
            "name": period.name,
            "start_date": period.start_date.isoformat(),
            "end_date": period.end_date.isoformat(),
            "status": period.status,
        },
        "locations": locations,
        "grand_totals": {
            **{name: float(round2(value)) for name, value in totals.items()},
            "total_mandays": mandays,
            "average_manday_cost": float(average) if average is not None else None,
        },
        "summary": {
            "total_locations": len(locations),
            "saved": saved,
            "auto_calculated": len(locations) - saved,
        },
    }
