# Overview: Service-layer operations for accounting periods; open, per-location ready, close with snapshots.

"""
Period Service

WHY: Stock values are reported per accounting window. Deliveries, issues
and transfers may only touch a location while its slice of the current
period is OPEN, and a period can only close once every location has been
reconciled and marked READY.

LIFECYCLE (period):
1. DRAFT: Created, prices may still be set
2. OPEN: Trading; prices are locked (at most one OPEN period)
3. PENDING_CLOSE: Close requested, PERIOD_CLOSE approval pending
4. CLOSED: Approved; every location snapshotted and closed

APPROVED is a valid status but approve_period_close moves PENDING_CLOSE
straight to CLOSED in one transaction. A rejected close goes back to OPEN.

LIFECYCLE (PeriodLocation): OPEN -> READY -> CLOSED, with READY -> OPEN
("unready") allowed while the period is still OPEN.
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..models import Location, Period, PeriodLocation, Reconciliation, User
from ..models.auth import ROLE_ADMIN
from stockms.money import ZERO, round2, to_decimal
from stockms.time_utils import last_day_of_month, month_label, utcnow
from stockms.validation import AccessDeniedError, ConflictError, NotFoundError, ValidationError
from . import approval_service
from .approval_service import ENTITY_PERIOD_CLOSE, STATUS_APPROVED, STATUS_REJECTED
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event


PERIOD_STATUS_DRAFT = "DRAFT"
PERIOD_STATUS_OPEN = "OPEN"
PERIOD_STATUS_PENDING_CLOSE = "PENDING_CLOSE"
PERIOD_STATUS_APPROVED = "APPROVED"
PERIOD_STATUS_CLOSED = "CLOSED"

PERIOD_STATUSES = {
    PERIOD_STATUS_DRAFT,
    PERIOD_STATUS_OPEN,
    PERIOD_STATUS_PENDING_CLOSE,
    PERIOD_STATUS_APPROVED,
    PERIOD_STATUS_CLOSED,
}

LOCATION_STATUS_OPEN = "OPEN"
LOCATION_STATUS_READY = "READY"
LOCATION_STATUS_CLOSED = "CLOSED"


class PeriodNotFoundError(NotFoundError):
    """Raised when a period (or a location's slice of it) is not found."""
    default_code = "PERIOD_NOT_FOUND"


class PeriodValidationError(ValidationError):
    """Raised when period data fails validation."""
    pass


class PeriodStateError(ConflictError):
    """Raised when an operation is invalid for the period's current status."""
    pass


class PeriodPermissionError(AccessDeniedError):
    """Raised when the acting user's role may not perform a period action."""
    pass


# =============================================================================
# LOOKUPS & GUARDS
# =============================================================================

def get_period(period_id: int) -> Period:
    period = db.session.get(Period, period_id)
    if not period:
        raise PeriodNotFoundError(f"Period {period_id} not found")
    return period


def get_open_period() -> Period | None:
    return db.session.query(Period).filter_by(status=PERIOD_STATUS_OPEN).first()


def get_current_period() -> Period | None:
    """The OPEN period, else the period awaiting close approval."""
    period = get_open_period()
    if period is None:
        period = (
            db.session.query(Period)
            .filter_by(status=PERIOD_STATUS_PENDING_CLOSE)
            .order_by(Period.start_date.desc())
            .first()
        )
    return period


def get_latest_period() -> Period | None:
    return db.session.query(Period).order_by(Period.start_date.desc(), Period.id.desc()).first()


def get_period_location(period_id: int, location_id: int, *, lock: bool = False) -> PeriodLocation:
    query = db.session.query(PeriodLocation).filter_by(period_id=period_id, location_id=location_id)
    if lock:
        query = lock_for_update(query)
    pl = query.first()
    if not pl:
        raise PeriodNotFoundError(
            f"Location {location_id} is not part of period {period_id}",
            code="PERIOD_LOCATION_NOT_FOUND",
        )
    return pl


def require_open_period_for_location(location_id: int) -> tuple[Period, PeriodLocation]:
    """
    Guard for every stock-moving operation.

    Raises PeriodStateError with code NO_OPEN_PERIOD when nothing is open,
    and PERIOD_CLOSED when the location's slice is READY or CLOSED.
    """
    period = get_open_period()
    if period is None:
        raise PeriodStateError("No open period. Open a period before posting.", code="NO_OPEN_PERIOD")

    pl = (
        db.session.query(PeriodLocation)
        .filter_by(period_id=period.id, location_id=location_id)
        .first()
    )
    if pl is None or pl.status != LOCATION_STATUS_OPEN:
        status = pl.status if pl else "MISSING"
        raise PeriodStateError(
            f"Period {period.name} is not open for location {location_id} ({status})",
            code="PERIOD_CLOSED",
            details={"period_id": period.id, "location_id": location_id, "location_status": status},
        )
    return period, pl


def _require_admin(user: User, action: str) -> None:
    if user.role != ROLE_ADMIN:
        raise PeriodPermissionError(f"Only administrators may {action}", code="ADMIN_REQUIRED")


def _find_overlap(start_date: date, end_date: date, exclude_id: int | None = None) -> Period | None:
    query = db.session.query(Period).filter(
        Period.start_date <= end_date,
        Period.end_date >= start_date,
    )
    if exclude_id is not None:
        query = query.filter(Period.id != exclude_id)
    return query.first()


def _previous_closing_values(start_date: date) -> dict[int, object]:
    """Closing value per location of the latest period ending before start_date."""
    previous = (
        db.session.query(Period)
        .filter(Period.end_date < start_date)
        .order_by(Period.end_date.desc())
        .first()
    )
    if previous is None:
        return {}
    return {
        pl.location_id: pl.closing_value
        for pl in previous.period_locations
        if pl.closing_value is not None
    }


# =============================================================================
# CREATE / OPEN
# =============================================================================

def _create_period_inner(
    *,
    name: str,
    start_date: date,
    end_date: date,
    user: User,
    status: str,
    opening_values: dict[int, object],
) -> Period:
    if not name or not name.strip():
        raise PeriodValidationError("name is required")
    if end_date <= start_date:
        raise PeriodValidationError("end_date must be after start_date")

    overlap = _find_overlap(start_date, end_date)
    if overlap is not None:
        raise PeriodStateError(
            f"Period overlaps with {overlap.name} ({overlap.start_date} to {overlap.end_date})",
            code="PERIOD_OVERLAP",
            details={"period_id": overlap.id},
        )

    now = utcnow()
    period = Period(
        name=name.strip(),
        start_date=start_date,
        end_date=end_date,
        status=status,
        created_by_user_id=user.id,
        opened_at=now if status == PERIOD_STATUS_OPEN else None,
    )
    db.session.add(period)
    db.session.flush()

    locations = db.session.query(Location).filter(Location.is_active.is_(True)).order_by(Location.id).all()
    for location in locations:
        db.session.add(PeriodLocation(
            period_id=period.id,
            location_id=location.id,
            status=LOCATION_STATUS_OPEN,
            opening_value=round2(opening_values.get(location.id) or 0),
        ))
    db.session.flush()

    append_ledger_event(
        event_type="period.created",
        event_category="periods",
        entity_type="period",
        entity_id=period.id,
        actor_user_id=user.id,
        note=f"Period {period.name} created ({start_date} to {end_date})",
        payload={"status": status, "location_count": len(locations)},
    )
    return period


def create_period(
    *,
    name: str,
    start_date: date,
    end_date: date,
    user: User,
    status: str = PERIOD_STATUS_DRAFT,
) -> Period:
    """
    Create a period with a PeriodLocation for every active location.

    Opening values are carried from the closing values of the latest
    period that ends before this one starts.

    Raises:
        PeriodValidationError: bad dates, bad status
        PeriodStateError: overlapping period, or a second OPEN period
    """
    if status not in (PERIOD_STATUS_DRAFT, PERIOD_STATUS_OPEN):
        raise PeriodValidationError("A new period must be DRAFT or OPEN")

    def _op():
        if status == PERIOD_STATUS_OPEN and get_open_period() is not None:
            raise PeriodStateError("Another period is already open", code="PERIOD_ALREADY_OPEN")

        period = _create_period_inner(
            name=name,
            start_date=start_date,
            end_date=end_date,
            user=user,
            status=status,
            opening_values=_previous_closing_values(start_date),
        )
        db.session.commit()
        return period

    return run_with_retry(_op)


def open_period(period_id: int, *, user: User) -> Period:
    """
    Move a DRAFT period to OPEN. Its prices are locked from here on.

    Raises:
        PeriodStateError: not DRAFT, or another period is OPEN (PERIOD_ALREADY_OPEN)
        PeriodValidationError: the period has no locations
    """
    def _op():
        period = lock_for_update(db.session.query(Period).filter_by(id=period_id)).first()
        if not period:
            raise PeriodNotFoundError(f"Period {period_id} not found")
        if period.status != PERIOD_STATUS_DRAFT:
            raise PeriodStateError(
                f"Only DRAFT periods can be opened (period is {period.status})",
                code="INVALID_STATUS",
            )

        other = get_open_period()
        if other is not None and other.id != period.id:
            raise PeriodStateError(
                f"Period {other.name} is already open",
                code="PERIOD_ALREADY_OPEN",
                details={"open_period_id": other.id},
            )

        if not period.period_locations:
            raise PeriodValidationError("Period has no locations", code="NO_LOCATIONS")

        period.status = PERIOD_STATUS_OPEN
        period.opened_at = utcnow()

        append_ledger_event(
            event_type="period.opened",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"Period {period.name} opened; prices locked",
        )

        db.session.commit()
        return period

    return run_with_retry(_op)


# =============================================================================
# PER-LOCATION READINESS
# =============================================================================

def mark_location_ready(period_id: int, location_id: int, *, user: User) -> PeriodLocation:
    """
    Mark a location's slice of the OPEN period READY.

    A reconciliation must have been saved for the (period, location) first.
    """
    def _op():
        period = get_period(period_id)
        if period.status != PERIOD_STATUS_OPEN:
            raise PeriodStateError(
                f"Period must be OPEN to mark locations ready (period is {period.status})",
                code="INVALID_STATUS",
            )

        pl = get_period_location(period_id, location_id, lock=True)
        if pl.status == LOCATION_STATUS_CLOSED:
            raise PeriodStateError("Location is already closed for this period", code="LOCATION_CLOSED")
        if pl.status == LOCATION_STATUS_READY:
            return pl

        has_reconciliation = (
            db.session.query(Reconciliation.id)
            .filter_by(period_id=period_id, location_id=location_id)
            .first()
        )
        if not has_reconciliation:
            raise PeriodValidationError(
                "Save the location's reconciliation before marking it ready",
                code="RECONCILIATION_REQUIRED",
            )

        pl.status = LOCATION_STATUS_READY
        pl.ready_at = utcnow()
        pl.ready_by_user_id = user.id

        append_ledger_event(
            location_id=location_id,
            event_type="period.location_ready",
            event_category="periods",
            entity_type="period",
            entity_id=period_id,
            actor_user_id=user.id,
            note=f"Location {location_id} marked ready for {period.name}",
        )

        db.session.commit()
        return pl

    return run_with_retry(_op)


def mark_location_unready(period_id: int, location_id: int, *, user: User) -> PeriodLocation:
    """Return a READY location to OPEN while the period is still OPEN."""
    def _op():
        period = get_period(period_id)
        if period.status != PERIOD_STATUS_OPEN:
            raise PeriodStateError(
                f"Period must be OPEN to reopen a location (period is {period.status})",
                code="INVALID_STATUS",
            )

        pl = get_period_location(period_id, location_id, lock=True)
        if pl.status != LOCATION_STATUS_READY:
            raise PeriodStateError(
                f"Only READY locations can be reopened (location is {pl.status})",
                code="INVALID_STATUS",
            )

        pl.status = LOCATION_STATUS_OPEN
        pl.ready_at = None
        pl.ready_by_user_id = None

        append_ledger_event(
            location_id=location_id,
            event_type="period.location_unready",
            event_category="periods",
            entity_type="period",
            entity_id=period_id,
            actor_user_id=user.id,
            note=f"Location {location_id} reopened for {period.name}",
        )

        db.session.commit()
        return pl

    return run_with_retry(_op)


def _not_ready(period: Period) -> list[dict]:
    return [
        {
            "location_id": pl.location_id,
            "location_name": pl.location.name if pl.location else None,
            "status": pl.status,
        }
        for pl in period.period_locations
        if pl.status != LOCATION_STATUS_READY
    ]


# =============================================================================
# CLOSE
# =============================================================================

def request_period_close(period_id: int, *, user: User):
    """
    Ask for the period to be closed. ADMIN only.

    Every location must be READY. Creates (or re-arms) the PERIOD_CLOSE
    approval and moves the period to PENDING_CLOSE.

    Returns (period, approval).
    """
    _require_admin(user, "request a period close")

    def _op():
        period = lock_for_update(db.session.query(Period).filter_by(id=period_id)).first()
        if not period:
            raise PeriodNotFoundError(f"Period {period_id} not found")

        existing = approval_service.get_approval_for(ENTITY_PERIOD_CLOSE, period.id)
        if existing is not None and existing.status == approval_service.STATUS_PENDING:
            raise PeriodStateError(
                "A close request for this period is already pending",
                code="APPROVAL_PENDING",
                details={"approval_id": existing.id},
            )

        if period.status != PERIOD_STATUS_OPEN:
            raise PeriodStateError(
                f"Only OPEN periods can be closed (period is {period.status})",
                code="INVALID_STATUS",
            )
        if not period.period_locations:
            raise PeriodValidationError("Period has no locations", code="NO_LOCATIONS")

        not_ready = _not_ready(period)
        if not_ready:
            raise PeriodStateError(
                f"{len(not_ready)} location(s) are not ready",
                code="LOCATIONS_NOT_READY",
                details=not_ready,
            )

        approval = approval_service.request_approval(
            entity_type=ENTITY_PERIOD_CLOSE,
            entity_id=period.id,
            requested_by_user_id=user.id,
        )
        period.status = PERIOD_STATUS_PENDING_CLOSE
        period.approval_id = approval.id

        append_ledger_event(
            event_type="period.close_requested",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"Close requested for {period.name}",
            payload={"approval_id": approval.id},
        )

        db.session.commit()
        return period, approval

    return run_with_retry(_op)


def build_location_snapshot(period: Period, location_id: int) -> dict:
    """
    Freeze the stock valuation of one location.

    Only balances with on_hand > 0 are listed. The reconciliation block
    compares the book closing (from movements) with the counted value.
    """
    from ..models import LocationStock
    from .reconciliation_service import compute_auto_values
    from .calculations import calculate_expected_closing

    rows = (
        db.session.query(LocationStock)
        .filter(LocationStock.location_id == location_id, LocationStock.on_hand > 0)
        .order_by(LocationStock.item_id)
        .all()
    )

    items = []
    total = ZERO
    for row in rows:
        value = round2(to_decimal(row.on_hand) * to_decimal(row.wac))
        total += value
        items.append({
            "item_id": row.item_id,
            "item_code": row.item.code if row.item else None,
            "item_name": row.item.name if row.item else None,
            "unit": row.item.unit if row.item else None,
            "quantity": float(row.on_hand),
            "wac": float(row.wac),
            "value": float(value),
        })
    total = round2(total)

    auto = compute_auto_values(period, location_id)
    saved = (
        db.session.query(Reconciliation)
        .filter_by(period_id=period.id, location_id=location_id)
        .first()
    )
    manual = {
        "adjustments": saved.adjustments if saved else ZERO,
        "back_charges": saved.back_charges if saved else ZERO,
        "credits": saved.credits if saved else ZERO,
        "condemnations": saved.condemnations if saved else ZERO,
    }
    expected = calculate_expected_closing(
        opening_stock=auto["opening_stock"],
        receipts=auto["receipts"],
        transfers_in=auto["transfers_in"],
        transfers_out=auto["transfers_out"],
        issues=auto["issues"],
        actual_closing=total,
        **manual,
    )

    return {
        "items": items,
        "item_count": len(items),
        "total_value": float(total),
        "reconciliation": {
            "opening_stock": float(auto["opening_stock"]),
            "receipts": float(auto["receipts"]),
            "transfers_in": float(auto["transfers_in"]),
            "transfers_out": float(auto["transfers_out"]),
            "issues": float(auto["issues"]),
            "adjustments": float(manual["adjustments"]),
            "back_charges": float(manual["back_charges"]),
            "credits": float(manual["credits"]),
            "condemnations": float(manual["condemnations"]),
            "closing_stock": float(total),
            "calculated_closing": float(expected.calculated_closing),
            "variance": float(expected.variance),
        },
        "snapshot_at": utcnow().isoformat() + "Z",
    }


_FROZEN_FIELDS = ("opening_stock", "receipts", "transfers_in", "transfers_out", "issues", "closing_stock")


def _freeze_reconciliation(period_id: int, location_id: int, values: dict) -> None:
    """Overwrite the saved movement values with the ones taken at close (no commit)."""
    row = (
        db.session.query(Reconciliation)
        .filter_by(period_id=period_id, location_id=location_id)
        .first()
    )
    if row is None:
        return
    for name in _FROZEN_FIELDS:
        setattr(row, name, round2(to_decimal(values[name])))


def approve_period_close(period_id: int, *, user: User, comments: str | None = None) -> Period:
    """
    Execute an approved close. ADMIN only.

    One transaction: approval -> APPROVED, each location snapshotted and
    CLOSED with its closing value, period -> CLOSED.
    """
    _require_admin(user, "approve a period close")

    def _op():
        period = lock_for_update(db.session.query(Period).filter_by(id=period_id)).first()
        if not period:
            raise PeriodNotFoundError(f"Period {period_id} not found")
        if period.status != PERIOD_STATUS_PENDING_CLOSE:
            raise PeriodStateError(
                f"Period is {period.status}, not PENDING_CLOSE",
                code="INVALID_STATUS",
            )

        approval = approval_service.get_approval_for(ENTITY_PERIOD_CLOSE, period.id)
        if approval is None:
            raise PeriodStateError("Period has no close approval", code="APPROVAL_MISSING")

        not_ready = _not_ready(period)
        if not_ready:
            raise PeriodStateError(
                f"{len(not_ready)} location(s) are no longer ready",
                code="LOCATIONS_NOT_READY",
                details=not_ready,
            )

        approval_service.record_decision(
            approval,
            status=STATUS_APPROVED,
            reviewed_by_user_id=user.id,
            comments=comments,
        )

        now = utcnow()
        grand_total = ZERO
        for pl in period.period_locations:
            snapshot = build_location_snapshot(period, pl.location_id)
            pl.snapshot_data = snapshot
            pl.closing_value = round2(snapshot["total_value"])
            pl.status = LOCATION_STATUS_CLOSED
            pl.closed_at = now
            grand_total += pl.closing_value
            _freeze_reconciliation(period.id, pl.location_id, snapshot["reconciliation"])

        period.status = PERIOD_STATUS_CLOSED
        period.closed_at = now

        append_ledger_event(
            event_type="period.closed",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"Period {period.name} closed",
            payload={
                "approval_id": approval.id,
                "location_count": len(period.period_locations),
                "total_closing_value": str(round2(grand_total)),
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Period %s closed by %s across %s location(s), closing value %s",
            period.name, user.username, len(period.period_locations), round2(grand_total),
        )
        return period

    return run_with_retry(_op)


def reject_period_close(period_id: int, *, user: User, comments: str | None) -> Period:
    """Reject the pending close: approval REJECTED, period back to OPEN."""
    _require_admin(user, "reject a period close")

    def _op():
        period = lock_for_update(db.session.query(Period).filter_by(id=period_id)).first()
        if not period:
            raise PeriodNotFoundError(f"Period {period_id} not found")
        if period.status != PERIOD_STATUS_PENDING_CLOSE:
            raise PeriodStateError(
                f"Period is {period.status}, not PENDING_CLOSE",
                code="INVALID_STATUS",
            )

        approval = approval_service.get_approval_for(ENTITY_PERIOD_CLOSE, period.id)
        if approval is None:
            raise PeriodStateError("Period has no close approval", code="APPROVAL_MISSING")

        approval_service.record_decision(
            approval,
            status=STATUS_REJECTED,
            reviewed_by_user_id=user.id,
            comments=comments,
        )
        period.status = PERIOD_STATUS_OPEN
        period.approval_id = None

        append_ledger_event(
            event_type="period.close_rejected",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=comments,
            payload={"approval_id": approval.id},
        )

        db.session.commit()
        return period

    return run_with_retry(_op)


# =============================================================================
# ROLL FORWARD
# =============================================================================

def roll_forward_period(
    source_period_id: int,
    *,
    user: User,
    name: str | None = None,
    end_date: date | None = None,
    copy_prices: bool = True,
):
    """
    Create the next DRAFT period after a CLOSED one.

    Starts the day after the source ends; ends on the last day of that
    month unless end_date is given. Opening values come from the source's
    closing values, and prices of active items are copied when asked.

    Returns (period, prices_copied).
    """
    from .pricing_service import copy_period_prices

    def _op():
        source = get_period(source_period_id)
        if source.status != PERIOD_STATUS_CLOSED:
            raise PeriodStateError(
                f"Only CLOSED periods can be rolled forward (period is {source.status})",
                code="INVALID_STATUS",
            )

        start = source.end_date + timedelta(days=1)
        end = end_date
        if end is None:
            end = last_day_of_month(start)
            if end <= start:
                end = last_day_of_month(start + timedelta(days=1))

        opening_values = {
            pl.location_id: pl.closing_value
            for pl in source.period_locations
            if pl.closing_value is not None
        }

        period = _create_period_inner(
            name=name or month_label(start),
            start_date=start,
            end_date=end,
            user=user,
            status=PERIOD_STATUS_DRAFT,
            opening_values=opening_values,
        )

        copied = 0
        if copy_prices:
            copied = copy_period_prices(source.id, period.id, user_id=user.id)

        append_ledger_event(
            event_type="period.rolled_forward",
            event_category="periods",
            entity_type="period",
            entity_id=period.id,
            actor_user_id=user.id,
            note=f"Rolled forward from {source.name}",
            payload={"source_period_id": source.id, "prices_copied": copied},
        )

        db.session.commit()
        return period, copied

    return run_with_retry(_op)


def list_periods(*, status: str | None = None, limit: int = 100, offset: int = 0) -> tuple[list[Period], int]:
    query = db.session.query(Period)
    if status:
        query = query.filter(Period.status == status)
    total = query.count()
    periods = (
        query.order_by(Period.start_date.desc(), Period.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return periods, total
