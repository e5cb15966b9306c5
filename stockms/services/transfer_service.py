# Overview: Service-layer operations for inter-location stock transfers gated by approval.
"""
Inter-location transfer service.

WHY: Move stock between locations with a supervisor's sign-off. Stock moves
at the source location's WAC: it leaves the source like an issue and
arrives at the destination like a receipt (the destination WAC is
recomputed).

LIFECYCLE:
1. PENDING_APPROVAL: Created with lines; Approval(TRANSFER) pending
2. COMPLETED: Approved; stock moved in the same transaction
3. REJECTED: Declined with a reason; nothing moved

DRAFT and APPROVED are recognised statuses but approve() goes from
PENDING_APPROVAL straight to COMPLETED.
"""
from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Item, Location, Transfer, TransferLine, User
from stockms.money import ZERO, round2, round4, to_decimal
from stockms.time_utils import today, utcnow
from stockms.validation import AccessDeniedError, ConflictError, NotFoundError, ValidationError, clean_text, parse_date, parse_decimal, parse_int
from . import approval_service
from .access_service import require_location_access
from .approval_service import ENTITY_TRANSFER, STATUS_APPROVED as APPROVAL_APPROVED, STATUS_REJECTED as APPROVAL_REJECTED
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_yearly_number
from .inventory_service import InsufficientStockError, apply_issue, apply_receipt, check_stock_sufficiency, current_wac
from .ledger_service import append_ledger_event
from .period_service import require_open_period_for_location


# Transfer status constants
TRANSFER_STATUS_DRAFT = "DRAFT"
TRANSFER_STATUS_PENDING_APPROVAL = "PENDING_APPROVAL"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_REJECTED = "REJECTED"
TRANSFER_STATUS_COMPLETED = "COMPLETED"

TRANSFER_STATUSES = {
    TRANSFER_STATUS_DRAFT,
    TRANSFER_STATUS_PENDING_APPROVAL,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_REJECTED,
    TRANSFER_STATUS_COMPLETED,
}


class TransferNotFoundError(NotFoundError):
    default_code = "TRANSFER_NOT_FOUND"


class TransferValidationError(ValidationError):
    pass


class TransferStateError(ConflictError):
    pass


class TransferPermissionError(AccessDeniedError):
    pass


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise TransferValidationError("At least one line is required")
    parsed = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise TransferValidationError(f"lines[{idx}] must be an object")
        parsed.append({
            "item_id": parse_int(line.get("item_id"), f"lines[{idx}].item_id"),
            "quantity": parse_decimal(line.get("quantity"), f"lines[{idx}].quantity", positive=True),
        })
    return parsed


def _require_active_location(location_id: int, label: str) -> Location:
    location = db.session.get(Location, location_id)
    if not location:
        raise TransferNotFoundError(f"{label} location {location_id} not found", code="LOCATION_NOT_FOUND")
    if not location.is_active:
        raise TransferValidationError(f"{label} location is inactive", code="LOCATION_INACTIVE")
    return location


def _require_sufficient(location_id: int, lines) -> None:
    shortfalls = check_stock_sufficiency(location_id, lines)
    if shortfalls:
        raise InsufficientStockError(
            f"Insufficient stock at source for {len(shortfalls)} item(s)",
            details=shortfalls,
        )


def create_transfer(
    *,
    from_location_id: int,
    to_location_id: int,
    lines,
    user: User,
    notes: str | None = None,
    request_date: date | str | None = None,
) -> Transfer:
    """
    Create a transfer (status: PENDING_APPROVAL) and its approval request.

    Args:
        from_location_id: Source location (the user needs POST access here)
        to_location_id: Destination location
        lines: [{item_id, quantity}]
        user: Requesting user

    Returns:
        Transfer: The created transfer, lines valued at the current source WAC

    Raises:
        TransferValidationError: same location, inactive location or item
        InsufficientStockError: source stock short for any line
        PeriodStateError: no OPEN period for either location
    """
    parsed = _parse_lines(lines)
    request_date = parse_date(request_date, "request_date", required=False) or today()
    notes = clean_text(notes, "notes")

    def _op():
        if from_location_id == to_location_id:
            raise TransferValidationError("Cannot transfer to the same location", code="SAME_LOCATION")

        _require_active_location(from_location_id, "Source")
        _require_active_location(to_location_id, "Destination")
        require_location_access(user, from_location_id, post=True)
        require_open_period_for_location(from_location_id)
        require_open_period_for_location(to_location_id)

        item_ids = {line["item_id"] for line in parsed}
        found = {
            item.id
            for item in db.session.query(Item).filter(Item.id.in_(item_ids), Item.is_active.is_(True)).all()
        }
        missing = sorted(item_ids - found)
        if missing:
            raise TransferValidationError(
                "One or more items not found or inactive",
                code="INVALID_ITEMS",
                details={"item_ids": missing},
            )

        _require_sufficient(from_location_id, parsed)

        transfer = Transfer(
            transfer_no=next_yearly_number("TRANSFER", "TRF"),
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            status=TRANSFER_STATUS_PENDING_APPROVAL,
            request_date=request_date,
            notes=notes,
            requested_by_user_id=user.id,
        )
        total = ZERO
        rows = []
        for line in parsed:
            wac = round4(current_wac(from_location_id, line["item_id"]))
            value = round2(line["quantity"] * wac)
            rows.append(TransferLine(
                item_id=line["item_id"],
                quantity=line["quantity"],
                wac_at_transfer=wac,
                line_value=value,
            ))
            total += value
        transfer.lines = rows
        transfer.total_value = round2(total)
        db.session.add(transfer)
        db.session.flush()

        approval_service.request_approval(
            entity_type=ENTITY_TRANSFER,
            entity_id=transfer.id,
            requested_by_user_id=user.id,
        )

        append_ledger_event(
            location_id=from_location_id,
            event_type="transfer.created",
            event_category="transfers",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=user.id,
            note=notes or f"{transfer.transfer_no} requested",
            payload={"to_location_id": to_location_id, "total_value": str(transfer.total_value)},
        )

        db.session.commit()
        return transfer

    return run_with_retry(_op)


def _lock_pending(transfer_id: int) -> Transfer:
    transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
    if not transfer:
        raise TransferNotFoundError(f"Transfer {transfer_id} not found")
    if transfer.status != TRANSFER_STATUS_PENDING_APPROVAL:
        raise TransferStateError(
            f"Cannot review transfer in {transfer.status} status",
            code="NOT_PENDING",
        )
    return transfer


def approve_transfer(transfer_id: int, *, user: User, comments: str | None = None) -> Transfer:
    """
    Approve a transfer and move the stock.

    Source stock is re-checked at approval time; each line leaves the source
    at its current WAC and is received at the destination at that cost.
    """
    if not user.is_supervisor_or_admin:
        raise TransferPermissionError("Only supervisors and administrators can approve transfers", code="PERMISSION_DENIED")

    def _op():
        transfer = _lock_pending(transfer_id)
        period, _ = require_open_period_for_location(transfer.from_location_id)
        require_open_period_for_location(transfer.to_location_id)

        _require_sufficient(
            transfer.from_location_id,
            [{"item_id": line.item_id, "quantity": line.quantity} for line in transfer.lines],
        )

        total = ZERO
        for line in transfer.lines:
            qty = to_decimal(line.quantity)
            wac = round4(current_wac(transfer.from_location_id, line.item_id))
            apply_issue(transfer.from_location_id, line.item_id, qty)
            apply_receipt(transfer.to_location_id, line.item_id, qty, wac)
            line.wac_at_transfer = wac
            line.line_value = round2(qty * wac)
            total += line.line_value

        now = utcnow()
        transfer.total_value = round2(total)
        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.approved_by_user_id = user.id
        transfer.approval_date = now
        transfer.transfer_date = now.date()
        transfer.period_id = period.id

        approval = approval_service.get_approval_for(ENTITY_TRANSFER, transfer.id)
        if approval is not None:
            approval_service.record_decision(
                approval, status=APPROVAL_APPROVED, reviewed_by_user_id=user.id, comments=comments,
            )

        for location_id, event_type in (
            (transfer.from_location_id, "transfer.sent"),
            (transfer.to_location_id, "transfer.received"),
        ):
            append_ledger_event(
                location_id=location_id,
                event_type=event_type,
                event_category="transfers",
                entity_type="transfer",
                entity_id=transfer.id,
                actor_user_id=user.id,
                note=f"{transfer.transfer_no} completed",
                payload={"total_value": str(transfer.total_value)},
            )

        db.session.commit()
        return transfer

    return run_with_retry(_op)


def reject_transfer(transfer_id: int, *, user: User, reason: str | None) -> Transfer:
    if not user.is_supervisor_or_admin:
        raise TransferPermissionError("Only supervisors and administrators can reject transfers", code="PERMISSION_DENIED")
    if not reason or not str(reason).strip():
        raise TransferValidationError("A rejection reason is required")
    reason = str(reason).strip()

    def _op():
        transfer = _lock_pending(transfer_id)
        transfer.status = TRANSFER_STATUS_REJECTED
        transfer.approved_by_user_id = user.id
        transfer.approval_date = utcnow()
        transfer.rejection_reason = reason

        approval = approval_service.get_approval_for(ENTITY_TRANSFER, transfer.id)
        if approval is not None:
            approval_service.record_decision(
                approval, status=APPROVAL_REJECTED, reviewed_by_user_id=user.id, comments=reason,
            )

        append_ledger_event(
            location_id=transfer.from_location_id,
            event_type="transfer.rejected",
            event_category="transfers",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=user.id,
            note=reason,
        )

        db.session.commit()
        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int) -> Transfer:
    transfer = db.session.get(Transfer, transfer_id)
    if not transfer:
        raise TransferNotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    *,
    location_id: int | None = None,
    location_ids: set[int] | None = None,
    direction: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Transfer], int]:
    """
    direction: "out" (from location_id), "in" (to location_id), or None for both.
    """
    query = db.session.query(Transfer)
    if location_id:
        if direction == "out":
            query = query.filter(Transfer.from_location_id == location_id)
        elif direction == "in":
            query = query.filter(Transfer.to_location_id == location_id)
        else:
            query = query.filter(
                (Transfer.from_location_id == location_id) | (Transfer.to_location_id == location_id)
            )
    if location_ids is not None:
        ids = location_ids or {-1}
        query = query.filter(Transfer.from_location_id.in_(ids) | Transfer.to_location_id.in_(ids))
    if status:
        query = query.filter(Transfer.status == status)

    total = query.count()
    transfers = (
        query.order_by(Transfer.created_at.desc(), Transfer.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return transfers, total
