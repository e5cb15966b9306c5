# Overview: Service-layer operations for purchase request forms (PRF).

"""
PRF Service

WHY: Locations ask for goods through a PRF; a supervisor approves it and
procurement then raises a purchase order against it.

LIFECYCLE:
1. DRAFT: Created, editable by the requester
2. PENDING: Submitted; PRF approval pending
3. APPROVED: Ready for a purchase order
4. REJECTED: Declined with a reason; clone it to try again
5. CLOSED: Its purchase order was fully delivered or closed

Lines may reference an item from the master or describe something that is
not in it yet (item_id is optional).
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import PRF, PRFLine, Item, Location, User
from ..models.auth import ROLE_ADMIN, ROLE_PROCUREMENT_SPECIALIST
from ..models.masterdata import ITEM_UNITS
from stockms.money import ZERO, round2, round4
from stockms.time_utils import utcnow, today
from stockms.validation import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_text,
    parse_choice,
    parse_date,
    parse_decimal,
    parse_int,
)
from . import approval_service
from .access_service import require_location_access
from .approval_service import ENTITY_PRF, STATUS_APPROVED as APPROVAL_APPROVED, STATUS_REJECTED as APPROVAL_REJECTED
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_location_number
from .ledger_service import append_ledger_event
from .period_service import require_open_period_for_location


STATUS_DRAFT = "DRAFT"
STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_CLOSED = "CLOSED"

STATUSES = {STATUS_DRAFT, STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_CLOSED}

PRF_TYPES = {"URGENT", "DPA", "NORMAL"}
PRF_CATEGORIES = {"MATERIAL", "CONSUMABLES", "SPARE_PARTS", "ASSET", "SERVICES"}


class PRFNotFoundError(NotFoundError):
    default_code = "PRF_NOT_FOUND"


class PRFValidationError(ValidationError):
    pass


class PRFStateError(ConflictError):
    pass


class PRFPermissionError(AccessDeniedError):
    pass


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise PRFValidationError("At least one line is required")

    parsed = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise PRFValidationError(f"lines[{idx}] must be an object")
        item_id = line.get("item_id")
        description = clean_text(line.get("item_description"), f"lines[{idx}].item_description", max_length=500)
        qty = parse_decimal(line.get("required_qty"), f"lines[{idx}].required_qty", positive=True)
        price = parse_decimal(
            line.get("estimated_price", 0), f"lines[{idx}].estimated_price", non_negative=True
        )
        parsed.append({
            "item_id": parse_int(item_id, f"lines[{idx}].item_id") if item_id not in (None, "") else None,
            "item_description": description,
            "cost_code": clean_text(line.get("cost_code"), f"lines[{idx}].cost_code", max_length=50),
            "unit": line.get("unit"),
            "required_qty": qty,
            "estimated_price": price,
            "notes": clean_text(line.get("notes"), f"lines[{idx}].notes"),
        })
    return parsed


def _resolve_lines(parsed: list[dict]) -> list[PRFLine]:
    """Fill description/unit from the item master and build PRFLine rows."""
    item_ids = {line["item_id"] for line in parsed if line["item_id"] is not None}
    items = {}
    if item_ids:
        items = {
            item.id: item
            for item in db.session.query(Item).filter(Item.id.in_(item_ids), Item.is_active.is_(True)).all()
        }
        missing = sorted(item_ids - set(items))
        if missing:
            raise PRFValidationError(
                "One or more items not found or inactive",
                code="INVALID_ITEMS",
                details={"item_ids": missing},
            )

    rows = []
    for number, line in enumerate(parsed, start=1):
        item = items.get(line["item_id"])
        description = line["item_description"] or (item.name if item else None)
        unit = line["unit"] or (item.unit if item else None)
        if not description:
            raise PRFValidationError(f"Line {number}: item_description is required")
        if unit not in ITEM_UNITS:
            raise PRFValidationError(f"Line {number}: unit must be one of {', '.join(sorted(ITEM_UNITS))}")

        rows.append(PRFLine(
            line_number=number,
            item_id=line["item_id"],
            item_description=description,
            cost_code=line["cost_code"],
            unit=unit,
            required_qty=line["required_qty"],
            estimated_price=round4(line["estimated_price"]),
            line_value=round2(line["required_qty"] * line["estimated_price"]),
            notes=line["notes"],
        ))
    return rows


def _header_fields(
    *,
    prf_type,
    category,
    project_name,
    contact_person_name,
    contact_person_phone,
    receiver_name,
    receiver_phone,
    expected_delivery_date,
    is_reimbursable,
    notes,
) -> dict:
    return {
        "prf_type": parse_choice(prf_type, "prf_type", PRF_TYPES, default="NORMAL"),
        "category": parse_choice(category, "category", PRF_CATEGORIES, default="MATERIAL"),
        "project_name": clean_text(project_name, "project_name", max_length=200),
        "contact_person_name": clean_text(contact_person_name, "contact_person_name", max_length=100),
        "contact_person_phone": clean_text(contact_person_phone, "contact_person_phone", max_length=50),
        "receiver_name": clean_text(receiver_name, "receiver_name", max_length=100),
        "receiver_phone": clean_text(receiver_phone, "receiver_phone", max_length=50),
        "expected_delivery_date": parse_date(expected_delivery_date, "expected_delivery_date", required=False),
        "is_reimbursable": bool(is_reimbursable),
        "notes": clean_text(notes, "notes"),
    }


def _get_locked(prf_id: int) -> PRF:
    prf = lock_for_update(db.session.query(PRF).filter_by(id=prf_id)).first()
    if not prf:
        raise PRFNotFoundError(f"PRF {prf_id} not found")
    return prf


def _require_reviewer(user: User) -> None:
    if not user.is_supervisor_or_admin:
        raise PRFPermissionError("Only supervisors and administrators can review PRFs", code="PERMISSION_DENIED")


def _require_owner(prf: PRF, user: User) -> None:
    if prf.requested_by_user_id != user.id and user.role != ROLE_ADMIN:
        raise PRFPermissionError("Only the requester can change this PRF", code="NOT_REQUESTER")


def create_prf(
    *,
    location_id: int,
    lines,
    user: User,
    prf_type: str | None = None,
    category: str | None = None,
    project_name: str | None = None,
    contact_person_name: str | None = None,
    contact_person_phone: str | None = None,
    receiver_name: str | None = None,
    receiver_phone: str | None = None,
    expected_delivery_date: date | str | None = None,
    is_reimbursable: bool = False,
    notes: str | None = None,
) -> PRF:
    """
    Create a DRAFT PRF in the current OPEN period.

    Number: PRF-{LOCATION}-{DD-Mon-YYYY}-NN.
    """
    fields = _header_fields(
        prf_type=prf_type,
        category=category,
        project_name=project_name,
        contact_person_name=contact_person_name,
        contact_person_phone=contact_person_phone,
        receiver_name=receiver_name,
        receiver_phone=receiver_phone,
        expected_delivery_date=expected_delivery_date,
        is_reimbursable=is_reimbursable,
        notes=notes,
    )
    parsed = _parse_lines(lines)

    def _op():
        location = db.session.get(Location, location_id)
        if not location:
            raise PRFNotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
        if not location.is_active:
            raise PRFValidationError("Location is inactive", code="LOCATION_INACTIVE")
        require_location_access(user, location_id)

        period, _ = require_open_period_for_location(location_id)
        rows = _resolve_lines(parsed)

        prf = PRF(
            prf_no=next_location_number("PRF", "PRF", location_id),
            location_id=location_id,
            period_id=period.id,
            status=STATUS_DRAFT,
            requested_by_user_id=user.id,
            request_date=today(),
            total_value=round2(sum((r.line_value for r in rows), ZERO)),
            **fields,
        )
        prf.lines = rows
        db.session.add(prf)
        db.session.flush()

        append_ledger_event(
            location_id=location_id,
            event_type="prf.created",
            event_category="procurement",
            entity_type="prf",
            entity_id=prf.id,
            actor_user_id=user.id,
            note=f"PRF {prf.prf_no} created",
            payload={"total_value": str(prf.total_value), "line_count": len(rows)},
        )

        db.session.commit()
        return prf

    return run_with_retry(_op)


def update_prf(prf_id: int, *, user: User, lines=None, **changes) -> PRF:
    """
    Edit a DRAFT PRF. Only the requester (or an administrator) may edit.

    changes takes the same header keyword arguments as create_prf; when
    lines is given the existing lines are replaced.
    """
    parsed = _parse_lines(lines) if lines is not None else None

    def _op():
        prf = _get_locked(prf_id)
        _require_owner(prf, user)
        if prf.status != STATUS_DRAFT:
            raise PRFStateError(f"Only DRAFT PRFs can be edited (PRF is {prf.status})", code="NOT_DRAFT")

        current = {
            "prf_type": prf.prf_type,
            "category": prf.category,
            "project_name": prf.project_name,
            "contact_person_name": prf.contact_person_name,
            "contact_person_phone": prf.contact_person_phone,
            "receiver_name": prf.receiver_name,
            "receiver_phone": prf.receiver_phone,
            "expected_delivery_date": prf.expected_delivery_date,
            "is_reimbursable": prf.is_reimbursable,
            "notes": prf.notes,
        }
        unknown = set(changes) - set(current)
        if unknown:
            raise PRFValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        current.update(changes)

        for key, value in _header_fields(**current).items():
            setattr(prf, key, value)

        if parsed is not None:
            prf.lines = _resolve_lines(parsed)
            db.session.flush()
            prf.total_value = round2(sum((r.line_value for r in prf.lines), ZERO))

        append_ledger_event(
            location_id=prf.location_id,
            event_type="prf.updated",
            event_category="procurement",
            entity_type="prf",
            entity_id=prf.id,
            actor_user_id=user.id,
            note=f"PRF {prf.prf_no} updated",
        )

        db.session.commit()
        return prf

    return run_with_retry(_op)


def submit_prf(prf_id: int, *, user: User) -> PRF:
    """DRAFT -> PENDING and request the PRF approval. Requester only."""
    def _op():
        prf = _get_locked(prf_id)
        if prf.requested_by_user_id != user.id:
            raise PRFPermissionError("Only the requester can submit this PRF", code="NOT_REQUESTER")
        if prf.status != STATUS_DRAFT:
            raise PRFStateError(f"Only DRAFT PRFs can be submitted (PRF is {prf.status})", code="NOT_DRAFT")
        if not prf.lines:
            raise PRFValidationError("PRF has no lines", code="NO_LINES")

        approval_service.request_approval(
            entity_type=ENTITY_PRF,
            entity_id=prf.id,
            requested_by_user_id=user.id,
        )
        prf.status = STATUS_PENDING
        prf.submitted_at = utcnow()

        append_ledger_event(
            location_id=prf.location_id,
            event_type="prf.submitted",
            event_category="procurement",
            entity_type="prf",
            entity_id=prf.id,
            actor_user_id=user.id,
            note=f"PRF {prf.prf_no} submitted for approval",
        )

        db.session.commit()
        return prf

    return run_with_retry(_op)


def _decide(prf_id: int, *, user: User, approve: bool, text: str | None) -> PRF:
    _require_reviewer(user)

    def _op():
        prf = _get_locked(prf_id)
        if prf.status != STATUS_PENDING:
            raise PRFStateError(f"Only PENDING PRFs can be reviewed (PRF is {prf.status})", code="NOT_PENDING")

        approval = approval_service.get_approval_for(ENTITY_PRF, prf.id)
        if approval is not None:
            approval_service.record_decision(
                approval,
                status=APPROVAL_APPROVED if approve else APPROVAL_REJECTED,
                reviewed_by_user_id=user.id,
                comments=text,
            )

        prf.approved_by_user_id = user.id
        prf.approval_date = utcnow()
        if approve:
            prf.status = STATUS_APPROVED
            prf.rejection_reason = None
        else:
            prf.status = STATUS_REJECTED
            prf.rejection_reason = text

        append_ledger_event(
            location_id=prf.location_id,
            event_type="prf.approved" if approve else "prf.rejected",
            event_category="procurement",
            entity_type="prf",
            entity_id=prf.id,
            actor_user_id=user.id,
            note=text,
        )

        db.session.commit()
        return prf

    return run_with_retry(_op)


def approve_prf(prf_id: int, *, user: User, comments: str | None = None) -> PRF:
    return _decide(prf_id, user=user, approve=True, text=comments)


def reject_prf(prf_id: int, *, user: User, reason: str | None) -> PRF:
    if not reason or not str(reason).strip():
        raise PRFValidationError("A rejection reason is required")
    return _decide(prf_id, user=user, approve=False, text=str(reason).strip())


def clone_prf(prf_id: int, *, user: User) -> PRF:
    """Copy a PRF (any status) into a new DRAFT in the current OPEN period."""
    if user.role == ROLE_PROCUREMENT_SPECIALIST:
        raise PRFPermissionError("Procurement specialists cannot clone PRFs", code="PERMISSION_DENIED")

    def _op():
        source = db.session.get(PRF, prf_id)
        if not source:
            raise PRFNotFoundError(f"PRF {prf_id} not found")
        require_location_access(user, source.location_id)

        period, _ = require_open_period_for_location(source.location_id)

        clone = PRF(
            prf_no=next_location_number("PRF", "PRF", source.location_id),
            location_id=source.location_id,
            period_id=period.id,
            project_name=source.project_name,
            prf_type=source.prf_type,
            category=source.category,
            expected_delivery_date=source.expected_delivery_date,
            is_reimbursable=source.is_reimbursable,
            contact_person_name=source.contact_person_name,
            contact_person_phone=source.contact_person_phone,
            receiver_name=source.receiver_name,
            receiver_phone=source.receiver_phone,
            notes=source.notes,
            status=STATUS_DRAFT,
            total_value=source.total_value,
            requested_by_user_id=user.id,
            request_date=today(),
        )
        clone.lines = [
            PRFLine(
                line_number=line.line_number,
                item_id=line.item_id,
                item_description=line.item_description,
                cost_code=line.cost_code,
                unit=line.unit,
                required_qty=line.required_qty,
                estimated_price=line.estimated_price,
                line_value=line.line_value,
                notes=line.notes,
            )
            for line in source.lines
        ]
        db.session.add(clone)
        db.session.flush()

        append_ledger_event(
            location_id=clone.location_id,
            event_type="prf.cloned",
            event_category="procurement",
            entity_type="prf",
            entity_id=clone.id,
            actor_user_id=user.id,
            note=f"PRF {clone.prf_no} cloned from {source.prf_no}",
            payload={"source_prf_id": source.id},
        )

        db.session.commit()
        return clone

    return run_with_retry(_op)


def delete_prf(prf_id: int, *, user: User) -> None:
    def _op():
        prf = _get_locked(prf_id)
        _require_owner(prf, user)
        if prf.status != STATUS_DRAFT:
            raise PRFStateError(f"Only DRAFT PRFs can be deleted (PRF is {prf.status})", code="NOT_DRAFT")

        append_ledger_event(
            location_id=prf.location_id,
            event_type="prf.deleted",
            event_category="procurement",
            entity_type="prf",
            entity_id=prf.id,
            actor_user_id=user.id,
            note=f"PRF {prf.prf_no} deleted",
        )
        db.session.delete(prf)
        db.session.commit()

    run_with_retry(_op)


def get_prf(prf_id: int) -> PRF:
    prf = db.session.get(PRF, prf_id)
    if not prf:
        raise PRFNotFoundError(f"PRF {prf_id} not found")
    return prf


def list_prfs(
    *,
    location_id: int | None = None,
    location_ids: set[int] | None = None,
    status: str | None = None,
    period_id: int | None = None,
    requested_by_user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[PRF], int]:
    query = db.session.query(PRF)
    if location_id:
        query = query.filter(PRF.location_id == location_id)
    if location_ids is not None:
        query = query.filter(PRF.location_id.in_(location_ids or {-1}))
    if status:
        query = query.filter(PRF.status == status)
    if period_id:
        query = query.filter(PRF.period_id == period_id)
    if requested_by_user_id:
        query = query.filter(PRF.requested_by_user_id == requested_by_user_id)

    total = query.count()
    prfs = (
        query.order_by(PRF.created_at.desc(), PRF.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return prfs, total
