# Overview: Polymorphic approval records and dispatch to the workflow that owns each entity.

"""
Approval Service

WHY: Transfers, PRFs and period closes all need a reviewer's decision.
One Approval row per gated entity (entity_type + entity_id) records who
asked, who decided and why.

LIFECYCLE:
1. PENDING: Requested, waiting for a reviewer
2. APPROVED: Reviewer accepted; the owning workflow has executed
3. REJECTED: Reviewer declined; may be re-armed to PENDING by a new request

DISPATCH: approve()/reject() load the record and hand over to the owning
workflow (period close, transfer, PRF). The workflow updates the record
in the same transaction as its own state change, so an approval is never
APPROVED while the document it gates is still pending.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Approval, User
from stockms.time_utils import utcnow
from stockms.validation import ConflictError, NotFoundError, ValidationError


ENTITY_PRF = "PRF"
ENTITY_PO = "PO"
ENTITY_PERIOD_CLOSE = "PERIOD_CLOSE"
ENTITY_TRANSFER = "TRANSFER"

ENTITY_TYPES = {ENTITY_PRF, ENTITY_PO, ENTITY_PERIOD_CLOSE, ENTITY_TRANSFER}

STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"

STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}


class ApprovalNotFoundError(NotFoundError):
    """Raised when an approval is not found."""
    default_code = "APPROVAL_NOT_FOUND"


class ApprovalValidationError(ValidationError):
    """Raised when approval data fails validation."""
    pass


class ApprovalStateError(ConflictError):
    """Raised when an operation is invalid for the approval's current status."""
    pass


def get_approval(approval_id: int) -> Approval:
    approval = db.session.get(Approval, approval_id)
    if not approval:
        raise ApprovalNotFoundError(f"Approval {approval_id} not found")
    return approval


def get_approval_for(entity_type: str, entity_id: int) -> Approval | None:
    return (
        db.session.query(Approval)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .first()
    )


def request_approval(*, entity_type: str, entity_id: int, requested_by_user_id: int) -> Approval:
    """
    Create the approval record for an entity, or re-arm a rejected one.

    Runs in the caller's transaction (flush only).

    Raises:
        ApprovalValidationError: unknown entity type
        ApprovalStateError: a PENDING or APPROVED record already exists
    """
    if entity_type not in ENTITY_TYPES:
        raise ApprovalValidationError(
            f"Invalid entity_type. Must be one of: {', '.join(sorted(ENTITY_TYPES))}"
        )

    approval = get_approval_for(entity_type, entity_id)
    now = utcnow()

    if approval is None:
        approval = Approval(
            entity_type=entity_type,
            entity_id=entity_id,
            status=STATUS_PENDING,
            requested_by_user_id=requested_by_user_id,
            requested_at=now,
        )
        db.session.add(approval)
    elif approval.status == STATUS_PENDING:
        raise ApprovalStateError(
            f"An approval for {entity_type} {entity_id} is already pending",
            code="APPROVAL_PENDING",
        )
    elif approval.status == STATUS_APPROVED:
        raise ApprovalStateError(
            f"{entity_type} {entity_id} has already been approved",
            code="ALREADY_APPROVED",
        )
    else:
        approval.status = STATUS_PENDING
        approval.requested_by_user_id = requested_by_user_id
        approval.requested_at = now
        approval.reviewed_by_user_id = None
        approval.reviewed_at = None
        approval.comments = None

    db.session.flush()
    return approval


def record_decision(
    approval: Approval,
    *,
    status: str,
    reviewed_by_user_id: int,
    comments: str | None = None,
) -> Approval:
    """Stamp a PENDING approval as APPROVED or REJECTED (flush only)."""
    if approval.status != STATUS_PENDING:
        raise ApprovalStateError(
            f"Approval {approval.id} is {approval.status}, not PENDING",
            code="APPROVAL_NOT_PENDING",
        )
    approval.status = status
    approval.reviewed_by_user_id = reviewed_by_user_id
    approval.reviewed_at = utcnow()
    approval.comments = comments
    db.session.flush()
    return approval


def approve(approval_id: int, *, user: User, comments: str | None = None) -> Approval:
    """Approve and execute the gated workflow."""
    approval = get_approval(approval_id)
    if approval.status != STATUS_PENDING:
        raise ApprovalStateError(
            f"Approval {approval_id} is {approval.status}, not PENDING",
            code="APPROVAL_NOT_PENDING",
        )

    if approval.entity_type == ENTITY_PERIOD_CLOSE:
        from .period_service import approve_period_close
        approve_period_close(approval.entity_id, user=user, comments=comments)
    elif approval.entity_type == ENTITY_TRANSFER:
        from .transfer_service import approve_transfer
        approve_transfer(approval.entity_id, user=user, comments=comments)
    elif approval.entity_type == ENTITY_PRF:
        from .prf_service import approve_prf
        approve_prf(approval.entity_id, user=user, comments=comments)
    else:
        raise ApprovalValidationError(
            f"Approvals for {approval.entity_type} are not handled here",
            code="UNSUPPORTED_ENTITY",
        )

    return get_approval(approval_id)


def reject(approval_id: int, *, user: User, comments: str | None) -> Approval:
    """Reject and roll the gated workflow back to its pre-request state."""
    approval = get_approval(approval_id)
    if approval.status != STATUS_PENDING:
        raise ApprovalStateError(
            f"Approval {approval_id} is {approval.status}, not PENDING",
            code="APPROVAL_NOT_PENDING",
        )
    if not comments or not str(comments).strip():
        raise ApprovalValidationError("A rejection reason is required")

    if approval.entity_type == ENTITY_PERIOD_CLOSE:
        from .period_service import reject_period_close
        reject_period_close(approval.entity_id, user=user, comments=comments)
    elif approval.entity_type == ENTITY_TRANSFER:
        from .transfer_service import reject_transfer
        reject_transfer(approval.entity_id, user=user, reason=comments)
    elif approval.entity_type == ENTITY_PRF:
        from .prf_service import reject_prf
        reject_prf(approval.entity_id, user=user, reason=comments)
    else:
        raise ApprovalValidationError(
            f"Approvals for {approval.entity_type} are not handled here",
            code="UNSUPPORTED_ENTITY",
        )

    return get_approval(approval_id)


def list_approvals(
    *,
    status: str | None = None,
    entity_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Approval], int]:
    query = db.session.query(Approval)
    if status:
        query = query.filter(Approval.status == status)
    if entity_type:
        query = query.filter(Approval.entity_type == entity_type)

    total = query.count()
    approvals = (
        query.order_by(Approval.requested_at.desc(), Approval.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return approvals, total
