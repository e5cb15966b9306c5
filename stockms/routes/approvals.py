# Overview: Flask API routes for the approval queue; decisions dispatch to the gated workflow.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, approval_service
from stockms.validation import DomainError
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


# Permission needed to decide each kind of approval
DECISION_PERMISSIONS = {
    approval_service.ENTITY_PERIOD_CLOSE: "APPROVE_PERIOD_CLOSE",
    approval_service.ENTITY_TRANSFER: "APPROVE_TRANSFERS",
    approval_service.ENTITY_PRF: "APPROVE_PRF",
}


def _require_decision_permission(approval_id: int):
    approval = approval_service.get_approval(approval_id)
    code = DECISION_PERMISSIONS.get(approval.entity_type)
    if code:
        access_service.require_permission(g.current_user, code)
    return approval


@approvals_bp.get("")
@require_auth
@require_permission("VIEW_APPROVALS")
def list_approvals():
    """
    Query params:
    - status: PENDING | APPROVED | REJECTED
    - entity_type: PRF | PO | PERIOD_CLOSE | TRANSFER
    """
    limit, offset = pagination_args()
    approvals, total = approval_service.list_approvals(
        status=request.args.get("status"),
        entity_type=request.args.get("entity_type"),
        limit=limit,
        offset=offset,
    )
    return paginated(approvals, total, limit, offset, key="approvals"), 200


@approvals_bp.get("/<int:approval_id>")
@require_auth
@require_permission("VIEW_APPROVALS")
def get_approval(approval_id: int):
    try:
        return jsonify(approval_service.get_approval(approval_id).to_dict()), 200
    except DomainError as e:
        return error_response(e)


@approvals_bp.post("/<int:approval_id>/approve")
@require_auth
@require_permission("VIEW_APPROVALS")
def approve(approval_id: int):
    """
    Approve and run the gated workflow (period close, transfer, PRF).

    Returns:
        200: Approval recorded
        403: Missing the decision permission for this entity type
        409: Approval not PENDING, or the workflow refused
    """
    data = json_body()
    try:
        _require_decision_permission(approval_id)
        approval = approval_service.approve(approval_id, user=g.current_user, comments=data.get("comments"))
        return jsonify(approval.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("approving request")


@approvals_bp.post("/<int:approval_id>/reject")
@require_auth
@require_permission("VIEW_APPROVALS")
def reject(approval_id: int):
    data = json_body()
    try:
        _require_decision_permission(approval_id)
        approval = approval_service.reject(
            approval_id,
            user=g.current_user,
            comments=data.get("comments") or data.get("reason"),
        )
        return jsonify(approval.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("rejecting request")
