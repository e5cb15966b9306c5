# Overview: Flask API routes for purchase requisitions (PRFs).
"""
PRF API routes.

LIFECYCLE:
DRAFT -> PENDING (submit) -> APPROVED | REJECTED; APPROVED -> CLOSED when its
PO closes. Only DRAFT PRFs can be edited or deleted.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, prf_service
from stockms.validation import DomainError
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error, visible_location_ids


prfs_bp = Blueprint("prfs", __name__, url_prefix="/api/prfs")


_HEADER_KEYS = (
    "prf_type",
    "category",
    "project_name",
    "contact_person_name",
    "contact_person_phone",
    "receiver_name",
    "receiver_phone",
    "expected_delivery_date",
    "is_reimbursable",
    "notes",
)


def _load_visible(prf_id: int):
    prf = prf_service.get_prf(prf_id)
    access_service.require_location_access(g.current_user, prf.location_id)
    return prf


@prfs_bp.get("")
@require_auth
@require_permission("VIEW_PROCUREMENT")
def list_prfs():
    """
    Query params:
    - location_id, status, period_id, requested_by (user id), limit, offset
    """
    limit, offset = pagination_args()
    prfs, total = prf_service.list_prfs(
        location_id=request.args.get("location_id", type=int),
        location_ids=visible_location_ids(),
        status=request.args.get("status"),
        period_id=request.args.get("period_id", type=int),
        requested_by_user_id=request.args.get("requested_by", type=int),
        limit=limit,
        offset=offset,
    )
    return paginated(prfs, total, limit, offset, key="prfs"), 200


@prfs_bp.post("")
@require_auth
@require_permission("CREATE_PRF")
def create_prf():
    """
    Create a DRAFT PRF.

    Request body:
    {
        "location_id": int,
        "prf_type": "URGENT" | "DPA" | "NORMAL",
        "category": "MATERIAL" | "CONSUMABLES" | "SPARE_PARTS" | "ASSET" | "SERVICES",
        "project_name", "contact_person_name", "contact_person_phone",
        "receiver_name", "receiver_phone": str (optional),
        "expected_delivery_date": "YYYY-MM-DD" (optional),
        "is_reimbursable": bool (optional),
        "notes": str (optional),
        "lines": [{"item_id"?, "item_description", "unit", "required_qty", "estimated_price", "cost_code"?}]
    }

    Returns:
        201: PRF created
        400: Invalid request
        403: No access to the location
        409: No open period for the location
    """
    data = json_body()
    if data.get("location_id") is None:
        return jsonify({"error": "Missing required field: location_id"}), 400

    try:
        prf = prf_service.create_prf(
            location_id=data["location_id"],
            lines=data.get("lines"),
            user=g.current_user,
            **{key: data[key] for key in _HEADER_KEYS if key in data},
        )
        return jsonify(prf.to_dict(include_lines=True)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating PRF")


@prfs_bp.get("/<int:prf_id>")
@require_auth
@require_permission("VIEW_PROCUREMENT")
def get_prf(prf_id: int):
    try:
        prf = _load_visible(prf_id)
        body = prf.to_dict(include_lines=True)
        body["purchase_order"] = prf.purchase_order.to_dict() if prf.purchase_order else None
        return jsonify(body), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading PRF")


@prfs_bp.patch("/<int:prf_id>")
@require_auth
@require_permission("CREATE_PRF")
def update_prf(prf_id: int):
    data = json_body()
    try:
        prf = prf_service.update_prf(
            prf_id,
            user=g.current_user,
            lines=data.get("lines"),
            **{key: data[key] for key in _HEADER_KEYS if key in data},
        )
        return jsonify(prf.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("updating PRF")


@prfs_bp.delete("/<int:prf_id>")
@require_auth
@require_permission("CREATE_PRF")
def delete_prf(prf_id: int):
    try:
        prf_service.delete_prf(prf_id, user=g.current_user)
        return jsonify({"message": "PRF deleted"}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("deleting PRF")


@prfs_bp.post("/<int:prf_id>/submit")
@require_auth
@require_permission("CREATE_PRF")
def submit_prf(prf_id: int):
    try:
        prf = prf_service.submit_prf(prf_id, user=g.current_user)
        return jsonify(prf.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("submitting PRF")


@prfs_bp.post("/<int:prf_id>/approve")
@require_auth
@require_permission("APPROVE_PRF")
def approve_prf(prf_id: int):
    data = json_body()
    try:
        prf = prf_service.approve_prf(prf_id, user=g.current_user, comments=data.get("comments"))
        return jsonify(prf.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("approving PRF")


@prfs_bp.post("/<int:prf_id>/reject")
@require_auth
@require_permission("APPROVE_PRF")
def reject_prf(prf_id: int):
    data = json_body()
    try:
        prf = prf_service.reject_prf(
            prf_id,
            user=g.current_user,
            reason=data.get("reason") or data.get("comments"),
        )
        return jsonify(prf.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("rejecting PRF")


@prfs_bp.post("/<int:prf_id>/clone")
@require_auth
@require_permission("CREATE_PRF")
def clone_prf(prf_id: int):
    """Copy a PRF into a new DRAFT in the current open period."""
    try:
        prf = prf_service.clone_prf(prf_id, user=g.current_user)
        return jsonify(prf.to_dict(include_lines=True)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("cloning PRF")
