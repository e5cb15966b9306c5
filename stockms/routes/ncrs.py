# Overview: Flask API routes for non-conformance reports (NCRs).

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, ncr_service
from stockms.validation import DomainError
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error, visible_location_ids


ncrs_bp = Blueprint("ncrs", __name__, url_prefix="/api/ncrs")


@ncrs_bp.get("")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def list_ncrs():
    """
    Query params:
    - location_id, status, type (MANUAL | PRICE_VARIANCE), delivery_id, period_id
    """
    limit, offset = pagination_args()
    try:
        ncrs, total = ncr_service.list_ncrs(
            location_id=request.args.get("location_id", type=int),
            location_ids=visible_location_ids(),
            status=request.args.get("status"),
            ncr_type=request.args.get("type"),
            delivery_id=request.args.get("delivery_id", type=int),
            period_id=request.args.get("period_id", type=int),
            limit=limit,
            offset=offset,
        )
        return paginated(ncrs, total, limit, offset, key="ncrs"), 200
    except DomainError as e:
        return error_response(e)


@ncrs_bp.post("")
@require_auth
@require_permission("MANAGE_NCRS")
def create_ncr():
    """
    Raise a manual NCR.

    Request body:
    {
        "location_id": int,
        "reason": str,
        "delivery_id": int (optional),
        "item_id": int (optional),
        "quantity": number (optional),
        "value": number (optional)
    }
    """
    data = json_body()
    if data.get("location_id") is None:
        return jsonify({"error": "Missing required field: location_id"}), 400

    try:
        access_service.require_location_access(g.current_user, data["location_id"], post=True)
        ncr = ncr_service.create_ncr(
            location_id=data["location_id"],
            reason=data.get("reason"),
            user=g.current_user,
            delivery_id=data.get("delivery_id"),
            item_id=data.get("item_id"),
            quantity=data.get("quantity"),
            value=data.get("value", 0),
        )
        return jsonify(ncr.to_dict()), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating NCR")


@ncrs_bp.get("/summary")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def ncr_summary():
    """
    Period NCR totals split into credited, losses, pending and open.

    Query params:
    - period_id (required), location_id (optional)
    """
    period_id = request.args.get("period_id", type=int)
    if not period_id:
        return jsonify({"error": "period_id is required"}), 400
    location_id = request.args.get("location_id", type=int)
    try:
        if location_id:
            access_service.require_location_access(g.current_user, location_id)
        return jsonify(ncr_service.ncr_period_summary(period_id, location_id)), 200
    except DomainError as e:
        return error_response(e)


@ncrs_bp.get("/<int:ncr_id>")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def get_ncr(ncr_id: int):
    try:
        ncr = ncr_service.get_ncr(ncr_id)
        access_service.require_location_access(g.current_user, ncr.location_id)
        return jsonify(ncr.to_dict()), 200
    except DomainError as e:
        return error_response(e)


@ncrs_bp.patch("/<int:ncr_id>")
@require_auth
@require_permission("MANAGE_NCRS")
def update_ncr(ncr_id: int):
    """
    Request body:
    {
        "status": "OPEN" | "SENT" | "CREDITED" | "REJECTED" | "RESOLVED",
        "resolution_notes": str (optional),
        "financial_impact": "CREDIT" | "LOSS" (required for RESOLVED)
    }
    """
    data = json_body()
    try:
        ncr = ncr_service.get_ncr(ncr_id)
        access_service.require_location_access(g.current_user, ncr.location_id, post=True)
        ncr = ncr_service.update_ncr_status(
            ncr_id,
            user=g.current_user,
            status=data.get("status"),
            resolution_notes=data.get("resolution_notes"),
            financial_impact=data.get("financial_impact"),
        )
        return jsonify(ncr.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("updating NCR")
