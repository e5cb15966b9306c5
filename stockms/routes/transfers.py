# Overview: Flask API routes for inter-location transfers; parses input and returns JSON responses.
"""
Inter-location transfer API routes.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, transfer_service
from stockms.validation import DomainError
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error, visible_location_ids


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.get("")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def list_transfers():
    """
    Query params:
    - location_id, direction ("in" | "out"), status, limit, offset
    """
    limit, offset = pagination_args()
    try:
        transfers, total = transfer_service.list_transfers(
            location_id=request.args.get("location_id", type=int),
            location_ids=visible_location_ids(),
            direction=request.args.get("direction"),
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return paginated(transfers, total, limit, offset, key="transfers"), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("listing transfers")


@transfers_bp.route("", methods=["POST"])
@require_auth
@require_permission("CREATE_TRANSFERS")
def create_transfer():
    """
    Create a transfer request.

    Request body:
    {
        "from_location_id": int,
        "to_location_id": int,
        "notes": str (optional),
        "request_date": "YYYY-MM-DD" (optional),
        "lines": [{"item_id": int, "quantity": number}]
    }

    Returns:
        201: Transfer created, awaiting approval
        400: Invalid request
        403: No POST access at the source location
        409: Insufficient source stock, no open period
    """
    data = json_body()
    missing = [f for f in ("from_location_id", "to_location_id") if data.get(f) is None]
    if missing:
        return jsonify({"error": f"Missing required field: {missing[0]}"}), 400

    try:
        transfer = transfer_service.create_transfer(
            from_location_id=data["from_location_id"],
            to_location_id=data["to_location_id"],
            lines=data.get("lines"),
            user=g.current_user,
            notes=data.get("notes"),
            request_date=data.get("request_date"),
        )
        return jsonify(transfer.to_dict(include_lines=True)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating transfer")


@transfers_bp.get("/<int:transfer_id>")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
        user = g.current_user
        if not (
            access_service.can_view_location(user, transfer.from_location_id)
            or access_service.can_view_location(user, transfer.to_location_id)
        ):
            return jsonify({"error": "Location access denied", "code": "LOCATION_ACCESS_DENIED"}), 403
        return jsonify(transfer.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading transfer")


@transfers_bp.route("/<int:transfer_id>/approve", methods=["POST"])
@require_auth
@require_permission("APPROVE_TRANSFERS")
def approve_transfer(transfer_id: int):
    """
    Approve a transfer and move the stock.

    Returns:
        200: Transfer completed
        404: Transfer not found
        409: Not pending, insufficient source stock
    """
    data = json_body()
    try:
        transfer = transfer_service.approve_transfer(
            transfer_id,
            user=g.current_user,
            comments=data.get("comments"),
        )
        return jsonify(transfer.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("approving transfer")


@transfers_bp.route("/<int:transfer_id>/reject", methods=["POST"])
@require_auth
@require_permission("APPROVE_TRANSFERS")
def reject_transfer(transfer_id: int):
    data = json_body()
    try:
        transfer = transfer_service.reject_transfer(
            transfer_id,
            user=g.current_user,
            reason=data.get("reason") or data.get("comments"),
        )
        return jsonify(transfer.to_dict(include_lines=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("rejecting transfer")
