# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import po_service
from stockms.validation import DomainError
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _po_body(po) -> dict:
    body = po.to_dict(include_lines=True)
    body["fulfillment"] = po_service.line_fulfillment(po)
    body["fulfillment_percent"] = po_service.fulfillment_percent(po)
    return body


def _header_changes(data: dict) -> dict:
    return {key: data[key] for key in po_service.HEADER_FIELDS if key in data}


@pos_bp.get("")
@require_auth
@require_permission("VIEW_PROCUREMENT")
def list_pos():
    """
    Query params:
    - status: OPEN | CLOSED
    - supplier_id, prf_id, limit, offset
    """
    limit, offset = pagination_args()
    pos, total = po_service.list_pos(
        status=request.args.get("status"),
        supplier_id=request.args.get("supplier_id", type=int),
        prf_id=request.args.get("prf_id", type=int),
        limit=limit,
        offset=offset,
    )
    return paginated(pos, total, limit, offset, key="purchase_orders"), 200


@pos_bp.get("/open")
@require_auth
@require_permission("VIEW_PROCUREMENT")
def list_open_pos():
    """OPEN POs with remaining quantities, optionally for one supplier."""
    pos = po_service.list_open_pos(request.args.get("supplier_id", type=int))
    return jsonify({"purchase_orders": [_po_body(po) for po in pos], "count": len(pos)}), 200


@pos_bp.post("")
@require_auth
@require_permission("MANAGE_PO")
def create_po():
    """
    Raise a PO against an APPROVED PRF.

    Request body:
    {
        "prf_id": int,
        "supplier_id": int,
        "ship_to_location_id": int (optional),
        "quotation_ref", "ship_to_contact", "ship_to_phone", "payment_terms",
        "delivery_terms", "terms_conditions", "notes": str (optional),
        "duration_days": int (optional),
        "lines": [{"item_id"?, "item_code"?, "item_description", "unit", "quantity",
                   "unit_price", "discount_percent"?, "vat_percent"?}]
    }

    Returns:
        201: PO created
        400: Invalid request, inactive supplier
        404: PRF or supplier not found
        409: PRF not approved, PRF already has a PO
    """
    data = json_body()
    try:
        po = po_service.create_po(
            prf_id=data.get("prf_id"),
            supplier_id=data.get("supplier_id"),
            lines=data.get("lines"),
            user=g.current_user,
            **_header_changes(data),
        )
        return jsonify(_po_body(po)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating PO")


@pos_bp.get("/<int:po_id>")
@require_auth
@require_permission("VIEW_PROCUREMENT")
def get_po(po_id: int):
    try:
        po = po_service.get_po(po_id)
        body = _po_body(po)
        body["deliveries"] = [d.to_dict() for d in po.deliveries]
        return jsonify(body), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading PO")


@pos_bp.patch("/<int:po_id>")
@require_auth
@require_permission("MANAGE_PO")
def update_po(po_id: int):
    data = json_body()
    try:
        po = po_service.update_po(
            po_id,
            user=g.current_user,
            lines=data.get("lines"),
            supplier_id=data.get("supplier_id"),
            **_header_changes(data),
        )
        return jsonify(_po_body(po)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("updating PO")


@pos_bp.post("/<int:po_id>/close")
@require_auth
@require_permission("CLOSE_PO")
def close_po(po_id: int):
    """
    Request body:
    {"closure_reason": str (required when lines are unfulfilled), "notes": str (optional)}

    Returns:
        200: PO closed
        400: Reason required (details list unfulfilled lines and the fulfilled percent)
        409: Already closed
    """
    data = json_body()
    try:
        po = po_service.close_po(
            po_id,
            user=g.current_user,
            closure_reason=data.get("closure_reason"),
            notes=data.get("notes"),
        )
        return jsonify(_po_body(po)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("closing PO")
