# Overview: Flask API routes for delivery documents; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import access_service, delivery_service
from stockms.validation import DomainError, parse_date
from .helpers import bool_arg, error_response, pagination_args, paginated, unexpected_error, visible_location_ids


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.get("")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def list_deliveries():
    """
    Deliveries across the user's locations.

    Query params: location_id, period_id, supplier_id, po_id, status,
    has_variance, from, to, limit, offset
    """
    limit, offset = pagination_args()
    try:
        deliveries, total = delivery_service.list_deliveries(
            location_id=request.args.get("location_id", type=int),
            location_ids=visible_location_ids(),
            period_id=request.args.get("period_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            po_id=request.args.get("po_id", type=int),
            status=request.args.get("status"),
            has_variance=bool_arg("has_variance"),
            from_date=parse_date(request.args.get("from"), "from", required=False),
            to_date=parse_date(request.args.get("to"), "to", required=False),
            limit=limit,
            offset=offset,
        )
        return paginated(deliveries, total, limit, offset, key="deliveries"), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("listing deliveries")


@deliveries_bp.get("/<int:delivery_id>")
@require_auth
@require_permission("VIEW_DOCUMENTS")
def get_delivery(delivery_id: int):
    try:
        delivery = delivery_service.get_delivery(delivery_id)
        access_service.require_location_access(g.current_user, delivery.location_id)
        body = delivery.to_dict(include_lines=True)
        body["ncrs"] = [ncr.to_dict() for ncr in delivery.ncrs]
        return jsonify(body), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading delivery")


@deliveries_bp.post("/<int:delivery_id>/post")
@require_auth
@require_permission("POST_DELIVERIES")
def post_delivery(delivery_id: int):
    """
    Post a DRAFT delivery.

    Returns:
        200: Delivery posted
        400: Missing period prices, unapproved over-delivery, no invoice
        404: Delivery not found
        409: Already posted, duplicate invoice, no open period
    """
    try:
        delivery = delivery_service.post_delivery(delivery_id, user=g.current_user)
        body = delivery.to_dict(include_lines=True)
        body["ncrs"] = [ncr.to_dict() for ncr in delivery.ncrs]
        return jsonify(body), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("posting delivery")


@deliveries_bp.delete("/<int:delivery_id>")
@require_auth
@require_permission("POST_DELIVERIES")
def delete_delivery(delivery_id: int):
    try:
        delivery_service.delete_delivery(delivery_id, user=g.current_user)
        return jsonify({"message": "Delivery deleted"}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("deleting delivery")
