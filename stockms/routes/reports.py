# Overview: Flask API routes for cross-location views: consolidated stock and period reconciliations.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import inventory_service, reconciliation_service
from stockms.validation import DomainError
from .helpers import bool_arg, error_response, unexpected_error


reports_bp = Blueprint("reports", __name__, url_prefix="/api")


@reports_bp.get("/stock/consolidated")
@require_auth
@require_permission("VIEW_CONSOLIDATED")
def consolidated_stock():
    """
    Stock of every active item across all active locations.

    Query params:
    - category: Filter by item category
    - low_stock: true for items under min_stock at any location
    """
    try:
        report = inventory_service.consolidated_stock(
            category=request.args.get("category") or None,
            low_stock=bool(bool_arg("low_stock")),
        )
        return jsonify(report), 200
    except Exception:
        return unexpected_error("building consolidated stock")


@reports_bp.get("/reconciliations/consolidated")
@require_auth
@require_permission("VIEW_CONSOLIDATED")
def consolidated_reconciliation():
    period_id = request.args.get("period_id", type=int)
    if not period_id:
        return jsonify({"error": "period_id is required"}), 400

    try:
        return jsonify(reconciliation_service.consolidated_reconciliation(period_id)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("building consolidated reconciliation")
