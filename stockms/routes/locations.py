# Overview: Flask API routes scoped to one location: stock, deliveries, issues, POB and reconciliation.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission, require_location_access
from ..services import (
    access_service,
    delivery_service,
    inventory_service,
    issue_service,
    pob_service,
    reconciliation_service,
)
from stockms.validation import DomainError, parse_date
from .helpers import bool_arg, error_response, json_body, pagination_args, paginated, unexpected_error


locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
@require_auth
def list_locations():
    """Active locations the current user can see."""
    locations = access_service.list_accessible_locations(g.current_user)
    return jsonify({
        "locations": [
            {**loc.to_dict(), "access_level": access_service.get_location_access_level(g.current_user, loc.id)}
            for loc in locations
        ],
    }), 200


# =============================================================================
# STOCK
# =============================================================================

@locations_bp.get("/<int:location_id>/stock")
@require_auth
@require_permission("VIEW_STOCK")
@require_location_access()
def location_stock(location_id: int):
    """
    Current balances at a location.

    Query params:
    - category: Filter by item category
    - low_stock: true for balances under their min_stock
    - include_zero: false hides zero balances
    """
    rows = inventory_service.list_location_stock(
        location_id,
        category=request.args.get("category"),
        low_stock=bool(bool_arg("low_stock")),
        include_zero=bool_arg("include_zero") is not False,
    )
    return jsonify({
        "location_id": location_id,
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "total_value": float(inventory_service.location_stock_value(location_id)),
    }), 200


# =============================================================================
# DELIVERIES
# =============================================================================

@locations_bp.get("/<int:location_id>/deliveries")
@require_auth
@require_permission("VIEW_DOCUMENTS")
@require_location_access()
def list_location_deliveries(location_id: int):
    limit, offset = pagination_args()
    try:
        deliveries, total = delivery_service.list_deliveries(
            location_id=location_id,
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


@locations_bp.post("/<int:location_id>/deliveries")
@require_auth
@require_permission("POST_DELIVERIES")
@require_location_access(post=True)
def create_delivery(location_id: int):
    """
    Record a delivery (posted unless status is DRAFT).

    Request body:
    {
        "supplier_id": int,
        "delivery_date": "YYYY-MM-DD",
        "invoice_no": str,
        "delivery_note": str (optional),
        "po_id": int (optional),
        "status": "POSTED" | "DRAFT" (default POSTED),
        "lines": [{"item_id", "quantity", "unit_price", "po_line_id"?, "over_delivery_approved"?}]
    }

    Returns:
        201: Delivery created
        400: Invalid request, missing period prices, unapproved over-delivery
        403: Forbidden
        409: Duplicate invoice, no open period, closed PO
    """
    data = json_body()
    if data.get("supplier_id") is None:
        return jsonify({"error": "Missing required field: supplier_id"}), 400

    try:
        delivery = delivery_service.create_delivery(
            location_id=location_id,
            supplier_id=data["supplier_id"],
            delivery_date=data.get("delivery_date"),
            lines=data.get("lines"),
            user=g.current_user,
            invoice_no=data.get("invoice_no"),
            delivery_note=data.get("delivery_note"),
            po_id=data.get("po_id"),
            status=data.get("status") or delivery_service.STATUS_POSTED,
        )
        body = delivery.to_dict(include_lines=True)
        body["ncrs"] = [ncr.to_dict() for ncr in delivery.ncrs]
        return jsonify(body), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating delivery")


# =============================================================================
# ISSUES
# =============================================================================

@locations_bp.get("/<int:location_id>/issues")
@require_auth
@require_permission("VIEW_DOCUMENTS")
@require_location_access()
def list_location_issues(location_id: int):
    limit, offset = pagination_args()
    try:
        issues, total = issue_service.list_issues(
            location_id=location_id,
            period_id=request.args.get("period_id", type=int),
            cost_centre=request.args.get("cost_centre"),
            from_date=parse_date(request.args.get("from"), "from", required=False),
            to_date=parse_date(request.args.get("to"), "to", required=False),
            limit=limit,
            offset=offset,
        )
        return paginated(issues, total, limit, offset, key="issues"), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("listing issues")


@locations_bp.post("/<int:location_id>/issues")
@require_auth
@require_permission("POST_ISSUES")
@require_location_access(post=True)
def create_issue(location_id: int):
    """
    Issue stock to a cost centre.

    Request body:
    {
        "cost_centre": "FOOD" | "CLEAN" | "OTHER",
        "issue_date": "YYYY-MM-DD" (optional, default today),
        "notes": str (optional),
        "lines": [{"item_id", "quantity"}]
    }

    Returns:
        201: Issue posted
        400: Invalid request
        409: Insufficient stock (details list each short item), no open period
    """
    data = json_body()
    try:
        issue = issue_service.create_issue(
            location_id=location_id,
            cost_centre=data.get("cost_centre"),
            lines=data.get("lines"),
            user=g.current_user,
            issue_date=data.get("issue_date"),
            notes=data.get("notes"),
        )
        return jsonify(issue.to_dict(include_lines=True)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating issue")


# =============================================================================
# POB
# =============================================================================

@locations_bp.get("/<int:location_id>/pob")
@require_auth
@require_permission("VIEW_PERIODS")
@require_location_access()
def get_pob(location_id: int):
    try:
        return jsonify(pob_service.get_pob(location_id, request.args.get("period_id", type=int))), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading POB")


@locations_bp.post("/<int:location_id>/pob")
@require_auth
@require_permission("ENTER_POB")
@require_location_access(post=True)
def save_pob(location_id: int):
    """
    Request body:
    {
        "period_id": int (optional, default current OPEN period),
        "entries": [{"date": "YYYY-MM-DD", "crew_count": int, "extra_count": int}]
    }
    """
    data = json_body()
    try:
        rows = pob_service.save_pob_entries(
            location_id,
            data.get("entries"),
            user=g.current_user,
            period_id=data.get("period_id"),
        )
        return jsonify({"entries": [row.to_dict() for row in rows], "count": len(rows)}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("saving POB")


@locations_bp.patch("/<int:location_id>/pob/<int:pob_id>")
@require_auth
@require_permission("ENTER_POB")
@require_location_access(post=True)
def update_pob(location_id: int, pob_id: int):
    data = json_body()
    try:
        row = pob_service.update_pob_entry(
            pob_id,
            user=g.current_user,
            crew_count=data.get("crew_count"),
            extra_count=data.get("extra_count"),
        )
        return jsonify(row.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("updating POB")


# =============================================================================
# RECONCILIATION
# =============================================================================

@locations_bp.get("/<int:location_id>/reconciliations/<int:period_id>")
@require_auth
@require_permission("VIEW_PERIODS")
@require_location_access()
def get_reconciliation(location_id: int, period_id: int):
    try:
        return jsonify(reconciliation_service.get_or_build_reconciliation(period_id, location_id)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("loading reconciliation")


@locations_bp.patch("/<int:location_id>/reconciliations/<int:period_id>")
@require_auth
@require_permission("MANAGE_RECONCILIATION")
@require_location_access(post=True)
def save_reconciliation(location_id: int, period_id: int):
    """
    Request body (all optional):
    {"adjustments": number, "back_charges": number, "credits": number, "condemnations": number}
    """
    data = json_body()
    try:
        result = reconciliation_service.save_reconciliation(
            period_id,
            location_id,
            user=g.current_user,
            adjustments=data.get("adjustments"),
            back_charges=data.get("back_charges"),
            credits=data.get("credits"),
            condemnations=data.get("condemnations"),
        )
        return jsonify(result), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("saving reconciliation")
