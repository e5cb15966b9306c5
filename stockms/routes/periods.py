# Overview: Flask API routes for periods, locked prices and location close readiness.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission, require_location_access
from ..services import period_service, pricing_service
from stockms.validation import DomainError, parse_date
from .helpers import error_response, json_body, pagination_args, paginated, unexpected_error


periods_bp = Blueprint("periods", __name__, url_prefix="/api/periods")


@periods_bp.get("")
@require_auth
@require_permission("VIEW_PERIODS")
def list_periods():
    limit, offset = pagination_args()
    periods, total = period_service.list_periods(
        status=request.args.get("status"),
        limit=limit,
        offset=offset,
    )
    return paginated(periods, total, limit, offset, key="periods"), 200


@periods_bp.post("")
@require_auth
@require_permission("MANAGE_PERIODS")
def create_period():
    """
    Request body:
    {
        "name": str,
        "start_date": "YYYY-MM-DD",
        "end_date": "YYYY-MM-DD",
        "status": "DRAFT" | "OPEN" (optional, default DRAFT)
    }
    """
    data = json_body()
    try:
        period = period_service.create_period(
            name=data.get("name"),
            start_date=parse_date(data.get("start_date"), "start_date"),
            end_date=parse_date(data.get("end_date"), "end_date"),
            user=g.current_user,
            status=data.get("status") or period_service.PERIOD_STATUS_DRAFT,
        )
        return jsonify(period.to_dict(include_locations=True)), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("creating period")


@periods_bp.get("/current")
@require_auth
@require_permission("VIEW_PERIODS")
def current_period():
    period = period_service.get_current_period()
    if period is None:
        return jsonify({"period": None}), 200
    return jsonify({"period": period.to_dict(include_locations=True)}), 200


@periods_bp.get("/<int:period_id>")
@require_auth
@require_permission("VIEW_PERIODS")
def get_period(period_id: int):
    try:
        period = period_service.get_period(period_id)
        return jsonify(period.to_dict(include_locations=True)), 200
    except DomainError as e:
        return error_response(e)


@periods_bp.post("/<int:period_id>/open")
@require_auth
@require_permission("MANAGE_PERIODS")
def open_period(period_id: int):
    try:
        period = period_service.open_period(period_id, user=g.current_user)
        return jsonify(period.to_dict(include_locations=True)), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("opening period")


@periods_bp.post("/<int:period_id>/close")
@require_auth
@require_permission("CLOSE_PERIODS")
def request_close(period_id: int):
    """
    Request close approval. Every location must be READY.

    Returns:
        200: {period, approval}
        409: Not OPEN, locations not ready (details list them), approval pending
    """
    try:
        period, approval = period_service.request_period_close(period_id, user=g.current_user)
        return jsonify({
            "period": period.to_dict(include_locations=True),
            "approval": approval.to_dict(),
        }), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("requesting period close")


@periods_bp.post("/<int:period_id>/roll-forward")
@require_auth
@require_permission("MANAGE_PERIODS")
def roll_forward(period_id: int):
    """
    Request body (all optional):
    {"name": str, "end_date": "YYYY-MM-DD", "copy_prices": bool (default true)}
    """
    data = json_body()
    try:
        period, copied = period_service.roll_forward_period(
            period_id,
            user=g.current_user,
            name=data.get("name"),
            end_date=parse_date(data.get("end_date"), "end_date", required=False),
            copy_prices=data.get("copy_prices", True) is not False,
        )
        return jsonify({"period": period.to_dict(include_locations=True), "prices_copied": copied}), 201
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("rolling period forward")


# =============================================================================
# PRICES
# =============================================================================

@periods_bp.get("/<int:period_id>/prices")
@require_auth
@require_permission("VIEW_PERIODS")
def get_prices(period_id: int):
    try:
        prices = pricing_service.get_period_prices(period_id)
        return jsonify({"period_id": period_id, "prices": [p.to_dict() for p in prices], "count": len(prices)}), 200
    except DomainError as e:
        return error_response(e)


@periods_bp.post("/<int:period_id>/prices")
@require_auth
@require_permission("MANAGE_PRICES")
def set_prices(period_id: int):
    """
    Request body:
    {"prices": [{"item_id": int, "price": number}]}

    Returns:
        200: Prices saved
        400: Unknown or inactive item (INVALID_ITEMS)
        409: Period closed or item already priced (PRICES_LOCKED)
    """
    data = json_body()
    try:
        rows = pricing_service.set_period_prices(period_id, data.get("prices"), user=g.current_user)
        return jsonify({"period_id": period_id, "prices": [p.to_dict() for p in rows], "count": len(rows)}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("setting period prices")


@periods_bp.post("/<int:period_id>/prices/copy")
@require_auth
@require_permission("MANAGE_PRICES")
def copy_prices(period_id: int):
    try:
        count, source = pricing_service.copy_prices_from_previous(period_id, user=g.current_user)
        return jsonify({"period_id": period_id, "copied": count, "source_period_id": source.id}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("copying period prices")


# =============================================================================
# LOCATION READINESS
# =============================================================================

@periods_bp.post("/<int:period_id>/locations/<int:location_id>/ready")
@require_auth
@require_permission("MANAGE_RECONCILIATION")
@require_location_access(post=True)
def mark_ready(period_id: int, location_id: int):
    try:
        pl = period_service.mark_location_ready(period_id, location_id, user=g.current_user)
        return jsonify(pl.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("marking location ready")


@periods_bp.post("/<int:period_id>/locations/<int:location_id>/unready")
@require_auth
@require_permission("MANAGE_RECONCILIATION")
@require_location_access(post=True)
def mark_unready(period_id: int, location_id: int):
    try:
        pl = period_service.mark_location_unready(period_id, location_id, user=g.current_user)
        return jsonify(pl.to_dict()), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("marking location unready")
