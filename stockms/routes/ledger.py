# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_permission
from ..services import ledger_service
from .helpers import pagination_args, paginated, unexpected_error, visible_location_ids

"""
Read-only view of the audit ledger. Non-global users only see events of
the locations they are assigned to; organisation-wide events (period
lifecycle, approvals) have no location and are shown to global users only.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_ledger_events_route():
    limit, offset = pagination_args()
    location_id = request.args.get("location_id", type=int)
    allowed = visible_location_ids()

    if allowed is not None and location_id is not None and location_id not in allowed:
        return jsonify({"error": "Location access denied", "code": "LOCATION_ACCESS_DENIED"}), 403

    try:
        events, total = ledger_service.list_ledger_events(
            location_id=location_id,
            location_ids=allowed,
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id", type=int),
            event_category=request.args.get("category"),
            limit=limit,
            offset=offset,
        )
        return paginated(events, total, limit, offset), 200
    except Exception:
        return unexpected_error("listing ledger events")
