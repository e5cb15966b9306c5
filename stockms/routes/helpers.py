# Overview: Shared request parsing and error-to-response mapping for API routes.

from flask import current_app, g, jsonify, request

from ..extensions import db
from ..services import access_service
from stockms.validation import AccessDeniedError, ConflictError, DomainError, NotFoundError, ValidationError


def error_response(exc: DomainError):
    """Map a service error to its HTTP status with {error, code, details}."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, AccessDeniedError):
        status = 403
    elif isinstance(exc, ConflictError):
        status = 409
    elif isinstance(exc, ValidationError):
        status = 400
    else:
        status = 400
    return jsonify(exc.to_dict()), status


def unexpected_error(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", action)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def pagination_args(default_limit: int = 100) -> tuple[int, int]:
    limit = request.args.get("limit", default_limit, type=int)
    offset = request.args.get("offset", 0, type=int)

    # Clamp limit
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500
    if offset < 0:
        offset = 0
    return limit, offset


def bool_arg(name: str) -> bool | None:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return value.lower() in ("1", "true", "yes")


def visible_location_ids() -> set[int] | None:
    """Locations the current user may see; None means all of them."""
    return access_service.accessible_location_ids(g.current_user)


def paginated(items, total: int, limit: int, offset: int, key: str = "items", **kwargs):
    return jsonify({
        key: [item.to_dict(**kwargs) for item in items],
        "count": len(items),
        "total": total,
        "limit": limit,
        "offset": offset,
    })
