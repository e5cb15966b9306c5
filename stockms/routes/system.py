# Overview: Health endpoint reporting database reachability and period state.
"""
System health endpoints.

Used by load balancers and deployment checks; no authentication.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Location, User, SessionToken
from ..services import period_service
from stockms.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        location_count = db.session.query(Location).count()
        user_count = db.session.query(User).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "locations": location_count,
                "users": user_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    current = None
    if database["status"] == "healthy":
        period = period_service.get_current_period()
        current = period.to_dict() if period else None

    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database},
        "current_period": current,
    }), 200 if healthy else 503
