# Overview: Role permission checks and per-location access rules.

"""
Access Control

Two independent gates:
1. Role -> permission codes (stockms.permissions.ROLE_PERMISSIONS). Used by
   the require_permission decorator on every route.
2. Location scope. ADMIN and SUPERVISOR reach every location implicitly;
   OPERATOR and PROCUREMENT_SPECIALIST need a UserLocation grant. Viewing
   needs any grant, posting needs POST or MANAGE.

Fail closed: no grant means no access.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Location, User, UserLocation
from ..models.auth import ACCESS_MANAGE, ACCESS_POST, ROLE_ADMIN, ROLE_SUPERVISOR
from ..permissions import get_role_permissions
from stockms.validation import AccessDeniedError


class PermissionDeniedError(AccessDeniedError):
    """Raised when user lacks required permission."""
    default_code = "PERMISSION_DENIED"


class LocationAccessDeniedError(AccessDeniedError):
    default_code = "LOCATION_ACCESS_DENIED"


_IMPLICIT_ACCESS_ROLES = {ROLE_ADMIN, ROLE_SUPERVISOR}
_POST_LEVELS = {ACCESS_POST, ACCESS_MANAGE}


def get_user_permissions(user: User) -> set[str]:
    if not user or not user.is_active:
        return set()
    return get_role_permissions(user.role)


def user_has_permission(user: User, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def require_permission(user: User, permission_code: str) -> None:
    if not user_has_permission(user, permission_code):
        raise PermissionDeniedError(
            f"Role {getattr(user, 'role', None)} lacks permission {permission_code}",
            details={"required_permission": permission_code},
        )


def get_location_access_level(user: User, location_id: int) -> str | None:
    """Effective access level for the location, or None."""
    if user.role in _IMPLICIT_ACCESS_ROLES:
        return ACCESS_MANAGE
    grant = db.session.query(UserLocation).filter_by(user_id=user.id, location_id=location_id).first()
    return grant.access_level if grant else None


def accessible_location_ids(user: User) -> set[int] | None:
    """Location ids the user may view; None means every location."""
    if user.role in _IMPLICIT_ACCESS_ROLES:
        return None
    rows = db.session.query(UserLocation.location_id).filter_by(user_id=user.id).all()
    return {row[0] for row in rows}


def can_view_location(user: User, location_id: int) -> bool:
    return get_location_access_level(user, location_id) is not None


def can_post_at_location(user: User, location_id: int) -> bool:
    return get_location_access_level(user, location_id) in _POST_LEVELS


def require_location_access(user: User, location_id: int, *, post: bool = False) -> None:
    allowed = can_post_at_location(user, location_id) if post else can_view_location(user, location_id)
    if not allowed:
        action = "post at" if post else "view"
        raise LocationAccessDeniedError(
            f"User {user.username} may not {action} location {location_id}",
            details={"location_id": location_id, "required_level": "POST" if post else "VIEW"},
        )


def list_accessible_locations(user: User) -> list[Location]:
    query = db.session.query(Location).filter(Location.is_active.is_(True))
    ids = accessible_location_ids(user)
    if ids is not None:
        if not ids:
            return []
        query = query.filter(Location.id.in_(ids))
    return query.order_by(Location.name.asc()).all()
