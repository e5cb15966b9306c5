# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, access_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session token.

    Sets on flask.g:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.token: The plaintext token (logout revokes it)

    SECURITY: Returns 401 if the header is missing, or the token is invalid,
    expired, idle or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission from the user's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not access_service.user_has_permission(g.current_user, permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    """Require any of the specified permissions."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user_permissions = access_service.get_user_permissions(g.current_user)
            if not any(code in user_permissions for code in permission_codes):
                return jsonify({
                    "error": "Permission denied",
                    "code": "PERMISSION_DENIED",
                    "required_permissions": list(permission_codes),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_location_access(*, post: bool = False, arg: str = "location_id"):
    """
    Require access to the location named by the URL argument `arg`.

    post=True additionally needs a POST or MANAGE grant (ADMIN and
    SUPERVISOR pass implicitly).
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            location_id = kwargs.get(arg)
            if location_id is not None:
                try:
                    access_service.require_location_access(g.current_user, location_id, post=post)
                except access_service.LocationAccessDeniedError as e:
                    return jsonify(e.to_dict()), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
