# Overview: Service-layer operations for auth; password hashing, user creation and login checks.

"""
Authentication Service

WHY: Every posting, approval and period close must be attributable to a
named user. Passwords are hashed with bcrypt and checked for strength
before they are stored.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
- Location grants live in UserLocation (see access_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Location, User, UserLocation
from ..models.auth import ROLES, ACCESS_LEVELS, ROLE_OPERATOR
from stockms.time_utils import utcnow
from stockms.validation import ConflictError, NotFoundError, ValidationError


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    default_code = "WEAK_PASSWORD"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = ROLE_OPERATOR,
    full_name: str | None = None,
    default_location_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: unknown role, missing username/email, weak password
        ConflictError: username or email already taken
        NotFoundError: default location does not exist
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("username and email are required")
    if role not in ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(sorted(ROLES))}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists", code="DUPLICATE_USER")

    if default_location_id is not None and not db.session.get(Location, default_location_id):
        raise NotFoundError(f"Location {default_location_id} not found")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        default_location_id=default_location_id,
    )

    db.session.add(user)
    db.session.commit()
    return user


def grant_location_access(
    user_id: int,
    location_id: int,
    access_level: str,
    *,
    assigned_by_user_id: int | None = None,
) -> UserLocation:
    """Create or update the user's access grant for one location."""
    if access_level not in ACCESS_LEVELS:
        raise ValidationError(f"Invalid access_level. Must be one of: {', '.join(sorted(ACCESS_LEVELS))}")
    if not db.session.get(User, user_id):
        raise NotFoundError(f"User {user_id} not found")
    if not db.session.get(Location, location_id):
        raise NotFoundError(f"Location {location_id} not found")

    grant = db.session.query(UserLocation).filter_by(user_id=user_id, location_id=location_id).first()
    if grant is None:
        grant = UserLocation(user_id=user_id, location_id=location_id)
        db.session.add(grant)
    grant.access_level = access_level
    grant.assigned_by_user_id = assigned_by_user_id

    db.session.commit()
    return grant


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not username:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username.lower()),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
