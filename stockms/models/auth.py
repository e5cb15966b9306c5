from __future__ import annotations

from ..extensions import db
from stockms.time_utils import to_utc_z


ROLE_OPERATOR = "OPERATOR"
ROLE_SUPERVISOR = "SUPERVISOR"
ROLE_ADMIN = "ADMIN"
ROLE_PROCUREMENT_SPECIALIST = "PROCUREMENT_SPECIALIST"

ROLES = {ROLE_OPERATOR, ROLE_SUPERVISOR, ROLE_ADMIN, ROLE_PROCUREMENT_SPECIALIST}

ACCESS_VIEW = "VIEW"
ACCESS_POST = "POST"
ACCESS_MANAGE = "MANAGE"

ACCESS_LEVELS = {ACCESS_VIEW, ACCESS_POST, ACCESS_MANAGE}


class User(db.Model):
    """
    User accounts for authentication and attribution.

    A user carries exactly one role. ADMIN and SUPERVISOR see every location;
    OPERATOR and PROCUREMENT_SPECIALIST are limited to their UserLocation rows.

    WHY: Every posting, approval and close must be attributable. No shared logins.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default=ROLE_OPERATOR)

    default_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    default_location = db.relationship("Location", foreign_keys=[default_location_id])

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_supervisor_or_admin(self) -> bool:
        return self.role in (ROLE_SUPERVISOR, ROLE_ADMIN)

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "default_location_id": self.default_location_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "username": self.username, "full_name": self.full_name}


class UserLocation(db.Model):
    """
    Per-user access grant to a location.

    access_level:
    - VIEW: read-only
    - POST: may post deliveries, issues, POB and transfers
    - MANAGE: POST plus location-level housekeeping
    """
    __tablename__ = "user_locations"
    __table_args__ = (
        db.UniqueConstraint("user_id", "location_id", name="uq_user_locations_user_location"),
        db.Index("ix_user_locations_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    access_level = db.Column(db.String(16), nullable=False, default=ACCESS_VIEW)
    assigned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("location_access", lazy=True))
    location = db.relationship("Location", backref=db.backref("user_access", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "location_id": self.location_id,
            "access_level": self.access_level,
            "assigned_by_user_id": self.assigned_by_user_id,
            "assigned_at": to_utc_z(self.assigned_at),
        }


class SessionToken(db.Model):
    """
    Session tokens for bearer authentication.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute and idle timeouts (see Config)
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
