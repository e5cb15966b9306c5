from __future__ import annotations

from ..extensions import db
from stockms.time_utils import to_utc_z


class Approval(db.Model):
    """
    Polymorphic approval record.

    entity_type + entity_id point at the gated document (PRF, PO,
    PERIOD_CLOSE, TRANSFER). There is exactly one record per entity; a
    rejected record is re-armed to PENDING when approval is requested again.
    """
    __tablename__ = "approvals"
    __table_args__ = (
        db.UniqueConstraint("entity_type", "entity_id", name="uq_approvals_entity"),
        db.Index("ix_approvals_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(16), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comments = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Approval id={self.id} {self.entity_type}:{self.entity_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_by": self.requested_by.to_summary() if self.requested_by else None,
            "requested_at": to_utc_z(self.requested_at),
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "comments": self.comments,
        }
