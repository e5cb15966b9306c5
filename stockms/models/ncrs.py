from __future__ import annotations

from ..extensions import db
from stockms.money import as_float
from stockms.time_utils import to_utc_z


class NCR(db.Model):
    """
    Non-Conformance Report.

    PRICE_VARIANCE NCRs are raised automatically when a posted delivery line
    deviates from the period-locked price; MANUAL NCRs are raised by staff.

    LIFECYCLE: OPEN -> SENT -> CREDITED | REJECTED | RESOLVED
    financial_impact records whether the NCR ended as a supplier CREDIT or a LOSS.
    """
    __tablename__ = "ncrs"
    __table_args__ = (
        db.Index("ix_ncrs_location_status", "location_id", "status"),
        db.Index("ix_ncrs_delivery", "delivery_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ncr_no = db.Column(db.String(64), nullable=False, unique=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True)
    delivery_line_id = db.Column(db.Integer, db.ForeignKey("delivery_lines.id"), nullable=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)

    type = db.Column(db.String(24), nullable=False, default="MANUAL")  # MANUAL, PRICE_VARIANCE
    reason = db.Column(db.Text, nullable=False)
    quantity = db.Column(db.Numeric(15, 4), nullable=True)
    value = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)
    financial_impact = db.Column(db.String(8), nullable=False, default="NONE")  # NONE, CREDIT, LOSS
    auto_generated = db.Column(db.Boolean, nullable=False, default=False)

    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    location = db.relationship("Location")
    delivery = db.relationship("Delivery", backref=db.backref("ncrs", lazy=True))
    delivery_line = db.relationship("DeliveryLine")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ncr_no": self.ncr_no,
            "location_id": self.location_id,
            "delivery_id": self.delivery_id,
            "delivery_no": self.delivery.delivery_no if self.delivery else None,
            "delivery_line_id": self.delivery_line_id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "type": self.type,
            "reason": self.reason,
            "quantity": as_float(self.quantity),
            "value": as_float(self.value),
            "status": self.status,
            "financial_impact": self.financial_impact,
            "auto_generated": self.auto_generated,
            "resolution_notes": self.resolution_notes,
            "resolved_at": to_utc_z(self.resolved_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
