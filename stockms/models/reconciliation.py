from __future__ import annotations

from ..extensions import db
from stockms.money import as_float
from stockms.time_utils import to_utc_z, to_iso_date


class POB(db.Model):
    """Persons on Board: daily headcount at a location, used for cost per manday."""
    __tablename__ = "pob"
    __table_args__ = (
        db.UniqueConstraint("period_id", "location_id", "date", name="uq_pob_period_location_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    crew_count = db.Column(db.Integer, nullable=False, default=0)
    extra_count = db.Column(db.Integer, nullable=False, default=0)

    entered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def total_count(self) -> int:
        return (self.crew_count or 0) + (self.extra_count or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period_id": self.period_id,
            "location_id": self.location_id,
            "date": to_iso_date(self.date),
            "crew_count": self.crew_count,
            "extra_count": self.extra_count,
            "total_count": self.total_count,
            "entered_by_user_id": self.entered_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class Reconciliation(db.Model):
    """
    Period-end stock reconciliation of one location.

    Movement columns are computed from posted documents; adjustments,
    back_charges, credits and condemnations are entered by hand.
    """
    __tablename__ = "reconciliations"
    __table_args__ = (
        db.UniqueConstraint("period_id", "location_id", name="uq_reconciliations_period_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    opening_stock = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    receipts = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    transfers_in = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    transfers_out = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    issues = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    closing_stock = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    adjustments = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    back_charges = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    credits = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    condemnations = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period_id": self.period_id,
            "location_id": self.location_id,
            "opening_stock": as_float(self.opening_stock),
            "receipts": as_float(self.receipts),
            "transfers_in": as_float(self.transfers_in),
            "transfers_out": as_float(self.transfers_out),
            "issues": as_float(self.issues),
            "closing_stock": as_float(self.closing_stock),
            "adjustments": as_float(self.adjustments),
            "back_charges": as_float(self.back_charges),
            "credits": as_float(self.credits),
            "condemnations": as_float(self.condemnations),
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
