from __future__ import annotations

from ..extensions import db
from stockms.money import as_float
from stockms.time_utils import to_utc_z, to_iso_date


class Period(db.Model):
    """
    Accounting window.

    LIFECYCLE: DRAFT -> OPEN -> PENDING_CLOSE -> APPROVED -> CLOSED
    PENDING_CLOSE falls back to OPEN when the close approval is rejected.
    At most one period is OPEN at a time.
    """
    __tablename__ = "periods"
    __table_args__ = (
        db.Index("ix_periods_status", "status"),
        db.Index("ix_periods_dates", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="DRAFT")

    approval_id = db.Column(db.Integer, db.ForeignKey("approvals.id", use_alter=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    approval = db.relationship("Approval", foreign_keys=[approval_id])
    period_locations = db.relationship(
        "PeriodLocation",
        backref="period",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PeriodLocation.location_id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Period id={self.id} name={self.name!r} status={self.status}>"

    def contains(self, d) -> bool:
        return self.start_date <= d <= self.end_date

    def to_dict(self, include_locations: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "status": self.status,
            "approval_id": self.approval_id,
            "created_by_user_id": self.created_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_locations:
            data["period_locations"] = [pl.to_dict() for pl in self.period_locations]
        return data


class PeriodLocation(db.Model):
    """
    Per-location status within a period: OPEN -> READY -> CLOSED.

    snapshot_data holds the frozen stock valuation captured at close.
    """
    __tablename__ = "period_locations"
    __table_args__ = (
        db.UniqueConstraint("period_id", "location_id", name="uq_period_locations_period_location"),
        db.Index("ix_period_locations_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="OPEN")

    opening_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    closing_value = db.Column(db.Numeric(15, 2), nullable=True)
    snapshot_data = db.Column(db.JSON, nullable=True)

    ready_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ready_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period_id": self.period_id,
            "location_id": self.location_id,
            "location": self.location.to_summary() if self.location else None,
            "status": self.status,
            "opening_value": as_float(self.opening_value),
            "closing_value": as_float(self.closing_value),
            "snapshot_data": self.snapshot_data,
            "ready_at": to_utc_z(self.ready_at),
            "ready_by_user_id": self.ready_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
        }


class ItemPrice(db.Model):
    """
    Locked price of an item within a period.

    One row per (item, period). Delivery prices are compared against it
    to detect variances.
    """
    __tablename__ = "item_prices"
    __table_args__ = (
        db.UniqueConstraint("item_id", "period_id", name="uq_item_prices_item_period"),
        db.Index("ix_item_prices_period", "period_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False)
    price = db.Column(db.Numeric(15, 4), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="SAR")

    set_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    set_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    period = db.relationship("Period", backref=db.backref("item_prices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "period_id": self.period_id,
            "price": as_float(self.price),
            "currency": self.currency,
            "set_by_user_id": self.set_by_user_id,
            "set_at": to_utc_z(self.set_at),
        }
