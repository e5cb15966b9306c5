from __future__ import annotations

from ..extensions import db
from stockms.money import as_float, round2
from stockms.time_utils import to_utc_z


class LocationStock(db.Model):
    """
    Current stock balance of an item at a location.

    on_hand never goes negative. wac changes only when stock is received
    (delivery or incoming transfer); issues and outgoing transfers leave it alone.
    """
    __tablename__ = "location_stock"
    __table_args__ = (
        db.UniqueConstraint("location_id", "item_id", name="uq_location_stock_location_item"),
        db.CheckConstraint("on_hand >= 0", name="ck_location_stock_on_hand_non_negative"),
        db.Index("ix_location_stock_item", "item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    on_hand = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    wac = db.Column(db.Numeric(15, 4), nullable=False, default=0)

    min_stock = db.Column(db.Numeric(15, 4), nullable=True)
    max_stock = db.Column(db.Numeric(15, 4), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location", backref=db.backref("stock", lazy=True))
    item = db.relationship("Item")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def value(self):
        return round2((self.on_hand or 0) * (self.wac or 0))

    @property
    def is_low_stock(self) -> bool:
        return self.min_stock is not None and self.on_hand < self.min_stock

    def __repr__(self) -> str:
        return f"<LocationStock location_id={self.location_id} item_id={self.item_id} on_hand={self.on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "on_hand": as_float(self.on_hand),
            "wac": as_float(self.wac),
            "value": as_float(self.value),
            "min_stock": as_float(self.min_stock),
            "max_stock": as_float(self.max_stock),
            "is_low_stock": self.is_low_stock,
            "updated_at": to_utc_z(self.updated_at),
        }
