from __future__ import annotations

from ..extensions import db
from stockms.time_utils import to_utc_z


LOCATION_TYPES = {"KITCHEN", "STORE", "CENTRAL", "WAREHOUSE"}
ITEM_UNITS = {"KG", "EA", "LTR", "BOX", "CASE", "PACK"}


class Location(db.Model):
    """
    A stock-holding site (kitchen, store, central store, warehouse).

    Every location keeps its own stock balances and its own per-period status.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.Index("ix_locations_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="STORE")
    address = db.Column(db.Text, nullable=True)
    timezone = db.Column(db.String(64), nullable=False, default="Asia/Riyadh")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "address": self.address,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name, "type": self.type}


class Item(db.Model):
    """Stock item master data (global across locations)."""
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    unit = db.Column(db.String(8), nullable=False, default="EA")
    category = db.Column(db.String(64), nullable=True)
    sub_category = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Item id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "category": self.category,
            "sub_category": self.sub_category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name, "unit": self.unit}


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    contact = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    vat_reg_no = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "contact": self.contact,
            "email": self.email,
            "phone": self.phone,
            "vat_reg_no": self.vat_reg_no,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "code": self.code, "name": self.name}
