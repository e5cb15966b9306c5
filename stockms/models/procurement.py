from __future__ import annotations

from ..extensions import db
from stockms.money import as_float
from stockms.time_utils import to_utc_z, to_iso_date


class PRF(db.Model):
    """
    Purchase Request Form.

    LIFECYCLE: DRAFT -> PENDING -> APPROVED | REJECTED, then CLOSED once its
    purchase order is fully delivered or closed.
    """
    __tablename__ = "prfs"
    __table_args__ = (
        db.Index("ix_prfs_location_status", "location_id", "status"),
        db.Index("ix_prfs_period", "period_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prf_no = db.Column(db.String(64), nullable=False, unique=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False)

    project_name = db.Column(db.String(200), nullable=True)
    prf_type = db.Column(db.String(16), nullable=False, default="NORMAL")  # URGENT, DPA, NORMAL
    category = db.Column(db.String(16), nullable=False, default="MATERIAL")
    expected_delivery_date = db.Column(db.Date, nullable=True)
    is_reimbursable = db.Column(db.Boolean, nullable=False, default=False)
    contact_person_name = db.Column(db.String(100), nullable=True)
    contact_person_phone = db.Column(db.String(50), nullable=True)
    receiver_name = db.Column(db.String(100), nullable=True)
    receiver_phone = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    total_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    request_date = db.Column(db.Date, nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")
    period = db.relationship("Period")
    requester = db.relationship("User", foreign_keys=[requested_by_user_id])
    approver = db.relationship("User", foreign_keys=[approved_by_user_id])
    lines = db.relationship(
        "PRFLine",
        backref="prf",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PRFLine.line_number",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "prf_no": self.prf_no,
            "location_id": self.location_id,
            "location": self.location.to_summary() if self.location else None,
            "period_id": self.period_id,
            "project_name": self.project_name,
            "prf_type": self.prf_type,
            "category": self.category,
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "is_reimbursable": self.is_reimbursable,
            "contact_person_name": self.contact_person_name,
            "contact_person_phone": self.contact_person_phone,
            "receiver_name": self.receiver_name,
            "receiver_phone": self.receiver_phone,
            "notes": self.notes,
            "status": self.status,
            "total_value": as_float(self.total_value),
            "requested_by_user_id": self.requested_by_user_id,
            "request_date": to_iso_date(self.request_date),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_by_user_id": self.approved_by_user_id,
            "approval_date": to_utc_z(self.approval_date),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PRFLine(db.Model):
    __tablename__ = "prf_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prf_id = db.Column(db.Integer, db.ForeignKey("prfs.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # item_id is optional: PRFs may request things not yet in the item master
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)
    item_description = db.Column(db.String(500), nullable=False)
    cost_code = db.Column(db.String(50), nullable=True)
    unit = db.Column(db.String(8), nullable=False)
    required_qty = db.Column(db.Numeric(15, 4), nullable=False)
    estimated_price = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    line_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prf_id": self.prf_id,
            "line_number": self.line_number,
            "item_id": self.item_id,
            "item_description": self.item_description,
            "cost_code": self.cost_code,
            "unit": self.unit,
            "required_qty": as_float(self.required_qty),
            "estimated_price": as_float(self.estimated_price),
            "line_value": as_float(self.line_value),
            "notes": self.notes,
        }


class PurchaseOrder(db.Model):
    """
    Purchase order raised against an approved PRF.

    OPEN until every line is delivered (auto-close) or until closed manually
    with a reason for any unfulfilled quantity.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_no = db.Column(db.String(64), nullable=False, unique=True)

    # One PO per PRF
    prf_id = db.Column(db.Integer, db.ForeignKey("prfs.id"), nullable=True, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)

    quotation_ref = db.Column(db.String(100), nullable=True)
    ship_to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    ship_to_contact = db.Column(db.String(100), nullable=True)
    ship_to_phone = db.Column(db.String(50), nullable=True)
    payment_terms = db.Column(db.String(200), nullable=True)
    delivery_terms = db.Column(db.String(200), nullable=True)
    duration_days = db.Column(db.Integer, nullable=True)
    terms_conditions = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    total_before_discount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_discount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_before_vat = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_vat = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    prf = db.relationship("PRF", backref=db.backref("purchase_order", uselist=False))
    supplier = db.relationship("Supplier")
    ship_to_location = db.relationship("Location")
    lines = db.relationship(
        "POLine",
        backref="purchase_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="POLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "po_no": self.po_no,
            "prf_id": self.prf_id,
            "prf_no": self.prf.prf_no if self.prf else None,
            "supplier_id": self.supplier_id,
            "supplier": self.supplier.to_summary() if self.supplier else None,
            "quotation_ref": self.quotation_ref,
            "ship_to_location_id": self.ship_to_location_id,
            "ship_to_contact": self.ship_to_contact,
            "ship_to_phone": self.ship_to_phone,
            "payment_terms": self.payment_terms,
            "delivery_terms": self.delivery_terms,
            "duration_days": self.duration_days,
            "terms_conditions": self.terms_conditions,
            "notes": self.notes,
            "status": self.status,
            "total_before_discount": as_float(self.total_before_discount),
            "total_discount": as_float(self.total_discount),
            "total_before_vat": as_float(self.total_before_vat),
            "total_vat": as_float(self.total_vat),
            "total_amount": as_float(self.total_amount),
            "created_by_user_id": self.created_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class POLine(db.Model):
    __tablename__ = "po_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    po_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    item_code = db.Column(db.String(50), nullable=True)
    item_description = db.Column(db.String(500), nullable=False)
    unit = db.Column(db.String(8), nullable=False)

    quantity = db.Column(db.Numeric(15, 4), nullable=False)
    unit_price = db.Column(db.Numeric(15, 4), nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    vat_percent = db.Column(db.Numeric(5, 2), nullable=False, default=15)

    total_before_discount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_before_vat = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    vat_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_after_vat = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    # Running total of posted deliveries against this line
    delivered_qty = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    item = db.relationship("Item")

    @property
    def remaining_qty(self):
        remaining = (self.quantity or 0) - (self.delivered_qty or 0)
        return remaining if remaining > 0 else 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_id": self.po_id,
            "item_id": self.item_id,
            "item_code": self.item_code,
            "item_description": self.item_description,
            "unit": self.unit,
            "quantity": as_float(self.quantity),
            "unit_price": as_float(self.unit_price),
            "discount_percent": as_float(self.discount_percent),
            "vat_percent": as_float(self.vat_percent),
            "total_before_discount": as_float(self.total_before_discount),
            "discount_amount": as_float(self.discount_amount),
            "total_before_vat": as_float(self.total_before_vat),
            "vat_amount": as_float(self.vat_amount),
            "total_after_vat": as_float(self.total_after_vat),
            "delivered_qty": as_float(self.delivered_qty),
            "remaining_qty": as_float(self.remaining_qty),
            "notes": self.notes,
        }
