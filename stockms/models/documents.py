from __future__ import annotations

from ..extensions import db
from stockms.money import as_float
from stockms.time_utils import to_utc_z, to_iso_date


# =============================================================================
# DELIVERIES
# =============================================================================

class Delivery(db.Model):
    """
    Goods received from a supplier at a location.

    LIFECYCLE:
    1. DRAFT: Saved, no stock effect
    2. POSTED: Stock received (WAC recomputed), PO quantities updated,
       price-variance NCRs raised

    IMMUTABLE: Once POSTED, the delivery cannot be edited or deleted.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.Index("ix_deliveries_location_period", "location_id", "period_id"),
        db.Index("ix_deliveries_supplier", "supplier_id"),
        db.Index("ix_deliveries_po", "po_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_no = db.Column(db.String(64), nullable=False, unique=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False, index=True)
    po_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True)

    # Supplier invoice number; required once posted, unique across deliveries
    invoice_no = db.Column(db.String(128), nullable=True, unique=True)
    delivery_note = db.Column(db.Text, nullable=True)
    delivery_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    has_variance = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    posted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")
    supplier = db.relationship("Supplier")
    period = db.relationship("Period")
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("deliveries", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "DeliveryLine",
        backref="delivery",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="DeliveryLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Delivery id={self.id} no={self.delivery_no!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "delivery_no": self.delivery_no,
            "location_id": self.location_id,
            "location": self.location.to_summary() if self.location else None,
            "supplier_id": self.supplier_id,
            "supplier": self.supplier.to_summary() if self.supplier else None,
            "period_id": self.period_id,
            "po_id": self.po_id,
            "invoice_no": self.invoice_no,
            "delivery_note": self.delivery_note,
            "delivery_date": to_iso_date(self.delivery_date),
            "status": self.status,
            "total_amount": as_float(self.total_amount),
            "has_variance": self.has_variance,
            "created_by_user_id": self.created_by_user_id,
            "posted_by_user_id": self.posted_by_user_id,
            "posted_at": to_utc_z(self.posted_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class DeliveryLine(db.Model):
    __tablename__ = "delivery_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    po_line_id = db.Column(db.Integer, db.ForeignKey("po_lines.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(15, 4), nullable=False)
    unit_price = db.Column(db.Numeric(15, 4), nullable=False)

    # Locked period price at the time of posting (None while DRAFT)
    period_price = db.Column(db.Numeric(15, 4), nullable=True)
    price_variance = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    line_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    # Stock cost before/after this line was received
    wac_before = db.Column(db.Numeric(15, 4), nullable=True)
    wac_after = db.Column(db.Numeric(15, 4), nullable=True)

    over_delivery_approved = db.Column(db.Boolean, nullable=False, default=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "po_line_id": self.po_line_id,
            "quantity": as_float(self.quantity),
            "unit_price": as_float(self.unit_price),
            "period_price": as_float(self.period_price),
            "price_variance": as_float(self.price_variance),
            "line_value": as_float(self.line_value),
            "wac_before": as_float(self.wac_before),
            "wac_after": as_float(self.wac_after),
            "over_delivery_approved": self.over_delivery_approved,
        }


# =============================================================================
# ISSUES
# =============================================================================

class Issue(db.Model):
    """
    Stock consumed at a location, charged to a cost centre.

    Issues capture the WAC at the moment of issue; they never change it.
    """
    __tablename__ = "issues"
    __table_args__ = (
        db.Index("ix_issues_location_period", "location_id", "period_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    issue_no = db.Column(db.String(64), nullable=False, unique=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=False, index=True)
    issue_date = db.Column(db.Date, nullable=False)

    # FOOD, CLEAN, OTHER
    cost_centre = db.Column(db.String(16), nullable=False)
    total_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "IssueLine",
        backref="issue",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="IssueLine.id",
    )

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "issue_no": self.issue_no,
            "location_id": self.location_id,
            "location": self.location.to_summary() if self.location else None,
            "period_id": self.period_id,
            "issue_date": to_iso_date(self.issue_date),
            "cost_centre": self.cost_centre,
            "total_value": as_float(self.total_value),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "posted_at": to_utc_z(self.posted_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class IssueLine(db.Model):
    __tablename__ = "issue_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(db.Integer, db.ForeignKey("issues.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(15, 4), nullable=False)
    wac_at_issue = db.Column(db.Numeric(15, 4), nullable=False)
    line_value = db.Column(db.Numeric(15, 2), nullable=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "quantity": as_float(self.quantity),
            "wac_at_issue": as_float(self.wac_at_issue),
            "line_value": as_float(self.line_value),
        }


# =============================================================================
# TRANSFERS
# =============================================================================

class Transfer(db.Model):
    """
    Inter-location stock transfer.

    LIFECYCLE:
    1. PENDING_APPROVAL: Created with lines, awaiting supervisor
    2. COMPLETED: Approved; stock moved at the source WAC
    3. REJECTED: Declined; no stock effect

    DRAFT and APPROVED exist as statuses but the approve action moves
    PENDING_APPROVAL straight to COMPLETED in one transaction.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_from_status", "from_location_id", "status"),
        db.Index("ix_transfers_to_status", "to_location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_no = db.Column(db.String(64), nullable=False, unique=True)

    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    status = db.Column(db.String(24), nullable=False, default="PENDING_APPROVAL", index=True)
    request_date = db.Column(db.Date, nullable=False)
    transfer_date = db.Column(db.Date, nullable=True)
    # Period the stock moved in; set on approval
    period_id = db.Column(db.Integer, db.ForeignKey("periods.id"), nullable=True, index=True)
    total_value = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    lines = db.relationship(
        "TransferLine",
        backref="transfer",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransferLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "transfer_no": self.transfer_no,
            "from_location_id": self.from_location_id,
            "from_location": self.from_location.to_summary() if self.from_location else None,
            "to_location_id": self.to_location_id,
            "to_location": self.to_location.to_summary() if self.to_location else None,
            "status": self.status,
            "request_date": to_iso_date(self.request_date),
            "transfer_date": to_iso_date(self.transfer_date),
            "period_id": self.period_id,
            "total_value": as_float(self.total_value),
            "notes": self.notes,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approval_date": to_utc_z(self.approval_date),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class TransferLine(db.Model):
    __tablename__ = "transfer_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(15, 4), nullable=False)

    # Source WAC; refreshed at approval time when stock actually moves
    wac_at_transfer = db.Column(db.Numeric(15, 4), nullable=False)
    line_value = db.Column(db.Numeric(15, 2), nullable=False)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "item_id": self.item_id,
            "item": self.item.to_summary() if self.item else None,
            "quantity": as_float(self.quantity),
            "wac_at_transfer": as_float(self.wac_at_transfer),
            "line_value": as_float(self.line_value),
        }


# =============================================================================
# DOCUMENT NUMBERING & AUDIT LEDGER
# =============================================================================

class DocumentSequence(db.Model):
    """
    Atomic document counters.

    scope partitions the counter: a year ("2026") for DEL/ISS/TRF/NCR,
    a location+date ("MAIN-KITCHEN-05-Mar-2026") for PRF/PO.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "scope", name="uq_doc_sequences_type_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    scope = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "scope": self.scope,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEvent(db.Model):
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_location_occurred", "location_id", "occurred_at"),
        db.Index("ix_ledger_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Null for organisation-wide events (period lifecycle, approvals)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. delivery.posted, period.closed
    event_category = db.Column(db.String(32), nullable=False, index=True)  # deliveries, issues, transfers, periods, ...

    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
