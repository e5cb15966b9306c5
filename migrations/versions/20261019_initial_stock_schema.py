"""Initial stock management schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_locations_active", "locations", ["is_active"], unique=False)

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(8), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("sub_category", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_items_name", "items", ["name"], unique=False)
    op.create_index("ix_items_category_active", "items", ["category", "is_active"], unique=False)

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("vat_reg_no", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )

    # ------------------------------------------------------------------
    # Users, location grants, sessions
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("default_location_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["default_location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_username", ["username"], unique=True)
        batch_op.create_index("ix_users_role_active", ["role", "is_active"], unique=False)

    op.create_table(
        "user_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("access_level", sa.String(16), nullable=False),
        sa.Column("assigned_by_user_id", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["assigned_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "location_id", name="uq_user_locations_user_location"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("user_locations", schema=None) as batch_op:
        batch_op.create_index("ix_user_locations_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_user_locations_location", ["location_id"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_session_tokens_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_session_tokens_is_revoked", ["is_revoked"], unique=False)
        batch_op.create_index("ix_session_tokens_user_active", ["user_id", "is_revoked"], unique=False)

    # ------------------------------------------------------------------
    # Approvals and periods
    # ------------------------------------------------------------------
    op.create_table(
        "approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reviewed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_approvals_entity"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_approvals_status", "approvals", ["status"], unique=False)

    op.create_table(
        "periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("approval_id", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["approval_id"], ["approvals.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("periods", schema=None) as batch_op:
        batch_op.create_index("ix_periods_status", ["status"], unique=False)
        batch_op.create_index("ix_periods_dates", ["start_date", "end_date"], unique=False)

    op.create_table(
        "period_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("opening_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_value", sa.Numeric(15, 2), nullable=True),
        sa.Column("snapshot_data", sa.JSON(), nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ready_by_user_id", sa.Integer(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["ready_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("period_id", "location_id", name="uq_period_locations_period_location"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("period_locations", schema=None) as batch_op:
        batch_op.create_index("ix_period_locations_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_period_locations_location", ["location_id"], unique=False)

    op.create_table(
        "item_prices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(15, 4), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SAR"),
        sa.Column("set_by_user_id", sa.Integer(), nullable=True),
        sa.Column("set_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["set_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("item_id", "period_id", name="uq_item_prices_item_period"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("item_prices", schema=None) as batch_op:
        batch_op.create_index("ix_item_prices_item_id", ["item_id"], unique=False)
        batch_op.create_index("ix_item_prices_period", ["period_id"], unique=False)

    # ------------------------------------------------------------------
    # Stock balances
    # ------------------------------------------------------------------
    op.create_table(
        "location_stock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("on_hand", sa.Numeric(15, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("wac", sa.Numeric(15, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("min_stock", sa.Numeric(15, 4), nullable=True),
        sa.Column("max_stock", sa.Numeric(15, 4), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id", "item_id", name="uq_location_stock_location_item"),
        sa.CheckConstraint("on_hand >= 0", name="ck_location_stock_on_hand_non_negative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("location_stock", schema=None) as batch_op:
        batch_op.create_index("ix_location_stock_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_location_stock_item", ["item_id"], unique=False)

    # ------------------------------------------------------------------
    # Procurement
    # ------------------------------------------------------------------
    op.create_table(
        "prfs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prf_no", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("project_name", sa.String(200), nullable=True),
        sa.Column("prf_type", sa.String(16), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("is_reimbursable", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("contact_person_name", sa.String(100), nullable=True),
        sa.Column("contact_person_phone", sa.String(50), nullable=True),
        sa.Column("receiver_name", sa.String(100), nullable=True),
        sa.Column("receiver_phone", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=False),
        sa.Column("request_date", sa.Date(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prf_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("prfs", schema=None) as batch_op:
        batch_op.create_index("ix_prfs_status", ["status"], unique=False)
        batch_op.create_index("ix_prfs_location_status", ["location_id", "status"], unique=False)
        batch_op.create_index("ix_prfs_period", ["period_id"], unique=False)

    op.create_table(
        "prf_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prf_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("item_description", sa.String(500), nullable=False),
        sa.Column("cost_code", sa.String(50), nullable=True),
        sa.Column("unit", sa.String(8), nullable=False),
        sa.Column("required_qty", sa.Numeric(15, 4), nullable=False),
        sa.Column("estimated_price", sa.Numeric(15, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("line_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["prf_id"], ["prfs.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_prf_lines_prf_id", "prf_lines", ["prf_id"], unique=False)

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("po_no", sa.String(64), nullable=False),
        sa.Column("prf_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("quotation_ref", sa.String(100), nullable=True),
        sa.Column("ship_to_location_id", sa.Integer(), nullable=True),
        sa.Column("ship_to_contact", sa.String(100), nullable=True),
        sa.Column("ship_to_phone", sa.String(50), nullable=True),
        sa.Column("payment_terms", sa.String(200), nullable=True),
        sa.Column("delivery_terms", sa.String(200), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("terms_conditions", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_before_discount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_discount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_before_vat", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_vat", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["prf_id"], ["prfs.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["ship_to_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["closed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("po_no"),
        sa.UniqueConstraint("prf_id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("purchase_orders", schema=None) as batch_op:
        batch_op.create_index("ix_purchase_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_purchase_orders_supplier_status", ["supplier_id", "status"], unique=False)

    op.create_table(
        "po_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("po_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("item_code", sa.String(50), nullable=True),
        sa.Column("item_description", sa.String(500), nullable=False),
        sa.Column("unit", sa.String(8), nullable=False),
        sa.Column("quantity", sa.Numeric(15, 4), nullable=False),
        sa.Column("unit_price", sa.Numeric(15, 4), nullable=False),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_percent", sa.Numeric(5, 2), nullable=False, server_default=sa.text("15")),
        sa.Column("total_before_discount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_before_vat", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("vat_amount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_after_vat", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("delivered_qty", sa.Numeric(15, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["po_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("po_lines", schema=None) as batch_op:
        batch_op.create_index("ix_po_lines_po_id", ["po_id"], unique=False)
        batch_op.create_index("ix_po_lines_item_id", ["item_id"], unique=False)

    # ------------------------------------------------------------------
    # Stock documents
    # ------------------------------------------------------------------
    op.create_table(
        "deliveries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delivery_no", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("po_id", sa.Integer(), nullable=True),
        sa.Column("invoice_no", sa.String(128), nullable=True),
        sa.Column("delivery_note", sa.Text(), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("has_variance", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("posted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["po_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["posted_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("delivery_no"),
        sa.UniqueConstraint("invoice_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("deliveries", schema=None) as batch_op:
        batch_op.create_index("ix_deliveries_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_deliveries_status", ["status"], unique=False)
        batch_op.create_index("ix_deliveries_location_period", ["location_id", "period_id"], unique=False)
        batch_op.create_index("ix_deliveries_supplier", ["supplier_id"], unique=False)
        batch_op.create_index("ix_deliveries_po", ["po_id"], unique=False)

    op.create_table(
        "delivery_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("delivery_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("po_line_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Numeric(15, 4), nullable=False),
        sa.Column("unit_price", sa.Numeric(15, 4), nullable=False),
        sa.Column("period_price", sa.Numeric(15, 4), nullable=True),
        sa.Column("price_variance", sa.Numeric(15, 4), nullable=False, server_default=sa.text("0")),
        sa.Column("line_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("wac_before", sa.Numeric(15, 4), nullable=True),
        sa.Column("wac_after", sa.Numeric(15, 4), nullable=True),
        sa.Column("over_delivery_approved", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["po_line_id"], ["po_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("delivery_lines", schema=None) as batch_op:
        batch_op.create_index("ix_delivery_lines_delivery_id", ["delivery_id"], unique=False)
        batch_op.create_index("ix_delivery_lines_item_id", ["item_id"], unique=False)
        batch_op.create_index("ix_delivery_lines_po_line_id", ["po_line_id"], unique=False)

    op.create_table(
        "issues",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("issue_no", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("cost_centre", sa.String(16), nullable=False),
        sa.Column("total_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("issue_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("issues", schema=None) as batch_op:
        batch_op.create_index("ix_issues_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_issues_location_period", ["location_id", "period_id"], unique=False)

    op.create_table(
        "issue_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("issue_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Numeric(15, 4), nullable=False),
        sa.Column("wac_at_issue", sa.Numeric(15, 4), nullable=False),
        sa.Column("line_value", sa.Numeric(15, 2), nullable=False),
        sa.ForeignKeyConstraint(["issue_id"], ["issues.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("issue_lines", schema=None) as batch_op:
        batch_op.create_index("ix_issue_lines_issue_id", ["issue_id"], unique=False)
        batch_op.create_index("ix_issue_lines_item_id", ["item_id"], unique=False)

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transfer_no", sa.String(64), nullable=False),
        sa.Column("from_location_id", sa.Integer(), nullable=False),
        sa.Column("to_location_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("request_date", sa.Date(), nullable=False),
        sa.Column("transfer_date", sa.Date(), nullable=True),
        sa.Column("period_id", sa.Integer(), nullable=True),
        sa.Column("total_value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["requested_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transfer_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transfers", schema=None) as batch_op:
        batch_op.create_index("ix_transfers_status", ["status"], unique=False)
        batch_op.create_index("ix_transfers_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_transfers_from_status", ["from_location_id", "status"], unique=False)
        batch_op.create_index("ix_transfers_to_status", ["to_location_id", "status"], unique=False)

    op.create_table(
        "transfer_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transfer_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Numeric(15, 4), nullable=False),
        sa.Column("wac_at_transfer", sa.Numeric(15, 4), nullable=False),
        sa.Column("line_value", sa.Numeric(15, 2), nullable=False),
        sa.ForeignKeyConstraint(["transfer_id"], ["transfers.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transfer_lines", schema=None) as batch_op:
        batch_op.create_index("ix_transfer_lines_transfer_id", ["transfer_id"], unique=False)
        batch_op.create_index("ix_transfer_lines_item_id", ["item_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("scope", sa.String(64), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "scope", name="uq_doc_sequences_type_scope"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"], unique=False)

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_events", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_events_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_ledger_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_ledger_events_event_category", ["event_category"], unique=False)
        batch_op.create_index("ix_ledger_events_actor_user_id", ["actor_user_id"], unique=False)
        batch_op.create_index("ix_ledger_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_events_location_occurred", ["location_id", "occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_events_entity", ["entity_type", "entity_id"], unique=False)

    # ------------------------------------------------------------------
    # NCRs, POB, reconciliations
    # ------------------------------------------------------------------
    op.create_table(
        "ncrs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ncr_no", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("delivery_id", sa.Integer(), nullable=True),
        sa.Column("delivery_line_id", sa.Integer(), nullable=True),
        sa.Column("item_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(24), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Numeric(15, 4), nullable=True),
        sa.Column("value", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("financial_impact", sa.String(8), nullable=False, server_default="NONE"),
        sa.Column("auto_generated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["delivery_id"], ["deliveries.id"]),
        sa.ForeignKeyConstraint(["delivery_line_id"], ["delivery_lines.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ncr_no"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ncrs", schema=None) as batch_op:
        batch_op.create_index("ix_ncrs_status", ["status"], unique=False)
        batch_op.create_index("ix_ncrs_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_ncrs_location_status", ["location_id", "status"], unique=False)
        batch_op.create_index("ix_ncrs_delivery", ["delivery_id"], unique=False)

    op.create_table(
        "pob",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("crew_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("extra_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("entered_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["entered_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("period_id", "location_id", "date", name="uq_pob_period_location_date"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("pob", schema=None) as batch_op:
        batch_op.create_index("ix_pob_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_pob_location_id", ["location_id"], unique=False)

    op.create_table(
        "reconciliations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("opening_stock", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("receipts", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("transfers_in", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("transfers_out", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("issues", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_stock", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("adjustments", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("back_charges", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("credits", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("condemnations", sa.Numeric(15, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["period_id"], ["periods.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("period_id", "location_id", name="uq_reconciliations_period_location"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("reconciliations", schema=None) as batch_op:
        batch_op.create_index("ix_reconciliations_period_id", ["period_id"], unique=False)
        batch_op.create_index("ix_reconciliations_location_id", ["location_id"], unique=False)


def downgrade():
    for table in (
        "reconciliations",
        "pob",
        "ncrs",
        "ledger_events",
        "document_sequences",
        "transfer_lines",
        "transfers",
        "issue_lines",
        "issues",
        "delivery_lines",
        "deliveries",
        "po_lines",
        "purchase_orders",
        "prf_lines",
        "prfs",
        "location_stock",
        "item_prices",
        "period_locations",
        "periods",
        "approvals",
        "session_tokens",
        "user_locations",
        "users",
        "suppliers",
        "items",
        "locations",
    ):
        op.drop_table(table)
