"""Initial core schema: catalog, batches, sales, cash drawer, customers, stats, ledger

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False, server_default="u"),
        sa.Column("price", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("track_stock", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("stock", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("conversion_factor", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("requires_prescription", sa.Boolean(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["parent_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_kind", ["kind"], unique=False)
        batch_op.create_index("ix_products_kind_active", ["kind", "is_active"], unique=False)
        batch_op.create_index("ix_products_parent_id", ["parent_id"], unique=False)

    op.create_table(
        "recipe_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("ingredient_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["ingredient_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "ingredient_id", name="uq_recipe_components_product_ingredient"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("recipe_components", schema=None) as batch_op:
        batch_op.create_index("ix_recipe_components_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_recipe_components_ingredient_id", ["ingredient_id"], unique=False)

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("cost", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_synthetic", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("batches", schema=None) as batch_op:
        batch_op.create_index("ix_batches_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_batches_is_active", ["is_active"], unique=False)
        batch_op.create_index("ix_batches_product_active_created", ["product_id", "is_active", "created_at"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("debt", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_limit", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="POSTED"),
        sa.Column("fulfillment_status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("total", sa.Float(), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("amount_tendered", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("balance_due", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("change_due", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("device_id", sa.String(64), nullable=True),
        sa.Column("prescription_details", sa.JSON(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_payment_method", ["payment_method"], unique=False)
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_status_occurred", ["status", "occurred_at"], unique=False)

    op.create_table(
        "sale_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("stock_product_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit_price", sa.Float(), nullable=False),
        sa.Column("unit_cost", sa.Float(), nullable=True),
        sa.Column("line_total", sa.Float(), nullable=False),
        sa.Column("stock_deducted", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["stock_product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_lines", schema=None) as batch_op:
        batch_op.create_index("ix_sale_lines_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_lines_product_id", ["product_id"], unique=False)

    op.create_table(
        "sale_batch_uses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_line_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("ingredient_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("cost", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["sale_line_id"], ["sale_lines.id"]),
        sa.ForeignKeyConstraint(["ingredient_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_batch_uses", schema=None) as batch_op:
        batch_op.create_index("ix_sale_batch_uses_sale_line_id", ["sale_line_id"], unique=False)
        batch_op.create_index("ix_sale_batch_uses_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_sale_batch_uses_ingredient_id", ["ingredient_id"], unique=False)

    op.create_table(
        "cash_drawer_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(64), nullable=False, server_default="default"),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("opening_float", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("auto_opened", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("cash_in_total", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_out_total", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closing_count", sa.Float(), nullable=True),
        sa.Column("cash_sales_total", sa.Float(), nullable=True),
        sa.Column("credit_payments_total", sa.Float(), nullable=True),
        sa.Column("expected_cash", sa.Float(), nullable=True),
        sa.Column("variance", sa.Float(), nullable=True),
        sa.Column("audit_comment", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_drawer_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_cash_drawer_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_cash_drawer_sessions_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_cash_drawer_sessions_device_opened", ["device_id", "opened_at"], unique=False)
    op.create_index(
        "uq_cash_drawer_sessions_device_open",
        "cash_drawer_sessions",
        ["device_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "cash_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(8), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("memo", sa.String(255), nullable=False, server_default=""),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["cash_drawer_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_movements", schema=None) as batch_op:
        batch_op.create_index("ix_cash_movements_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_cash_movements_session_occurred", ["session_id", "occurred_at"], unique=False)

    op.create_table(
        "customer_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("cash_movement_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("debt_before", sa.Float(), nullable=False),
        sa.Column("debt_after", sa.Float(), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["cash_drawer_sessions.id"]),
        sa.ForeignKeyConstraint(["cash_movement_id"], ["cash_movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_payments", schema=None) as batch_op:
        batch_op.create_index("ix_customer_payments_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_customer_payments_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_customer_payments_occurred_at", ["occurred_at"], unique=False)

    op.create_table(
        "running_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("revenue", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("net_profit", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("orders", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_sold", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("inventory_valuation", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rebuilt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "daily_stats",
        sa.Column("day", sa.String(10), nullable=False),
        sa.Column("revenue", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("profit", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("orders", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_sold", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("day"),
    )

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(64), nullable=True),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_events", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_ledger_events_event_category", ["event_category"], unique=False)
        batch_op.create_index("ix_ledger_events_entity_id", ["entity_id"], unique=False)
        batch_op.create_index("ix_ledger_events_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_ledger_events_session_id", ["session_id"], unique=False)
        batch_op.create_index("ix_ledger_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_ledger_events_category_occurred", ["event_category", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("ledger_events")
    op.drop_table("daily_stats")
    op.drop_table("running_stats")
    op.drop_table("customer_payments")
    op.drop_table("cash_movements")
    op.drop_index("uq_cash_drawer_sessions_device_open", table_name="cash_drawer_sessions")
    op.drop_table("cash_drawer_sessions")
    op.drop_table("sale_batch_uses")
    op.drop_table("sale_lines")
    op.drop_table("sales")
    op.drop_table("customers")
    op.drop_table("batches")
    op.drop_table("recipe_components")
    op.drop_table("products")
