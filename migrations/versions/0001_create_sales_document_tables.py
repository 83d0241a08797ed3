"""create_sales_document_tables

Revision ID: 0001_sales_documents
Revises:
Create Date: 2024-01-02 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_sales_documents"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False)


QUOTATION_STATUS = ("PENDING", "APPROVED", "REJECTED", "CONVERTED", "EXPIRED")
ORDER_STATUS = ("NEW", "PROCESSING", "SHIPPED", "DELIVERED", "CANCELLED")


def _timestamps(updated: bool = True):
    cols = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return cols


def upgrade():
    # =========================
    # admin_user
    # =========================
    op.create_table(
        "admin_user",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="sales"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("api_token", sa.String(length=128), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_admin_user_email", "admin_user", ["email"], unique=True)
    op.create_index("ix_admin_user_api_token", "admin_user", ["api_token"], unique=True)

    # =========================
    # company / customer / address
    # =========================
    op.create_table(
        "company",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("registration_number", sa.String(length=60), nullable=False, unique=True),
        sa.Column("tax_id", sa.String(length=30), nullable=False, unique=True),
        sa.Column("industry", sa.String(length=60), nullable=True),
        sa.Column("email", sa.String(length=120), nullable=True),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("website", sa.String(length=160), nullable=True),
        sa.Column("contact_person", sa.String(length=120), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("province", sa.String(length=100), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("country", sa.String(length=60), nullable=False, server_default="Indonesia"),
        *_timestamps(),
    )

    op.create_table(
        "customer",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=False),
        sa.Column("type", _enum("customer_type", "B2B", "B2C"), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=True),
        sa.Column("npwp", sa.String(length=30), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"], name="fk_customer_company", ondelete="SET NULL"),
    )
    op.create_index("ix_customer_email", "customer", ["email"], unique=True)
    op.create_index("ix_customer_phone", "customer", ["phone"], unique=True)
    op.create_index("ix_customer_company_id", "customer", ["company_id"])

    op.create_table(
        "address",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("label", sa.String(length=60), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("province", sa.String(length=100), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=False),
        sa.Column("country", sa.String(length=60), nullable=False, server_default="Indonesia"),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_address_customer"),
    )
    op.create_index("ix_address_customer_id", "address", ["customer_id"])

    # =========================
    # product / pricing_tier
    # =========================
    op.create_table(
        "product",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False, unique=True),
        sa.Column("base_price", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "pricing_tier",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("min_quantity", sa.Integer(), nullable=False),
        sa.Column("max_quantity", sa.Integer(), nullable=True),
        sa.Column("price_per_unit", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], name="fk_pricing_tier_product", ondelete="CASCADE"),
        sa.CheckConstraint("min_quantity >= 1", name="ck_pricing_tier_min_quantity"),
        sa.CheckConstraint("max_quantity IS NULL OR max_quantity >= min_quantity", name="ck_pricing_tier_range"),
    )
    op.create_index("ix_pricing_tier_product_id", "pricing_tier", ["product_id"])

    # =========================
    # quotation
    # =========================
    op.create_table(
        "quotation",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("quotation_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("status", _enum("quotation_status", *QUOTATION_STATUS), nullable=False),
        sa.Column("subtotal", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("valid_until", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("shipping_address_id", sa.String(length=36), nullable=True),
        sa.Column("converted_order_id", sa.String(length=36), nullable=True, unique=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_quotation_customer"),
        sa.ForeignKeyConstraint(["shipping_address_id"], ["address.id"], name="fk_quotation_shipping_address"),
        sa.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_quotation_total"),
    )
    op.create_index("ix_quotation_customer_id", "quotation", ["customer_id"])
    op.create_index("ix_quotation_status", "quotation", ["status"])
    op.create_index("ix_quotation_valid_until", "quotation", ["valid_until"])
    op.create_index("ix_quotation_created_at", "quotation", ["created_at"])

    op.create_table(
        "quotation_item",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("quotation_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("total_price", sa.BigInteger(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotation.id"], name="fk_quotation_item_quotation", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], name="fk_quotation_item_product"),
    )
    op.create_index("ix_quotation_item_quotation_id", "quotation_item", ["quotation_id"])

    op.create_table(
        "quotation_status_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("quotation_id", sa.String(length=36), nullable=False),
        sa.Column("from_status", _enum("quotation_status", *QUOTATION_STATUS), nullable=True),
        sa.Column("to_status", _enum("quotation_status", *QUOTATION_STATUS), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("admin_user_id", sa.String(length=36), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotation.id"], name="fk_quotation_status_log_quotation", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["admin_user_id"], ["admin_user.id"], name="fk_quotation_status_log_admin_user", ondelete="SET NULL"),
    )
    op.create_index("ix_quotation_status_log_quotation_id", "quotation_status_log", ["quotation_id"])

    # =========================
    # sales_order
    # one per quotation
    # =========================
    op.create_table(
        "sales_order",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("quotation_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("status", _enum("order_status", *ORDER_STATUS), nullable=False),
        sa.Column("subtotal", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("shipping_address_id", sa.String(length=36), nullable=False),
        sa.Column("tracking_number", sa.String(length=120), nullable=True),
        sa.Column("shipped_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotation.id"], name="fk_sales_order_quotation"),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_sales_order_customer"),
        sa.ForeignKeyConstraint(["shipping_address_id"], ["address.id"], name="fk_sales_order_shipping_address"),
        sa.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_sales_order_total"),
    )
    op.create_index("ix_sales_order_customer_id", "sales_order", ["customer_id"])
    op.create_index("ix_sales_order_status", "sales_order", ["status"])
    op.create_index("ix_sales_order_created_at", "sales_order", ["created_at"])

    op.create_table(
        "order_item",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("product_sku", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("total_price", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["sales_order.id"], name="fk_order_item_order", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], name="fk_order_item_product"),
    )
    op.create_index("ix_order_item_order_id", "order_item", ["order_id"])

    op.create_table(
        "order_status_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("from_status", _enum("order_status", *ORDER_STATUS), nullable=True),
        sa.Column("to_status", _enum("order_status", *ORDER_STATUS), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("admin_user_id", sa.String(length=36), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["order_id"], ["sales_order.id"], name="fk_order_status_log_order", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["admin_user_id"], ["admin_user.id"], name="fk_order_status_log_admin_user", ondelete="SET NULL"),
    )
    op.create_index("ix_order_status_log_order_id", "order_status_log", ["order_id"])

    # =========================
    # invoice
    # one per sales_order
    # =========================
    op.create_table(
        "invoice",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("order_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("subtotal", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", _enum("invoice_status", "PENDING", "PAID", "OVERDUE", "CANCELLED"), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=True),
        sa.Column("tax_invoice_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["sales_order.id"], name="fk_invoice_order"),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_invoice_customer"),
        sa.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_invoice_total"),
    )
    op.create_index("ix_invoice_customer_id", "invoice", ["customer_id"])
    op.create_index("ix_invoice_status", "invoice", ["status"])
    op.create_index("ix_invoice_due_date", "invoice", ["due_date"])
    op.create_index("ix_invoice_created_at", "invoice", ["created_at"])

    op.create_table(
        "invoice_item",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("total_price", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoice.id"], name="fk_invoice_item_invoice", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], name="fk_invoice_item_product"),
    )
    op.create_index("ix_invoice_item_invoice_id", "invoice_item", ["invoice_id"])

    # =========================
    # communication / follow_up
    # =========================
    op.create_table(
        "communication",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("quotation_id", sa.String(length=36), nullable=True),
        sa.Column("order_id", sa.String(length=36), nullable=True),
        sa.Column("type", _enum("communication_type", "WHATSAPP", "PHONE", "EMAIL", "SMS"), nullable=False),
        sa.Column("direction", _enum("communication_direction", "INBOUND", "OUTBOUND"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", _enum("communication_status", "SENT", "DELIVERED", "READ", "FAILED"), nullable=False),
        sa.Column("external_id", sa.String(length=160), nullable=True),
        sa.Column("admin_user_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_communication_customer"),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotation.id"], name="fk_communication_quotation"),
        sa.ForeignKeyConstraint(["order_id"], ["sales_order.id"], name="fk_communication_order"),
        sa.ForeignKeyConstraint(["admin_user_id"], ["admin_user.id"], name="fk_communication_admin_user", ondelete="SET NULL"),
    )
    for col in ("customer_id", "quotation_id", "order_id", "external_id", "admin_user_id", "created_at"):
        op.create_index(f"ix_communication_{col}", "communication", [col])

    op.create_table(
        "follow_up",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("quotation_id", sa.String(length=36), nullable=True),
        sa.Column("order_id", sa.String(length=36), nullable=True),
        sa.Column(
            "type",
            _enum("follow_up_type", "QUOTATION_FOLLOW_UP", "PAYMENT_REMINDER", "ORDER_UPDATE", "GENERAL"),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("status", _enum("follow_up_status", "PENDING", "COMPLETED", "CANCELLED"), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("admin_user_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customer.id"], name="fk_follow_up_customer"),
        sa.ForeignKeyConstraint(["quotation_id"], ["quotation.id"], name="fk_follow_up_quotation"),
        sa.ForeignKeyConstraint(["order_id"], ["sales_order.id"], name="fk_follow_up_order"),
        sa.ForeignKeyConstraint(["admin_user_id"], ["admin_user.id"], name="fk_follow_up_admin_user", ondelete="SET NULL"),
    )
    for col in ("customer_id", "quotation_id", "order_id", "scheduled_at", "status", "admin_user_id", "created_at"):
        op.create_index(f"ix_follow_up_{col}", "follow_up", [col])


def downgrade():
    for table in (
        "follow_up",
        "communication",
        "invoice_item",
        "invoice",
        "order_status_log",
        "order_item",
        "sales_order",
        "quotation_status_log",
        "quotation_item",
        "quotation",
        "pricing_tier",
        "product",
        "address",
        "customer",
        "company",
        "admin_user",
    ):
        op.drop_table(table)
