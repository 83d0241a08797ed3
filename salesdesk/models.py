# salesdesk/models.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum

from .extensions import db


# Naive UTC everywhere: columns are "timestamp without time zone".
def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls, name: str):
    # Stored as plain strings (no native PG enum) so adding a member never needs ALTER TYPE.
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        validate_strings=True,
    )


# =========================================================
# Enums
# =========================================================
class CustomerType(enum.Enum):
    B2B = "B2B"
    B2C = "B2C"


class QuotationStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONVERTED = "CONVERTED"
    EXPIRED = "EXPIRED"


class OrderStatus(enum.Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class CommunicationType(enum.Enum):
    WHATSAPP = "WHATSAPP"
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    SMS = "SMS"


class CommunicationDirection(enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class CommunicationStatus(enum.Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class FollowUpType(enum.Enum):
    QUOTATION_FOLLOW_UP = "QUOTATION_FOLLOW_UP"
    PAYMENT_REMINDER = "PAYMENT_REMINDER"
    ORDER_UPDATE = "ORDER_UPDATE"
    GENERAL = "GENERAL"


class FollowUpStatus(enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# =========================================================
# Admin users (acting user on every document change)
# =========================================================
class AdminUser(UserMixin, db.Model):
    __tablename__ = "admin_user"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # admin / sales / finance
    role = db.Column(db.String(30), nullable=False, default="sales")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # sha256 of the API bearer token (rotated on every login)
    api_token = db.Column(db.String(128), nullable=True, unique=True, index=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    def __repr__(self) -> str:
        return f"<AdminUser {self.id} {self.email}>"


# =========================================================
# Customers, companies, addresses
# =========================================================
class Company(db.Model):
    __tablename__ = "company"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(160), nullable=False)

    registration_number = db.Column(db.String(60), nullable=False, unique=True)
    tax_id = db.Column(db.String(30), nullable=False, unique=True)  # NPWP
    industry = db.Column(db.String(60), nullable=True)

    email = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    website = db.Column(db.String(160), nullable=True)
    contact_person = db.Column(db.String(120), nullable=True)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    province = db.Column(db.String(100), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(60), nullable=False, default="Indonesia")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    customers = db.relationship("Customer", back_populates="company", lazy="select")

    def __repr__(self) -> str:
        return f"<Company {self.id} {self.name}>"


class Customer(db.Model):
    __tablename__ = "customer"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(120), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(30), nullable=False, unique=True, index=True)
    type = db.Column(_enum_column(CustomerType, "customer_type"), nullable=False, default=CustomerType.B2C)

    company_id = db.Column(db.String(36), db.ForeignKey("company.id", ondelete="SET NULL"), nullable=True, index=True)
    company = db.relationship("Company", back_populates="customers", lazy="joined")

    npwp = db.Column(db.String(30), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    addresses = db.relationship(
        "Address",
        back_populates="customer",
        lazy="select",
        order_by="Address.created_at",
    )

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.name}>"


class Address(db.Model):
    __tablename__ = "address"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", back_populates="addresses")

    label = db.Column(db.String(60), nullable=True)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    province = db.Column(db.String(100), nullable=False)
    postal_code = db.Column(db.String(20), nullable=False)
    country = db.Column(db.String(60), nullable=False, default="Indonesia")
    phone = db.Column(db.String(30), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    def __repr__(self) -> str:
        return f"<Address {self.id} {self.city}>"


# =========================================================
# Catalogue
# =========================================================
class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(64), nullable=False, unique=True)

    # Smallest currency unit
    base_price = db.Column(db.BigInteger, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    pricing_tiers = db.relationship(
        "PricingTier",
        back_populates="product",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="PricingTier.min_quantity",
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.sku}>"


class PricingTier(db.Model):
    __tablename__ = "pricing_tier"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    product_id = db.Column(db.String(36), db.ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True)
    product = db.relationship("Product", back_populates="pricing_tiers")

    min_quantity = db.Column(db.Integer, nullable=False)
    max_quantity = db.Column(db.Integer, nullable=True)  # NULL = unbounded
    price_per_unit = db.Column(db.BigInteger, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.CheckConstraint("min_quantity >= 1", name="ck_pricing_tier_min_quantity"),
        db.CheckConstraint(
            "max_quantity IS NULL OR max_quantity >= min_quantity",
            name="ck_pricing_tier_range",
        ),
    )


# =========================================================
# Quotation
# =========================================================
class Quotation(db.Model):
    __tablename__ = "quotation"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    quotation_number = db.Column(db.String(40), nullable=False, unique=True)

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", foreign_keys=[customer_id], lazy="joined")

    status = db.Column(
        _enum_column(QuotationStatus, "quotation_status"),
        nullable=False,
        default=QuotationStatus.PENDING,
        index=True,
    )

    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    tax_amount = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    valid_until = db.Column(db.DateTime, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    shipping_address_id = db.Column(db.String(36), db.ForeignKey("address.id"), nullable=True)
    shipping_address = db.relationship("Address", foreign_keys=[shipping_address_id], lazy="joined")

    # Set once, on conversion. No FK: the order row already points back here.
    converted_order_id = db.Column(db.String(36), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    items = db.relationship(
        "QuotationItem",
        back_populates="quotation",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="QuotationItem.position",
    )
    status_logs = db.relationship(
        "QuotationStatusLog",
        back_populates="quotation",
        lazy="select",
        order_by="QuotationStatusLog.created_at",
    )

    __table_args__ = (
        db.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_quotation_total"),
    )

    def __repr__(self) -> str:
        return f"<Quotation {self.id} {self.quotation_number} {self.status}>"


class QuotationItem(db.Model):
    __tablename__ = "quotation_item"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    quotation_id = db.Column(db.String(36), db.ForeignKey("quotation.id", ondelete="CASCADE"), nullable=False, index=True)
    quotation = db.relationship("Quotation", back_populates="items")

    product_id = db.Column(db.String(36), db.ForeignKey("product.id"), nullable=False)
    product = db.relationship("Product", lazy="joined")

    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    total_price = db.Column(db.BigInteger, nullable=False)
    notes = db.Column(db.Text, nullable=True)


class QuotationStatusLog(db.Model):
    __tablename__ = "quotation_status_log"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    quotation_id = db.Column(db.String(36), db.ForeignKey("quotation.id", ondelete="CASCADE"), nullable=False, index=True)
    quotation = db.relationship("Quotation", back_populates="status_logs")

    from_status = db.Column(_enum_column(QuotationStatus, "quotation_status"), nullable=True)
    to_status = db.Column(_enum_column(QuotationStatus, "quotation_status"), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # NULL for system jobs (expiry sweep)
    admin_user_id = db.Column(db.String(36), db.ForeignKey("admin_user.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)


# =========================================================
# Order
# =========================================================
class Order(db.Model):
    # "order" is reserved in SQL
    __tablename__ = "sales_order"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_number = db.Column(db.String(40), nullable=False, unique=True)

    # One order per quotation
    quotation_id = db.Column(db.String(36), db.ForeignKey("quotation.id"), nullable=False, unique=True)
    quotation = db.relationship("Quotation", foreign_keys=[quotation_id], lazy="select")

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", foreign_keys=[customer_id], lazy="joined")

    status = db.Column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.NEW,
        index=True,
    )

    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    tax_amount = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    shipping_address_id = db.Column(db.String(36), db.ForeignKey("address.id"), nullable=False)
    shipping_address = db.relationship("Address", foreign_keys=[shipping_address_id], lazy="joined")

    tracking_number = db.Column(db.String(120), nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    status_logs = db.relationship(
        "OrderStatusLog",
        back_populates="order",
        lazy="select",
        order_by="OrderStatusLog.created_at",
    )
    invoice = db.relationship("Invoice", back_populates="order", uselist=False, lazy="select")

    __table_args__ = (
        db.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_sales_order_total"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.order_number} {self.status}>"


class OrderItem(db.Model):
    __tablename__ = "order_item"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    order_id = db.Column(db.String(36), db.ForeignKey("sales_order.id", ondelete="CASCADE"), nullable=False, index=True)
    order = db.relationship("Order", back_populates="items")

    product_id = db.Column(db.String(36), db.ForeignKey("product.id"), nullable=False)

    # Snapshot at conversion time; later catalogue edits never reach the order.
    product_name = db.Column(db.String(200), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)

    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    total_price = db.Column(db.BigInteger, nullable=False)


class OrderStatusLog(db.Model):
    __tablename__ = "order_status_log"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    order_id = db.Column(db.String(36), db.ForeignKey("sales_order.id", ondelete="CASCADE"), nullable=False, index=True)
    order = db.relationship("Order", back_populates="status_logs")

    # NULL on the creation row
    from_status = db.Column(_enum_column(OrderStatus, "order_status"), nullable=True)
    to_status = db.Column(_enum_column(OrderStatus, "order_status"), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    admin_user_id = db.Column(db.String(36), db.ForeignKey("admin_user.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)


# =========================================================
# Invoice
# =========================================================
class Invoice(db.Model):
    __tablename__ = "invoice"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    invoice_number = db.Column(db.String(40), nullable=False, unique=True)

    # At most one invoice per order
    order_id = db.Column(db.String(36), db.ForeignKey("sales_order.id"), nullable=False, unique=True)
    order = db.relationship("Order", back_populates="invoice", foreign_keys=[order_id])

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", foreign_keys=[customer_id], lazy="joined")

    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    tax_amount = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(
        _enum_column(InvoiceStatus, "invoice_status"),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True,
    )

    due_date = db.Column(db.DateTime, nullable=False, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    payment_method = db.Column(db.String(30), nullable=True)
    payment_notes = db.Column(db.Text, nullable=True)

    tax_invoice_requested = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    __table_args__ = (
        db.CheckConstraint("total_amount = subtotal + tax_amount", name="ck_invoice_total"),
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.invoice_number} {self.status}>"


class InvoiceItem(db.Model):
    __tablename__ = "invoice_item"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    invoice_id = db.Column(db.String(36), db.ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice = db.relationship("Invoice", back_populates="items")

    product_id = db.Column(db.String(36), db.ForeignKey("product.id"), nullable=False)
    description = db.Column(db.String(255), nullable=False)

    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    total_price = db.Column(db.BigInteger, nullable=False)


# =========================================================
# Communication log
# =========================================================
class Communication(db.Model):
    __tablename__ = "communication"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", lazy="joined")

    quotation_id = db.Column(db.String(36), db.ForeignKey("quotation.id"), nullable=True, index=True)
    quotation = db.relationship("Quotation", lazy="select")
    order_id = db.Column(db.String(36), db.ForeignKey("sales_order.id"), nullable=True, index=True)

    type = db.Column(_enum_column(CommunicationType, "communication_type"), nullable=False)
    direction = db.Column(_enum_column(CommunicationDirection, "communication_direction"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    status = db.Column(
        _enum_column(CommunicationStatus, "communication_status"),
        nullable=False,
        default=CommunicationStatus.SENT,
    )

    # Provider message id (WhatsApp wamid); delivery callbacks match on it
    external_id = db.Column(db.String(160), nullable=True, index=True)

    # NULL for provider-originated inbound messages
    admin_user_id = db.Column(db.String(36), db.ForeignKey("admin_user.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    def __repr__(self) -> str:
        return f"<Communication {self.id} {self.type} {self.status}>"


# =========================================================
# Follow-up reminders
# =========================================================
class FollowUp(db.Model):
    __tablename__ = "follow_up"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False, index=True)
    customer = db.relationship("Customer", lazy="joined")

    quotation_id = db.Column(db.String(36), db.ForeignKey("quotation.id"), nullable=True, index=True)
    quotation = db.relationship("Quotation", lazy="select")
    order_id = db.Column(db.String(36), db.ForeignKey("sales_order.id"), nullable=True, index=True)

    type = db.Column(_enum_column(FollowUpType, "follow_up_type"), nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(
        _enum_column(FollowUpStatus, "follow_up_status"),
        nullable=False,
        default=FollowUpStatus.PENDING,
        index=True,
    )
    completed_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    admin_user_id = db.Column(db.String(36), db.ForeignKey("admin_user.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    def __repr__(self) -> str:
        return f"<FollowUp {self.id} {self.type} {self.status}>"


# =========================================================
# State machines
# =========================================================
QUOTATION_TRANSITIONS = {
    QuotationStatus.PENDING: {QuotationStatus.APPROVED, QuotationStatus.REJECTED, QuotationStatus.EXPIRED},
    QuotationStatus.APPROVED: {QuotationStatus.CONVERTED, QuotationStatus.EXPIRED},
    QuotationStatus.REJECTED: set(),
    QuotationStatus.CONVERTED: set(),
    QuotationStatus.EXPIRED: set(),
}

ORDER_TRANSITIONS = {
    OrderStatus.NEW: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, set())
