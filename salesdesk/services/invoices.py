# salesdesk/services/invoices.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk.errors import (
    AlreadyExists,
    AlreadyPaid,
    Cancelled,
    InvalidState,
    MissingRequiredData,
    NotFound,
    PersistenceError,
    ValidationError,
)
from salesdesk.models import CustomerType, Invoice, InvoiceItem, InvoiceStatus, Order

from .common import Clock, as_naive_utc, atomic, default_clock, parse_enum, swap_status
from .numbering import INVOICE_PREFIX, DocumentNumbering

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("bank_transfer", "cash", "check", "other")


@dataclass(frozen=True)
class PaymentInfo:
    payment_method: str
    paid_at: datetime | None = None
    notes: str | None = None


class InvoiceLedger:
    def __init__(
        self,
        session: Session,
        *,
        numbering: DocumentNumbering,
        clock: Clock = default_clock,
        due_days: int = 30,
    ):
        self.session = session
        self.numbering = numbering
        self.clock = clock
        self.due_days = due_days

    # ---------------------------------------------------------
    # Issue
    # ---------------------------------------------------------
    def generate_invoice(self, order_id: str) -> Invoice:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFound("Order", order_id)
        if order.invoice is not None:
            raise AlreadyExists(
                "Invoice already exists for this order",
                order_id=order_id,
                invoice_id=order.invoice.id,
            )

        now = self.clock()
        due_date = now + timedelta(days=self.due_days)

        for attempt in range(2):
            number = self.numbering.next_number(INVOICE_PREFIX)
            invoice = Invoice(
                invoice_number=number,
                order_id=order.id,
                customer_id=order.customer_id,
                subtotal=order.subtotal,
                tax_amount=order.tax_amount,
                total_amount=order.total_amount,
                status=InvoiceStatus.PENDING,
                due_date=due_date,
                created_at=now,
                updated_at=now,
            )
            for item in order.items:
                invoice.items.append(
                    InvoiceItem(
                        product_id=item.product_id,
                        description=f"{item.product_name} ({item.product_sku})",
                        position=item.position,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_price=item.total_price,
                    )
                )

            try:
                with atomic(self.session, "Generate invoice"):
                    self.session.add(invoice)
            except PersistenceError as exc:
                if attempt == 0 and self.numbering.is_number_conflict(exc, INVOICE_PREFIX, number):
                    logger.warning("Invoice number %s taken concurrently; retrying", number)
                    continue
                if isinstance(exc.__cause__, IntegrityError) and self._has_invoice(order_id):
                    raise AlreadyExists("Invoice already exists for this order", order_id=order_id) from exc
                raise

            logger.info("Invoice %s generated for order %s (due %s)", number, order.order_number, due_date.date())
            return invoice

        raise PersistenceError("Generate invoice failed")

    def _has_invoice(self, order_id: str) -> bool:
        return self.session.query(Invoice.id).filter(Invoice.order_id == order_id).first() is not None

    # ---------------------------------------------------------
    # Payment
    # ---------------------------------------------------------
    def process_payment(self, invoice_id: str, payment_info: PaymentInfo) -> Invoice:
        invoice = self.get_invoice(invoice_id)

        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaid("Invoice is already paid", id=invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise Cancelled("Cannot process payment for cancelled invoice", id=invoice_id)

        method = (payment_info.payment_method or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method: {payment_info.payment_method!r}",
                field="payment_method",
                allowed=list(PAYMENT_METHODS),
            )

        now = self.clock()
        paid_at = as_naive_utc(payment_info.paid_at) or now
        current = invoice.status

        with atomic(self.session, "Process payment"):
            swap_status(
                self.session,
                Invoice,
                "Invoice",
                invoice_id,
                current,
                InvoiceStatus.PAID,
                now,
                paid_at=paid_at,
                payment_method=method,
                payment_notes=payment_info.notes,
            )

        logger.info("Invoice %s paid via %s", invoice.invoice_number, method)
        return invoice

    # ---------------------------------------------------------
    # Periodic
    # ---------------------------------------------------------
    def mark_overdue_invoices(self) -> int:
        now = self.clock()
        with atomic(self.session, "Mark overdue invoices"):
            result = self.session.execute(
                sa.update(Invoice)
                .where(Invoice.status == InvoiceStatus.PENDING, Invoice.due_date < now)
                .values(status=InvoiceStatus.OVERDUE, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        count = result.rowcount or 0
        if count:
            logger.info("Marked %d invoice(s) overdue", count)
        return count

    # ---------------------------------------------------------
    # Tax invoice (faktur pajak)
    # ---------------------------------------------------------
    def request_tax_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.get_invoice(invoice_id)

        if invoice.status != InvoiceStatus.PAID:
            raise InvalidState(
                "Tax invoice can only be requested for paid invoices",
                entity="Invoice",
                entity_id=invoice_id,
                current=invoice.status.value,
            )

        customer = invoice.customer
        if customer.type != CustomerType.B2B or customer.company is None:
            raise MissingRequiredData(
                "Tax invoice requires a B2B customer linked to a company",
                id=invoice_id,
                customer_id=customer.id,
            )
        if invoice.tax_invoice_requested:
            raise AlreadyExists("Tax invoice has already been requested", id=invoice_id)

        with atomic(self.session, "Request tax invoice"):
            result = self.session.execute(
                sa.update(Invoice)
                .where(
                    Invoice.id == invoice_id,
                    Invoice.status == InvoiceStatus.PAID,
                    Invoice.tax_invoice_requested.is_(False),
                )
                .values(tax_invoice_requested=True, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyExists("Tax invoice has already been requested", id=invoice_id)

        logger.info("Tax invoice requested for %s (NPWP %s)", invoice.invoice_number, customer.company.tax_id)
        return invoice

    # ---------------------------------------------------------
    # Queries
    # ---------------------------------------------------------
    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice:
            raise NotFound("Invoice", invoice_id)
        return invoice

    def list_invoices(self, status: InvoiceStatus | str | None = None) -> list[Invoice]:
        qry = self.session.query(Invoice)
        if status:
            qry = qry.filter(Invoice.status == parse_enum(InvoiceStatus, status, "status"))
        return qry.order_by(Invoice.created_at.desc()).all()

    def get_customer_invoices(self, customer_id: str) -> list[Invoice]:
        return (
            self.session.query(Invoice)
            .filter(Invoice.customer_id == customer_id)
            .order_by(Invoice.created_at.desc())
            .all()
        )
