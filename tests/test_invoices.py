# tests/test_invoices.py
from datetime import datetime, timedelta

import pytest

from salesdesk.errors import (
    AlreadyExists,
    AlreadyPaid,
    Cancelled,
    InvalidState,
    MissingRequiredData,
    ValidationError,
)
from salesdesk.extensions import db
from salesdesk.models import Invoice, InvoiceStatus
from salesdesk.services.customers import CompanyData
from salesdesk.services.invoices import PaymentInfo
from salesdesk.services.quotations import QuotationLine, QuotationRequest


@pytest.fixture
def order(services, customer, product, address, admin):
    q = services.quotations.create_quotation(
        QuotationRequest(
            customer_id=customer.id,
            items=[QuotationLine(product_id=product.id, quantity=4)],
            shipping_address_id=address.id,
        )
    )
    services.quotations.update_quotation_status(q.id, "APPROVED", admin.id)
    return services.orders.get_order(services.quotations.convert_to_order(q.id, admin.id))


@pytest.fixture
def invoice(services, order):
    return services.orders.generate_invoice(order.id)


def test_generate_invoice_copies_order(services, order, clock):
    invoice = services.orders.generate_invoice(order.id)

    assert invoice.invoice_number == "INV/2024/01/0001"
    assert invoice.status == InvoiceStatus.PENDING
    assert invoice.total_amount == order.total_amount == 200_000
    assert invoice.total_amount == invoice.subtotal + invoice.tax_amount
    assert invoice.due_date == clock.now + timedelta(days=30)
    assert [i.description for i in invoice.items] == ["Widget (WID-001)"]


def test_one_invoice_per_order(services, order, invoice):
    with pytest.raises(AlreadyExists, match="Invoice already exists for this order"):
        services.orders.generate_invoice(order.id)


def test_payment_marks_paid(services, invoice, clock):
    paid_at = datetime(2024, 1, 20, 9, 30)
    services.orders.process_payment(
        invoice.id, PaymentInfo(payment_method="Bank_Transfer", paid_at=paid_at, notes="BCA ref 778")
    )

    invoice = services.invoices.get_invoice(invoice.id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at == paid_at
    assert invoice.payment_method == "bank_transfer"
    assert invoice.payment_notes == "BCA ref 778"


def test_payment_defaults_paid_at_to_now(services, invoice, clock):
    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="cash"))
    assert services.invoices.get_invoice(invoice.id).paid_at == clock.now


def test_paying_twice(services, invoice):
    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="cash"))
    with pytest.raises(AlreadyPaid, match="Invoice is already paid"):
        services.orders.process_payment(invoice.id, PaymentInfo(payment_method="cash"))


def test_paying_cancelled_invoice(services, invoice):
    invoice.status = InvoiceStatus.CANCELLED
    db.session.commit()

    with pytest.raises(Cancelled, match="Cannot process payment for cancelled invoice"):
        services.orders.process_payment(invoice.id, PaymentInfo(payment_method="cash"))


def test_unknown_payment_method(services, invoice):
    with pytest.raises(ValidationError):
        services.orders.process_payment(invoice.id, PaymentInfo(payment_method="bitcoin"))
    assert services.invoices.get_invoice(invoice.id).status == InvoiceStatus.PENDING


def test_overdue_invoice_can_still_be_paid(services, invoice, clock):
    clock.advance(days=31)
    assert services.orders.mark_overdue_invoices() == 1
    assert services.orders.mark_overdue_invoices() == 0
    assert services.invoices.get_invoice(invoice.id).status == InvoiceStatus.OVERDUE

    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="check"))
    assert services.invoices.get_invoice(invoice.id).status == InvoiceStatus.PAID


def test_invoice_not_overdue_before_due_date(services, invoice, clock):
    clock.advance(days=29)
    assert services.orders.mark_overdue_invoices() == 0


def test_tax_invoice_needs_payment(services, invoice):
    with pytest.raises(InvalidState):
        services.invoices.request_tax_invoice(invoice.id)


def test_tax_invoice_needs_b2b_company(services, invoice):
    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="cash"))
    with pytest.raises(MissingRequiredData):
        services.invoices.request_tax_invoice(invoice.id)


def test_tax_invoice_for_business_customer(services, invoice, customer):
    company = services.customers.create_company(
        CompanyData(name="PT Maju Jaya", registration_number="AHU-0012345", tax_id="01.234.567.8-901.000")
    )
    services.customers.link_company(customer.id, company.id)
    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="bank_transfer"))

    services.invoices.request_tax_invoice(invoice.id)
    assert services.invoices.get_invoice(invoice.id).tax_invoice_requested is True

    with pytest.raises(AlreadyExists):
        services.invoices.request_tax_invoice(invoice.id)


def test_tax_invoice_requested_concurrently(services, invoice, customer, write_behind):
    company = services.customers.create_company(
        CompanyData(name="PT Maju Jaya", registration_number="AHU-0012345", tax_id="01.234.567.8-901.000")
    )
    services.customers.link_company(customer.id, company.id)
    services.orders.process_payment(invoice.id, PaymentInfo(payment_method="bank_transfer"))
    assert services.invoices.get_invoice(invoice.id).tax_invoice_requested is False

    # another admin files the request after we loaded the invoice
    write_behind(Invoice, invoice.id, tax_invoice_requested=True)

    with pytest.raises(AlreadyExists):
        services.invoices.request_tax_invoice(invoice.id)

    db.session.expire_all()
    assert services.invoices.get_invoice(invoice.id).tax_invoice_requested is True


def test_invoice_queries(services, invoice, customer):
    assert [i.id for i in services.invoices.list_invoices("pending")] == [invoice.id]
    assert [i.id for i in services.invoices.get_customer_invoices(customer.id)] == [invoice.id]
