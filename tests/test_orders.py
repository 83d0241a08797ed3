# tests/test_orders.py
import pytest
from sqlalchemy.exc import SQLAlchemyError

from salesdesk.errors import (
    AlreadyConverted,
    InvalidState,
    InvalidTransition,
    MissingRequiredData,
    PersistenceError,
    ValidationError,
)
from salesdesk.extensions import db
from salesdesk.models import Order, OrderStatus, OrderStatusLog, Quotation, QuotationStatus
from salesdesk.services.quotations import QuotationLine, QuotationRequest


@pytest.fixture
def approved_quotation(services, customer, product, address, admin):
    q = services.quotations.create_quotation(
        QuotationRequest(
            customer_id=customer.id,
            items=[QuotationLine(product_id=product.id, quantity=100)],
            shipping_address_id=address.id,
            notes="Deliver before noon",
        )
    )
    services.quotations.update_quotation_status(q.id, "APPROVED", admin.id)
    return q


@pytest.fixture
def order(services, approved_quotation, admin):
    order_id = services.quotations.convert_to_order(approved_quotation.id, admin.id)
    return services.orders.get_order(order_id)


def test_conversion_copies_quotation(services, approved_quotation, admin):
    order_id = services.quotations.convert_to_order(approved_quotation.id, admin.id)
    order = services.orders.get_order(order_id)
    quotation = services.quotations.get_quotation(approved_quotation.id)

    assert order.order_number == "ORD/2024/01/0001"
    assert order.status == OrderStatus.NEW
    assert order.total_amount == quotation.total_amount == 5_000_000
    assert order.shipping_address_id == quotation.shipping_address_id
    assert order.notes == "Deliver before noon"
    assert [(i.product_sku, i.quantity, i.unit_price) for i in order.items] == [("WID-001", 100, 50_000)]

    assert quotation.status == QuotationStatus.CONVERTED
    assert quotation.converted_order_id == order.id

    history = services.orders.get_status_history(order.id)
    assert len(history) == 1
    assert history[0].from_status is None
    assert history[0].to_status == OrderStatus.NEW
    assert history[0].notes == f"Order created from quotation {quotation.quotation_number}"


def test_second_conversion_is_rejected(services, approved_quotation, admin):
    services.quotations.convert_to_order(approved_quotation.id, admin.id)

    with pytest.raises(AlreadyConverted):
        services.quotations.convert_to_order(approved_quotation.id, admin.id)
    with pytest.raises(AlreadyConverted):
        services.orders.create_order_from_quotation(approved_quotation.id, admin.id)

    assert Order.query.filter_by(quotation_id=approved_quotation.id).count() == 1


@pytest.mark.parametrize(
    "error, raised",
    [
        (SQLAlchemyError("disk full"), PersistenceError),
        (RuntimeError("boom"), RuntimeError),
    ],
)
def test_failed_conversion_leaves_nothing_behind(services, approved_quotation, admin, monkeypatch, error, raised):
    def broken_log(**kwargs):
        raise error

    monkeypatch.setattr("salesdesk.services.orders.OrderStatusLog", broken_log)

    with pytest.raises(raised):
        services.orders.create_order_from_quotation(approved_quotation.id, admin.id)

    assert Order.query.count() == 0
    assert OrderStatusLog.query.count() == 0
    quotation = services.quotations.get_quotation(approved_quotation.id)
    assert quotation.status == QuotationStatus.APPROVED
    assert quotation.converted_order_id is None
    assert [log.to_status for log in services.quotations.get_status_history(quotation.id)] == [
        QuotationStatus.APPROVED
    ]


def test_conversion_racing_another_conversion(services, approved_quotation, admin, write_behind):
    assert services.quotations.get_quotation(approved_quotation.id).status == QuotationStatus.APPROVED

    write_behind(
        Quotation,
        approved_quotation.id,
        status=QuotationStatus.CONVERTED,
        converted_order_id="order-from-elsewhere",
    )

    with pytest.raises(AlreadyConverted):
        services.orders.create_order_from_quotation(approved_quotation.id, admin.id)

    db.session.expire_all()
    assert Order.query.count() == 0
    assert OrderStatusLog.query.count() == 0
    assert services.quotations.get_quotation(approved_quotation.id).converted_order_id == "order-from-elsewhere"


def test_only_approved_quotations_convert(services, customer, product, address, admin):
    q = services.quotations.create_quotation(
        QuotationRequest(
            customer_id=customer.id,
            items=[QuotationLine(product_id=product.id, quantity=1)],
            shipping_address_id=address.id,
        )
    )
    with pytest.raises(InvalidState):
        services.quotations.convert_to_order(q.id, admin.id)
    assert Order.query.count() == 0


def test_conversion_needs_shipping_address(services, customer, product, admin):
    q = services.quotations.create_quotation(
        QuotationRequest(customer_id=customer.id, items=[QuotationLine(product_id=product.id, quantity=1)])
    )
    services.quotations.update_quotation_status(q.id, "APPROVED", admin.id)

    with pytest.raises(MissingRequiredData):
        services.quotations.convert_to_order(q.id, admin.id)
    assert services.quotations.get_quotation(q.id).status == QuotationStatus.APPROVED


def test_full_lifecycle_audit_trail(services, order, admin, clock):
    clock.advance(hours=1)
    services.orders.update_order_status(order.id, "PROCESSING", admin.id)
    clock.advance(hours=1)
    services.orders.add_tracking_number(order.id, "JNE123456", admin.id)
    clock.advance(days=2)
    services.orders.update_order_status(order.id, OrderStatus.DELIVERED, admin.id)

    order = services.orders.get_order(order.id)
    history = services.orders.get_status_history(order.id)

    assert order.status == OrderStatus.DELIVERED
    assert order.tracking_number == "JNE123456"
    assert order.shipped_at is not None and order.delivered_at is not None
    assert order.shipped_at < order.delivered_at
    assert [(h.from_status, h.to_status) for h in history] == [
        (None, OrderStatus.NEW),
        (OrderStatus.NEW, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    ]
    assert history[2].notes == "Tracking number added: JNE123456"


def test_tracking_number_on_new_order_keeps_status(services, order, admin, clock):
    clock.advance(minutes=5)
    services.orders.add_tracking_number(order.id, "  JNE-1  ", admin.id)

    order = services.orders.get_order(order.id)
    assert order.status == OrderStatus.NEW
    assert order.tracking_number == "JNE-1"
    assert order.shipped_at is None
    last = services.orders.get_status_history(order.id)[-1]
    assert (last.from_status, last.to_status) == (OrderStatus.NEW, OrderStatus.NEW)


def test_tracking_number_on_shipped_order_replaces_number(services, order, admin, clock):
    services.orders.update_order_status(order.id, "PROCESSING", admin.id)
    clock.advance(minutes=5)
    services.orders.update_order_status(order.id, "SHIPPED", admin.id)
    shipped_at = services.orders.get_order(order.id).shipped_at

    clock.advance(minutes=5)
    services.orders.add_tracking_number(order.id, "SICEPAT-9", admin.id)

    order = services.orders.get_order(order.id)
    assert order.status == OrderStatus.SHIPPED
    assert order.tracking_number == "SICEPAT-9"
    assert order.shipped_at == shipped_at


def test_blank_tracking_number(services, order, admin):
    with pytest.raises(ValidationError):
        services.orders.add_tracking_number(order.id, "   ", admin.id)


@pytest.mark.parametrize(
    "path, bad",
    [
        ([], "SHIPPED"),
        ([], "DELIVERED"),
        (["PROCESSING", "SHIPPED"], "CANCELLED"),
        (["CANCELLED"], "PROCESSING"),
    ],
)
def test_invalid_order_transitions(services, order, admin, path, bad):
    for step in path:
        services.orders.update_order_status(order.id, step, admin.id)
    before = services.orders.get_order(order.id).status

    with pytest.raises(InvalidTransition):
        services.orders.update_order_status(order.id, bad, admin.id)

    assert services.orders.get_order(order.id).status == before


def test_status_change_on_stale_order(services, order, admin, write_behind):
    assert services.orders.get_order(order.id).status == OrderStatus.NEW
    logs_before = len(services.orders.get_status_history(order.id))

    # cancelled by another admin after we loaded it
    write_behind(Order, order.id, status=OrderStatus.CANCELLED)

    with pytest.raises(InvalidTransition):
        services.orders.update_order_status(order.id, "PROCESSING", admin.id)

    db.session.expire_all()
    assert services.orders.get_order(order.id).status == OrderStatus.CANCELLED
    assert len(services.orders.get_status_history(order.id)) == logs_before


def test_cancel_from_processing(services, order, admin):
    services.orders.update_order_status(order.id, "PROCESSING", admin.id)
    services.orders.update_order_status(order.id, "CANCELLED", admin.id, notes="customer request")
    assert services.orders.get_order(order.id).status == OrderStatus.CANCELLED


def test_list_orders(services, order, customer):
    assert [o.id for o in services.orders.list_orders("NEW")] == [order.id]
    assert services.orders.list_orders("DELIVERED") == []
    assert [o.id for o in services.orders.get_customer_orders(customer.id)] == [order.id]


def test_totals_invariant(services, order):
    for o in Order.query.all():
        assert o.total_amount == o.subtotal + o.tax_amount
