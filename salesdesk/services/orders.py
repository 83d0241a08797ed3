# salesdesk/services/orders.py
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk.errors import (
    AlreadyConverted,
    InvalidState,
    InvalidTransition,
    MissingRequiredData,
    NotFound,
    PersistenceError,
    ValidationError,
)
from salesdesk.models import (
    ORDER_TRANSITIONS,
    Invoice,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusLog,
    Quotation,
    QuotationStatus,
    QuotationStatusLog,
    new_id,
)

from .common import Clock, atomic, default_clock, ensure_transition, parse_enum, swap_status
from .invoices import InvoiceLedger, PaymentInfo
from .numbering import ORDER_PREFIX, DocumentNumbering

logger = logging.getLogger(__name__)


class OrderLifecycle:
    """
    Orders from conversion to delivery.

    Status moves NEW -> PROCESSING -> SHIPPED -> DELIVERED, with CANCELLED
    reachable from NEW and PROCESSING. Every move writes an OrderStatusLog row
    in the same transaction as the status change.
    """

    def __init__(
        self,
        session: Session,
        *,
        numbering: DocumentNumbering,
        invoices: InvoiceLedger,
        clock: Clock = default_clock,
    ):
        self.session = session
        self.numbering = numbering
        self.invoices = invoices
        self.clock = clock

    # ---------------------------------------------------------
    # Conversion
    # ---------------------------------------------------------
    def create_order_from_quotation(self, quotation_id: str, admin_user_id: str | None) -> Order:
        quotation = self.session.get(Quotation, quotation_id)
        if not quotation:
            raise NotFound("Quotation", quotation_id)
        if quotation.converted_order_id:
            raise AlreadyConverted(
                "Quotation has already been converted to an order",
                id=quotation_id,
                order_id=quotation.converted_order_id,
            )
        if quotation.status != QuotationStatus.APPROVED:
            raise InvalidState(
                "Only approved quotations can be converted to orders",
                entity="Quotation",
                entity_id=quotation_id,
                current=quotation.status.value,
            )
        if not quotation.shipping_address_id:
            raise MissingRequiredData("Shipping address is required to create an order", id=quotation_id)

        quotation_number = quotation.quotation_number
        now = self.clock()

        for attempt in range(2):
            number = self.numbering.next_number(ORDER_PREFIX)
            order = self._order_from(quotation, number, now)

            try:
                with atomic(self.session, "Convert quotation to order"):
                    self.session.add(order)
                    # surfaces the unique quotation_id before the quotation is touched
                    self.session.flush()

                    swap_status(
                        self.session,
                        Quotation,
                        "Quotation",
                        quotation_id,
                        QuotationStatus.APPROVED,
                        QuotationStatus.CONVERTED,
                        now,
                        converted_order_id=order.id,
                    )
                    self.session.add(
                        QuotationStatusLog(
                            quotation_id=quotation_id,
                            from_status=QuotationStatus.APPROVED,
                            to_status=QuotationStatus.CONVERTED,
                            notes=f"Converted to order {number}",
                            admin_user_id=admin_user_id,
                            created_at=now,
                        )
                    )
                    self.session.add(
                        OrderStatusLog(
                            order_id=order.id,
                            from_status=None,
                            to_status=OrderStatus.NEW,
                            notes=f"Order created from quotation {quotation_number}",
                            admin_user_id=admin_user_id,
                            created_at=now,
                        )
                    )
            except InvalidTransition as exc:
                raise AlreadyConverted(
                    "Quotation was converted concurrently",
                    id=quotation_id,
                ) from exc
            except PersistenceError as exc:
                if attempt == 0 and self.numbering.is_number_conflict(exc, ORDER_PREFIX, number):
                    logger.warning("Order number %s taken concurrently; retrying", number)
                    continue
                if isinstance(exc.__cause__, IntegrityError) and self._has_order(quotation_id):
                    raise AlreadyConverted(
                        "Quotation has already been converted to an order",
                        id=quotation_id,
                    ) from exc
                raise

            logger.info("Quotation %s converted to order %s", quotation_number, number)
            return order

        raise PersistenceError("Convert quotation to order failed")

    def _order_from(self, quotation: Quotation, number: str, now: datetime) -> Order:
        order = Order(
            id=new_id(),
            order_number=number,
            quotation_id=quotation.id,
            customer_id=quotation.customer_id,
            status=OrderStatus.NEW,
            subtotal=quotation.subtotal,
            tax_amount=quotation.tax_amount,
            total_amount=quotation.total_amount,
            shipping_address_id=quotation.shipping_address_id,
            notes=quotation.notes,
            created_at=now,
            updated_at=now,
        )
        for item in quotation.items:
            order.items.append(
                OrderItem(
                    product_id=item.product_id,
                    product_name=item.product.name,
                    product_sku=item.product.sku,
                    position=item.position,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
            )
        return order

    def _has_order(self, quotation_id: str) -> bool:
        return self.session.query(Order.id).filter(Order.quotation_id == quotation_id).first() is not None

    # ---------------------------------------------------------
    # Status
    # ---------------------------------------------------------
    def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus | str,
        admin_user_id: str | None,
        notes: str | None = None,
    ) -> Order:
        target = parse_enum(OrderStatus, new_status, "status")
        order = self.get_order(order_id)
        current = order.status

        ensure_transition(ORDER_TRANSITIONS, "Order", order_id, current, target)

        now = self.clock()
        stamps = {}
        if target == OrderStatus.SHIPPED:
            stamps["shipped_at"] = now
        elif target == OrderStatus.DELIVERED:
            stamps["delivered_at"] = now

        with atomic(self.session, "Update order status"):
            swap_status(self.session, Order, "Order", order_id, current, target, now, **stamps)
            self._log(order_id, current, target, notes, admin_user_id, now)

        logger.info("Order %s: %s -> %s", order_id, current.value, target.value)
        return order

    def add_tracking_number(self, order_id: str, tracking_number: str, admin_user_id: str | None) -> Order:
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            raise ValidationError("Tracking number is required", field="tracking_number")

        order = self.get_order(order_id)
        current = order.status
        now = self.clock()

        values = {"tracking_number": tracking_number}
        target = current
        if current == OrderStatus.PROCESSING:
            target = OrderStatus.SHIPPED
            values["shipped_at"] = now

        with atomic(self.session, "Add tracking number"):
            swap_status(self.session, Order, "Order", order_id, current, target, now, **values)
            self._log(order_id, current, target, f"Tracking number added: {tracking_number}", admin_user_id, now)

        logger.info("Order %s tracking number set (%s)", order_id, target.value)
        return order

    def _log(self, order_id, from_status, to_status, notes, admin_user_id, now) -> None:
        self.session.add(
            OrderStatusLog(
                order_id=order_id,
                from_status=from_status,
                to_status=to_status,
                notes=notes,
                admin_user_id=admin_user_id,
                created_at=now,
            )
        )

    # ---------------------------------------------------------
    # Invoicing (delegated)
    # ---------------------------------------------------------
    def generate_invoice(self, order_id: str) -> Invoice:
        return self.invoices.generate_invoice(order_id)

    def process_payment(self, invoice_id: str, payment_info: PaymentInfo) -> Invoice:
        return self.invoices.process_payment(invoice_id, payment_info)

    def mark_overdue_invoices(self) -> int:
        return self.invoices.mark_overdue_invoices()

    # ---------------------------------------------------------
    # Queries
    # ---------------------------------------------------------
    def get_order(self, order_id: str) -> Order:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFound("Order", order_id)
        return order

    def list_orders(self, status: OrderStatus | str | None = None) -> list[Order]:
        qry = self.session.query(Order)
        if status:
            qry = qry.filter(Order.status == parse_enum(OrderStatus, status, "status"))
        return qry.order_by(Order.created_at.desc()).all()

    def get_customer_orders(self, customer_id: str) -> list[Order]:
        return (
            self.session.query(Order)
            .filter(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .all()
        )

    def get_status_history(self, order_id: str) -> list[OrderStatusLog]:
        self.get_order(order_id)
        return (
            self.session.query(OrderStatusLog)
            .filter(OrderStatusLog.order_id == order_id)
            .order_by(OrderStatusLog.created_at.asc())
            .all()
        )
