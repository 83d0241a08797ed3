# salesdesk/services/quotations.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import sqlalchemy as sa
from sqlalchemy.orm import Session

from salesdesk.errors import (
    AlreadyConverted,
    InvalidState,
    MissingRequiredData,
    NotFound,
    PersistenceError,
    ValidationError,
)
from salesdesk.models import (
    QUOTATION_TRANSITIONS,
    Address,
    Customer,
    FollowUp,
    FollowUpType,
    Order,
    Quotation,
    QuotationItem,
    QuotationStatus,
    QuotationStatusLog,
)

from .common import Clock, atomic, default_clock, ensure_transition, parse_enum, swap_status
from .follow_ups import FollowUpData, FollowUpScheduler
from .numbering import QUOTATION_PREFIX, DocumentNumbering
from .pricing import PricingResolver

logger = logging.getLogger(__name__)

EXPIRABLE_STATUSES = (QuotationStatus.PENDING, QuotationStatus.APPROVED)


class OrderCreator(Protocol):
    """The one thing quotations need from the order side."""

    def create_order_from_quotation(self, quotation_id: str, admin_user_id: str | None) -> Order:
        ...


# =========================================================
# Requests
# =========================================================
@dataclass(frozen=True)
class QuotationLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class QuotationRequest:
    customer_id: str
    items: list[QuotationLine] = field(default_factory=list)
    shipping_address_id: str | None = None
    notes: str | None = None


class QuotationLifecycle:
    def __init__(
        self,
        session: Session,
        *,
        pricing: PricingResolver,
        numbering: DocumentNumbering,
        follow_ups: FollowUpScheduler,
        order_creator: OrderCreator,
        clock: Clock = default_clock,
        validity_days: int = 30,
    ):
        self.session = session
        self.pricing = pricing
        self.numbering = numbering
        self.follow_ups = follow_ups
        self.order_creator = order_creator
        self.clock = clock
        self.validity_days = validity_days

    # ---------------------------------------------------------
    # Create
    # ---------------------------------------------------------
    def create_quotation(self, request: QuotationRequest) -> Quotation:
        customer = self.session.get(Customer, request.customer_id)
        if not customer:
            raise NotFound("Customer", request.customer_id)

        if request.shipping_address_id:
            address = (
                self.session.query(Address)
                .filter_by(id=request.shipping_address_id, customer_id=customer.id)
                .first()
            )
            if not address:
                raise NotFound(
                    "Address",
                    request.shipping_address_id,
                    message="Shipping address not found or does not belong to customer",
                )

        if not request.items:
            raise ValidationError("A quotation needs at least one item", field="items")

        lines = [self.pricing.price_line(item.product_id, item.quantity) for item in request.items]
        subtotal = sum(line.total_price for line in lines)

        now = self.clock()
        valid_until = now + timedelta(days=self.validity_days)

        for attempt in range(2):
            number = self.numbering.next_number(QUOTATION_PREFIX)
            quotation = Quotation(
                quotation_number=number,
                customer_id=customer.id,
                status=QuotationStatus.PENDING,
                subtotal=subtotal,
                tax_amount=0,  # tax is settled at order time
                total_amount=subtotal,
                valid_until=valid_until,
                shipping_address_id=request.shipping_address_id,
                notes=request.notes,
                created_at=now,
                updated_at=now,
            )
            for position, line in enumerate(lines):
                quotation.items.append(
                    QuotationItem(
                        product_id=line.product.id,
                        position=position,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        total_price=line.total_price,
                    )
                )

            try:
                with atomic(self.session, "Create quotation"):
                    self.session.add(quotation)
            except PersistenceError as exc:
                if attempt == 0 and self.numbering.is_number_conflict(exc, QUOTATION_PREFIX, number):
                    logger.warning("Quotation number %s taken concurrently; retrying", number)
                    continue
                raise

            logger.info(
                "Quotation %s created for customer %s (total=%s)",
                number, customer.id, subtotal,
            )
            return quotation

        # unreachable: the second attempt either returns or raises
        raise PersistenceError("Create quotation failed")

    # ---------------------------------------------------------
    # Status
    # ---------------------------------------------------------
    def update_quotation_status(
        self,
        quotation_id: str,
        new_status: QuotationStatus | str,
        admin_user_id: str | None,
        notes: str | None = None,
    ) -> Quotation:
        target = parse_enum(QuotationStatus, new_status, "status")
        quotation = self.get_quotation(quotation_id)
        current = quotation.status

        ensure_transition(QUOTATION_TRANSITIONS, "Quotation", quotation_id, current, target)

        now = self.clock()
        with atomic(self.session, "Update quotation status"):
            swap_status(self.session, Quotation, "Quotation", quotation_id, current, target, now)
            self.session.add(
                QuotationStatusLog(
                    quotation_id=quotation_id,
                    from_status=current,
                    to_status=target,
                    notes=notes,
                    admin_user_id=admin_user_id,
                    created_at=now,
                )
            )

        logger.info("Quotation %s: %s -> %s", quotation_id, current.value, target.value)
        return quotation

    # ---------------------------------------------------------
    # Conversion
    # ---------------------------------------------------------
    def convert_to_order(self, quotation_id: str, admin_user_id: str | None) -> str:
        quotation = self.get_quotation(quotation_id)

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

        order = self.order_creator.create_order_from_quotation(quotation_id, admin_user_id)
        return order.id

    # ---------------------------------------------------------
    # Periodic
    # ---------------------------------------------------------
    def mark_expired_quotations(self) -> int:
        now = self.clock()
        count = 0

        with atomic(self.session, "Mark expired quotations"):
            due = (
                self.session.query(Quotation.id, Quotation.status)
                .filter(Quotation.valid_until < now, Quotation.status.in_(EXPIRABLE_STATUSES))
                .all()
            )
            for quotation_id, current in due:
                result = self.session.execute(
                    sa.update(Quotation)
                    .where(Quotation.id == quotation_id, Quotation.status == current)
                    .values(status=QuotationStatus.EXPIRED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # moved on since we read it; nothing to expire
                    continue
                self.session.add(
                    QuotationStatusLog(
                        quotation_id=quotation_id,
                        from_status=current,
                        to_status=QuotationStatus.EXPIRED,
                        notes="Validity period elapsed",
                        admin_user_id=None,
                        created_at=now,
                    )
                )
                count += 1

        if count:
            logger.info("Expired %d quotation(s)", count)
        return count

    # ---------------------------------------------------------
    # Follow-ups
    # ---------------------------------------------------------
    def schedule_follow_up(
        self,
        quotation_id: str,
        scheduled_at: datetime,
        admin_user_id: str | None,
        notes: str | None = None,
    ) -> FollowUp:
        quotation = self.get_quotation(quotation_id)
        return self.follow_ups.schedule_follow_up(
            FollowUpData(
                customer_id=quotation.customer_id,
                quotation_id=quotation.id,
                type=FollowUpType.QUOTATION_FOLLOW_UP,
                scheduled_at=scheduled_at,
                notes=notes,
                admin_user_id=admin_user_id,
            )
        )

    # ---------------------------------------------------------
    # Queries
    # ---------------------------------------------------------
    def get_quotation(self, quotation_id: str) -> Quotation:
        quotation = self.session.get(Quotation, quotation_id)
        if not quotation:
            raise NotFound("Quotation", quotation_id)
        return quotation

    def list_quotations(self, status: QuotationStatus | str | None = None) -> list[Quotation]:
        qry = self.session.query(Quotation)
        if status:
            qry = qry.filter(Quotation.status == parse_enum(QuotationStatus, status, "status"))
        return qry.order_by(Quotation.created_at.desc()).all()

    def get_customer_quotations(self, customer_id: str) -> list[Quotation]:
        return (
            self.session.query(Quotation)
            .filter(Quotation.customer_id == customer_id)
            .order_by(Quotation.created_at.desc())
            .all()
        )

    def get_status_history(self, quotation_id: str) -> list[QuotationStatusLog]:
        self.get_quotation(quotation_id)
        return (
            self.session.query(QuotationStatusLog)
            .filter(QuotationStatusLog.quotation_id == quotation_id)
            .order_by(QuotationStatusLog.created_at.asc())
            .all()
        )
