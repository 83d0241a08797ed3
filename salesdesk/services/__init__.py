# salesdesk/services/__init__.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from .common import BusinessCalendar, Clock, default_clock
from .communications import CommunicationLog
from .customers import CustomerDirectory
from .follow_ups import FollowUpScheduler
from .invoices import InvoiceLedger
from .messaging import MessagingClient, WhatsAppClient
from .metrics import MetricsAggregator
from .numbering import DocumentNumbering
from .orders import OrderLifecycle
from .pricing import PricingResolver
from .quotations import QuotationLifecycle


@dataclass
class Services:
    calendar: BusinessCalendar
    messenger: MessagingClient
    numbering: DocumentNumbering
    pricing: PricingResolver
    customers: CustomerDirectory
    follow_ups: FollowUpScheduler
    invoices: InvoiceLedger
    orders: OrderLifecycle
    quotations: QuotationLifecycle
    communications: CommunicationLog
    metrics: MetricsAggregator


def build_services(
    session: Session,
    config: Mapping[str, Any],
    *,
    messenger: MessagingClient | None = None,
    clock: Clock | None = None,
) -> Services:
    """Wire every service around one session, one messaging client and one clock."""
    clock = clock or default_clock
    messenger = messenger or WhatsAppClient.from_config(config)
    calendar = BusinessCalendar(config.get("BUSINESS_TIMEZONE", "UTC"))

    numbering = DocumentNumbering(session, calendar, clock)
    pricing = PricingResolver(session)
    follow_ups = FollowUpScheduler(session, calendar, clock)
    invoices = InvoiceLedger(
        session,
        numbering=numbering,
        clock=clock,
        due_days=config.get("INVOICE_DUE_DAYS", 30),
    )
    orders = OrderLifecycle(session, numbering=numbering, invoices=invoices, clock=clock)
    quotations = QuotationLifecycle(
        session,
        pricing=pricing,
        numbering=numbering,
        follow_ups=follow_ups,
        order_creator=orders,
        clock=clock,
        validity_days=config.get("QUOTATION_VALIDITY_DAYS", 30),
    )

    return Services(
        calendar=calendar,
        messenger=messenger,
        numbering=numbering,
        pricing=pricing,
        customers=CustomerDirectory(session, clock),
        follow_ups=follow_ups,
        invoices=invoices,
        orders=orders,
        quotations=quotations,
        communications=CommunicationLog(session, messenger=messenger, follow_ups=follow_ups, clock=clock),
        metrics=MetricsAggregator(session, calendar, clock),
    )


__all__ = ["Services", "build_services"]
