# salesdesk/services/numbering.py
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk.models import Invoice, Order, Quotation

from .common import BusinessCalendar, Clock, default_clock

QUOTATION_PREFIX = "QUO"
ORDER_PREFIX = "ORD"
INVOICE_PREFIX = "INV"

# prefix -> (number column, creation timestamp column)
_SEQUENCES = {
    QUOTATION_PREFIX: (Quotation.quotation_number, Quotation.created_at),
    ORDER_PREFIX: (Order.order_number, Order.created_at),
    INVOICE_PREFIX: (Invoice.invoice_number, Invoice.created_at),
}


def format_document_number(prefix: str, year: int, month: int, sequence: int) -> str:
    return f"{prefix}/{year:04d}/{month:02d}/{sequence:04d}"


class DocumentNumbering:
    """
    Human-friendly document numbers: PREFIX/YYYY/MM/NNNN, restarting each month.

    The sequence is "documents created this month + 1". Two writers can compute
    the same number; the unique constraint on the number column rejects the
    loser, which retries once with a fresh count (see `is_number_conflict`).
    """

    def __init__(self, session: Session, calendar: BusinessCalendar, clock: Clock = default_clock):
        self.session = session
        self.calendar = calendar
        self.clock = clock

    def next_number(self, prefix: str) -> str:
        number_col, created_col = _SEQUENCES[prefix]
        now = self.clock()
        start, end = self.calendar.month_bounds(now)

        count = (
            self.session.query(sa.func.count(number_col))
            .filter(created_col >= start, created_col < end)
            .scalar()
            or 0
        )
        local = self.calendar.to_local(now)
        return format_document_number(prefix, local.year, local.month, count + 1)

    def is_taken(self, prefix: str, number: str) -> bool:
        number_col, _ = _SEQUENCES[prefix]
        return self.session.query(sa.exists().where(number_col == number)).scalar()

    def is_number_conflict(self, exc: Exception, prefix: str, number: str) -> bool:
        """True when a failed insert was caused by someone else taking `number`."""
        cause = exc.__cause__ if not isinstance(exc, IntegrityError) else exc
        if not isinstance(cause, IntegrityError):
            return False
        return self.is_taken(prefix, number)
