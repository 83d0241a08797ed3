# salesdesk/services/follow_ups.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from salesdesk.errors import InvalidState, InvalidTransition, NotFound, ValidationError
from salesdesk.models import Customer, FollowUp, FollowUpStatus, FollowUpType

from .common import BusinessCalendar, Clock, as_naive_utc, atomic, default_clock, parse_enum, swap_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FollowUpData:
    customer_id: str
    type: FollowUpType | str
    scheduled_at: datetime
    admin_user_id: str | None
    quotation_id: str | None = None
    order_id: str | None = None
    notes: str | None = None


class FollowUpScheduler:
    """
    Reminders to re-contact a customer.

    A follow-up is created PENDING and leaves that state exactly once, through
    `complete_follow_up` or `cancel_follow_up`. Both refuse (InvalidState) on a
    follow-up that is already COMPLETED or CANCELLED.
    """

    def __init__(self, session: Session, calendar: BusinessCalendar, clock: Clock = default_clock):
        self.session = session
        self.calendar = calendar
        self.clock = clock

    # ---------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------
    def schedule_follow_up(self, data: FollowUpData) -> FollowUp:
        follow_up_type = parse_enum(FollowUpType, data.type, "type")
        scheduled_at = as_naive_utc(data.scheduled_at)
        if scheduled_at is None:
            raise ValidationError("scheduled_at is required", field="scheduled_at")

        if not self.session.get(Customer, data.customer_id):
            raise NotFound("Customer", data.customer_id)

        now = self.clock()
        follow_up = FollowUp(
            customer_id=data.customer_id,
            quotation_id=data.quotation_id,
            order_id=data.order_id,
            type=follow_up_type,
            scheduled_at=scheduled_at,
            status=FollowUpStatus.PENDING,
            notes=data.notes,
            admin_user_id=data.admin_user_id,
            created_at=now,
            updated_at=now,
        )
        with atomic(self.session, "Schedule follow-up"):
            self.session.add(follow_up)

        logger.info(
            "Follow-up %s (%s) scheduled for customer %s at %s",
            follow_up.id, follow_up_type.value, data.customer_id, scheduled_at.isoformat(),
        )
        return follow_up

    def complete_follow_up(self, follow_up_id: str, notes: str | None = None) -> FollowUp:
        return self._close(follow_up_id, FollowUpStatus.COMPLETED, notes)

    def cancel_follow_up(self, follow_up_id: str, notes: str | None = None) -> FollowUp:
        return self._close(follow_up_id, FollowUpStatus.CANCELLED, notes)

    def _close(self, follow_up_id: str, target: FollowUpStatus, notes: str | None) -> FollowUp:
        follow_up = self.get_follow_up(follow_up_id)
        if follow_up.status != FollowUpStatus.PENDING:
            raise InvalidState(
                f"Follow-up is already {follow_up.status.value.lower()}",
                entity="FollowUp",
                entity_id=follow_up_id,
                current=follow_up.status.value,
            )

        now = self.clock()
        values = {}
        if target == FollowUpStatus.COMPLETED:
            values["completed_at"] = now
        if notes:
            values["notes"] = notes

        try:
            with atomic(self.session, f"Mark follow-up {target.value.lower()}"):
                swap_status(
                    self.session, FollowUp, "FollowUp", follow_up_id, FollowUpStatus.PENDING, target, now, **values
                )
        except InvalidTransition as exc:
            # closed by someone else since we read it
            raise InvalidState(
                "Follow-up is no longer pending",
                entity="FollowUp",
                entity_id=follow_up_id,
            ) from exc

        logger.info("Follow-up %s -> %s", follow_up_id, target.value)
        return follow_up

    # ---------------------------------------------------------
    # Queries
    # ---------------------------------------------------------
    def get_follow_up(self, follow_up_id: str) -> FollowUp:
        follow_up = self.session.get(FollowUp, follow_up_id)
        if not follow_up:
            raise NotFound("FollowUp", follow_up_id)
        return follow_up

    def _pending(self, admin_user_id: str | None):
        qry = self.session.query(FollowUp).filter(FollowUp.status == FollowUpStatus.PENDING)
        if admin_user_id:
            qry = qry.filter(FollowUp.admin_user_id == admin_user_id)
        return qry

    def get_todays_pending_follow_ups(self, admin_user_id: str | None = None) -> list[FollowUp]:
        start, end = self.calendar.day_bounds(self.clock())
        return (
            self._pending(admin_user_id)
            .filter(FollowUp.scheduled_at >= start, FollowUp.scheduled_at < end)
            .order_by(FollowUp.scheduled_at.asc())
            .all()
        )

    def get_overdue_follow_ups(self, admin_user_id: str | None = None) -> list[FollowUp]:
        return (
            self._pending(admin_user_id)
            .filter(FollowUp.scheduled_at < self.clock())
            .order_by(FollowUp.scheduled_at.asc())
            .all()
        )
