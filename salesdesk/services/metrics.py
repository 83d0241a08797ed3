# salesdesk/services/metrics.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Session

from salesdesk.models import (
    Communication,
    CommunicationStatus,
    CommunicationType,
    FollowUp,
    FollowUpStatus,
    Quotation,
    QuotationStatus,
)

from .common import BusinessCalendar, Clock, as_naive_utc, default_clock

TREND_MONTHS = 6


@dataclass
class FollowUpEffectiveness:
    total_follow_ups: int = 0
    completed_follow_ups: int = 0
    conversion_rate: float = 0.0


@dataclass
class MonthlyTrend:
    month: str
    communications: int = 0
    follow_ups: int = 0
    conversions: int = 0


@dataclass
class CommunicationMetrics:
    total_communications: int
    communications_by_type: dict[str, int]
    communications_by_status: dict[str, int]
    response_rate: float
    follow_up_effectiveness: FollowUpEffectiveness
    monthly_trends: list[MonthlyTrend] = field(default_factory=list)


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


class MetricsAggregator:
    """
    Read-only effectiveness numbers over the communication log and follow-ups.

    `response_rate` is DELIVERED / SENT * 100: rows still SENT against rows the
    provider confirmed, not a true reply rate.
    """

    def __init__(self, session: Session, calendar: BusinessCalendar, clock: Clock = default_clock):
        self.session = session
        self.calendar = calendar
        self.clock = clock

    def get_communication_metrics(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        admin_user_id: str | None = None,
    ) -> CommunicationMetrics:
        start_date = as_naive_utc(start_date)
        end_date = as_naive_utc(end_date)

        comm_filters = self._window(Communication, start_date, end_date, admin_user_id)

        by_type = {t.value: 0 for t in CommunicationType}
        for comm_type, n in (
            self.session.query(Communication.type, sa.func.count(Communication.id))
            .filter(*comm_filters)
            .group_by(Communication.type)
        ):
            by_type[comm_type.value] = n

        by_status = {s.value: 0 for s in CommunicationStatus}
        for status, n in (
            self.session.query(Communication.status, sa.func.count(Communication.id))
            .filter(*comm_filters)
            .group_by(Communication.status)
        ):
            by_status[status.value] = n

        total = sum(by_type.values())
        response_rate = _percent(
            by_status[CommunicationStatus.DELIVERED.value],
            by_status[CommunicationStatus.SENT.value],
        )

        return CommunicationMetrics(
            total_communications=total,
            communications_by_type=by_type,
            communications_by_status=by_status,
            response_rate=response_rate,
            follow_up_effectiveness=self._follow_up_effectiveness(start_date, end_date, admin_user_id),
            monthly_trends=self._monthly_trends(admin_user_id),
        )

    # ---------------------------------------------------------
    # Parts
    # ---------------------------------------------------------
    @staticmethod
    def _window(model, start_date, end_date, admin_user_id) -> list:
        filters = []
        if start_date:
            filters.append(model.created_at >= start_date)
        if end_date:
            filters.append(model.created_at <= end_date)
        if admin_user_id:
            filters.append(model.admin_user_id == admin_user_id)
        return filters

    def _follow_up_effectiveness(self, start_date, end_date, admin_user_id) -> FollowUpEffectiveness:
        filters = self._window(FollowUp, start_date, end_date, admin_user_id)

        total = self.session.query(sa.func.count(FollowUp.id)).filter(*filters).scalar() or 0
        completed = (
            self.session.query(sa.func.count(FollowUp.id))
            .filter(*filters, FollowUp.status == FollowUpStatus.COMPLETED)
            .scalar()
            or 0
        )
        converted = (
            self.session.query(sa.func.count(FollowUp.id))
            .join(Quotation, FollowUp.quotation_id == Quotation.id)
            .filter(*filters, Quotation.status == QuotationStatus.APPROVED)
            .scalar()
            or 0
        )

        return FollowUpEffectiveness(
            total_follow_ups=total,
            completed_follow_ups=completed,
            conversion_rate=_percent(converted, total),
        )

    def _monthly_trends(self, admin_user_id: str | None) -> list[MonthlyTrend]:
        since = self.calendar.month_start(self.clock(), TREND_MONTHS - 1)
        buckets: dict[str, MonthlyTrend] = {}

        def bump(stamps, attr: str) -> None:
            for (stamp,) in stamps:
                key = self.calendar.month_key(stamp)
                trend = buckets.setdefault(key, MonthlyTrend(month=key))
                setattr(trend, attr, getattr(trend, attr) + 1)

        comm_q = self.session.query(Communication.created_at).filter(Communication.created_at >= since)
        follow_q = self.session.query(FollowUp.created_at).filter(FollowUp.created_at >= since)
        if admin_user_id:
            comm_q = comm_q.filter(Communication.admin_user_id == admin_user_id)
            follow_q = follow_q.filter(FollowUp.admin_user_id == admin_user_id)

        bump(comm_q.all(), "communications")
        bump(follow_q.all(), "follow_ups")
        bump(
            self.session.query(Quotation.updated_at)
            .filter(Quotation.status == QuotationStatus.APPROVED, Quotation.updated_at >= since)
            .all(),
            "conversions",
        )

        return [buckets[k] for k in sorted(buckets)]
