# salesdesk/services/common.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Iterator
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salesdesk.errors import InvalidTransition, PersistenceError, SalesError, ValidationError
from salesdesk.models import can_transition, utcnow_naive

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# =========================================================
# Transactions
# =========================================================
@contextmanager
def atomic(session: Session, action: str) -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on any failure.

    SalesError passes through untouched (the caller raised it on purpose);
    storage failures are logged and surfaced as PersistenceError.
    """
    try:
        yield session
        session.commit()
    except SalesError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("%s failed", action)
        raise PersistenceError(f"{action} failed") from exc
    except Exception:
        session.rollback()
        raise


# =========================================================
# State machines
# =========================================================
def ensure_transition(table: dict, entity: str, entity_id: str, current, target) -> None:
    if not can_transition(table, current, target):
        raise InvalidTransition(entity, entity_id, current.value, target.value)


def swap_status(session: Session, model, entity: str, entity_id: str, current, target, now: datetime, **values) -> None:
    """
    Compare-and-swap the status column: UPDATE ... WHERE id = :id AND status = :current.

    Zero affected rows means another writer moved the row first; that is
    reported as InvalidTransition and the surrounding transaction rolls back.
    """
    result = session.execute(
        sa.update(model)
        .where(model.id == entity_id, model.status == current)
        .values(status=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(
            entity,
            entity_id,
            current.value,
            target.value,
            message=f"{entity} is no longer {current.value}; status changed concurrently",
        )


def parse_enum(enum_cls, value, field: str):
    """Accept an enum member or its string value; anything else is a ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls((value or "").strip().upper())
    except (ValueError, AttributeError):
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field}: {value!r}. Expected one of: {allowed}", field=field)


# =========================================================
# Time helpers
# =========================================================
def as_naive_utc(dt: datetime | None) -> datetime | None:
    """Normalize an aware datetime to naive UTC; leave naive as-is."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class BusinessCalendar:
    """
    Converts between stored naive-UTC timestamps and the business timezone.

    Month boundaries (document numbering, trends) and "today" (follow-ups)
    are defined in local time.
    """

    def __init__(self, tz_name: str = "UTC"):
        self.tz = ZoneInfo(tz_name)

    def to_local(self, dt: datetime) -> datetime:
        return dt.replace(tzinfo=timezone.utc).astimezone(self.tz)

    def to_utc_naive(self, local_dt: datetime) -> datetime:
        return local_dt.astimezone(timezone.utc).replace(tzinfo=None)

    def month_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """[start, end) of the local calendar month containing `now`, as naive UTC."""
        local = self.to_local(now)
        start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            nxt = start.replace(year=start.year + 1, month=1)
        else:
            nxt = start.replace(month=start.month + 1)
        return self.to_utc_naive(start), self.to_utc_naive(nxt)

    def month_start(self, now: datetime, months_back: int = 0) -> datetime:
        """Start of the local month `months_back` months before the one containing `now`, as naive UTC."""
        local = self.to_local(now)
        index = local.year * 12 + (local.month - 1) - months_back
        start = datetime(index // 12, index % 12 + 1, 1, tzinfo=self.tz)
        return self.to_utc_naive(start)

    def day_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """[start, end) of the local day containing `now`, as naive UTC."""
        local_day = self.to_local(now).date()
        start = datetime.combine(local_day, time.min, tzinfo=self.tz)
        end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=self.tz)
        return self.to_utc_naive(start), self.to_utc_naive(end)

    def month_key(self, dt: datetime) -> str:
        return self.to_local(dt).strftime("%Y-%m")


def default_clock() -> datetime:
    return utcnow_naive()
