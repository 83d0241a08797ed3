# salesdesk/services/communications.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

import sqlalchemy as sa
from sqlalchemy.orm import Session

from salesdesk.errors import ExternalServiceError, NotFound, PersistenceError, ValidationError
from salesdesk.models import (
    Communication,
    CommunicationDirection,
    CommunicationStatus,
    CommunicationType,
    Customer,
    FollowUp,
    FollowUpStatus,
    FollowUpType,
    Quotation,
)
from salesdesk.utils.phone import phone_variants

from .common import Clock, as_naive_utc, atomic, default_clock, parse_enum
from .follow_ups import FollowUpData, FollowUpScheduler
from .messaging import MessagingClient, map_provider_status

logger = logging.getLogger(__name__)

WEBHOOK_OBJECT = "whatsapp_business_account"


# =========================================================
# Inputs / results
# =========================================================
@dataclass(frozen=True)
class CommunicationData:
    customer_id: str
    type: CommunicationType | str
    direction: CommunicationDirection | str
    content: str
    admin_user_id: str | None = None
    quotation_id: str | None = None
    order_id: str | None = None
    status: CommunicationStatus | str | None = None
    external_id: str | None = None


@dataclass(frozen=True)
class SendFollowUpMessageData:
    customer_id: str
    template_name: str
    admin_user_id: str | None
    quotation_id: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    scheduled_at: datetime | None = None
    notes: str | None = None


@dataclass
class SendResult:
    message_id: str
    # None when the send went through but the log row could not be written
    communication: Communication | None
    follow_up: FollowUp | None = None


@dataclass
class CommunicationHistory:
    communications: list[Communication]
    follow_ups: list[FollowUp]
    total_communications: int
    total_follow_ups: int
    last_communication: Communication | None
    next_follow_up: FollowUp | None


@dataclass
class WebhookResult:
    statuses_updated: int = 0
    messages_logged: int = 0


class CommunicationLog:
    """
    Append-only record of customer contact, plus the WhatsApp send path.

    Rows are never edited except for `status`, which delivery callbacks move
    along by provider message id (`external_id`).
    """

    def __init__(
        self,
        session: Session,
        *,
        messenger: MessagingClient,
        follow_ups: FollowUpScheduler,
        clock: Clock = default_clock,
    ):
        self.session = session
        self.messenger = messenger
        self.follow_ups = follow_ups
        self.clock = clock

    # ---------------------------------------------------------
    # Log
    # ---------------------------------------------------------
    def log_communication(self, data: CommunicationData) -> Communication:
        comm_type = parse_enum(CommunicationType, data.type, "type")
        direction = parse_enum(CommunicationDirection, data.direction, "direction")
        status = parse_enum(CommunicationStatus, data.status, "status") if data.status else CommunicationStatus.SENT

        content = (data.content or "").strip()
        if not content:
            raise ValidationError("Content is required", field="content")

        if not self.session.get(Customer, data.customer_id):
            raise NotFound("Customer", data.customer_id)

        now = self.clock()
        communication = Communication(
            customer_id=data.customer_id,
            quotation_id=data.quotation_id,
            order_id=data.order_id,
            type=comm_type,
            direction=direction,
            content=content,
            status=status,
            external_id=data.external_id,
            admin_user_id=data.admin_user_id,
            created_at=now,
            updated_at=now,
        )
        with atomic(self.session, "Log communication"):
            self.session.add(communication)

        return communication

    def update_communication_status(self, external_id: str, status: CommunicationStatus | str) -> int:
        status = parse_enum(CommunicationStatus, status, "status")
        if not external_id:
            return 0

        with atomic(self.session, "Update communication status"):
            result = self.session.execute(
                sa.update(Communication)
                .where(Communication.external_id == external_id)
                .values(status=status, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
        count = result.rowcount or 0
        logger.debug("Communication %s -> %s (%d row(s))", external_id, status.value, count)
        return count

    # ---------------------------------------------------------
    # WhatsApp follow-up
    # ---------------------------------------------------------
    def send_follow_up_message(self, data: SendFollowUpMessageData) -> SendResult:
        customer = self.session.get(Customer, data.customer_id)
        if not customer:
            raise NotFound("Customer", data.customer_id)
        if data.quotation_id and not self.session.get(Quotation, data.quotation_id):
            raise NotFound("Quotation", data.quotation_id)

        params = dict(data.parameters or {})

        try:
            message_id = self.messenger.send_template(customer.phone, data.template_name, params)
        except (ExternalServiceError, ValidationError) as exc:
            logger.warning("Follow-up message to customer %s failed: %s", customer.id, exc.message)
            self._record_failed_send(data, exc)
            raise

        communication = None
        try:
            communication = self.log_communication(
                CommunicationData(
                    customer_id=customer.id,
                    quotation_id=data.quotation_id,
                    type=CommunicationType.WHATSAPP,
                    direction=CommunicationDirection.OUTBOUND,
                    content=f"Follow-up template: {data.template_name} | Parameters: {json.dumps(params)}",
                    status=CommunicationStatus.SENT,
                    external_id=message_id,
                    admin_user_id=data.admin_user_id,
                )
            )
        except PersistenceError:
            # The customer already has the message; losing the row must not fail the call.
            logger.error("WhatsApp message %s sent to customer %s but not logged", message_id, customer.id)

        follow_up = None
        scheduled_at = as_naive_utc(data.scheduled_at)
        if scheduled_at and scheduled_at > self.clock():
            try:
                follow_up = self.follow_ups.schedule_follow_up(
                    FollowUpData(
                        customer_id=customer.id,
                        quotation_id=data.quotation_id,
                        type=FollowUpType.QUOTATION_FOLLOW_UP if data.quotation_id else FollowUpType.GENERAL,
                        scheduled_at=scheduled_at,
                        notes=data.notes,
                        admin_user_id=data.admin_user_id,
                    )
                )
            except PersistenceError:
                logger.error(
                    "WhatsApp message %s sent to customer %s but follow-up at %s not scheduled",
                    message_id, customer.id, scheduled_at.isoformat(),
                )

        logger.info("Follow-up template %s sent to customer %s (%s)", data.template_name, customer.id, message_id)
        return SendResult(message_id=message_id, communication=communication, follow_up=follow_up)

    def _record_failed_send(self, data: SendFollowUpMessageData, exc: Exception) -> None:
        try:
            self.log_communication(
                CommunicationData(
                    customer_id=data.customer_id,
                    quotation_id=data.quotation_id,
                    type=CommunicationType.WHATSAPP,
                    direction=CommunicationDirection.OUTBOUND,
                    content=f"Failed template: {data.template_name} | Error: {exc}",
                    status=CommunicationStatus.FAILED,
                    admin_user_id=data.admin_user_id,
                )
            )
        except PersistenceError:
            logger.exception("Could not record failed send for customer %s", data.customer_id)

    # ---------------------------------------------------------
    # Provider callbacks
    # ---------------------------------------------------------
    def handle_webhook(self, payload: Mapping[str, Any]) -> WebhookResult:
        if not isinstance(payload, Mapping) or payload.get("object") != WEBHOOK_OBJECT:
            raise ValidationError("Invalid webhook object", field="object")

        result = WebhookResult()
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}

                for status in value.get("statuses") or []:
                    external_id = status.get("id")
                    if external_id:
                        result.statuses_updated += self.update_communication_status(
                            external_id, map_provider_status(status.get("status"))
                        )

                for message in value.get("messages") or []:
                    if self._log_inbound(message):
                        result.messages_logged += 1

        return result

    def _log_inbound(self, message: Mapping[str, Any]) -> Communication | None:
        external_id = message.get("id")
        sender = message.get("from")
        if not sender:
            return None

        # providers redeliver callbacks
        if external_id and self.session.query(Communication.id).filter(
            Communication.external_id == external_id,
            Communication.direction == CommunicationDirection.INBOUND,
        ).first():
            return None

        customer = (
            self.session.query(Customer)
            .filter(Customer.phone.in_(phone_variants(sender)))
            .first()
        )
        if not customer:
            logger.info("Inbound WhatsApp message from unknown number %s ignored", sender)
            return None

        body = (message.get("text") or {}).get("body") or "Media message"
        return self.log_communication(
            CommunicationData(
                customer_id=customer.id,
                type=CommunicationType.WHATSAPP,
                direction=CommunicationDirection.INBOUND,
                content=body,
                status=CommunicationStatus.DELIVERED,
                external_id=external_id,
                admin_user_id=None,
            )
        )

    # ---------------------------------------------------------
    # Queries
    # ---------------------------------------------------------
    def get_customer_communication_history(self, customer_id: str, limit: int = 50, offset: int = 0) -> CommunicationHistory:
        if not self.session.get(Customer, customer_id):
            raise NotFound("Customer", customer_id)

        limit = max(1, min(int(limit), 200))
        offset = max(0, int(offset))

        communications = (
            self.session.query(Communication)
            .filter(Communication.customer_id == customer_id)
            .order_by(Communication.created_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        follow_ups = (
            self.session.query(FollowUp)
            .filter(FollowUp.customer_id == customer_id)
            .order_by(FollowUp.scheduled_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        total_communications = (
            self.session.query(sa.func.count(Communication.id))
            .filter(Communication.customer_id == customer_id)
            .scalar()
        )
        total_follow_ups = (
            self.session.query(sa.func.count(FollowUp.id))
            .filter(FollowUp.customer_id == customer_id)
            .scalar()
        )
        next_follow_up = (
            self.session.query(FollowUp)
            .filter(
                FollowUp.customer_id == customer_id,
                FollowUp.status == FollowUpStatus.PENDING,
                FollowUp.scheduled_at >= self.clock(),
            )
            .order_by(FollowUp.scheduled_at.asc())
            .first()
        )

        if offset == 0:
            last_communication = communications[0] if communications else None
        else:
            last_communication = (
                self.session.query(Communication)
                .filter(Communication.customer_id == customer_id)
                .order_by(Communication.created_at.desc())
                .first()
            )

        return CommunicationHistory(
            communications=communications,
            follow_ups=follow_ups,
            total_communications=total_communications or 0,
            total_follow_ups=total_follow_ups or 0,
            last_communication=last_communication,
            next_follow_up=next_follow_up,
        )

    def get_quotation_communications(self, quotation_id: str) -> list[Communication]:
        return (
            self.session.query(Communication)
            .filter(Communication.quotation_id == quotation_id)
            .order_by(Communication.created_at.desc())
            .all()
        )
