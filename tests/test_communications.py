# tests/test_communications.py
from datetime import timedelta

import pytest

from salesdesk.errors import ExternalServiceError, NotFound, PersistenceError, ValidationError
from salesdesk.models import (
    Communication,
    CommunicationDirection,
    CommunicationStatus,
    CommunicationType,
    FollowUp,
    FollowUpType,
)
from salesdesk.services.communications import CommunicationData, SendFollowUpMessageData
from salesdesk.services.follow_ups import FollowUpData
from salesdesk.services.quotations import QuotationLine, QuotationRequest


def _webhook(statuses=None, messages=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {"statuses": statuses or [], "messages": messages or []},
                    }
                ],
            }
        ],
    }


def test_log_communication(services, customer, admin):
    comm = services.communications.log_communication(
        CommunicationData(
            customer_id=customer.id,
            type="phone",
            direction="outbound",
            content="  Called about the quotation  ",
            admin_user_id=admin.id,
        )
    )
    assert comm.type == CommunicationType.PHONE
    assert comm.direction == CommunicationDirection.OUTBOUND
    assert comm.status == CommunicationStatus.SENT
    assert comm.content == "Called about the quotation"


def test_log_communication_validation(services, customer, admin):
    with pytest.raises(ValidationError):
        services.communications.log_communication(
            CommunicationData(customer_id=customer.id, type="FAX", direction="OUTBOUND", content="x")
        )
    with pytest.raises(ValidationError):
        services.communications.log_communication(
            CommunicationData(customer_id=customer.id, type="EMAIL", direction="OUTBOUND", content="   ")
        )
    with pytest.raises(NotFound):
        services.communications.log_communication(
            CommunicationData(customer_id="nobody", type="EMAIL", direction="OUTBOUND", content="hi")
        )


def test_send_follow_up_message(services, customer, admin, messenger):
    result = services.communications.send_follow_up_message(
        SendFollowUpMessageData(
            customer_id=customer.id,
            template_name="quotation_reminder",
            admin_user_id=admin.id,
            parameters={"name": "Budi", "number": "QUO/2024/01/0001"},
        )
    )

    assert result.message_id == "wamid.test1"
    assert result.follow_up is None
    comm = result.communication
    assert comm.status == CommunicationStatus.SENT
    assert comm.direction == CommunicationDirection.OUTBOUND
    assert comm.type == CommunicationType.WHATSAPP
    assert comm.external_id == "wamid.test1"
    assert "quotation_reminder" in comm.content

    payload = messenger.sent[0]
    assert payload["to"] == "6281234567890"
    assert payload["template"]["name"] == "quotation_reminder"
    params = payload["template"]["components"][0]["parameters"]
    assert [p["text"] for p in params] == ["Budi", "QUO/2024/01/0001"]


def test_failed_send_is_logged_and_raised(services, customer, admin, messenger):
    messenger.fail = True

    with pytest.raises(ExternalServiceError):
        services.communications.send_follow_up_message(
            SendFollowUpMessageData(customer_id=customer.id, template_name="promo", admin_user_id=admin.id)
        )

    comm = Communication.query.one()
    assert comm.status == CommunicationStatus.FAILED
    assert comm.content.startswith("Failed template: promo | Error:")
    assert comm.external_id is None


def test_unlogged_send_still_succeeds(services, customer, admin, messenger, monkeypatch):
    def broken_log(data):
        raise PersistenceError("Log communication failed")

    monkeypatch.setattr(services.communications, "log_communication", broken_log)

    result = services.communications.send_follow_up_message(
        SendFollowUpMessageData(customer_id=customer.id, template_name="promo", admin_user_id=admin.id)
    )

    assert result.message_id == "wamid.test1"
    assert result.communication is None
    assert len(messenger.sent) == 1
    assert Communication.query.count() == 0


def test_unscheduled_follow_up_after_send_still_succeeds(services, customer, admin, clock, monkeypatch):
    def broken_schedule(data):
        raise PersistenceError("Schedule follow-up failed")

    monkeypatch.setattr(services.communications.follow_ups, "schedule_follow_up", broken_schedule)

    result = services.communications.send_follow_up_message(
        SendFollowUpMessageData(
            customer_id=customer.id,
            template_name="promo",
            admin_user_id=admin.id,
            scheduled_at=clock.now + timedelta(days=1),
        )
    )

    assert result.message_id == "wamid.test1"
    assert result.follow_up is None
    assert result.communication.external_id == "wamid.test1"
    assert FollowUp.query.count() == 0


def test_send_schedules_follow_up_for_future_time(services, customer, product, admin, clock):
    q = services.quotations.create_quotation(
        QuotationRequest(customer_id=customer.id, items=[QuotationLine(product_id=product.id, quantity=1)])
    )
    when = clock.now + timedelta(days=3)

    result = services.communications.send_follow_up_message(
        SendFollowUpMessageData(
            customer_id=customer.id,
            template_name="quotation_reminder",
            admin_user_id=admin.id,
            quotation_id=q.id,
            scheduled_at=when,
            notes="check reply",
        )
    )

    assert result.follow_up is not None
    assert result.follow_up.type == FollowUpType.QUOTATION_FOLLOW_UP
    assert result.follow_up.scheduled_at == when
    assert [c.id for c in services.communications.get_quotation_communications(q.id)] == [result.communication.id]


def test_send_ignores_past_schedule_time(services, customer, admin, clock):
    result = services.communications.send_follow_up_message(
        SendFollowUpMessageData(
            customer_id=customer.id,
            template_name="hello",
            admin_user_id=admin.id,
            scheduled_at=clock.now - timedelta(hours=1),
        )
    )
    assert result.follow_up is None


def test_webhook_updates_status_and_logs_inbound(services, customer, admin):
    sent = services.communications.send_follow_up_message(
        SendFollowUpMessageData(customer_id=customer.id, template_name="hello", admin_user_id=admin.id)
    )

    inbound = {"from": "6281234567890", "id": "wamid.in1", "type": "text", "text": {"body": "Sounds good"}}
    result = services.communications.handle_webhook(
        _webhook(statuses=[{"id": sent.message_id, "status": "delivered"}], messages=[inbound])
    )
    assert result.statuses_updated == 1
    assert result.messages_logged == 1

    outbound = Communication.query.filter_by(external_id=sent.message_id).one()
    assert outbound.status == CommunicationStatus.DELIVERED

    reply = Communication.query.filter_by(external_id="wamid.in1").one()
    assert reply.direction == CommunicationDirection.INBOUND
    assert reply.content == "Sounds good"
    assert reply.admin_user_id is None

    # redelivered callback
    again = services.communications.handle_webhook(_webhook(messages=[inbound]))
    assert again.messages_logged == 0
    assert Communication.query.filter_by(external_id="wamid.in1").count() == 1


def test_webhook_ignores_unknown_sender_and_ids(services, customer):
    result = services.communications.handle_webhook(
        _webhook(
            statuses=[{"id": "wamid.unknown", "status": "read"}],
            messages=[{"from": "6289999999999", "id": "wamid.x", "text": {"body": "hi"}}],
        )
    )
    assert result.statuses_updated == 0
    assert result.messages_logged == 0


def test_webhook_rejects_other_objects(services):
    with pytest.raises(ValidationError):
        services.communications.handle_webhook({"object": "page", "entry": []})


def test_communication_history(services, customer, admin, clock):
    for n in range(3):
        clock.advance(minutes=1)
        services.communications.log_communication(
            CommunicationData(
                customer_id=customer.id, type="EMAIL", direction="OUTBOUND", content=f"mail {n}", admin_user_id=admin.id
            )
        )
    services.follow_ups.schedule_follow_up(
        FollowUpData(
            customer_id=customer.id, type="GENERAL", scheduled_at=clock.now + timedelta(days=1), admin_user_id=admin.id
        )
    )

    history = services.communications.get_customer_communication_history(customer.id, limit=2)
    assert history.total_communications == 3
    assert [c.content for c in history.communications] == ["mail 2", "mail 1"]
    assert history.last_communication.content == "mail 2"
    assert history.total_follow_ups == 1
    assert history.next_follow_up is not None

    page_two = services.communications.get_customer_communication_history(customer.id, limit=2, offset=2)
    assert [c.content for c in page_two.communications] == ["mail 0"]
    assert page_two.last_communication.content == "mail 2"


def test_history_for_unknown_customer(services):
    with pytest.raises(NotFound):
        services.communications.get_customer_communication_history("nobody")
