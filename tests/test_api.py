# tests/test_api.py
from salesdesk import create_app
from salesdesk.extensions import db
from salesdesk.models import AdminUser
from salesdesk.settings import TestingConfig

ADMIN_PASSWORD = "Secret12345"


def _create_quotation(client, headers, customer, product, address):
    resp = client.post(
        "/api/quotations",
        headers=headers,
        json={
            "customer_id": customer.id,
            "shipping_address_id": address.id,
            "items": [{"product_id": product.id, "quantity": 100}],
        },
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_requires_bearer_token(client):
    resp = client.get("/api/quotations")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"

    resp = client.get("/api/quotations", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_login_issues_token(client, admin):
    resp = client.post("/auth/login", json={"email": "ADMIN@example.com", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["token"]

    resp = client.get("/api/quotations", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.get_json() == []


def test_login_failures(client, admin):
    assert client.post("/auth/login", json={"email": "admin@example.com"}).status_code == 422
    assert client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"}).status_code == 401

    admin.is_active = False
    db.session.commit()
    resp = client.post("/auth/login", json={"email": "admin@example.com", "password": ADMIN_PASSWORD})
    assert resp.status_code == 403


class RateLimitedConfig(TestingConfig):
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = "memory://"
    LOGIN_RATE_LIMIT = "2 per minute"


def test_login_rate_limit_comes_from_config(messenger, clock):
    app = create_app(RateLimitedConfig, messenger=messenger, clock=clock)
    with app.app_context():
        db.create_all()
        client = app.test_client()

        for _ in range(2):
            assert client.post("/auth/login", json={}).status_code == 422
        resp = client.post("/auth/login", json={})
        assert resp.status_code == 429
        assert resp.get_json()["error"] == "rate_limited"

        db.session.remove()
        db.drop_all()


def test_inactive_admin_token_is_refused(client, auth_headers):
    AdminUser.query.one().is_active = False
    db.session.commit()
    assert client.get("/api/orders", headers=auth_headers).status_code == 401


def test_quotation_to_paid_invoice(client, auth_headers, customer, product, address, clock):
    quotation = _create_quotation(client, auth_headers, customer, product, address)
    assert quotation["quotation_number"] == "QUO/2024/01/0001"
    assert quotation["total_amount"] == 5_000_000

    resp = client.patch(f"/api/quotations/{quotation['id']}/status", headers=auth_headers, json={"status": "APPROVED"})
    assert resp.get_json()["status"] == "APPROVED"

    clock.advance(minutes=1)
    resp = client.post(f"/api/quotations/{quotation['id']}/convert", headers=auth_headers)
    assert resp.status_code == 201
    order_id = resp.get_json()["order_id"]

    resp = client.post(f"/api/quotations/{quotation['id']}/convert", headers=auth_headers)
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "already_converted"

    resp = client.get(f"/api/quotations/{quotation['id']}", headers=auth_headers)
    assert [h["to_status"] for h in resp.get_json()["status_history"]] == ["APPROVED", "CONVERTED"]

    resp = client.post(f"/api/orders/{order_id}/invoice", headers=auth_headers)
    assert resp.status_code == 201
    invoice = resp.get_json()
    assert invoice["total_amount"] == 5_000_000

    resp = client.post(
        f"/api/invoices/{invoice['id']}/payment",
        headers=auth_headers,
        json={"payment_method": "bank_transfer", "paid_at": "2024-01-16T08:00:00Z"},
    )
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "PAID"
    assert resp.get_json()["paid_at"] == "2024-01-16T08:00:00"

    resp = client.get(f"/api/orders/{order_id}", headers=auth_headers)
    assert resp.get_json()["invoice_id"] == invoice["id"]


def test_errors_render_as_json(client, auth_headers, customer, product, address):
    quotation = _create_quotation(client, auth_headers, customer, product, address)

    resp = client.patch(f"/api/quotations/{quotation['id']}/status", headers=auth_headers, json={"status": "CONVERTED"})
    assert resp.status_code == 409
    body = resp.get_json()
    assert body["error"] == "invalid_transition"
    assert body["details"]["current_status"] == "PENDING"

    resp = client.get("/api/orders/does-not-exist", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"

    resp = client.post("/api/quotations", headers=auth_headers, json={"items": []})
    assert resp.status_code == 422


def test_order_status_and_tracking(client, auth_headers, customer, product, address):
    quotation = _create_quotation(client, auth_headers, customer, product, address)
    client.patch(f"/api/quotations/{quotation['id']}/status", headers=auth_headers, json={"status": "APPROVED"})
    order_id = client.post(f"/api/quotations/{quotation['id']}/convert", headers=auth_headers).get_json()["order_id"]

    resp = client.patch(f"/api/orders/{order_id}/status", headers=auth_headers, json={"status": "PROCESSING"})
    assert resp.get_json()["status"] == "PROCESSING"

    resp = client.post(f"/api/orders/{order_id}/tracking", headers=auth_headers, json={"tracking_number": "JNE1"})
    assert resp.get_json()["status"] == "SHIPPED"
    assert resp.get_json()["tracking_number"] == "JNE1"


def test_follow_ups_and_messages(client, auth_headers, customer, messenger):
    resp = client.post(
        "/api/follow-ups",
        headers=auth_headers,
        json={"customer_id": customer.id, "type": "GENERAL", "scheduled_at": "2024-01-15T14:00:00"},
    )
    assert resp.status_code == 201
    follow_up_id = resp.get_json()["id"]

    resp = client.get("/api/follow-ups/today", headers=auth_headers)
    assert [f["id"] for f in resp.get_json()] == [follow_up_id]

    resp = client.post(f"/api/follow-ups/{follow_up_id}/complete", headers=auth_headers, json={})
    assert resp.get_json()["status"] == "COMPLETED"
    resp = client.post(f"/api/follow-ups/{follow_up_id}/cancel", headers=auth_headers, json={})
    assert resp.status_code == 409

    resp = client.post(
        "/api/follow-ups/send-message",
        headers=auth_headers,
        json={"customer_id": customer.id, "template_name": "hello", "parameters": {"name": "Budi"}},
    )
    assert resp.status_code == 201
    assert resp.get_json()["communication"]["status"] == "SENT"

    messenger.fail = True
    resp = client.post(
        "/api/follow-ups/send-message",
        headers=auth_headers,
        json={"customer_id": customer.id, "template_name": "hello"},
    )
    assert resp.status_code == 502

    resp = client.get(f"/api/customers/{customer.id}/communications", headers=auth_headers)
    body = resp.get_json()
    assert body["total_communications"] == 2
    assert {c["status"] for c in body["communications"]} == {"SENT", "FAILED"}

    resp = client.get("/api/communications/metrics", headers=auth_headers)
    assert resp.get_json()["total_communications"] == 2


def test_customer_lookup(client, auth_headers, customer):
    resp = client.get(f"/api/customers/{customer.id}", headers=auth_headers)
    assert resp.get_json()["phone"] == "+6281234567890"


def test_webhook_verification(client):
    resp = client.get(
        "/webhooks/whatsapp",
        query_string={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
    )
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "1158201444"

    resp = client.get(
        "/webhooks/whatsapp",
        query_string={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
    )
    assert resp.status_code == 403
    assert client.get("/webhooks/whatsapp").status_code == 400


def test_webhook_events_are_public(client, customer):
    resp = client.post(
        "/webhooks/whatsapp",
        json={
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"value": {"messages": [{"from": "6281234567890", "id": "wamid.in", "text": {"body": "ok"}}]}}]}],
        },
    )
    assert resp.status_code == 200
    assert resp.get_json()["messages_logged"] == 1

    resp = client.post("/webhooks/whatsapp", json={"object": "instagram"})
    assert resp.status_code == 422
