# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta

import pytest
import sqlalchemy as sa

from salesdesk import create_app
from salesdesk.errors import ExternalServiceError
from salesdesk.extensions import db
from salesdesk.models import AdminUser, PricingTier, Product
from salesdesk.services.customers import AddressData, CustomerData
from salesdesk.services.messaging import WhatsAppClient
from salesdesk.settings import TestingConfig
from salesdesk.utils.passwords import hash_password, new_api_token

ADMIN_PASSWORD = "Secret12345"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMessenger(WhatsAppClient):
    """Builds real WhatsApp payloads but never touches the network."""

    def __init__(self):
        super().__init__(
            phone_number_id="test-phone-id",
            access_token="test-token",
            verify_token="verify-me",
        )
        self.sent: list[dict] = []
        self.fail = False

    def _post(self, payload: dict) -> str:
        if self.fail:
            raise ExternalServiceError("WhatsApp API returned HTTP 500", status=500)
        self.sent.append(payload)
        return f"wamid.test{len(self.sent)}"


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 15, 10, 0, 0))


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def app(clock, messenger):
    app = create_app(TestingConfig, messenger=messenger, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def stale_reads(app, monkeypatch):
    """Loaded objects keep their attributes across commits made behind their back."""
    monkeypatch.setattr(db.session(), "expire_on_commit", False)


@pytest.fixture
def write_behind(stale_reads):
    """Change a row without the session noticing, as a concurrent request would."""

    def write(model, row_id, **values):
        db.session.execute(
            sa.update(model)
            .where(model.id == row_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    return write


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["salesdesk"]


@pytest.fixture
def admin(app):
    user = AdminUser(
        name="Sales Admin",
        email="admin@example.com",
        role="admin",
        password_hash=hash_password(ADMIN_PASSWORD),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_headers(admin):
    token, digest = new_api_token()
    admin.api_token = digest
    db.session.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(services):
    return services.customers.create_customer(
        CustomerData(name="Budi Santoso", email="budi@example.com", phone="+6281234567890")
    )


@pytest.fixture
def address(services, customer):
    return services.customers.add_address(
        customer.id,
        AddressData(
            address="Jl. Sudirman No. 1",
            city="Jakarta",
            province="DKI Jakarta",
            postal_code="10220",
            is_default=True,
        ),
    )


@pytest.fixture
def product(app):
    p = Product(name="Widget", sku="WID-001", base_price=50_000)
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def tiered_product(app):
    p = Product(name="Bulk Widget", sku="WID-BULK", base_price=50_000)
    p.pricing_tiers.append(PricingTier(min_quantity=50, max_quantity=200, price_per_unit=45_000))
    db.session.add(p)
    db.session.commit()
    return p
