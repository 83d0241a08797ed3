# tests/test_customers.py
import pytest

from salesdesk.errors import AlreadyExists, NotFound, ValidationError
from salesdesk.models import Address, CustomerType
from salesdesk.services.customers import (
    AddressData,
    CompanyData,
    CustomerData,
    CustomerPatch,
    validate_npwp,
)


def test_phone_and_email_are_normalized(services):
    c = services.customers.create_customer(
        CustomerData(name="Siti", email="  Siti@Example.COM ", phone="0812-3456-7891")
    )
    assert c.email == "siti@example.com"
    assert c.phone == "+6281234567891"
    assert c.type == CustomerType.B2C


@pytest.mark.parametrize("phone", ["021-555-1234", "+1 415 555 0100", "0812"])
def test_rejects_non_mobile_numbers(services, phone):
    with pytest.raises(ValidationError):
        services.customers.create_customer(CustomerData(name="X", email="x@example.com", phone=phone))


def test_duplicate_contact(services, customer):
    with pytest.raises(AlreadyExists):
        services.customers.create_customer(
            CustomerData(name="Other", email="other@example.com", phone="081234567890")
        )


def test_update_profile(services, customer):
    services.customers.update_customer_profile(customer.id, CustomerPatch(name="Budi S.", npwp="01.234.567.8-901.000"))
    c = services.customers.get_customer(customer.id)
    assert c.name == "Budi S."
    assert c.npwp == "01.234.567.8-901.000"
    assert c.email == "budi@example.com"


def test_npwp_format():
    assert validate_npwp("01.234.567.8-901.000") == "01.234.567.8-901.000"
    assert validate_npwp("") is None
    with pytest.raises(ValidationError):
        validate_npwp("012345678901000")


def test_company_link_makes_customer_b2b(services, customer):
    company = services.customers.create_company(
        CompanyData(name="PT Maju Jaya", registration_number="AHU-1", tax_id="01.234.567.8-901.000")
    )
    services.customers.link_company(customer.id, company.id)

    c = services.customers.get_customer(customer.id)
    assert c.type == CustomerType.B2B
    assert c.company.name == "PT Maju Jaya"

    with pytest.raises(AlreadyExists):
        services.customers.create_company(
            CompanyData(name="Copy", registration_number="AHU-2", tax_id="01.234.567.8-901.000")
        )
    with pytest.raises(NotFound):
        services.customers.link_company(customer.id, "missing")


def test_new_default_address_replaces_old_default(services, customer, address):
    second = services.customers.add_address(
        customer.id,
        AddressData(address="Jl. Asia Afrika 8", city="Bandung", province="Jawa Barat", postal_code="40111", is_default=True),
    )
    defaults = [a.id for a in Address.query.filter_by(customer_id=customer.id, is_default=True)]
    assert defaults == [second.id]


def test_search(services, customer):
    assert [c.id for c in services.customers.search_customers("budi")] == [customer.id]
    assert services.customers.search_customers("budi", customer_type="B2B") == []
