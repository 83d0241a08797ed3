# salesdesk/services/customers.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.orm import Session

from salesdesk.errors import AlreadyExists, NotFound, ValidationError
from salesdesk.models import Address, Company, Customer, CustomerType
from salesdesk.utils.phone import is_valid_indonesian_mobile, to_international

from .common import Clock, atomic, default_clock, parse_enum

logger = logging.getLogger(__name__)

# NPWP: XX.XXX.XXX.X-XXX.XXX (15 digits)
NPWP_RE = re.compile(r"^\d{2}\.\d{3}\.\d{3}\.\d{1}-\d{3}\.\d{3}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_npwp(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    npwp = value.strip()
    if not NPWP_RE.match(npwp):
        raise ValidationError("Invalid NPWP format. Expected format: XX.XXX.XXX.X-XXX.XXX", field="npwp")
    return npwp


def _clean_email(value: str | None) -> str:
    email = (value or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email address is required", field="email")
    return email


def _clean_phone(value: str | None) -> str:
    if not is_valid_indonesian_mobile(value):
        raise ValidationError(f"Invalid Indonesian phone number: {value}", field="phone")
    return to_international(value)


def _required(value: str | None, field: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValidationError(f"{field} is required", field=field)
    return v


# =========================================================
# Inputs
# =========================================================
@dataclass(frozen=True)
class CustomerData:
    name: str
    email: str
    phone: str
    type: CustomerType | str = CustomerType.B2C
    company_id: str | None = None
    npwp: str | None = None


@dataclass(frozen=True)
class CustomerPatch:
    """Only fields that are not None are applied."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    type: CustomerType | str | None = None
    company_id: str | None = None
    npwp: str | None = None


@dataclass(frozen=True)
class CompanyData:
    name: str
    registration_number: str
    tax_id: str
    industry: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    contact_person: str | None = None
    address: str | None = None
    city: str | None = None
    province: str | None = None
    postal_code: str | None = None
    country: str = "Indonesia"


@dataclass(frozen=True)
class AddressData:
    address: str
    city: str
    province: str
    postal_code: str
    label: str | None = None
    country: str = "Indonesia"
    phone: str | None = None
    is_default: bool = False


class CustomerDirectory:
    def __init__(self, session: Session, clock: Clock = default_clock):
        self.session = session
        self.clock = clock

    # ---------------------------------------------------------
    # Customers
    # ---------------------------------------------------------
    def create_customer(self, data: CustomerData) -> Customer:
        name = _required(data.name, "name")
        email = _clean_email(data.email)
        phone = _clean_phone(data.phone)
        customer_type = parse_enum(CustomerType, data.type, "type")
        npwp = validate_npwp(data.npwp)

        self._ensure_unique_contact(email, phone)
        if data.company_id:
            self.get_company(data.company_id)

        now = self.clock()
        customer = Customer(
            name=name,
            email=email,
            phone=phone,
            type=customer_type,
            company_id=data.company_id,
            npwp=npwp,
            created_at=now,
            updated_at=now,
        )
        with atomic(self.session, "Create customer"):
            self.session.add(customer)

        logger.info("Customer %s created (%s)", customer.id, customer_type.value)
        return customer

    def update_customer_profile(self, customer_id: str, patch: CustomerPatch) -> Customer:
        customer = self.get_customer(customer_id)

        email = _clean_email(patch.email) if patch.email is not None else None
        phone = _clean_phone(patch.phone) if patch.phone is not None else None
        if email or phone:
            self._ensure_unique_contact(email, phone, exclude_id=customer.id)
        if patch.company_id:
            self.get_company(patch.company_id)

        with atomic(self.session, "Update customer"):
            if patch.name is not None:
                customer.name = _required(patch.name, "name")
            if email is not None:
                customer.email = email
            if phone is not None:
                customer.phone = phone
            if patch.type is not None:
                customer.type = parse_enum(CustomerType, patch.type, "type")
            if patch.company_id is not None:
                customer.company_id = patch.company_id or None
            if patch.npwp is not None:
                customer.npwp = validate_npwp(patch.npwp)
            customer.updated_at = self.clock()

        return customer

    def _ensure_unique_contact(self, email: str | None, phone: str | None, exclude_id: str | None = None) -> None:
        clauses = []
        if email:
            clauses.append(Customer.email == email)
        if phone:
            clauses.append(Customer.phone == phone)
        if not clauses:
            return

        qry = self.session.query(Customer.id).filter(sa.or_(*clauses))
        if exclude_id:
            qry = qry.filter(Customer.id != exclude_id)
        if qry.first():
            raise AlreadyExists("A customer with this email or phone already exists")

    def get_customer(self, customer_id: str) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if not customer:
            raise NotFound("Customer", customer_id)
        return customer

    def search_customers(self, query: str, customer_type: CustomerType | str | None = None, limit: int = 50) -> list[Customer]:
        term = f"%{(query or '').strip()}%"
        qry = self.session.query(Customer).filter(
            sa.or_(Customer.name.ilike(term), Customer.email.ilike(term), Customer.phone.like(term))
        )
        if customer_type:
            qry = qry.filter(Customer.type == parse_enum(CustomerType, customer_type, "type"))
        return qry.order_by(Customer.created_at.desc()).limit(limit).all()

    # ---------------------------------------------------------
    # Companies
    # ---------------------------------------------------------
    def create_company(self, data: CompanyData) -> Company:
        name = _required(data.name, "name")
        registration_number = _required(data.registration_number, "registration_number")
        tax_id = validate_npwp(data.tax_id)
        if not tax_id:
            raise ValidationError("tax_id is required", field="tax_id")

        exists = (
            self.session.query(Company.id)
            .filter(sa.or_(Company.registration_number == registration_number, Company.tax_id == tax_id))
            .first()
        )
        if exists:
            raise AlreadyExists("A company with this registration number or tax ID already exists")

        now = self.clock()
        company = Company(
            name=name,
            registration_number=registration_number,
            tax_id=tax_id,
            industry=data.industry,
            email=data.email,
            phone=data.phone,
            website=data.website,
            contact_person=data.contact_person,
            address=data.address,
            city=data.city,
            province=data.province,
            postal_code=data.postal_code,
            country=data.country or "Indonesia",
            created_at=now,
            updated_at=now,
        )
        with atomic(self.session, "Create company"):
            self.session.add(company)

        logger.info("Company %s created", company.id)
        return company

    def get_company(self, company_id: str) -> Company:
        company = self.session.get(Company, company_id)
        if not company:
            raise NotFound("Company", company_id)
        return company

    def link_company(self, customer_id: str, company_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        company = self.get_company(company_id)

        with atomic(self.session, "Link company"):
            customer.company_id = company.id
            # a company link makes the customer a business account
            customer.type = CustomerType.B2B
            customer.updated_at = self.clock()

        return customer

    # ---------------------------------------------------------
    # Addresses
    # ---------------------------------------------------------
    def add_address(self, customer_id: str, data: AddressData) -> Address:
        customer = self.get_customer(customer_id)

        address = Address(
            customer_id=customer.id,
            label=data.label,
            address=_required(data.address, "address"),
            city=_required(data.city, "city"),
            province=_required(data.province, "province"),
            postal_code=_required(data.postal_code, "postal_code"),
            country=data.country or "Indonesia",
            phone=data.phone,
            is_default=bool(data.is_default),
            created_at=self.clock(),
        )
        with atomic(self.session, "Add address"):
            if address.is_default:
                self.session.execute(
                    sa.update(Address)
                    .where(Address.customer_id == customer.id)
                    .values(is_default=False)
                    .execution_options(synchronize_session=False)
                )
            self.session.add(address)

        return address
