"""Pytest configuration: in-memory database, seeded users/units, fake gateway."""

import json
import os

# Set test environment BEFORE any project imports; config and database read it at import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_FILE"] = ""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from database import build_engine
from models import Base, Lease, Property, Unit, UnitStatus, User, UserRole
from services.lease_service import LeaseService
from services.mpesa_client import MpesaConfig, StkPushResult, compute_signature

WEBHOOK_SECRET = "callback-secret"


def make_mpesa_config(**overrides) -> MpesaConfig:
    values = dict(
        consumer_key="consumer-key",
        consumer_secret="consumer-secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://api.example.test/api/payments/mpesa/callback",
        webhook_secret=WEBHOOK_SECRET,
        timeout_seconds=5.0,
    )
    values.update(overrides)
    return MpesaConfig(**values)


class FakeGateway:
    """Stands in for MpesaClient; hands out ws_CO_1, ws_CO_2, ... like the sandbox."""

    def __init__(self, config=None):
        self.config = config or make_mpesa_config()
        self.calls = []
        self.error = None

    def initiate_payment(self, amount, phone_number, account_reference, description):
        self.calls.append(
            {
                "amount": amount,
                "phone_number": phone_number,
                "account_reference": account_reference,
                "description": description,
            }
        )
        if self.error is not None:
            raise self.error
        n = len(self.calls)
        return StkPushResult(
            merchant_request_id=f"29115-34620561-{n}",
            checkout_request_id=f"ws_CO_{n}",
            response_code="0",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing",
        )


def stk_callback(checkout_request_id, result_code=0, receipt="QWE123", amount=25000, result_desc=None):
    """Daraja-shaped STK callback body."""
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc
        or ("The service request is processed successfully." if result_code == 0 else "Request cancelled by user"),
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20240105102115},
                {"Name": "PhoneNumber", "Value": 254700000000},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def signed(payload, secret=WEBHOOK_SECRET):
    """Return (headers, raw body) for a callback signed with ``secret``."""
    raw = json.dumps(payload).encode()
    return {"X-Safaricom-Signature": compute_signature(secret, raw)}, raw


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def landlord(db_session):
    user = User(email="landlord@example.com", first_name="Lena", last_name="Lord", role=UserRole.LANDLORD)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def other_landlord(db_session):
    user = User(email="other@example.com", first_name="Otto", last_name="Other", role=UserRole.LANDLORD)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def tenant(db_session):
    user = User(
        email="t1@example.com",
        first_name="Tami",
        last_name="One",
        phone="0700000000",
        role=UserRole.TENANT,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def tenant2(db_session):
    user = User(email="t2@example.com", first_name="Theo", last_name="Two", role=UserRole.TENANT)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def prop(db_session, landlord):
    prop = Property(landlord_id=landlord.id, name="Riverside Court", city="Nairobi")
    db_session.add(prop)
    db_session.commit()
    return prop


def _unit(db_session, prop, name, status=UnitStatus.VACANT):
    unit = Unit(property_id=prop.id, name=name, rent_amount=Decimal("25000.00"), status=status)
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture
def unit(db_session, prop):
    return _unit(db_session, prop, "U1")


@pytest.fixture
def unit2(db_session, prop):
    return _unit(db_session, prop, "U2")


@pytest.fixture
def other_unit(db_session, other_landlord):
    prop = Property(landlord_id=other_landlord.id, name="Hilltop", city="Mombasa")
    db_session.add(prop)
    db_session.commit()
    return _unit(db_session, prop, "H1")


def create_lease(db, landlord, tenant, unit, **overrides) -> Lease:
    values = dict(
        tenant_id=tenant.id,
        unit_id=unit.id,
        landlord_id=landlord.id,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        monthly_rent=Decimal("25000"),
    )
    values.update(overrides)
    return LeaseService.create_lease(db, **values)


@pytest.fixture
def active_lease(db_session, landlord, tenant, unit):
    return create_lease(db_session, landlord, tenant, unit)


@pytest.fixture
def gateway():
    return FakeGateway()
