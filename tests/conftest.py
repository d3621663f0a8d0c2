"""Shared fixtures for all tests.

Uses a throwaway SQLite database file so tests are fast and isolated.
The tables are recreated for every test function.
"""

import os

# Force test configuration before any boxoffice imports
os.environ["DATABASE_URL"] = "sqlite:///./test_boxoffice.db"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["PAYPAL_CLIENT_ID"] = ""
os.environ["PAYPAL_CLIENT_SECRET"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from boxoffice.database import Base, get_db
from boxoffice.main import app
from boxoffice.models import Event, Gateway, PaymentStatus, Ticket
from boxoffice.services.reconciliation import GatewayConfirmation
from boxoffice.services.ticket_codes import generate_ticket_code

TEST_DATABASE_URL = "sqlite:///./test_boxoffice.db"

engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Provide a database session for test helpers."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """TestClient that uses the test database."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


# ============== Factory helpers ==============

@pytest.fixture
def create_event(db):
    """Factory to insert an event (events are created outside this service)."""

    def _create(**overrides):
        data = {
            "name": "Test Event",
            "ticket_price": Decimal("25.00"),
            "capacity": None,
            "host_id": "host-1",
            "payment_gateway": Gateway.STRIPE,
            "gateway_account_id": "acct_test123",
            "currency": "usd",
        }
        data.update(overrides)
        event = Event(**data)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _create


@pytest.fixture
def create_ticket(db, create_event):
    """Factory to insert a ticket directly (auto-creates an event)."""

    def _create(event=None, **overrides):
        if event is None:
            event = create_event()
        quantity = overrides.pop("quantity", 1)
        unit_price = Decimal(event.ticket_price)
        data = {
            "event_id": event.id,
            "code": generate_ticket_code(),
            "buyer_name": "Test Buyer",
            "buyer_email": "buyer@example.com",
            "quantity": quantity,
            "unit_price": unit_price,
            "platform_fee": Decimal("1.00") * quantity,
            "total_paid": unit_price * quantity + Decimal("1.00") * quantity,
            "payment_gateway": event.payment_gateway,
            "gateway_transaction_id": f"txn_{uuid.uuid4().hex}",
            "payment_status": PaymentStatus.COMPLETED,
            "checked_in": False,
            "email_sent": False,
        }
        data.update(overrides)
        ticket = Ticket(**data)
        db.add(ticket)
        db.commit()
        db.refresh(ticket)
        return ticket

    return _create


@pytest.fixture
def make_confirmation():
    """Factory for gateway confirmations."""

    def _make(
        amount="52.00",
        transaction_id=None,
        gateway=Gateway.STRIPE,
        currency="usd",
        event_id=None,
        quantity=None,
    ):
        return GatewayConfirmation(
            gateway=gateway,
            transaction_id=transaction_id or f"pi_{uuid.uuid4().hex[:16]}",
            amount_captured=Decimal(amount),
            currency=currency,
            event_id=event_id,
            quantity=quantity,
        )

    return _make
