"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database. Scheduled lifecycle and delivery
work opens its own sessions through the `session_factory` fixture, which is
bound to the same in-memory connection.
"""
import pytest
from datetime import datetime
from typing import Optional
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models, runtime
from app.database import Base, get_db
from app.services.signature import sign


TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)

MERCHANT_TOKEN = "test-merchant-token"
MERCHANT_SECRET = "test-signature-secret"


@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(reset_db):
    """Session factory for code that opens its own sessions."""
    return TestingSession


@pytest.fixture
def merchant(db):
    return make_merchant(db)


@pytest.fixture
def lifecycle_mock():
    """Replaces the process-wide lifecycle so API tests schedule nothing."""
    with patch.object(runtime, "lifecycle") as mock:
        yield mock


@pytest.fixture
def client(db, lifecycle_mock):
    """
    FastAPI TestClient with the real DB dependency overridden to use
    the in-memory test session. The TestClient is NOT used as a context
    manager so the lifespan hook (which touches the on-disk DB) is skipped.
    """
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class WebhookReceiver:
    """Records webhook POSTs and answers with a scripted list of status codes."""

    def __init__(self, statuses=(200,)):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.statuses)) - 1
        return httpx.Response(self.statuses[index])

    def forms(self):
        return [dict(httpx.QueryParams(r.content.decode())) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# ---------------------------------------------------------------------------
# Plain helpers, importable from any test module.
# ---------------------------------------------------------------------------
def make_merchant(
    db,
    token: str = MERCHANT_TOKEN,
    secret: str = MERCHANT_SECRET,
    name: str = "Test Merchant",
    active: bool = True,
) -> models.Merchant:
    merchant = models.Merchant(
        merchant_token=token,
        signature_secret=secret,
        name=name,
        active=active,
    )
    db.add(merchant)
    db.commit()
    db.refresh(merchant)
    return merchant


def make_txn(
    db,
    merchant: models.Merchant,
    merchant_reference: str = "ORDER-001",
    amount: str = "100.00",
    currency: str = "HKD",
    network: str = "Alipay",
    status: str = "PENDING",
    notify_url: str = "https://merchant.example.com/notify",
    created_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
) -> models.Transaction:
    txn = models.Transaction(
        merchant_id=merchant.id,
        merchant_reference=merchant_reference,
        amount=amount,
        currency=currency,
        network=network,
        status=status,
        subject="Test Payment",
        customer_ip="123.123.123.123",
        customer_first_name="John",
        customer_last_name="Doe",
        customer_email="john@example.com",
        customer_phone="0123123123",
        notify_url=notify_url,
        completed_at=completed_at,
    )
    if created_at is not None:
        txn.created_at = created_at
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def payment_fields(**overrides) -> dict:
    fields = {
        "merchant_reference": "ORDER-001",
        "currency": "HKD",
        "amount": "100.00",
        "customer_ip": "123.123.123.123",
        "customer_first_name": "John",
        "customer_last_name": "Doe",
        "customer_phone": "0123123123",
        "customer_email": "john@example.com",
        "network": "Alipay",
        "subject": "Test Payment",
        "notify_url": "https://merchant.example.com/notify",
    }
    fields.update(overrides)
    return {k: v for k, v in fields.items() if v is not None}


def signed(fields: dict, secret: str = MERCHANT_SECRET) -> dict:
    return {**fields, "sign": sign(fields, secret)}


def reload(db, txn_id: str) -> models.Transaction:
    """Read a transaction as other sessions last committed it."""
    db.expire_all()
    return db.get(models.Transaction, txn_id)
