"""Shared fixtures; the environment is pinned before `payrail` is imported."""

import os
import tempfile
from datetime import date, timedelta

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="payrail-tests-")
os.environ["DATABASE_DSN"] = f"sqlite:///{os.path.join(_DB_DIR, 'payrail.db')}"
os.environ["WEBHOOK_TOKEN"] = "test-webhook-token-0123456789abcdef"
os.environ["ENVIRONMENT"] = "test"
os.environ["IDEMPOTENCY_BACKEND"] = "database"
os.environ["BATCH_RETRY_DELAY_MS"] = "100"
os.environ["CHECKOUT_BASE_URL"] = "https://checkout.test/pay"

from payrail.common.db import Base, SessionLocal, engine  # noqa: E402
from payrail.common.idempotency import IdempotencyCoordinator, IdempotencyPolicy  # noqa: E402
from payrail.services.payments import models  # noqa: E402,F401
from payrail.services.payments.repository import SqlIdempotencyStore  # noqa: E402
from payrail.services.payments.schemas import CreatePaymentRequest  # noqa: E402
from payrail.services.payments.service import PaymentService  # noqa: E402



@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def payment_payload():
    """Factory for a valid creation body as the API receives it."""

    def make(**overrides) -> dict:
        body = {
            "description": "Invoice #1001",
            "due_date": (date.today() + timedelta(days=30)).isoformat(),
            "amount_cents": 12500,
            "currency": "USD",
            "payer": {"name": "Ada Lovelace", "email": "ada@example.com"},
        }
        body.update(overrides)
        return body

    return make


@pytest.fixture
def payment_request(payment_payload):
    def make(**overrides) -> CreatePaymentRequest:
        return CreatePaymentRequest.model_validate(payment_payload(**overrides))

    return make


@pytest.fixture
def payment_service(session_factory):
    return PaymentService(session_factory, "https://checkout.test/pay")


@pytest.fixture
def coordinator(session_factory):
    return IdempotencyCoordinator(SqlIdempotencyStore(session_factory), IdempotencyPolicy())
