import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite:///./test_shop_payments.db"

import pytest
from fastapi.testclient import TestClient

from shop_payments.auth import CurrentUser, get_current_user
from shop_payments.config import MockProviderSettings, StripeSettings
from shop_payments.database import Base, SessionLocal, engine
from shop_payments.main import app as fastapi_app
from shop_payments.orders import OrderLine, create_order
from shop_payments.providers import MockProvider, ProviderRegistry, StripeProvider, get_provider_registry

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
MOCK_WEBHOOK_SECRET = "mock_secret"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def stripe_provider():
    return StripeProvider(StripeSettings(
        secret_key="sk_test_123",
        webhook_secret=STRIPE_WEBHOOK_SECRET,
        success_url="https://shop.test/payment/success",
        cancel_url="https://shop.test/payment/fail",
        timeout_seconds=5,
    ))


@pytest.fixture
def mock_provider():
    return MockProvider(MockProviderSettings(
        webhook_secret=MOCK_WEBHOOK_SECRET,
        checkout_base_url="https://pay.test/mock",
    ))


@pytest.fixture
def current_user():
    return CurrentUser(user_id=USER_ID)


@pytest.fixture
def client(stripe_provider, mock_provider, current_user):
    registry = ProviderRegistry({"stripe": stripe_provider, "mock": mock_provider})
    fastapi_app.dependency_overrides[get_current_user] = lambda: current_user
    fastapi_app.dependency_overrides[get_provider_registry] = lambda: registry

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def make_order(db, total, user_id=USER_ID, status=None):
    """Single-line order whose total equals ``total``."""
    order = create_order(db, user_id, [
        OrderLine(product_id="prod-1", name="Test product", unit_price=Decimal(total), quantity=1),
    ])
    if status is not None:
        order.status = status
        db.commit()
    return order


def stripe_signature(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp=None) -> str:
    """Stripe-Signature header value, computed the way Stripe signs webhooks."""
    timestamp = int(timestamp or time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_id, event_type, obj) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()


def checkout_completed(event_id, session_id, amount_total, currency="vnd", metadata=None) -> bytes:
    return stripe_event(event_id, "checkout.session.completed", {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": currency,
        "metadata": metadata or {},
    })


def payment_intent(event_id, event_type, intent_id, amount, metadata=None) -> bytes:
    return stripe_event(event_id, event_type, {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "vnd",
        "metadata": metadata or {},
    })


def mock_event(event_id, event_type, payment_id, amount=0) -> bytes:
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "payment_id": payment_id,
        "amount": amount,
        "currency": "vnd",
    }).encode()
