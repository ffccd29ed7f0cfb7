"""
Shared fixtures: an in-memory SQLite database per test, the real services on
top of it, and a TestClient for the assembled app.
"""
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.db.session import Database
from app.main import create_app
from app.services.document_store import DocumentStore
from app.services.stripe_gateway import StripeGateway
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.usage_ledger import UsageLedger

WEBHOOK_SECRET = "whsec_test_secret"
USER_UID = "firebase_uid_alice_01"
OTHER_UID = "firebase_uid_bob_0002"


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def gateway():
    """Real gateway for signature checks; outbound Stripe calls are mocked per test."""
    gw = StripeGateway(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, timeout=5, max_network_retries=0)
    gw.retrieve_session = MagicMock()
    gw.get_checkout_session = MagicMock()
    gw.create_checkout_session = MagicMock()
    gw.cancel_customer_subscription = MagicMock(
        return_value={"id": "sub_123", "status": "canceled", "canceled_at": 1700000000}
    )
    return gw


@pytest.fixture
def ledger(database):
    return UsageLedger(database)


@pytest.fixture
def reconciler(database, gateway):
    return SubscriptionReconciler(database, gateway)


@pytest.fixture
def store(database):
    return DocumentStore(database, recent_cap=20)


@pytest.fixture
def user(ledger):
    return ledger.create_user(USER_UID, "alice@example.com", "Alice")


@pytest.fixture
def other_user(ledger):
    return ledger.create_user(OTHER_UID, "bob@example.com", "Bob")


@pytest.fixture
def client(database, gateway):
    app = create_app(database=database, gateway=gateway)
    return TestClient(app)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_event(event_type: str, obj: dict, event_id: str = "evt_test") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")
