"""
Tests for the HTTP surface: envelopes, status codes and routing.
"""
from fastapi.testclient import TestClient

from app.main import create_app
from app.services.stripe_gateway import StripeGateway
from conftest import OTHER_UID, USER_UID, sign_payload, webhook_event


def _register(client, uid=USER_UID, email="alice@example.com"):
    return client.post("/api/users/create", json={"firebaseUid": uid, "email": email, "displayName": "Alice"})


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == "Align API is running"


def test_health_reports_database(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"]["database_connected"] is True
    assert 0 <= data["healthScore"] <= 100


def test_create_user(client):
    response = _register(client)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["subscription_tier"] == "FREEMIUM"


def test_create_duplicate_user(client):
    _register(client)
    response = _register(client)
    assert response.status_code == 409
    assert response.json()["success"] is False


def test_create_user_validation_error(client):
    response = client.post("/api/users/create", json={"firebaseUid": "short", "email": "not-an-email"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["status"] == 400
    assert "timestamp" in error


def test_unknown_profile_needs_registration(client):
    response = client.get("/api/users/profile/unknown_uid_0001")
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["needsRegistration"] is True
    assert error["message"] == "User not found. Please create an account first."


def test_quota_exceeded_envelope(client):
    _register(client)
    for _ in range(2):
        assert client.post(f"/api/users/{USER_UID}/increment-usage").status_code == 200

    response = client.post(f"/api/users/{USER_UID}/increment-usage")
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["needsUpgrade"] is True
    assert error["currentTier"] == "FREEMIUM"
    assert error["generationsUsed"] == 2
    assert error["generationsLimit"] == 2


def test_update_subscription_invalid_tier(client):
    _register(client)
    response = client.post(f"/api/users/{USER_UID}/update-subscription", json={"tier": "GOLD"})
    assert response.status_code == 400
    assert response.json()["error"]["tier"] == "GOLD"
    profile = client.get(f"/api/users/profile/{USER_UID}").json()["data"]
    assert profile["subscription_tier"] == "FREEMIUM"


def test_update_subscription(client):
    _register(client)
    response = client.post(
        f"/api/users/{USER_UID}/update-subscription",
        json={"tier": "PREMIUM", "stripeCustomerId": "cus_1", "stripeSubscriptionId": "sub_1"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["user"]["monthly_generations_limit"] == 10


def test_cancel_subscription_without_one(client):
    _register(client)
    response = client.post(f"/api/users/{USER_UID}/cancel-subscription")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "No active subscription found to cancel"


def test_document_flow(client):
    _register(client)
    _register(client, uid=OTHER_UID, email="bob@example.com")

    saved = client.post(
        "/api/documents/save",
        json={"firebaseUid": USER_UID, "documentType": "resume", "htmlContent": "<title>CV</title>"},
    )
    assert saved.status_code == 201
    document_id = saved.json()["data"]["id"]

    recent = client.get(f"/api/documents/recent/{USER_UID}").json()["data"]
    assert recent["totalCount"] == 1

    favorited = client.post(f"/api/documents/{document_id}/favorite", json={"firebaseUid": USER_UID})
    assert favorited.status_code == 200
    assert favorited.json()["data"]["alreadyFavorited"] is False
    favorite_id = favorited.json()["data"]["document"]["id"]

    again = client.post(f"/api/documents/{document_id}/favorite", json={"firebaseUid": USER_UID})
    assert again.json()["data"]["alreadyFavorited"] is True

    assert client.get(f"/api/documents/{document_id}", params={"firebaseUid": OTHER_UID}).status_code == 403
    assert client.get(f"/api/documents/{document_id}", params={"firebaseUid": USER_UID}).status_code == 200

    removed = client.delete(f"/api/documents/favorites/{favorite_id}", params={"firebaseUid": USER_UID})
    assert removed.json()["data"]["removed"] is True
    deleted = client.delete(f"/api/documents/recent/{document_id}", params={"firebaseUid": USER_UID})
    assert deleted.json()["data"]["deleted"] is True
    assert client.get(f"/api/documents/{document_id}").status_code == 404


def test_save_rejects_unknown_document_type(client):
    _register(client)
    response = client.post(
        "/api/documents/save",
        json={"firebaseUid": USER_UID, "documentType": "invoice", "htmlContent": "<p>x</p>"},
    )
    assert response.status_code == 400


def test_webhook_endpoint(client):
    _register(client)
    payload = webhook_event(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "metadata": {"userId": USER_UID, "planName": "Premium"},
            "customer": "cus_123",
            "subscription": "sub_123",
            "customer_details": {"email": "alice@example.com"},
        },
    )
    response = client.post(
        "/api/stripe-webhook",
        content=payload,
        headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"received": True}
    profile = client.get(f"/api/users/profile/{USER_UID}").json()["data"]
    assert profile["subscription_tier"] == "PREMIUM"


def test_webhook_endpoint_rejects_bad_signature(client):
    payload = webhook_event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"})
    response = client.post("/api/webhook", content=payload, headers={"Stripe-Signature": "t=1,v1=deadbeef"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid webhook signature"


def test_verify_session_endpoint(client, gateway):
    _register(client)
    gateway.retrieve_session.return_value = {
        "id": "cs_1",
        "payment_status": "paid",
        "metadata": {"userId": USER_UID, "planName": "Basic"},
        "customer": "cus_123",
        "customer_details": {"email": "alice@example.com"},
        "subscription": "sub_123",
    }
    response = client.post("/api/verify-session", json={"sessionId": "cs_1"})
    assert response.status_code == 200
    assert response.json()["data"]["planName"] == "Basic"
    profile = client.get(f"/api/users/profile/{USER_UID}").json()["data"]
    assert profile["subscription_tier"] == "BASIC"


def test_health_reflects_injected_gateway(database):
    gateway = StripeGateway(api_key="", webhook_secret="", timeout=5, max_network_retries=0)
    client = TestClient(create_app(database=database, gateway=gateway))
    checks = client.get("/api/health").json()["checks"]
    assert checks["has_stripe_key"] is False
    assert checks["has_stripe_webhook_secret"] is False


def test_health_reports_configured_gateway(client):
    checks = client.get("/api/health").json()["checks"]
    assert checks["has_stripe_key"] is True
    assert checks["has_stripe_webhook_secret"] is True


def test_webhook_for_taken_email_is_acknowledged(client):
    _register(client)
    payload = webhook_event(
        "checkout.session.completed",
        {
            "id": "cs_2",
            "metadata": {"userId": "firebase_uid_new_user_9", "planName": "Premium"},
            "customer": "cus_999",
            "subscription": "sub_999",
            "customer_details": {"email": "alice@example.com"},
        },
    )
    response = client.post(
        "/api/stripe-webhook",
        content=payload,
        headers={"Stripe-Signature": sign_payload(payload), "Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert client.get("/api/users/profile/firebase_uid_new_user_9").status_code == 404


def test_webhook_without_secret_is_unavailable(database):
    gateway = StripeGateway(api_key="sk_test_dummy", webhook_secret="", timeout=5, max_network_retries=0)
    client = TestClient(create_app(database=database, gateway=gateway))
    payload = webhook_event("invoice.paid", {"id": "in_1", "customer": "cus_1"})
    response = client.post("/api/stripe-webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)})
    assert response.status_code == 503
