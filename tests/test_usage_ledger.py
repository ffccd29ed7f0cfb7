"""
Tests for user accounts, generation quotas and direct tier changes.
"""
import pytest

from app.core.errors import DuplicateUser, InvalidTier, QuotaExceeded, UserNotFound
from conftest import USER_UID


def test_new_user_starts_on_freemium(user):
    assert user["subscription_tier"] == "FREEMIUM"
    assert user["monthly_generations_limit"] == 2
    assert user["monthly_generations_used"] == 0
    assert user["canGenerate"] is True
    assert user["remainingGenerations"] == 2
    assert user["tierInfo"]["name"] == "Freemium"


def test_duplicate_user_rejected(ledger, user):
    with pytest.raises(DuplicateUser):
        ledger.create_user(USER_UID, "someone-else@example.com")


def test_profile_for_unknown_user(ledger):
    with pytest.raises(UserNotFound) as exc_info:
        ledger.get_profile("missing_uid_123")
    assert exc_info.value.extra() == {"needsRegistration": True}


def test_increment_until_quota_exceeded(ledger, user):
    assert ledger.increment_usage(USER_UID)["generationsUsed"] == 1
    second = ledger.increment_usage(USER_UID)
    assert second["generationsUsed"] == 2
    assert second["remainingGenerations"] == 0

    with pytest.raises(QuotaExceeded) as exc_info:
        ledger.increment_usage(USER_UID)
    assert exc_info.value.extra() == {
        "needsUpgrade": True,
        "currentTier": "FREEMIUM",
        "generationsUsed": 2,
        "generationsLimit": 2,
    }
    # A rejected increment leaves the counter where it was
    assert ledger.get_profile(USER_UID)["monthly_generations_used"] == 2


def test_increment_unknown_user(ledger):
    with pytest.raises(UserNotFound):
        ledger.increment_usage("missing_uid_123")


def test_unlimited_tier_never_exhausts(ledger, user):
    ledger.set_tier(USER_UID, "PREMIUM_PLUS")
    for _ in range(25):
        result = ledger.increment_usage(USER_UID)
    assert result["generationsUsed"] == 25
    assert result["remainingGenerations"] == "Unlimited"
    assert result["generationsLimit"] == -1


def test_set_tier_keeps_usage(ledger, user):
    ledger.increment_usage(USER_UID)
    result = ledger.set_tier(USER_UID, "BASIC", "cus_1", "sub_1")
    profile = result["user"]
    assert profile["subscription_tier"] == "BASIC"
    assert profile["monthly_generations_limit"] == 5
    assert profile["monthly_generations_used"] == 1
    assert profile["stripe_customer_id"] == "cus_1"
    assert profile["stripe_subscription_id"] == "sub_1"
    assert profile["subscription_status"] == "active"


def test_invalid_tier_changes_nothing(ledger, user):
    before = ledger.get_profile(USER_UID)
    with pytest.raises(InvalidTier):
        ledger.set_tier(USER_UID, "GOLD")
    after = ledger.get_profile(USER_UID)
    assert after["subscription_tier"] == before["subscription_tier"]
    assert after["monthly_generations_limit"] == before["monthly_generations_limit"]


def test_reset_usage(ledger, user):
    ledger.increment_usage(USER_UID)
    ledger.increment_usage(USER_UID)
    result = ledger.reset_usage(USER_UID)
    assert result["generationsUsed"] == 0
    assert ledger.get_profile(USER_UID)["canGenerate"] is True


def test_subscription_status(ledger, user):
    status = ledger.get_subscription_status(USER_UID)
    assert status["tier"] == "FREEMIUM"
    assert status["hasActiveSubscription"] is False

    ledger.set_tier(USER_UID, "PREMIUM", "cus_1", "sub_1")
    status = ledger.get_subscription_status(USER_UID)
    assert status["hasActiveSubscription"] is True
    assert status["generationsLimit"] == 10
    assert status["stripeSubscriptionId"] == "sub_1"
