"""
Typed errors raised by the ledger, reconciler and document store.

Each error carries an HTTP status and a fixed set of structured fields that
the API layer merges into the error envelope. Business-rule errors are
expected by callers; StoreError and UpstreamProviderError are faults.
"""
from typing import Any, Dict, Optional


class AlignError(Exception):
    status_code = 500
    message = "Internal server error"
    is_fault = False

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        return {}


class InvalidRequest(AlignError):
    status_code = 400
    message = "Invalid request"


class UserNotFound(AlignError):
    status_code = 404
    message = "User not found. Please create an account first."

    def __init__(self, external_auth_id: Optional[str] = None, message: Optional[str] = None):
        self.external_auth_id = external_auth_id
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {"needsRegistration": True}


class DocumentNotFound(AlignError):
    status_code = 404
    message = "Document not found"

    def __init__(self, document_id: Optional[str] = None, message: Optional[str] = None):
        self.document_id = document_id
        super().__init__(message)


class AccessDenied(AlignError):
    status_code = 403
    message = "You don't have permission to access this document"


class QuotaExceeded(AlignError):
    status_code = 403
    message = "Generation limit exceeded. Please upgrade your plan."

    def __init__(self, current_tier: str, usage_used: int, usage_limit: int):
        self.current_tier = current_tier
        self.usage_used = usage_used
        self.usage_limit = usage_limit
        super().__init__()

    def extra(self) -> Dict[str, Any]:
        return {
            "needsUpgrade": True,
            "currentTier": self.current_tier,
            "generationsUsed": self.usage_used,
            "generationsLimit": self.usage_limit,
        }


class InvalidTier(AlignError):
    status_code = 400
    message = "Invalid tier specified"

    def __init__(self, tier: Optional[str]):
        self.tier = tier
        super().__init__()

    def extra(self) -> Dict[str, Any]:
        return {"tier": self.tier}


class InvalidSignature(AlignError):
    status_code = 400
    message = "Invalid webhook signature"


class CannotProvisionUser(AlignError):
    status_code = 400
    message = "Cannot create user without email address"

    def __init__(self, external_auth_id: Optional[str] = None):
        self.external_auth_id = external_auth_id
        super().__init__()


class DuplicateUser(AlignError):
    status_code = 409
    message = "User already exists"


class NoActiveSubscription(AlignError):
    status_code = 400
    message = "No active subscription found to cancel"


class PaymentNotCompleted(AlignError):
    status_code = 400
    message = "Payment not completed"

    def __init__(self, payment_status: Optional[str] = None, message: Optional[str] = None):
        self.payment_status = payment_status
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {"paymentStatus": self.payment_status} if self.payment_status else {}


class InvalidCheckoutSession(AlignError):
    status_code = 400
    message = "No user ID found in session"


class UpstreamProviderError(AlignError):
    status_code = 502
    message = "Payment provider request failed"
    is_fault = True

    def __init__(
        self,
        message: Optional[str] = None,
        provider_status: Optional[int] = None,
        provider_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.provider_status = provider_status
        self.provider_message = provider_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {"providerStatus": self.provider_status} if self.provider_status else {}


class SubscriptionAlreadyGone(UpstreamProviderError):
    """The provider has no live subscription to cancel (already cancelled upstream)."""

    status_code = 404
    message = "No active subscriptions found"
    is_fault = False


class StoreError(AlignError):
    status_code = 500
    message = "Database error"
    is_fault = True
