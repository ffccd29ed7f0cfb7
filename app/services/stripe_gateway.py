"""
Stripe adapter.
Wraps the stripe SDK calls the app needs, with bounded network timeouts, and
turns provider failures into UpstreamProviderError.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from app.core import config
from app.core.errors import InvalidSignature, SubscriptionAlreadyGone, UpstreamProviderError

logger = logging.getLogger(__name__)

# Substrings Stripe uses when the subscription no longer exists or is already cancelled
_ALREADY_GONE_MARKERS = ("No such subscription", "already canceled", "already cancelled")


def object_id(value: Any) -> Optional[str]:
    """Expandable Stripe fields arrive either as an id string or as an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:
    def __init__(
        self,
        api_key: str = config.STRIPE_SECRET_KEY,
        webhook_secret: str = config.STRIPE_WEBHOOK_SECRET,
        timeout: float = config.STRIPE_TIMEOUT_SECONDS,
        max_network_retries: int = config.STRIPE_MAX_NETWORK_RETRIES,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key
        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def webhooks_configured(self) -> bool:
        return bool(self.webhook_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise UpstreamProviderError("Payment system not configured", status_code=503)

    def _wrap(self, action: str, e: "stripe.StripeError") -> UpstreamProviderError:
        message = getattr(e, "user_message", None) or str(e)
        logger.error("Stripe error during %s: %s", action, message)
        return UpstreamProviderError(
            f"Failed to {action}",
            provider_status=getattr(e, "http_status", None),
            provider_message=message,
        )

    def create_checkout_session(
        self,
        price_id: str,
        plan_name: str,
        user_id: str,
        user_email: str,
        frontend_url: str,
    ) -> Dict[str, str]:
        self._require_configured()
        metadata = {"userId": user_id, "planName": plan_name}
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=f"{frontend_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend_url}/pricing",
                customer_email=user_email,
                metadata=metadata,
                billing_address_collection="auto",
                subscription_data={
                    "trial_period_days": config.STRIPE_TRIAL_DAYS,
                    "metadata": metadata,
                },
            )
        except stripe.StripeError as e:
            raise self._wrap("create checkout session", e) from e

        logger.info("Checkout session created: %s for %s (%s)", session.id, user_id, plan_name)
        return {"sessionId": session.id, "url": session.url}

    def get_checkout_session(self, session_id: str) -> Dict[str, Any]:
        self._require_configured()
        try:
            session = _as_dict(
                stripe.checkout.Session.retrieve(session_id, expand=["line_items", "customer"])
            )
        except stripe.StripeError as e:
            error = self._wrap("retrieve session", e)
            error.status_code = 404
            raise error from e

        line_items = (session.get("line_items") or {}).get("data") or []
        return {
            "id": session.get("id"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
            "status": session.get("status"),
            "payment_status": session.get("payment_status"),
            "customer_details": session.get("customer_details"),
            "metadata": session.get("metadata"),
            "created": session.get("created"),
            "line_items": [
                {
                    "description": item.get("description"),
                    "quantity": item.get("quantity"),
                    "amount_total": item.get("amount_total"),
                }
                for item in line_items
            ],
        }

    def retrieve_session(self, session_id: str) -> Dict[str, Any]:
        self._require_configured()
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, expand=["line_items", "customer", "subscription"]
            )
        except stripe.StripeError as e:
            raise self._wrap("retrieve session", e) from e
        return _as_dict(session)

    def list_active_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        self._require_configured()
        try:
            result = stripe.Subscription.list(customer=customer_id, status="active")
        except stripe.StripeError as e:
            raise self._wrap("list subscriptions", e) from e
        return [_as_dict(sub) for sub in _as_dict(result).get("data") or []]

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        self._require_configured()
        try:
            subscription = stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            message = str(e)
            if isinstance(e, stripe.InvalidRequestError) and (
                getattr(e, "code", None) == "resource_missing"
                or any(marker in message for marker in _ALREADY_GONE_MARKERS)
            ):
                logger.warning("Subscription %s already gone in Stripe: %s", subscription_id, message)
                raise SubscriptionAlreadyGone(provider_message=message) from e
            raise self._wrap("cancel subscription", e) from e

        subscription = _as_dict(subscription)
        logger.info("Cancelled Stripe subscription %s", subscription_id)
        return {
            "id": subscription.get("id"),
            "status": subscription.get("status"),
            "canceled_at": subscription.get("canceled_at"),
        }

    def cancel_customer_subscription(
        self, customer_id: Optional[str] = None, subscription_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Cancel by subscription id, or the customer's first active subscription."""
        if subscription_id:
            return self.cancel_subscription(subscription_id)
        active = self.list_active_subscriptions(customer_id)
        if not active:
            raise SubscriptionAlreadyGone()
        return self.cancel_subscription(active[0]["id"])

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Check the Stripe-Signature header, then parse. Nothing is read before the check passes."""
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not set; cannot verify webhooks")
            raise UpstreamProviderError("Webhook verification not configured", status_code=503)
        if not signature_header:
            raise InvalidSignature()
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature_header,
                self.webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning("Rejected webhook with invalid signature: %s", e)
            raise InvalidSignature() from e
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidSignature("Invalid webhook payload") from e
