"""
Subscription reconciliation.

Local tier state is overwritten to match what Stripe reports, either from the
synchronous checkout verification or from a webhook. Both paths run the same
overwrite, so either one firing, or both, or one twice, ends in the same row.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.errors import (
    CannotProvisionUser,
    DuplicateUser,
    InvalidCheckoutSession,
    InvalidRequest,
    NoActiveSubscription,
    PaymentNotCompleted,
    SubscriptionAlreadyGone,
)
from app.core.plan_limits import DEFAULT_TIER, TIERS, tier_from_plan_name
from app.db.session import Database, translate_store_errors
from app.models.user import User
from app.services.stripe_gateway import StripeGateway, object_id
from app.services.usage_ledger import apply_subscription, get_user, get_user_or_404

logger = logging.getLogger(__name__)

DEFAULT_VERIFIED_PLAN = "Premium"


def _customer_ref(customer: Any) -> Tuple[Optional[str], Optional[str]]:
    """Return (customer_id, email) from an id string or a customer-like dict."""
    if not customer:
        return None, None
    if isinstance(customer, str):
        return customer, None
    return object_id(customer), customer.get("email")


class SubscriptionReconciler:
    def __init__(self, database: Database, gateway: StripeGateway):
        self.database = database
        self.gateway = gateway

    # --- state transitions -------------------------------------------------

    @translate_store_errors("Failed to update user tier")
    def reconcile(
        self,
        firebase_uid: str,
        plan_name: Optional[str],
        subscription_id: Optional[str] = None,
        customer: Any = None,
    ) -> Dict[str, Any]:
        tier = tier_from_plan_name(plan_name)
        customer_id, customer_email = _customer_ref(customer)
        logger.info(
            "Reconciling %s to %s (plan=%s, subscription=%s, customer=%s)",
            firebase_uid, tier, plan_name, subscription_id, customer_id,
        )
        try:
            return self._apply_tier(firebase_uid, tier, subscription_id, customer_id, customer_email)
        except IntegrityError:
            # The other trigger created the row first; apply as an update
            logger.info("User %s was created concurrently, retrying as update", firebase_uid)
        try:
            return self._apply_tier(firebase_uid, tier, subscription_id, customer_id, customer_email)
        except IntegrityError as e:
            # Still no row for this uid, so the conflict is the email
            logger.warning(
                "Cannot provision %s: email %s already belongs to another account", firebase_uid, customer_email
            )
            raise DuplicateUser("Email already belongs to another account") from e

    def _apply_tier(
        self,
        firebase_uid: str,
        tier: str,
        subscription_id: Optional[str],
        customer_id: Optional[str],
        customer_email: Optional[str],
    ) -> Dict[str, Any]:
        with self.database.session_scope() as db:
            user = get_user(db, firebase_uid, for_update=True)
            created = user is None
            if created:
                if not customer_email:
                    raise CannotProvisionUser(firebase_uid)
                logger.info("User %s does not exist, provisioning from Stripe customer", firebase_uid)
                user = User(firebase_uid=firebase_uid, email=customer_email, monthly_generations_used=0)
                db.add(user)
            apply_subscription(user, tier, customer_id, subscription_id)
            db.flush()
            logger.info(
                "User %s now on %s (limit %s, used %s)",
                firebase_uid, tier, user.monthly_generations_limit, user.monthly_generations_used,
            )
            return {"firebase_uid": firebase_uid, "tier": tier, "created": created}

    @translate_store_errors("Failed to downgrade user")
    def downgrade_to_freemium(self, firebase_uid: str) -> Dict[str, Any]:
        with self.database.session_scope() as db:
            user = get_user_or_404(db, firebase_uid, for_update=True)
            user.subscription_tier = DEFAULT_TIER
            user.monthly_generations_limit = TIERS[DEFAULT_TIER].limit
            user.subscription_status = "cancelled"
            user.stripe_subscription_id = None
            user.stripe_customer_id = None
            user.updated_at = datetime.now(timezone.utc)
        logger.info("Downgraded user %s to freemium tier", firebase_uid)
        return {"firebase_uid": firebase_uid, "tier": DEFAULT_TIER}

    @translate_store_errors("Failed to update subscription status")
    def set_status_for_customer(self, customer_id: str, status: str) -> Optional[str]:
        """Set subscription_status for the user owning a Stripe customer. None if nobody does."""
        with self.database.session_scope() as db:
            user = db.execute(
                select(User).where(User.stripe_customer_id == customer_id).with_for_update()
            ).scalars().first()
            if not user:
                logger.warning("No user found for customer ID: %s", customer_id)
                return None
            user.subscription_status = status
            user.updated_at = datetime.now(timezone.utc)
            logger.info("Marked user %s as %s", user.firebase_uid, status)
            return user.firebase_uid

    @translate_store_errors("Failed to look up customer")
    def find_user_by_customer_id(self, customer_id: str) -> Optional[str]:
        with self.database.session_scope() as db:
            return db.execute(
                select(User.firebase_uid).where(User.stripe_customer_id == customer_id)
            ).scalars().first()

    # --- synchronous checkout path ----------------------------------------

    def verify_session(self, session_id: str) -> Dict[str, Any]:
        session = self.gateway.retrieve_session(session_id)
        payment_status = session.get("payment_status")
        if payment_status != "paid":
            raise PaymentNotCompleted(payment_status)

        metadata = session.get("metadata") or {}
        plan_name = metadata.get("planName") or DEFAULT_VERIFIED_PLAN
        firebase_uid = metadata.get("userId")
        if not firebase_uid:
            logger.error("No user ID found in session metadata: %s", session_id)
            raise InvalidCheckoutSession()

        customer = session.get("customer")
        customer_details = session.get("customer_details") or {}
        customer_id = object_id(customer)
        customer_email = (customer.get("email") if isinstance(customer, dict) else None) or customer_details.get(
            "email"
        )
        subscription_id = object_id(session.get("subscription"))

        self.reconcile(
            firebase_uid,
            plan_name,
            subscription_id,
            {"id": customer_id, "email": customer_email},
        )
        logger.info("Session verified: %s for plan %s", session_id, plan_name)
        return {
            "id": session.get("id"),
            "planName": plan_name,
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
            "status": session.get("status"),
            "payment_status": payment_status,
            "customer_email": customer_email,
            "customer_id": customer_id,
            "userId": firebase_uid,
            "created": session.get("created"),
            "subscription_id": subscription_id,
        }

    # --- cancellation -----------------------------------------------------

    def cancel_subscription(
        self,
        firebase_uid: Optional[str] = None,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not customer_id and not subscription_id:
            raise InvalidRequest("Either customerId or subscriptionId is required")

        logger.info(
            "Cancelling subscription - user: %s, customer: %s, subscription: %s",
            firebase_uid, customer_id, subscription_id,
        )
        try:
            subscription = self.gateway.cancel_customer_subscription(customer_id, subscription_id)
        except SubscriptionAlreadyGone:
            if not firebase_uid:
                raise
            logger.warning("Subscription already cancelled in Stripe, updating database only")
            self.downgrade_to_freemium(firebase_uid)
            return {
                "success": True,
                "message": "User downgraded to freemium (subscription was already cancelled)",
            }

        if firebase_uid:
            self.downgrade_to_freemium(firebase_uid)
        return {
            "success": True,
            "message": "Subscription cancelled successfully",
            "subscription": subscription,
        }

    @translate_store_errors("Database error")
    def cancel_user_subscription(self, firebase_uid: str) -> Dict[str, Any]:
        with self.database.session_scope() as db:
            user = get_user_or_404(db, firebase_uid)
            customer_id, subscription_id = user.stripe_customer_id, user.stripe_subscription_id
        if not customer_id and not subscription_id:
            raise NoActiveSubscription()
        return self.cancel_subscription(firebase_uid, customer_id, subscription_id)

    # --- webhooks ---------------------------------------------------------

    def handle_webhook(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        event = self.gateway.verify_webhook(payload, signature_header)
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("Webhook received: %s (%s)", event_type, event.get("id"))

        handler = self._webhook_handlers().get(event_type)
        if handler is None:
            logger.info("Unhandled event type: %s", event_type)
        else:
            handler(obj)
        return {"received": True}

    def _webhook_handlers(self):
        return {
            "checkout.session.completed": self._on_checkout_completed,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.paid": self._on_invoice_paid,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_failed": self._on_invoice_payment_failed,
        }

    def _on_checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        firebase_uid = metadata.get("userId")
        plan_name = metadata.get("planName")
        if not firebase_uid or not plan_name:
            logger.warning("Missing user metadata in session: %s", session.get("id"))
            return

        customer_details = session.get("customer_details") or {}
        customer = {"id": object_id(session.get("customer")), "email": customer_details.get("email")}
        try:
            self.reconcile(firebase_uid, plan_name, object_id(session.get("subscription")), customer)
        except (CannotProvisionUser, DuplicateUser) as e:
            logger.warning(
                "Checkout %s completed for unknown user %s that cannot be provisioned (%s); skipping",
                session.get("id"), firebase_uid, e.message,
            )

    def _on_invoice_paid(self, invoice: Dict[str, Any]) -> None:
        customer_id = object_id(invoice.get("customer"))
        if customer_id:
            self.set_status_for_customer(customer_id, "active")

    def _on_invoice_payment_failed(self, invoice: Dict[str, Any]) -> None:
        customer_id = object_id(invoice.get("customer"))
        if customer_id:
            self.set_status_for_customer(customer_id, "past_due")

    def _on_subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        customer_id = object_id(subscription.get("customer"))
        if not customer_id:
            return
        firebase_uid = self.find_user_by_customer_id(customer_id)
        if not firebase_uid:
            logger.warning("No user found for customer ID: %s", customer_id)
            return
        self.downgrade_to_freemium(firebase_uid)
