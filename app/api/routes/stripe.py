"""
Stripe Checkout and webhook routes.
Checkout creation, synchronous verification after redirect, cancellation, and
the signed webhook that keeps local tiers in sync with Stripe.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core import config
from app.core.errors import UpstreamProviderError
from app.dependencies.services import get_gateway, get_reconciler
from app.schemas.billing import CancelSubscriptionRequest, CheckoutSessionRequest, VerifySessionRequest
from app.services.stripe_gateway import StripeGateway
from app.services.subscription_reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def get_frontend_url(request: Request) -> Optional[str]:
    """Pick the localhost frontend in development or for local callers, otherwise production."""
    urls = config.FRONTEND_URLS
    localhost_url = next((u for u in urls if "localhost" in u or "127.0.0.1" in u), None)
    production_url = next((u for u in urls if u.startswith("https://")), None)

    is_localhost = (
        config.is_development()
        or "localhost" in (request.headers.get("host") or "")
        or "localhost" in (request.headers.get("origin") or "")
    )
    frontend_url = localhost_url if is_localhost and localhost_url else production_url or (urls[0] if urls else None)
    return frontend_url.rstrip("/") if frontend_url else None


@router.post("/create-checkout-session", status_code=status.HTTP_201_CREATED)
def create_checkout_session(
    body: CheckoutSessionRequest,
    request: Request,
    gateway: StripeGateway = Depends(get_gateway),
):
    frontend_url = get_frontend_url(request)
    if not frontend_url:
        raise UpstreamProviderError("Frontend URL configuration is missing", status_code=500)

    logger.info("Creating checkout session for %s - plan %s - user %s", body.userEmail, body.planName, body.userId)
    session = gateway.create_checkout_session(
        body.priceId, body.planName, body.userId, body.userEmail, frontend_url
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"success": True, "data": session})


@router.get("/checkout-session/{session_id}")
def get_checkout_session(session_id: str, gateway: StripeGateway = Depends(get_gateway)):
    return {"success": True, "data": gateway.get_checkout_session(session_id)}


@router.post("/verify-session")
def verify_session(
    body: VerifySessionRequest,
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Called by the success page; applies the tier without waiting for the webhook."""
    return {"success": True, "data": reconciler.verify_session(body.sessionId)}


@router.post("/cancel-subscription")
def cancel_subscription(
    body: CancelSubscriptionRequest,
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    result = reconciler.cancel_subscription(body.userId, body.customerId, body.subscriptionId)
    return {"success": True, "data": result}


async def _process_webhook(request: Request, signature: Optional[str], reconciler: SubscriptionReconciler):
    # Raw bytes are required: the signature covers the exact payload
    payload = await request.body()
    return await run_in_threadpool(reconciler.handle_webhook, payload, signature)


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    return await _process_webhook(request, stripe_signature, reconciler)


@router.post("/webhook")
async def legacy_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """Legacy endpoint still registered in older Stripe dashboards."""
    return await _process_webhook(request, stripe_signature, reconciler)
