import logging

from fastapi import APIRouter, Depends, Path, status
from fastapi.responses import JSONResponse

from app.dependencies.services import get_reconciler, get_usage_ledger
from app.schemas.user import SubscriptionUpdate, UserCreate
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_user(body: UserCreate, ledger: UsageLedger = Depends(get_usage_ledger)):
    """Register a user on the Freemium tier."""
    user = ledger.create_user(body.firebaseUid, body.email, body.displayName)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"success": True, "data": user})


@router.get("/profile/{firebase_uid}")
def get_profile(
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """User profile with subscription info and usage stats"""
    profile = ledger.get_profile(firebase_uid)
    logger.info(
        "Profile for %s: tier=%s canGenerate=%s remaining=%s",
        firebase_uid, profile["subscription_tier"], profile["canGenerate"], profile["remainingGenerations"],
    )
    return {"success": True, "data": profile}


@router.post("/{firebase_uid}/increment-usage")
def increment_usage(
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    return {"success": True, "data": ledger.increment_usage(firebase_uid)}


@router.post("/{firebase_uid}/update-subscription")
def update_subscription(
    body: SubscriptionUpdate,
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    result = ledger.set_tier(firebase_uid, body.tier, body.stripeCustomerId, body.stripeSubscriptionId)
    return {"success": True, "data": result}


@router.post("/{firebase_uid}/cancel-subscription")
def cancel_subscription(
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """Cancel the user's Stripe subscription and downgrade to Freemium."""
    result = reconciler.cancel_user_subscription(firebase_uid)
    return {
        "success": True,
        "data": {
            "message": result["message"],
            "user": ledger.get_profile(firebase_uid),
        },
    }


@router.get("/{firebase_uid}/subscription-status")
def subscription_status(
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    return {"success": True, "data": ledger.get_subscription_status(firebase_uid)}


@router.post("/{firebase_uid}/reset-usage")
def reset_usage(
    firebase_uid: str = Path(..., min_length=10, max_length=128),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    """Manual monthly reset (admin). Nothing schedules this automatically."""
    return {"success": True, "data": ledger.reset_usage(firebase_uid)}
