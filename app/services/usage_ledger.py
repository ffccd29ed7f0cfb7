"""
Usage ledger: user accounts, generation quotas and direct tier changes.

Quota checks and increments are one conditional UPDATE so two concurrent
generations for the same user cannot both pass the limit.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicateUser, QuotaExceeded, UserNotFound
from app.core.plan_limits import (
    DEFAULT_TIER,
    TIERS,
    UNLIMITED,
    can_generate,
    get_tier_info,
    remaining_generations,
    require_tier,
)
from app.db.session import Database, translate_store_errors
from app.models.user import User

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_profile(user: User) -> dict:
    """User row plus the computed quota fields the frontend renders."""
    tier_info = get_tier_info(user.subscription_tier)
    return {
        "id": user.id,
        "firebase_uid": user.firebase_uid,
        "email": user.email,
        "display_name": user.display_name,
        "subscription_tier": user.subscription_tier,
        "monthly_generations_used": user.monthly_generations_used,
        "monthly_generations_limit": user.monthly_generations_limit,
        "subscription_status": user.subscription_status,
        "stripe_customer_id": user.stripe_customer_id,
        "stripe_subscription_id": user.stripe_subscription_id,
        "subscription_start_date": _iso(user.subscription_start_date),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "canGenerate": can_generate(user.monthly_generations_used, user.monthly_generations_limit),
        "remainingGenerations": remaining_generations(
            user.monthly_generations_used, user.monthly_generations_limit
        ),
        "tierInfo": tier_info._asdict(),
    }


def get_user(db: Session, firebase_uid: str, for_update: bool = False) -> Optional[User]:
    stmt = select(User).where(User.firebase_uid == firebase_uid)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def get_user_or_404(db: Session, firebase_uid: str, for_update: bool = False) -> User:
    user = get_user(db, firebase_uid, for_update=for_update)
    if not user:
        raise UserNotFound(firebase_uid)
    return user


def apply_subscription(
    user: User,
    tier: str,
    stripe_customer_id: Optional[str],
    stripe_subscription_id: Optional[str],
) -> None:
    """
    Full overwrite of the subscription fields. Applying it twice gives the same row.
    Usage counters are left alone.
    """
    now = datetime.now(timezone.utc)
    user.subscription_tier = tier
    user.monthly_generations_limit = TIERS[tier].limit
    user.stripe_customer_id = stripe_customer_id
    user.stripe_subscription_id = stripe_subscription_id
    user.subscription_status = "active"
    user.subscription_start_date = now
    user.updated_at = now


class UsageLedger:
    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def can_generate(user: User) -> bool:
        return can_generate(user.monthly_generations_used, user.monthly_generations_limit)

    @translate_store_errors("Failed to create user")
    def create_user(self, firebase_uid: str, email: str, display_name: Optional[str] = None) -> dict:
        logger.info("Creating user %s (%s)", firebase_uid, email)
        try:
            with self.database.session_scope() as db:
                user = User(
                    firebase_uid=firebase_uid,
                    email=email,
                    display_name=display_name,
                    subscription_tier=DEFAULT_TIER,
                    monthly_generations_limit=TIERS[DEFAULT_TIER].limit,
                    monthly_generations_used=0,
                    subscription_status="active",
                )
                db.add(user)
                db.flush()
                return user_profile(user)
        except IntegrityError as e:
            logger.info("Duplicate registration for %s: %s", firebase_uid, e.orig)
            raise DuplicateUser() from e

    @translate_store_errors("Database connection failed")
    def get_profile(self, firebase_uid: str) -> dict:
        with self.database.session_scope() as db:
            return user_profile(get_user_or_404(db, firebase_uid))

    @translate_store_errors("Database error")
    def increment_usage(self, firebase_uid: str) -> dict:
        with self.database.session_scope() as db:
            result = db.execute(
                update(User)
                .where(
                    User.firebase_uid == firebase_uid,
                    or_(
                        User.monthly_generations_limit == UNLIMITED,
                        User.monthly_generations_used < User.monthly_generations_limit,
                    ),
                )
                .values(
                    monthly_generations_used=User.monthly_generations_used + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            user = get_user(db, firebase_uid)
            if not user:
                raise UserNotFound(firebase_uid)
            if result.rowcount == 0:
                logger.info(
                    "Generation limit reached for %s (%s: %s/%s)",
                    firebase_uid,
                    user.subscription_tier,
                    user.monthly_generations_used,
                    user.monthly_generations_limit,
                )
                raise QuotaExceeded(
                    user.subscription_tier,
                    user.monthly_generations_used,
                    user.monthly_generations_limit,
                )

            logger.info("Usage incremented for %s: %s", firebase_uid, user.monthly_generations_used)
            return {
                "success": True,
                "generationsUsed": user.monthly_generations_used,
                "remainingGenerations": remaining_generations(
                    user.monthly_generations_used, user.monthly_generations_limit
                ),
                "generationsLimit": user.monthly_generations_limit,
            }

    @translate_store_errors("Failed to reset usage")
    def reset_usage(self, firebase_uid: str) -> dict:
        with self.database.session_scope() as db:
            user = get_user_or_404(db, firebase_uid, for_update=True)
            user.monthly_generations_used = 0
            user.updated_at = datetime.now(timezone.utc)
            db.flush()
            logger.info("Usage reset for %s", firebase_uid)
            return {
                "message": "Usage count reset successfully",
                "generationsUsed": user.monthly_generations_used,
                "generationsLimit": user.monthly_generations_limit,
            }

    @translate_store_errors("Database error")
    def set_tier(
        self,
        firebase_uid: str,
        tier: Optional[str],
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> dict:
        """Direct tier change. Unknown tiers are rejected before anything is written."""
        require_tier(tier)
        logger.info("Updating subscription for %s to %s", firebase_uid, tier)
        with self.database.session_scope() as db:
            user = get_user_or_404(db, firebase_uid, for_update=True)
            apply_subscription(user, tier, stripe_customer_id, stripe_subscription_id)
            db.flush()
            return {"success": True, "user": user_profile(user)}

    def get_subscription_status(self, firebase_uid: str) -> dict:
        profile = self.get_profile(firebase_uid)
        return {
            "tier": profile["subscription_tier"],
            "status": profile["subscription_status"],
            "hasActiveSubscription": (
                profile["subscription_status"] == "active"
                and profile["subscription_tier"] != DEFAULT_TIER
            ),
            "generationsUsed": profile["monthly_generations_used"],
            "generationsLimit": profile["monthly_generations_limit"],
            "remainingGenerations": profile["remainingGenerations"],
            "canGenerate": profile["canGenerate"],
            "stripeCustomerId": profile["stripe_customer_id"],
            "stripeSubscriptionId": profile["stripe_subscription_id"],
            "subscriptionStartDate": profile["subscription_start_date"],
        }
