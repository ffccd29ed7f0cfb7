from typing import Dict, NamedTuple, Optional

from app.core.errors import InvalidTier


class TierInfo(NamedTuple):
    name: str
    limit: int  # monthly generations, -1 means unlimited
    price: int  # USD per month


UNLIMITED = -1

# Tier catalog, fixed in code (not user-configurable)
TIERS: Dict[str, TierInfo] = {
    "FREEMIUM": TierInfo(name="Freemium", limit=2, price=0),
    "BASIC": TierInfo(name="Basic", limit=5, price=5),
    "PREMIUM": TierInfo(name="Premium", limit=10, price=10),
    "PREMIUM_PLUS": TierInfo(name="Premium+", limit=UNLIMITED, price=15),
}

DEFAULT_TIER = "FREEMIUM"

# Plan display names as they arrive in Stripe checkout metadata
PLAN_NAME_TO_TIER: Dict[str, str] = {
    "Basic": "BASIC",
    "Premium": "PREMIUM",
    "Premium+": "PREMIUM_PLUS",
    "Freemium": "FREEMIUM",
}
DEFAULT_PLAN_TIER = "BASIC"


def is_valid_tier(tier: Optional[str]) -> bool:
    return bool(tier) and tier in TIERS


def get_tier_info(tier: Optional[str]) -> TierInfo:
    """Read/display lookup: unknown tiers fall back to Freemium."""
    return TIERS.get(tier or "", TIERS[DEFAULT_TIER])


def require_tier(tier: Optional[str]) -> TierInfo:
    """Write-path lookup: unknown tiers are rejected, never substituted."""
    if not is_valid_tier(tier):
        raise InvalidTier(tier)
    return TIERS[tier]


def tier_from_plan_name(plan_name: Optional[str]) -> str:
    """Map a Stripe plan display name to a tier. Unknown names become BASIC."""
    return PLAN_NAME_TO_TIER.get(plan_name or "", DEFAULT_PLAN_TIER)


def can_generate(usage_used: int, usage_limit: int) -> bool:
    return usage_limit == UNLIMITED or usage_used < usage_limit


def remaining_generations(usage_used: int, usage_limit: int):
    if usage_limit == UNLIMITED:
        return "Unlimited"
    return max(0, usage_limit - usage_used)
