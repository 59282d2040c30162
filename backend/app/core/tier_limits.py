# ============================
# FILE: app/core/tier_limits.py
# Canonical tier limits for studios
# ============================
from __future__ import annotations

from dataclasses import dataclass

from app.core.config import settings
from app.core.errors import InvalidTier
from app.core.tier import TenantTier


@dataclass(frozen=True)
class TierLimits:
    max_artists: int
    max_managers: int


# Seat model (by role), extra seats are purchased on top:
# - basic: 1 artist, 1 manager
# - pro: 2 artists, 2 managers
# - plus: 4 artists, 4 managers
TIER_LIMITS: dict[str, TierLimits] = {
    TenantTier.BASIC.value: TierLimits(max_artists=1, max_managers=1),
    TenantTier.PRO.value: TierLimits(max_artists=2, max_managers=2),
    TenantTier.PLUS.value: TierLimits(max_artists=4, max_managers=4),
}

DEFAULT_TIER = TenantTier.BASIC.value


def normalize_tier(value: str | None) -> str:
    return (value or "").strip().lower()


def tier_to_str(tier_obj) -> str | None:
    """
    Supports Enum-like tier objects (tier.value) or plain strings.
    Returns None if empty.
    """
    if tier_obj is None:
        return None
    v = getattr(tier_obj, "value", None)
    if isinstance(v, str) and v:
        return v
    s = str(tier_obj)
    return s if s else None


def validate_tier(tier: str | None) -> str:
    """
    Returns the normalized tier or raises InvalidTier.
    A tier is only purchasable when its Stripe price is configured.
    """
    t = normalize_tier(tier_to_str(tier))
    if t not in TIER_LIMITS:
        raise InvalidTier(f"Invalid tier: {tier!r}. Available: {', '.join(sorted(TIER_LIMITS))}")
    if t not in settings.STRIPE_PRICE_IDS:
        raise InvalidTier(f"Tier {t!r} has no configured price.")
    return t


def get_limits_for_tier(tier: str | None) -> TierLimits:
    """
    Returns the seat limits for the given tier.
    Defaults to basic if unknown.
    """
    t = normalize_tier(tier)
    return TIER_LIMITS.get(t, TIER_LIMITS[DEFAULT_TIER])


def get_price_for_tier(tier: str) -> str:
    return settings.STRIPE_PRICE_IDS[normalize_tier(tier)]


def get_tier_for_price(price_id: str | None) -> str | None:
    """
    Reverse lookup of a Stripe price id. None for unknown prices
    (including the extra-seat add-on).
    """
    if not price_id:
        return None
    for tier, configured in settings.STRIPE_PRICE_IDS.items():
        if configured == price_id:
            return tier
    return None


def is_extra_seat_price(price_id: str | None) -> bool:
    return bool(price_id) and price_id == settings.STRIPE_PRICE_EXTRA_SEAT
