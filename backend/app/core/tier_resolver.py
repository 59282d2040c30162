from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from app.core.tier import ACTIVE_LIKE_STATUSES, SubscriptionStatus
from app.core.tier_limits import DEFAULT_TIER, TIER_LIMITS, normalize_tier


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # some drivers hand back naive timestamps; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_entitled(tenant, now: Optional[datetime] = None) -> bool:
    """
    Whether the studio currently gets its paid features.

    active / trialing: yes
    past_due: only until the end of the period already paid for
    pending / canceled / none: no
    """
    try:
        status = SubscriptionStatus(getattr(tenant, "subscription_status", None) or "none")
    except ValueError:
        return False

    if status in ACTIVE_LIKE_STATUSES:
        return True

    if status is SubscriptionStatus.PAST_DUE:
        period_end = _as_utc(getattr(tenant, "current_period_end", None))
        return period_end is not None and period_end > (now or _utcnow())

    return False


def resolve_effective_tier(tenant, now: Optional[datetime] = None) -> str:
    """
    Tier to enforce seat limits with: the purchased tier while entitled,
    otherwise the default tier.
    """
    if not is_entitled(tenant, now=now):
        return DEFAULT_TIER
    t = normalize_tier(getattr(tenant, "tier", None))
    return t if t in TIER_LIMITS else DEFAULT_TIER
