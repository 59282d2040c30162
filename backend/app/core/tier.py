# app/core/tier.py

import enum


class TenantTier(str, enum.Enum):
    BASIC = "basic"
    PRO = "pro"
    PLUS = "plus"


class SubscriptionStatus(str, enum.Enum):
    NONE = "none"
    PENDING = "pending"        # pre-provisioned, no confirmed payment yet
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    TRIALING = "trialing"


# Stripe statuses that have no local counterpart
_PROVIDER_STATUS_ALIASES = {
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "cancelled": SubscriptionStatus.CANCELED,
}

# statuses a restore / provisioning lookup accepts as "paid"
ACTIVE_LIKE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


def map_provider_status(value: str | None) -> SubscriptionStatus:
    v = (value or "").strip().lower()
    try:
        return SubscriptionStatus(v)
    except ValueError:
        pass
    if v in _PROVIDER_STATUS_ALIASES:
        return _PROVIDER_STATUS_ALIASES[v]
    raise ValueError(f"Unknown subscription status: {value!r}")
