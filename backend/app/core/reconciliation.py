# app/core/reconciliation.py
"""
Pull-based repair of a tenant's billing state, straight from Stripe.

restore_subscription: the user believes they paid but the studio looks stale
    (webhook delayed, lost or misconfigured).
provision_missing_tenant: the user has no studio at all; create it only when
    Stripe confirms a paid subscription.

Both reuse the webhook path's resolve-or-create routine and snapshot writer,
so they are safe to call repeatedly and concurrently with a real webhook.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.billing_gateway import BillingGateway, ProviderCustomer
from app.core.billing_snapshot import SnapshotSource, SubscriptionSnapshot, snapshot_from_subscription
from app.core.config import settings
from app.core.errors import NoActiveSubscription, TenantNotFound, ValidationError
from app.core.subscription_sync import SyncResult, apply_snapshot
from app.core.tenant_provisioning import normalize_tenant_name, provision_tenant_with_owner
from app.core.tier_limits import DEFAULT_TIER
from app.crud.tenant import get_tenant_by_owner, mark_account_active
from app.crud.tenant_membership import ensure_owner_membership
from app.models.user import User

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# provider-side moments at which a subscription's state last changed
_SUBSCRIPTION_TIMESTAMPS = ("created", "start_date", "current_period_start", "trial_start", "canceled_at")


def newest_provider_timestamp(subscription: Mapping[str, Any]) -> int:
    items = (subscription.get("items") or {}).get("data") or []
    sources = [subscription] + list(items[:1])
    stamps = [int(src.get(key) or 0) for src in sources for key in _SUBSCRIPTION_TIMESTAMPS]
    return max(stamps, default=0)


@dataclass(frozen=True)
class ConfirmedSubscription:
    customer: ProviderCustomer
    subscription: Mapping[str, Any]

    def snapshot(self, *, read_at: datetime, clock_skew_seconds: int = 0) -> SubscriptionSnapshot:
        """
        A pulled snapshot is current as of the read, less the allowed skew
        between our clock and Stripe's, and never older than the newest
        timestamp Stripe put on the subscription itself.
        """
        marker = max(
            int(read_at.timestamp()) - clock_skew_seconds,
            newest_provider_timestamp(self.subscription),
        )
        snap = snapshot_from_subscription(
            self.subscription,
            marker=marker,
            source=SnapshotSource.PROVIDER_READ,
        )
        if snap.customer_ref is None:
            snap = replace(snap, customer_ref=self.customer.id)
        return snap

    def tenant_name(self) -> Optional[str]:
        metadata = self.subscription.get("metadata") or {}
        return normalize_tenant_name(metadata.get("tenant_name")) or normalize_tenant_name(self.customer.name)


@dataclass(frozen=True)
class RestoreResult:
    tenant_id: uuid.UUID
    tier: str
    status: str
    sync_result: SyncResult


@dataclass(frozen=True)
class ProvisionOutcome:
    tenant_id: uuid.UUID
    created: bool


async def find_confirmed_subscription(gateway: BillingGateway, user: User) -> ConfirmedSubscription:
    """
    Customers by the user's (verified) email, then the most recent paid
    subscription across all of them: every checkout started without a known
    customer creates a new one in Stripe. Raises NoActiveSubscription when
    nothing qualifies.
    """
    email = (user.email or "").strip().lower()
    if not email:
        raise NoActiveSubscription("User has no email to look up a billing account.")

    customers = await gateway.find_customers_by_email(email)
    if not customers:
        logger.info("billing.reconcile.no_customer", user_id=str(user.id))
        raise NoActiveSubscription("No billing account found for this email.")

    confirmed: Optional[ConfirmedSubscription] = None
    for customer in customers:
        subscription = await gateway.find_active_subscription(customer.id)
        if subscription is None:
            continue
        if confirmed is None or int(subscription.get("created") or 0) > int(
            confirmed.subscription.get("created") or 0
        ):
            confirmed = ConfirmedSubscription(customer=customer, subscription=subscription)

    if confirmed is None:
        logger.info(
            "billing.reconcile.no_subscription",
            user_id=str(user.id),
            customer_refs=[c.id for c in customers],
        )
        raise NoActiveSubscription()

    return confirmed


async def restore_subscription(
    db: AsyncSession,
    gateway: BillingGateway,
    *,
    user: User,
    now: Optional[datetime] = None,
) -> RestoreResult:
    confirmed = await find_confirmed_subscription(gateway, user)
    snapshot = confirmed.snapshot(
        read_at=now or _utcnow(),
        clock_skew_seconds=settings.BILLING_CLOCK_SKEW_SECONDS,
    )

    result = await provision_tenant_with_owner(
        db,
        owner_id=user.id,
        tenant_name=confirmed.tenant_name(),
        tier=snapshot.tier or DEFAULT_TIER,
        initial_status=snapshot.status,
    )
    if result is None:
        raise TenantNotFound()

    tenant = result.tenant
    sync_result = apply_snapshot(tenant, snapshot, attach=True, overwrite_period_end=True)
    await mark_account_active(db, user.id)

    tenant_id, tier, status = tenant.id, tenant.tier, tenant.subscription_status
    await db.commit()

    logger.info(
        "billing.reconcile.restored",
        tenant_id=str(tenant_id),
        subscription_ref=snapshot.subscription_ref,
        tier=tier,
        status=status,
        sync_result=sync_result.value,
        tenant_created=result.created,
    )
    return RestoreResult(tenant_id=tenant_id, tier=tier, status=status, sync_result=sync_result)


async def provision_missing_tenant(
    db: AsyncSession,
    gateway: BillingGateway,
    *,
    user: User,
    tenant_name: Optional[str],
    now: Optional[datetime] = None,
) -> ProvisionOutcome:
    name = normalize_tenant_name(tenant_name)
    if not name:
        raise ValidationError("tenant_name is required")

    existing = await get_tenant_by_owner(db, user.id)
    if existing is not None:
        # common case: nothing to repair beyond the membership
        tenant_id = existing.id
        await ensure_owner_membership(db, tenant_id, user.id)
        await db.commit()
        logger.info("billing.provision.existing", tenant_id=str(tenant_id), owner_id=str(user.id))
        return ProvisionOutcome(tenant_id=tenant_id, created=False)

    confirmed = await find_confirmed_subscription(gateway, user)
    snapshot = confirmed.snapshot(
        read_at=now or _utcnow(),
        clock_skew_seconds=settings.BILLING_CLOCK_SKEW_SECONDS,
    )

    # payment is already confirmed: the studio starts active, never pending
    result = await provision_tenant_with_owner(
        db,
        owner_id=user.id,
        tenant_name=name,
        tier=snapshot.tier or DEFAULT_TIER,
        initial_status=snapshot.status,
    )
    tenant = result.tenant
    apply_snapshot(tenant, snapshot, attach=True, overwrite_period_end=True)
    await mark_account_active(db, user.id)

    tenant_id = tenant.id
    await db.commit()

    logger.info(
        "billing.provision.created",
        tenant_id=str(tenant_id),
        owner_id=str(user.id),
        subscription_ref=snapshot.subscription_ref,
        tenant_created=result.created,
    )
    return ProvisionOutcome(tenant_id=tenant_id, created=result.created)
