# app/core/subscription_sync.py
from __future__ import annotations

import enum
from typing import Optional

import structlog

from app.core.billing_snapshot import SnapshotSource, SubscriptionSnapshot
from app.core.tier import ACTIVE_LIKE_STATUSES
from app.core.tier_limits import get_limits_for_tier
from app.models.tenant import Tenant

logger = structlog.get_logger(__name__)


class SyncResult(str, enum.Enum):
    APPLIED = "applied"
    STALE = "stale"        # not newer than what the tenant already reflects
    FOREIGN = "foreign"    # belongs to a subscription the tenant does not use


def stored_generation(tenant: Tenant) -> Optional[tuple[int, int]]:
    if tenant.billing_state_marker is None:
        return None
    source = tenant.billing_state_source
    # rows without a source rank highest: no same-second event beats them
    if source is None:
        source = SnapshotSource.PROVIDER_READ
    return (tenant.billing_state_marker, int(source))


def is_newer(tenant: Tenant, snapshot: SubscriptionSnapshot) -> bool:
    stored = stored_generation(tenant)
    return stored is None or snapshot.generation > stored


def switches_subscription(tenant: Tenant, snapshot: SubscriptionSnapshot) -> bool:
    return bool(
        snapshot.subscription_ref
        and tenant.billing_subscription_ref
        and snapshot.subscription_ref != tenant.billing_subscription_ref
    )


def is_stale(tenant: Tenant, snapshot: SubscriptionSnapshot) -> bool:
    """
    A snapshot of the tenant's current subscription is stale unless it is
    strictly newer than the stored one. A redelivered event is stale as well:
    the state it carries is already in place.
    """
    if switches_subscription(tenant, snapshot):
        return False
    return not is_newer(tenant, snapshot)


def can_adopt(tenant: Tenant, snapshot: SubscriptionSnapshot) -> bool:
    """
    A live subscription addressed to this tenant may replace the current one
    before its checkout completion arrives, provided it is newer than anything
    applied so far. Ended subscriptions never come back this way.
    """
    return snapshot.status in ACTIVE_LIKE_STATUSES and is_newer(tenant, snapshot)


def apply_snapshot(
    tenant: Tenant,
    snapshot: SubscriptionSnapshot,
    *,
    attach: bool,
    overwrite_period_end: bool,
    adopt: bool = False,
) -> SyncResult:
    """
    Overwrite the tenant's billing fields from a provider snapshot.

    attach: the snapshot may introduce a new subscription for the tenant
        unconditionally (checkout completion, restore, provisioning).
    adopt: the snapshot is addressed to this tenant (metadata tenant id), so a
        different subscription is taken over when `can_adopt` allows it.
        Without either flag, other subscriptions are ignored.
    overwrite_period_end: full overwrite of current_period_end, including
        clearing it; off for invoice reaffirmations. Switching subscriptions
        always replaces it.
    """
    current_ref = tenant.billing_subscription_ref
    switching = switches_subscription(tenant, snapshot)

    if switching and not attach and not (adopt and can_adopt(tenant, snapshot)):
        logger.info(
            "billing.sync.foreign_subscription",
            tenant_id=str(tenant.id),
            subscription_ref=snapshot.subscription_ref,
            current_subscription_ref=current_ref,
        )
        return SyncResult.FOREIGN

    if is_stale(tenant, snapshot):
        logger.info(
            "billing.sync.stale_snapshot",
            tenant_id=str(tenant.id),
            marker=snapshot.marker,
            source=snapshot.source.name,
            stored_marker=tenant.billing_state_marker,
            status=snapshot.status.value,
        )
        return SyncResult.STALE

    if snapshot.customer_ref:
        tenant.billing_customer_ref = snapshot.customer_ref
    if snapshot.subscription_ref:
        tenant.billing_subscription_ref = snapshot.subscription_ref

    tenant.subscription_status = snapshot.status.value
    if overwrite_period_end or switching:
        # the previous subscription's period says nothing about the new one
        tenant.current_period_end = snapshot.current_period_end

    if snapshot.tier:
        tenant.tier = snapshot.tier
    limits = get_limits_for_tier(tenant.tier)
    tenant.max_artists = limits.max_artists
    tenant.max_managers = limits.max_managers
    if snapshot.extra_slots is not None:
        tenant.extra_slots = snapshot.extra_slots

    if snapshot.currency:
        tenant.currency = snapshot.currency

    tenant.billing_state_marker = snapshot.marker
    tenant.billing_state_source = int(snapshot.source)

    logger.info(
        "billing.sync.applied",
        tenant_id=str(tenant.id),
        status=tenant.subscription_status,
        tier=tenant.tier,
        marker=snapshot.marker,
        switched_subscription=switching,
    )
    return SyncResult.APPLIED
