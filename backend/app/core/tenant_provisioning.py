# app/core/tenant_provisioning.py
"""
The one place that decides what "the tenant for this owner" is.

Checkout, webhooks, restore and the provisioning safeguard all go through
resolve_or_create_tenant(), so two writers racing on "no tenant yet" end up
on the same row: tenants.owner_id is unique, and losing the insert race means
re-reading the winner's row.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tier import SubscriptionStatus
from app.core.tier_limits import DEFAULT_TIER, get_limits_for_tier, normalize_tier
from app.crud.tenant import get_tenant_by_owner
from app.crud.tenant_membership import ensure_owner_membership
from app.models.tenant import Tenant

logger = structlog.get_logger(__name__)

TENANT_NAME_MAX_LENGTH = 200


@dataclass(frozen=True)
class ProvisionResult:
    tenant: Tenant
    created: bool


def normalize_tenant_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = " ".join(value.strip().split())
    return v[:TENANT_NAME_MAX_LENGTH] or None


async def resolve_or_create_tenant(
    db: AsyncSession,
    *,
    owner_id: uuid.UUID,
    tenant_name: Optional[str],
    tier: Optional[str] = None,
    initial_status: SubscriptionStatus = SubscriptionStatus.PENDING,
    tenant_id: Optional[uuid.UUID] = None,
) -> Optional[ProvisionResult]:
    """
    Return the owner's tenant, creating it when it does not exist and a name
    is available. Returns None when there is no tenant and no name.

    tenant_id: preferred id for a new row (the checkout correlation token),
    ignored when the owner already has a tenant.
    """
    existing = await get_tenant_by_owner(db, owner_id)
    if existing is not None:
        return ProvisionResult(tenant=existing, created=False)

    name = normalize_tenant_name(tenant_name)
    if not name:
        return None

    t = normalize_tier(tier) or DEFAULT_TIER
    limits = get_limits_for_tier(t)
    tenant = Tenant(
        id=tenant_id or uuid.uuid4(),
        name=name,
        owner_id=owner_id,
        tier=t,
        subscription_status=initial_status.value,
        max_artists=limits.max_artists,
        max_managers=limits.max_managers,
        extra_slots=0,
        is_active=True,
    )

    try:
        async with db.begin_nested():
            db.add(tenant)
            await db.flush()
    except IntegrityError:
        # someone else just created it: fetch and use that one
        existing = await get_tenant_by_owner(db, owner_id)
        if existing is None:
            raise
        logger.info(
            "tenants.create_conflict_resolved",
            owner_id=str(owner_id),
            tenant_id=str(existing.id),
        )
        return ProvisionResult(tenant=existing, created=False)

    logger.info(
        "tenants.created",
        tenant_id=str(tenant.id),
        owner_id=str(owner_id),
        status=tenant.subscription_status,
        tier=tenant.tier,
    )
    return ProvisionResult(tenant=tenant, created=True)


async def provision_tenant_with_owner(
    db: AsyncSession,
    *,
    owner_id: uuid.UUID,
    tenant_name: Optional[str],
    tier: Optional[str] = None,
    initial_status: SubscriptionStatus = SubscriptionStatus.PENDING,
    tenant_id: Optional[uuid.UUID] = None,
) -> Optional[ProvisionResult]:
    """
    resolve_or_create_tenant + the OWNER membership. A failing membership
    insert is logged and swallowed: every later writer re-creates it.
    """
    result = await resolve_or_create_tenant(
        db,
        owner_id=owner_id,
        tenant_name=tenant_name,
        tier=tier,
        initial_status=initial_status,
        tenant_id=tenant_id,
    )
    if result is None:
        return None

    try:
        await ensure_owner_membership(db, result.tenant.id, owner_id)
    except IntegrityError as exc:
        logger.error(
            "tenants.owner_membership_failed",
            tenant_id=str(result.tenant.id),
            owner_id=str(owner_id),
            error=str(exc),
        )

    return result
