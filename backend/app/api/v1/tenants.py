# app/api/v1/tenants.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.auth import get_current_user
from app.api.deps.tenant import (
    get_current_tenant,
    get_current_membership,
    require_tenant_roles,
)
from app.core.tier_resolver import is_entitled, resolve_effective_tier
from app.db.session import get_db
from app.models.tenant import Tenant
from app.models.tenant_membership import TenantMembership
from app.models.user import User
from app.schemas.tenant import TenantBillingOut, TenantMembershipOut, TenantOut

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ---------------------------------------------------------
# Tenant list (for TenantGate / TenantSelection)
# ---------------------------------------------------------
@router.get("", response_model=List[TenantOut])
async def list_my_tenants(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Returns all tenants the current user is an active member of.
    An empty list after a paid checkout is the client's cue to call
    POST /billing/provision.
    """
    stmt = (
        select(Tenant)
        .join(TenantMembership, TenantMembership.tenant_id == Tenant.id)
        .where(TenantMembership.user_id == user.id)
        .where(TenantMembership.is_active.is_(True))
        .order_by(Tenant.created_at.desc())
    )
    res = await db.execute(stmt)
    tenants = res.scalars().unique().all()
    return list(tenants)


# ---------------------------------------------------------
# Tenant scoped endpoints
# ---------------------------------------------------------
@router.get("/current", response_model=TenantOut)
async def get_current_tenant_route(
    tenant: Tenant = Depends(get_current_tenant),
):
    return tenant


@router.get("/membership", response_model=TenantMembershipOut)
async def get_my_membership_in_current_tenant(
    membership: TenantMembership = Depends(get_current_membership),
):
    return membership


@router.get("/current/billing", response_model=TenantBillingOut)
async def get_current_tenant_billing(
    tenant: Tenant = Depends(get_current_tenant),
    _membership: TenantMembership = Depends(require_tenant_roles("OWNER", "MANAGER")),
) -> TenantBillingOut:
    return TenantBillingOut(
        tenant_id=tenant.id,
        tier=tenant.tier,
        subscription_status=tenant.subscription_status,
        is_entitled=is_entitled(tenant),
        effective_tier=resolve_effective_tier(tenant),
        current_period_end=tenant.current_period_end,
        currency=tenant.currency,
        max_artists=tenant.max_artists,
        max_managers=tenant.max_managers,
        extra_slots=tenant.extra_slots,
        has_billing_account=bool(tenant.billing_customer_ref),
    )
