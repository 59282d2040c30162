# app/crud/tenant_membership.py
from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.roles import TenantMembershipRole
from app.models.tenant_membership import TenantMembership

logger = structlog.get_logger(__name__)


async def get_membership(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
) -> TenantMembership | None:
    stmt = (
        select(TenantMembership)
        .where(TenantMembership.tenant_id == tenant_id)
        .where(TenantMembership.user_id == user_id)
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def ensure_owner_membership(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
) -> TenantMembership:
    """
    Create the OWNER membership for (tenant, user) if missing, or re-activate /
    promote an existing row. Safe to call any number of times and concurrently:
    a unique violation on (tenant_id, user_id) means another writer inserted
    it first, so we use theirs.
    """
    membership = await get_membership(db, tenant_id, user_id)
    if membership is not None:
        if membership.role != TenantMembershipRole.OWNER.value or not membership.is_active:
            membership.role = TenantMembershipRole.OWNER.value
            membership.is_active = True
            await db.flush()
        return membership

    membership = TenantMembership(
        tenant_id=tenant_id,
        user_id=user_id,
        role=TenantMembershipRole.OWNER.value,
        is_active=True,
    )
    try:
        async with db.begin_nested():
            db.add(membership)
            await db.flush()
    except IntegrityError:
        logger.info(
            "tenants.membership_conflict_resolved",
            tenant_id=str(tenant_id),
            user_id=str(user_id),
        )
        existing = await get_membership(db, tenant_id, user_id)
        if existing is None:
            raise
        return existing

    return membership

