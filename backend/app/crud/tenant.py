# app/crud/tenant.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant import Tenant
from app.models.user import ACCOUNT_STATUS_ACTIVE, User


async def get_tenant_by_owner(db: AsyncSession, owner_id: uuid.UUID) -> Optional[Tenant]:
    stmt = select(Tenant).where(Tenant.owner_id == owner_id).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_tenant_by_subscription_ref(db: AsyncSession, subscription_ref: str) -> Optional[Tenant]:
    stmt = (
        select(Tenant)
        .where(Tenant.billing_subscription_ref == subscription_ref)
        .order_by(Tenant.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()


async def mark_account_active(db: AsyncSession, user_id: uuid.UUID) -> None:
    """
    Flip the owner's account to active once a paid studio is attached.
    No-op for unknown users or accounts that are already active.
    """
    stmt = (
        update(User)
        .where(User.id == user_id)
        .where(User.account_status != ACCOUNT_STATUS_ACTIVE)
        .values(account_status=ACCOUNT_STATUS_ACTIVE)
    )
    await db.execute(stmt)
