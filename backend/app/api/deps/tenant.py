import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.api.v1.auth import get_current_user
from app.core.roles import TenantMembershipRole
from app.crud.tenant_membership import get_membership
from app.models.user import User
from app.models.tenant import Tenant
from app.models.tenant_membership import TenantMembership

ALLOWED_TENANT_ROLES = {r.value for r in TenantMembershipRole}


@dataclass(frozen=True)
class TenantContext:
    tenant: Tenant
    membership: TenantMembership


def _parse_tenant_id(value: Optional[str]) -> uuid.UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-Id header is required",
        )
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="X-Tenant-Id must be a valid UUID",
        )


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TenantContext:
    """
    Resolve the tenant named by X-Tenant-Id and the caller's active membership in it.
    FastAPI caches this per request, so tenant and membership deps share one lookup.
    """
    tenant = await db.get(Tenant, _parse_tenant_id(x_tenant_id))
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")

    membership = await get_membership(db, tenant.id, user.id)
    if membership is None or not membership.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this tenant",
        )

    return TenantContext(tenant=tenant, membership=membership)


async def get_current_tenant(ctx: TenantContext = Depends(get_tenant_context)) -> Tenant:
    return ctx.tenant


async def get_current_membership(ctx: TenantContext = Depends(get_tenant_context)) -> TenantMembership:
    return ctx.membership


def require_tenant_roles(*allowed_roles: str):
    """
    Enforce membership.role is in allowed_roles (OWNER/MANAGER/ARTIST).
    Role names are checked when the dependency is declared, not per request.
    """
    allowed = {r.upper() for r in allowed_roles}
    unknown = allowed - ALLOWED_TENANT_ROLES
    if unknown:
        raise ValueError(
            f"Unknown tenant role(s): {sorted(unknown)}. Allowed: {sorted(ALLOWED_TENANT_ROLES)}"
        )

    async def _checker(
        membership: TenantMembership = Depends(get_current_membership),
    ) -> TenantMembership:
        role = (membership.role or "").upper()
        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient role: {role}. Allowed: {', '.join(sorted(allowed))}",
            )
        return membership

    return _checker
