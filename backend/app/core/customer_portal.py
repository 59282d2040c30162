# app/core/customer_portal.py
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.billing_gateway import BillingGateway
from app.core.config import settings
from app.core.errors import TenantNotFound
from app.crud.tenant import get_tenant_by_owner
from app.models.user import User

logger = structlog.get_logger(__name__)


async def open_customer_portal(
    db: AsyncSession,
    gateway: BillingGateway,
    *,
    user: User,
    return_url: Optional[str] = None,
) -> str:
    """
    Stripe customer portal URL for the owner's studio.

    Studios that never got a customer reference (e.g. pre-provisioned, then
    paid through another channel) get a fresh Stripe customer first.
    """
    tenant = await get_tenant_by_owner(db, user.id)
    if tenant is None:
        raise TenantNotFound()

    customer_ref = tenant.billing_customer_ref
    if not customer_ref:
        customer_ref = await gateway.create_customer(
            email=user.email,
            metadata={
                "tenant_id": str(tenant.id),
                "owner_id": str(user.id),
                "source": "portal_fix",
            },
        )
        tenant.billing_customer_ref = customer_ref
        await db.commit()
        logger.info("billing.portal.customer_created", tenant_id=str(tenant.id), customer_ref=customer_ref)

    url = await gateway.create_portal_session(
        customer_ref=customer_ref,
        return_url=return_url or settings.default_url(settings.PORTAL_RETURN_PATH),
    )
    logger.info("billing.portal.session_created", tenant_id=str(tenant.id))
    return url
