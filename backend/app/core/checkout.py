# app/core/checkout.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.billing_gateway import BillingGateway, CheckoutSessionRequest
from app.core.config import settings
from app.core.errors import TenantRequired, ValidationError
from app.core.tenant_provisioning import normalize_tenant_name, provision_tenant_with_owner
from app.core.tier import SubscriptionStatus
from app.core.tier_limits import validate_tier
from app.crud.tenant import get_tenant_by_owner
from app.models.user import User

logger = structlog.get_logger(__name__)

MAX_EXTRA_SEATS = 50


@dataclass(frozen=True)
class CheckoutResult:
    checkout_url: str
    tenant_id: uuid.UUID
    tenant_created: bool


async def start_checkout(
    db: AsyncSession,
    gateway: BillingGateway,
    *,
    user: User,
    tier: str,
    extra_seats: int = 0,
    tenant_name: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutResult:
    """
    Start a Stripe Checkout for the user's studio.

    Users without a studio must send a name: a `pending` studio and its OWNER
    membership are committed BEFORE Stripe is called, so the checkout carries
    a stable tenant id every later event can be resolved against. Retrying
    after a provider failure reuses that pending studio.
    """
    tier = validate_tier(tier)

    if extra_seats < 0 or extra_seats > MAX_EXTRA_SEATS:
        raise ValidationError(f"extra_seats must be between 0 and {MAX_EXTRA_SEATS}")
    if extra_seats > 0 and not settings.STRIPE_PRICE_EXTRA_SEAT:
        raise ValidationError("Extra seat price not configured")

    tenant = await get_tenant_by_owner(db, user.id)
    created = False

    if tenant is None:
        name = normalize_tenant_name(tenant_name)
        if not name:
            raise TenantRequired()

        logger.info("billing.checkout.preprovision", owner_id=str(user.id), tier=tier)
        result = await provision_tenant_with_owner(
            db,
            owner_id=user.id,
            tenant_name=name,
            tier=tier,
            initial_status=SubscriptionStatus.PENDING,
        )
        tenant = result.tenant
        created = result.created
        await db.commit()

    request = CheckoutSessionRequest(
        tenant_id=tenant.id,
        owner_id=user.id,
        owner_email=user.email,
        tier=tier,
        extra_seats=extra_seats,
        tenant_name=tenant.name,
        success_url=success_url or settings.default_url(settings.CHECKOUT_SUCCESS_PATH),
        cancel_url=cancel_url or settings.default_url(settings.CHECKOUT_CANCEL_PATH),
        customer_ref=tenant.billing_customer_ref,
        extra_seat_price=settings.STRIPE_PRICE_EXTRA_SEAT or None,
    )

    checkout_url = await gateway.create_checkout_session(request)

    logger.info(
        "billing.checkout.session_created",
        tenant_id=str(tenant.id),
        owner_id=str(user.id),
        tier=tier,
        extra_seats=extra_seats,
        tenant_created=created,
    )
    return CheckoutResult(checkout_url=checkout_url, tenant_id=tenant.id, tenant_created=created)
