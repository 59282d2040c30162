# app/api/v1/billing.py
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.billing import get_billing_gateway
from app.api.v1.auth import get_current_user
from app.core.billing_gateway import BillingGateway
from app.core.billing_snapshot import WebhookSignatureError, parse_billing_event, verify_webhook_payload
from app.core.checkout import start_checkout
from app.core.config import settings
from app.core.customer_portal import open_customer_portal
from app.core.errors import BillingError
from app.core.reconciliation import provision_missing_tenant, restore_subscription
from app.core.webhook_processor import WebhookOutcome, process_billing_event
from app.db.session import get_db
from app.models.user import User
from app.schemas.billing import (
    CheckoutSessionCreate,
    CheckoutSessionOut,
    PortalSessionCreate,
    PortalSessionOut,
    ProvisionCreate,
    ProvisionOut,
    RestoreOut,
    WebhookAck,
)

router = APIRouter(prefix="/billing", tags=["billing"])

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------
# Stripe webhook (no JWT; authenticated by signature)
# ---------------------------------------------------------
@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
) -> WebhookAck:
    """
    200 once the event is durably applied (or is a duplicate / no-op).
    400 for unauthenticated bodies, 500 for anything Stripe should retry.
    """
    payload = await request.body()

    if not stripe_signature:
        logger.warning("billing.webhook.missing_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")

    try:
        raw = verify_webhook_payload(
            payload,
            stripe_signature,
            secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except WebhookSignatureError as exc:
        logger.warning("billing.webhook.invalid_signature", error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        event = parse_billing_event(raw)
    except ValueError as exc:
        logger.warning("billing.webhook.malformed_event", error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event")

    if event is None:
        logger.info("billing.webhook.ignored", event_id=raw.get("id"), event_type=raw.get("type"))
        return WebhookAck(outcome=WebhookOutcome.IGNORED.value)

    logger.info("billing.webhook.received", event_id=event.event_id, event_type=event.provider_type)

    try:
        outcome = await process_billing_event(db, event)
    except (SQLAlchemyError, BillingError) as exc:
        await db.rollback()
        logger.exception("billing.webhook.failed", event_id=event.event_id, event_type=event.provider_type)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookAck(outcome=outcome.value)


# ---------------------------------------------------------
# Owner-facing billing actions
# ---------------------------------------------------------
@router.post("/checkout-session", response_model=CheckoutSessionOut)
async def create_checkout_session(
    payload: CheckoutSessionCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> CheckoutSessionOut:
    result = await start_checkout(
        db,
        gateway,
        user=user,
        tier=payload.tier,
        extra_seats=payload.extra_seats,
        tenant_name=payload.tenant_name,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    return CheckoutSessionOut(checkout_url=result.checkout_url, tenant_id=result.tenant_id)


@router.post("/customer-portal", response_model=PortalSessionOut)
async def create_customer_portal_session(
    payload: Optional[PortalSessionCreate] = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> PortalSessionOut:
    url = await open_customer_portal(
        db,
        gateway,
        user=user,
        return_url=payload.return_url if payload else None,
    )
    return PortalSessionOut(portal_url=url)


@router.post("/restore", response_model=RestoreOut)
async def restore_billing(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> RestoreOut:
    """
    Re-sync the owner's studio from Stripe (missed or delayed webhooks).
    """
    result = await restore_subscription(db, gateway, user=user)
    return RestoreOut(tier=result.tier, tenant_id=result.tenant_id, status=result.status)


@router.post("/provision", response_model=ProvisionOut)
async def provision_tenant(
    payload: ProvisionCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> ProvisionOut:
    """
    Safeguard for "paid but no studio": creates the studio only when Stripe
    confirms an active subscription for the user's email.
    """
    result = await provision_missing_tenant(db, gateway, user=user, tenant_name=payload.tenant_name)
    return ProvisionOut(tenant_id=result.tenant_id, created=result.created)
