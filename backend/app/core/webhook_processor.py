# app/core/webhook_processor.py
"""
Idempotent consumer of Stripe billing events.

Stripe delivers at least once, in no particular order, and re-delivers on
timeouts. Processing one event:

  1. skip it if its id is in the applied-event ledger
  2. resolve the tenant (metadata tenant id -> owner -> create from the name
     given at checkout -> subscription ref)
  3. overwrite the tenant from the event snapshot, guarded by the generation
     marker (app.core.subscription_sync)
  4. add the event id to the ledger in the same transaction, then commit

Returns an outcome for the HTTP layer; any exception means "do not
acknowledge" so Stripe retries.
"""
from __future__ import annotations

import enum

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.billing_snapshot import BillingEvent, BillingEventType
from app.core.config import settings
from app.core.errors import TenantResolutionFailure
from app.core.subscription_sync import SyncResult, apply_snapshot
from app.core.tenant_provisioning import resolve_or_create_tenant
from app.core.tier import SubscriptionStatus
from app.crud.billing_event import is_event_applied, purge_expired_events, record_event_applied
from app.crud.tenant import get_tenant_by_owner, get_tenant_by_subscription_ref, mark_account_active
from app.crud.tenant_membership import ensure_owner_membership
from app.models.tenant import Tenant
from app.models.user import User

logger = structlog.get_logger(__name__)


class WebhookOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNRESOLVED = "unresolved"
    IGNORED = "ignored"


_SYNC_OUTCOMES = {
    SyncResult.APPLIED: WebhookOutcome.APPLIED,
    SyncResult.STALE: WebhookOutcome.STALE,
    SyncResult.FOREIGN: WebhookOutcome.IGNORED,
}


async def resolve_event_tenant(db: AsyncSession, event: BillingEvent) -> Tenant:
    """
    Raises TenantResolutionFailure when nothing ties the event to a tenant.
    """
    tenant_id = event.tenant_hint
    if tenant_id is not None:
        tenant = await db.get(Tenant, tenant_id)
        if tenant is not None:
            return tenant

    owner_id = event.owner_hint
    if owner_id is not None:
        tenant = await get_tenant_by_owner(db, owner_id)
        if tenant is not None:
            return tenant

        # Checkout pre-provisioning may have failed (or never run): create the
        # studio now. Losing a race with checkout just reuses its row.
        if event.tenant_name and await db.get(User, owner_id) is not None:
            result = await resolve_or_create_tenant(
                db,
                owner_id=owner_id,
                tenant_name=event.tenant_name,
                tier=event.metadata.get("tier"),
                initial_status=SubscriptionStatus.PENDING,
                tenant_id=tenant_id,
            )
            if result is not None:
                return result.tenant

    subscription_ref = event.subscription_ref
    if subscription_ref:
        tenant = await get_tenant_by_subscription_ref(db, subscription_ref)
        if tenant is not None:
            return tenant

    raise TenantResolutionFailure(
        f"No tenant for event {event.event_id} "
        f"(tenant_id={tenant_id}, owner_id={owner_id}, subscription={subscription_ref})"
    )


async def _apply_event(db: AsyncSession, event: BillingEvent, tenant: Tenant) -> SyncResult:
    snapshot = event.snapshot()

    if event.type is BillingEventType.CHECKOUT_COMPLETED:
        result = apply_snapshot(tenant, snapshot, attach=True, overwrite_period_end=False)
        await ensure_owner_membership(db, tenant.id, tenant.owner_id)
        await mark_account_active(db, tenant.owner_id)
        return result

    # a new subscription's updates may beat its checkout completion
    adopt = event.tenant_hint == tenant.id
    if event.type is BillingEventType.INVOICE_PAID:
        result = apply_snapshot(tenant, snapshot, attach=False, overwrite_period_end=False, adopt=adopt)
    else:
        # subscription updated / canceled: full overwrite of status + period end
        result = apply_snapshot(tenant, snapshot, attach=False, overwrite_period_end=True, adopt=adopt)

    if result is SyncResult.APPLIED:
        await ensure_owner_membership(db, tenant.id, tenant.owner_id)
    return result


async def process_billing_event(db: AsyncSession, event: BillingEvent) -> WebhookOutcome:
    log = logger.bind(event_id=event.event_id, event_type=event.provider_type)

    await purge_expired_events(db, retention_days=settings.BILLING_EVENT_RETENTION_DAYS)

    if await is_event_applied(db, event.event_id):
        await db.commit()
        log.info("billing.webhook.duplicate")
        return WebhookOutcome.DUPLICATE

    try:
        tenant = await resolve_event_tenant(db, event)
    except TenantResolutionFailure as exc:
        # permanent: acknowledge so Stripe stops retrying, but leave no trace
        await db.rollback()
        log.error("billing.webhook.tenant_unresolved", error=exc.message)
        return WebhookOutcome.UNRESOLVED

    tenant_id = tenant.id
    sync_result = await _apply_event(db, event, tenant)
    outcome = _SYNC_OUTCOMES[sync_result]

    await record_event_applied(
        db,
        event_id=event.event_id,
        event_type=event.provider_type,
        outcome=outcome.value,
        tenant_id=tenant_id,
    )

    try:
        await db.commit()
    except IntegrityError:
        # a concurrent delivery of the same event committed first
        await db.rollback()
        if await is_event_applied(db, event.event_id):
            log.info("billing.webhook.duplicate_concurrent", tenant_id=str(tenant_id))
            return WebhookOutcome.DUPLICATE
        raise

    log.info("billing.webhook.processed", tenant_id=str(tenant_id), outcome=outcome.value)
    return outcome
