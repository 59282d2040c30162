# app/crud/billing_event.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing_event import AppliedBillingEvent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def is_event_applied(db: AsyncSession, event_id: str) -> bool:
    stmt = select(AppliedBillingEvent.event_id).where(AppliedBillingEvent.event_id == event_id).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def record_event_applied(
    db: AsyncSession,
    *,
    event_id: str,
    event_type: str,
    outcome: str,
    tenant_id: uuid.UUID | None,
) -> None:
    """
    Adds the ledger row to the current transaction; the caller commits it
    together with the tenant write. A concurrent delivery of the same event
    surfaces as IntegrityError on commit.
    """
    db.add(
        AppliedBillingEvent(
            event_id=event_id,
            event_type=event_type,
            outcome=outcome,
            tenant_id=tenant_id,
            applied_at=_utcnow(),
        )
    )


async def purge_expired_events(db: AsyncSession, *, retention_days: int) -> None:
    """
    Drop ledger rows older than the retention window.
    """
    cutoff = _utcnow() - timedelta(days=retention_days)
    await db.execute(delete(AppliedBillingEvent).where(AppliedBillingEvent.applied_at < cutoff))
