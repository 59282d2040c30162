# app/models/billing_event.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class AppliedBillingEvent(Base):
    """
    De-duplication ledger for Stripe webhook deliveries.

    One row per event id that was applied successfully. Rows are not a record
    of billing history: they are pruned once older than the retention window
    (see BILLING_EVENT_RETENTION_DAYS).
    """

    __tablename__ = "billing_event_ledger"
    __table_args__ = (
        Index("ix_billing_event_ledger_applied_at", "applied_at"),
    )

    # Stripe event id (evt_...); primary key doubles as the uniqueness guard
    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    event_type: Mapped[str] = mapped_column(String(80), nullable=False)

    # outcome stored for support/debugging: applied | stale | ignored
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, default="applied")

    tenant_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
