# backend/app/models/tenant.py

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, SmallInteger, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class Tenant(Base):
    """
    A studio: the billable unit.

    Billing columns are only written through app.core.subscription_sync and the
    provisioning helpers; Stripe stays the source of truth for them.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # One studio per owner. Resolve-or-create relies on this constraint.
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    # keep as string for now; values come from app.core.tier.TenantTier
    tier: Mapped[str] = mapped_column(String(30), nullable=False, default="basic")

    # none | pending | active | past_due | canceled | trialing
    subscription_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none", server_default="none")

    billing_customer_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    billing_subscription_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Generation marker of the applied provider snapshot (epoch seconds).
    billing_state_marker: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # app.core.billing_snapshot.SnapshotSource; orders snapshots within one second
    billing_state_source: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)

    currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # derived from tier; never edited on their own
    max_artists: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    max_managers: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    extra_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
