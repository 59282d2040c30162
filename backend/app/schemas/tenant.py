from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class TenantOut(BaseModel):
    id: UUID
    name: str
    tier: str
    subscription_status: str
    is_active: bool

    model_config = {"from_attributes": True}


class TenantMembershipOut(BaseModel):
    tenant_id: UUID
    user_id: UUID
    role: str
    is_active: bool

    model_config = {"from_attributes": True}


class TenantBillingOut(BaseModel):
    tenant_id: UUID
    tier: str
    subscription_status: str
    is_entitled: bool
    # tier used for seat limits
    effective_tier: str
    current_period_end: Optional[datetime] = None
    currency: Optional[str] = None
    max_artists: int
    max_managers: int
    extra_slots: int
    has_billing_account: bool
