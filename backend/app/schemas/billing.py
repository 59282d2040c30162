# backend/app/schemas/billing.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


def _normalize_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = " ".join(value.strip().split())
    return v or None


class CheckoutSessionCreate(BaseModel):
    tier: str = Field(min_length=1, max_length=30)
    extra_seats: int = Field(default=0, ge=0)
    tenant_name: Optional[str] = Field(default=None, max_length=200)
    success_url: Optional[str] = Field(default=None, max_length=2048)
    cancel_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("tenant_name")
    @classmethod
    def validate_tenant_name(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_name(v)


class CheckoutSessionOut(BaseModel):
    checkout_url: str
    tenant_id: UUID


class PortalSessionCreate(BaseModel):
    return_url: Optional[str] = Field(default=None, max_length=2048)


class PortalSessionOut(BaseModel):
    portal_url: str


class RestoreOut(BaseModel):
    success: bool = True
    tier: str
    tenant_id: UUID
    status: str


class ProvisionCreate(BaseModel):
    tenant_name: str = Field(min_length=1, max_length=200)

    @field_validator("tenant_name")
    @classmethod
    def validate_tenant_name(cls, v: str) -> str:
        name = _normalize_name(v)
        if not name:
            raise ValueError("tenant_name must not be blank")
        return name


class ProvisionOut(BaseModel):
    success: bool = True
    tenant_id: UUID
    created: bool


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
