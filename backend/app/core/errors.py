# app/core/errors.py
"""
Billing / provisioning error taxonomy.

Every error carries a machine-readable `kind` and the HTTP status the API edge
renders it with. Routers do not catch these; the handler registered in
app.main turns them into {"detail": {"error": kind, "message": ...}}.
"""
from __future__ import annotations

from fastapi import status


class BillingError(Exception):
    kind: str = "BILLING_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__doc__ or self.kind
        super().__init__(self.message)

    def to_detail(self) -> dict:
        detail = {"error": self.kind, "message": self.message}
        if self.retryable:
            detail["retryable"] = True
        return detail


class ValidationError(BillingError):
    """Request is missing a required field or carries an invalid value."""

    kind = "VALIDATION_ERROR"


class InvalidTier(ValidationError):
    """Unknown or unconfigured subscription tier."""

    kind = "INVALID_TIER"


class TenantRequired(ValidationError):
    """Studio not found. Please provide a studio name to create one."""

    kind = "TENANT_REQUIRED"


class TenantNotFound(BillingError):
    """Studio not found for this user."""

    kind = "TENANT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class NoActiveSubscription(BillingError):
    """No active subscription found for this account. Please purchase a plan first."""

    kind = "NO_ACTIVE_SUBSCRIPTION"
    status_code = status.HTTP_404_NOT_FOUND


class ProviderUnavailable(BillingError):
    """The billing provider could not be reached. Please try again."""

    kind = "PROVIDER_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class TenantResolutionFailure(BillingError):
    """
    A webhook event cannot be tied to any tenant (no metadata, no owner match,
    no tenant name). Never user facing: the webhook acknowledges and logs it.
    """

    kind = "TENANT_RESOLUTION_FAILURE"
    status_code = status.HTTP_200_OK
