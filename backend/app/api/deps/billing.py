from __future__ import annotations

from app.core.billing_gateway import BillingGateway, StripeGateway
from app.core.config import settings
from app.core.errors import ProviderUnavailable


def get_billing_gateway() -> BillingGateway:
    """
    One Stripe gateway per request. Overridden in tests with an in-memory fake.
    """
    if not settings.STRIPE_SECRET_KEY:
        raise ProviderUnavailable("Billing is not configured.")
    return StripeGateway.from_settings(settings)
