# app/core/billing_gateway.py
"""
Thin async client over the Stripe APIs this service needs.

A gateway is built per request from settings (see app.api.deps.billing); it
owns its own StripeClient, so nothing touches the process-wide stripe.api_key.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import stripe
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import Settings
from app.core.errors import ProviderUnavailable
from app.core.tier import ACTIVE_LIKE_STATUSES, map_provider_status
from app.core.tier_limits import get_price_for_tier

logger = structlog.get_logger(__name__)

# each abandoned checkout without a known customer leaves one behind
CUSTOMER_SEARCH_LIMIT = 10

# transient failures worth retrying on idempotent reads
_RETRYABLE_STRIPE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@dataclass(frozen=True)
class CheckoutSessionRequest:
    tenant_id: uuid.UUID
    owner_id: uuid.UUID
    owner_email: str
    tier: str
    extra_seats: int
    tenant_name: str
    success_url: str
    cancel_url: str
    customer_ref: Optional[str] = None
    extra_seat_price: Optional[str] = None

    def metadata(self) -> dict[str, str]:
        # Stripe metadata values are strings
        return {
            "tenant_id": str(self.tenant_id),
            "owner_id": str(self.owner_id),
            "tier": self.tier,
            "extra_seats": str(self.extra_seats),
            "tenant_name": self.tenant_name,
        }


@dataclass(frozen=True)
class ProviderCustomer:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class BillingGateway(Protocol):
    async def create_checkout_session(self, request: CheckoutSessionRequest) -> str: ...

    async def create_portal_session(self, *, customer_ref: str, return_url: str) -> str: ...

    async def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> str: ...

    async def find_customers_by_email(self, email: str) -> list[ProviderCustomer]: ...

    async def find_active_subscription(self, customer_ref: str) -> Optional[Mapping[str, Any]]: ...


def _search_quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class StripeGateway:
    """
    Parameters
    ----------
    api_key:
        Stripe secret key.
    timeout:
        Per-request timeout in seconds.
    search_max_attempts:
        Attempts for idempotent reads (customer search, subscription list).
        Writes (sessions, customers) are attempted exactly once.
    """

    def __init__(
        self,
        *,
        api_key: str,
        timeout: float,
        search_max_attempts: int = 3,
        client: Optional[stripe.StripeClient] = None,
    ) -> None:
        self._search_max_attempts = max(search_max_attempts, 1)
        self._client = client or stripe.StripeClient(
            api_key,
            http_client=stripe.HTTPXClient(timeout=timeout),
            max_network_retries=0,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
            search_max_attempts=settings.STRIPE_SEARCH_MAX_ATTEMPTS,
        )

    def _read_retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._search_max_attempts),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2.0),
            retry=retry_if_exception_type(_RETRYABLE_STRIPE_ERRORS),
            reraise=True,
        )

    # ---------------------------------------------------------
    # Writes (never retried)
    # ---------------------------------------------------------
    async def create_checkout_session(self, request: CheckoutSessionRequest) -> str:
        line_items: list[dict[str, Any]] = [
            {"price": get_price_for_tier(request.tier), "quantity": 1},
        ]
        if request.extra_seats > 0 and request.extra_seat_price:
            line_items.append({"price": request.extra_seat_price, "quantity": request.extra_seats})

        params: dict[str, Any] = {
            "mode": "subscription",
            "client_reference_id": str(request.tenant_id),
            "line_items": line_items,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "allow_promotion_codes": True,
            "metadata": request.metadata(),
            "subscription_data": {"metadata": request.metadata()},
        }
        if request.customer_ref:
            params["customer"] = request.customer_ref
        else:
            params["customer_email"] = request.owner_email

        try:
            session = await self._client.checkout.sessions.create_async(params=params)
        except stripe.StripeError as exc:
            logger.error(
                "billing.stripe.checkout_session_failed",
                tenant_id=str(request.tenant_id),
                error=str(exc),
            )
            raise ProviderUnavailable() from exc
        return session["url"]

    async def create_portal_session(self, *, customer_ref: str, return_url: str) -> str:
        try:
            session = await self._client.billing_portal.sessions.create_async(
                params={"customer": customer_ref, "return_url": return_url}
            )
        except stripe.StripeError as exc:
            logger.error("billing.stripe.portal_session_failed", customer_ref=customer_ref, error=str(exc))
            raise ProviderUnavailable() from exc
        return session["url"]

    async def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> str:
        try:
            customer = await self._client.customers.create_async(
                params={"email": email, "metadata": dict(metadata)}
            )
        except stripe.StripeError as exc:
            logger.error("billing.stripe.customer_create_failed", error=str(exc))
            raise ProviderUnavailable() from exc
        return customer["id"]

    # ---------------------------------------------------------
    # Reads (bounded exponential backoff)
    # ---------------------------------------------------------
    async def find_customers_by_email(self, email: str) -> list[ProviderCustomer]:
        """
        Every customer carrying the email, newest first (up to CUSTOMER_SEARCH_LIMIT).
        """
        query = f"email:'{_search_quote(email)}'"
        try:
            async for attempt in self._read_retrying():
                with attempt:
                    result = await self._client.customers.search_async(
                        params={"query": query, "limit": CUSTOMER_SEARCH_LIMIT}
                    )
        except stripe.StripeError as exc:
            logger.error("billing.stripe.customer_search_failed", error=str(exc))
            raise ProviderUnavailable() from exc

        data = sorted(result.get("data") or [], key=lambda c: int(c.get("created") or 0), reverse=True)
        return [ProviderCustomer(id=c["id"], email=c.get("email"), name=c.get("name")) for c in data]

    async def find_active_subscription(self, customer_ref: str) -> Optional[Mapping[str, Any]]:
        """
        Most recent subscription of the customer whose status counts as paid.
        """
        try:
            async for attempt in self._read_retrying():
                with attempt:
                    result = await self._client.subscriptions.list_async(
                        params={"customer": customer_ref, "status": "all", "limit": 20}
                    )
        except stripe.StripeError as exc:
            logger.error("billing.stripe.subscription_list_failed", customer_ref=customer_ref, error=str(exc))
            raise ProviderUnavailable() from exc

        candidates = []
        for sub in result.get("data") or []:
            try:
                status = map_provider_status(sub.get("status"))
            except ValueError:
                continue
            if status in ACTIVE_LIKE_STATUSES:
                candidates.append(sub)

        if not candidates:
            return None
        return max(candidates, key=lambda s: int(s.get("created") or 0))
