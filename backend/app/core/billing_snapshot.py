# app/core/billing_snapshot.py
"""
Stripe payload -> local billing snapshot.

Stripe events describe the current state of an object, not an operation, so
every handler turns its payload into a SubscriptionSnapshot and hands it to
app.core.subscription_sync, which decides whether to overwrite the tenant.
"""
from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe

from app.core.tier import SubscriptionStatus, map_provider_status
from app.core.tier_limits import (
    TIER_LIMITS,
    get_tier_for_price,
    is_extra_seat_price,
    normalize_tier,
)


class BillingEventType(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout-completed"
    INVOICE_PAID = "invoice-paid"
    SUBSCRIPTION_UPDATED = "subscription-updated"
    SUBSCRIPTION_CANCELED = "subscription-canceled"


STRIPE_EVENT_TYPES: dict[str, BillingEventType] = {
    "checkout.session.completed": BillingEventType.CHECKOUT_COMPLETED,
    "invoice.paid": BillingEventType.INVOICE_PAID,
    "invoice.payment_succeeded": BillingEventType.INVOICE_PAID,
    "customer.subscription.updated": BillingEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": BillingEventType.SUBSCRIPTION_CANCELED,
}


class WebhookSignatureError(Exception):
    """Raised when a webhook body cannot be authenticated."""


# Tie-break for snapshots sharing one `created` second, in the order Stripe
# produces them for a subscription: checkout, invoice, updates, deletion.
# A pulled snapshot (restore, provisioning) outranks them all.
class SnapshotSource(enum.IntEnum):
    CHECKOUT = 0
    INVOICE = 1
    SUBSCRIPTION_UPDATE = 2
    SUBSCRIPTION_DELETION = 3
    PROVIDER_READ = 4


@dataclass(frozen=True)
class SubscriptionSnapshot:
    status: SubscriptionStatus
    # generation marker: provider event creation time (epoch seconds)
    marker: int
    source: SnapshotSource = SnapshotSource.SUBSCRIPTION_UPDATE
    subscription_ref: Optional[str] = None
    customer_ref: Optional[str] = None
    current_period_end: Optional[datetime] = None
    tier: Optional[str] = None
    extra_slots: Optional[int] = None
    currency: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def generation(self) -> tuple[int, int]:
        return (self.marker, int(self.source))


@dataclass(frozen=True)
class BillingEvent:
    event_id: str
    type: BillingEventType
    provider_type: str
    created: int
    payload: Mapping[str, Any]

    @property
    def metadata(self) -> Mapping[str, Any]:
        if self.type is BillingEventType.INVOICE_PAID:
            details = _invoice_subscription_details(self.payload)
            return details.get("metadata") or {}
        return self.payload.get("metadata") or {}

    @property
    def tenant_hint(self) -> Optional[uuid.UUID]:
        """Explicit tenant id: metadata first, then the checkout correlation token."""
        meta = self.metadata
        value = meta.get("tenant_id") or self.payload.get("client_reference_id")
        return parse_uuid(value)

    @property
    def owner_hint(self) -> Optional[uuid.UUID]:
        meta = self.metadata
        # sessions created before the owner_id rename carried user_id
        return parse_uuid(meta.get("owner_id") or meta.get("user_id"))

    @property
    def tenant_name(self) -> Optional[str]:
        name = (self.metadata.get("tenant_name") or "").strip()
        return name or None

    @property
    def subscription_ref(self) -> Optional[str]:
        if self.type is BillingEventType.CHECKOUT_COMPLETED:
            return _ref(self.payload.get("subscription"))
        if self.type is BillingEventType.INVOICE_PAID:
            return _invoice_subscription_ref(self.payload)
        return _ref(self.payload.get("id"))

    def snapshot(self) -> SubscriptionSnapshot:
        if self.type is BillingEventType.CHECKOUT_COMPLETED:
            return snapshot_from_checkout_session(self.payload, marker=self.created)
        if self.type is BillingEventType.INVOICE_PAID:
            return snapshot_from_invoice(self.payload, marker=self.created)
        if self.type is BillingEventType.SUBSCRIPTION_CANCELED:
            return snapshot_from_subscription(
                self.payload,
                marker=self.created,
                status=SubscriptionStatus.CANCELED,
                source=SnapshotSource.SUBSCRIPTION_DELETION,
            )
        return snapshot_from_subscription(self.payload, marker=self.created)


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _ref(value: Any) -> Optional[str]:
    """Stripe fields are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return value.get("id")
    return None


def _ts_to_dt(ts: Any) -> Optional[datetime]:
    if ts:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    return None


def _metadata_tier(metadata: Mapping[str, Any]) -> Optional[str]:
    t = normalize_tier(metadata.get("tier"))
    return t if t in TIER_LIMITS else None


def _invoice_subscription_details(invoice: Mapping[str, Any]) -> Mapping[str, Any]:
    # API versions >= 2025-03-31 nest subscription details under `parent`
    parent = invoice.get("parent") or {}
    return (
        invoice.get("subscription_details")
        or parent.get("subscription_details")
        or {}
    )


def _invoice_subscription_ref(invoice: Mapping[str, Any]) -> Optional[str]:
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref
    return _ref(_invoice_subscription_details(invoice).get("subscription"))


def _subscription_items(subscription: Mapping[str, Any]) -> list:
    items = subscription.get("items") or {}
    return list(items.get("data") or [])


def _item_price_id(item: Mapping[str, Any]) -> Optional[str]:
    return _ref(item.get("price"))


# ---------------------------------------------------------
# Snapshot builders
# ---------------------------------------------------------
def snapshot_from_checkout_session(session: Mapping[str, Any], *, marker: int) -> SubscriptionSnapshot:
    metadata = session.get("metadata") or {}
    try:
        extra_slots = max(int(metadata.get("extra_seats") or metadata.get("extra_slots") or 0), 0)
    except (TypeError, ValueError):
        extra_slots = 0

    return SubscriptionSnapshot(
        status=SubscriptionStatus.ACTIVE,
        marker=marker,
        source=SnapshotSource.CHECKOUT,
        subscription_ref=_ref(session.get("subscription")),
        customer_ref=_ref(session.get("customer")),
        tier=_metadata_tier(metadata),
        extra_slots=extra_slots,
        currency=session.get("currency"),
        metadata=metadata,
    )


def snapshot_from_invoice(invoice: Mapping[str, Any], *, marker: int) -> SubscriptionSnapshot:
    # reaffirmation only: no period end, no tier
    return SubscriptionSnapshot(
        status=SubscriptionStatus.ACTIVE,
        marker=marker,
        source=SnapshotSource.INVOICE,
        subscription_ref=_invoice_subscription_ref(invoice),
        customer_ref=_ref(invoice.get("customer")),
        metadata=_invoice_subscription_details(invoice).get("metadata") or {},
    )


def snapshot_from_subscription(
    subscription: Mapping[str, Any],
    *,
    marker: int,
    status: SubscriptionStatus | None = None,
    source: SnapshotSource = SnapshotSource.SUBSCRIPTION_UPDATE,
) -> SubscriptionSnapshot:
    """
    Tier comes from the plan item's price (follows portal upgrades), then from
    the metadata written at checkout. Extra slots are the quantity of the
    extra-seat item; both stay None when the payload has no items.
    """
    metadata = subscription.get("metadata") or {}
    items = _subscription_items(subscription)

    tier: Optional[str] = None
    extra_slots: Optional[int] = None
    period_end = subscription.get("current_period_end")

    if items:
        extra_slots = 0
        for item in items:
            price_id = _item_price_id(item)
            if is_extra_seat_price(price_id):
                extra_slots += int(item.get("quantity") or 0)
            elif tier is None:
                tier = get_tier_for_price(price_id)
        if period_end is None:
            period_end = items[0].get("current_period_end")

    return SubscriptionSnapshot(
        status=status or map_provider_status(subscription.get("status")),
        marker=marker,
        source=source,
        subscription_ref=_ref(subscription.get("id")),
        customer_ref=_ref(subscription.get("customer")),
        current_period_end=_ts_to_dt(period_end),
        tier=tier or _metadata_tier(metadata),
        extra_slots=extra_slots,
        currency=subscription.get("currency"),
        metadata=metadata,
    )


# ---------------------------------------------------------
# Webhook body
# ---------------------------------------------------------
def verify_webhook_payload(
    payload: bytes,
    sig_header: str,
    *,
    secret: str,
    tolerance: int,
) -> dict[str, Any]:
    """
    Authenticate a raw webhook body against the Stripe-Signature header and
    return it as a plain dict.
    """
    if not secret:
        raise WebhookSignatureError("webhook secret not configured")
    try:
        stripe.Webhook.construct_event(payload, sig_header, secret, tolerance=tolerance)
    except ValueError as exc:
        raise WebhookSignatureError("invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError("invalid signature") from exc
    return json.loads(payload)


def parse_billing_event(raw: Mapping[str, Any]) -> Optional[BillingEvent]:
    """
    None for event types this service does not handle.
    """
    provider_type = raw.get("type") or ""
    event_type = STRIPE_EVENT_TYPES.get(provider_type)
    if event_type is None:
        return None

    event_id = raw.get("id")
    if not event_id:
        raise ValueError("event has no id")

    data = raw.get("data") or {}
    return BillingEvent(
        event_id=str(event_id),
        type=event_type,
        provider_type=provider_type,
        created=int(raw.get("created") or 0),
        payload=data.get("object") or {},
    )
