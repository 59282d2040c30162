# tests/test_stripe_gateway.py
from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest
import stripe

from app.core.billing_gateway import CheckoutSessionRequest, StripeGateway
from app.core.errors import ProviderUnavailable


class StubResource:
    """Replays queued results (or raises queued exceptions) per call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def __call__(self, params=None):
        self.calls.append(params)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_client(**resources) -> SimpleNamespace:
    return SimpleNamespace(
        customers=SimpleNamespace(
            search_async=resources.get("search", StubResource()),
            create_async=resources.get("create_customer", StubResource()),
        ),
        subscriptions=SimpleNamespace(list_async=resources.get("list", StubResource())),
        checkout=SimpleNamespace(sessions=SimpleNamespace(create_async=resources.get("checkout", StubResource()))),
        billing_portal=SimpleNamespace(sessions=SimpleNamespace(create_async=resources.get("portal", StubResource()))),
    )


def make_gateway(client, attempts: int = 3) -> StripeGateway:
    return StripeGateway(api_key="sk_test", timeout=1.0, search_max_attempts=attempts, client=client)


def checkout_request(**overrides) -> CheckoutSessionRequest:
    fields = dict(
        tenant_id=uuid.uuid4(),
        owner_id=uuid.uuid4(),
        owner_email="owner@example.com",
        tier="pro",
        extra_seats=2,
        tenant_name="Studio",
        success_url="https://app.test/ok",
        cancel_url="https://app.test/cancel",
        extra_seat_price="price_extra_seat",
    )
    fields.update(overrides)
    return CheckoutSessionRequest(**fields)


@pytest.mark.asyncio
async def test_checkout_session_params():
    checkout = StubResource({"url": "https://checkout.test/cs_1"})
    gateway = make_gateway(make_client(checkout=checkout))
    request = checkout_request()

    url = await gateway.create_checkout_session(request)

    assert url == "https://checkout.test/cs_1"
    (params,) = checkout.calls
    assert params["mode"] == "subscription"
    assert params["client_reference_id"] == str(request.tenant_id)
    assert params["customer_email"] == "owner@example.com"
    assert "customer" not in params
    assert params["line_items"] == [
        {"price": "price_pro", "quantity": 1},
        {"price": "price_extra_seat", "quantity": 2},
    ]
    assert params["metadata"]["tenant_id"] == str(request.tenant_id)
    assert params["subscription_data"]["metadata"] == params["metadata"]


@pytest.mark.asyncio
async def test_checkout_session_reuses_known_customer():
    checkout = StubResource({"url": "https://checkout.test/cs_2"})
    gateway = make_gateway(make_client(checkout=checkout))

    await gateway.create_checkout_session(checkout_request(customer_ref="cus_9", extra_seats=0))

    (params,) = checkout.calls
    assert params["customer"] == "cus_9"
    assert "customer_email" not in params
    assert len(params["line_items"]) == 1


@pytest.mark.asyncio
async def test_checkout_session_is_never_retried():
    checkout = StubResource(stripe.APIConnectionError("timeout"), {"url": "unused"})
    gateway = make_gateway(make_client(checkout=checkout))

    with pytest.raises(ProviderUnavailable):
        await gateway.create_checkout_session(checkout_request())

    assert len(checkout.calls) == 1


@pytest.mark.asyncio
async def test_customer_search_retries_transient_errors():
    search = StubResource(
        stripe.APIConnectionError("reset"),
        {"data": [{"id": "cus_1", "email": "a@example.com", "name": "A", "created": 10}]},
    )
    gateway = make_gateway(make_client(search=search))

    (customer,) = await gateway.find_customers_by_email("a@example.com")

    assert customer.id == "cus_1"
    assert len(search.calls) == 2
    assert search.calls[0]["query"] == "email:'a@example.com'"


@pytest.mark.asyncio
async def test_customer_search_returns_every_match_newest_first():
    search = StubResource(
        {
            "data": [
                {"id": "cus_old", "email": "a@example.com", "created": 100},
                {"id": "cus_new", "email": "a@example.com", "created": 300},
            ]
        }
    )
    gateway = make_gateway(make_client(search=search))

    customers = await gateway.find_customers_by_email("a@example.com")

    assert [c.id for c in customers] == ["cus_new", "cus_old"]
    assert search.calls[0]["limit"] > 1

@pytest.mark.asyncio
async def test_customer_search_gives_up_after_max_attempts():
    search = StubResource(stripe.RateLimitError("slow down"), stripe.RateLimitError("slow down"))
    gateway = make_gateway(make_client(search=search), attempts=2)

    with pytest.raises(ProviderUnavailable):
        await gateway.find_customers_by_email("a@example.com")

    assert len(search.calls) == 2


@pytest.mark.asyncio
async def test_find_active_subscription_picks_newest_paid():
    listing = StubResource(
        {
            "data": [
                {"id": "sub_old", "status": "active", "created": 100},
                {"id": "sub_new", "status": "trialing", "created": 300},
                {"id": "sub_dead", "status": "canceled", "created": 500},
                {"id": "sub_weird", "status": "something_new", "created": 900},
            ]
        }
    )
    gateway = make_gateway(make_client(list=listing))

    sub = await gateway.find_active_subscription("cus_1")

    assert sub["id"] == "sub_new"
    assert listing.calls[0] == {"customer": "cus_1", "status": "all", "limit": 20}


@pytest.mark.asyncio
async def test_find_active_subscription_none_when_unpaid():
    listing = StubResource({"data": [{"id": "sub_1", "status": "past_due", "created": 1}]})
    gateway = make_gateway(make_client(list=listing))

    assert await gateway.find_active_subscription("cus_1") is None
