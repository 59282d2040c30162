from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

# Settings are read once at import: configure before anything imports app.*
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///./test-bootstrap.db")
os.environ.setdefault("DATABASE_URL_SYNC", "sqlite:///./test-bootstrap.db")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_BASIC", "price_basic")
os.environ.setdefault("STRIPE_PRICE_PRO", "price_pro")
os.environ.setdefault("STRIPE_PRICE_PLUS", "price_plus")
os.environ.setdefault("STRIPE_PRICE_EXTRA_SEAT", "price_extra_seat")
os.environ.setdefault("LOG_JSON", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.api.deps.billing import get_billing_gateway
from app.core.billing_gateway import CheckoutSessionRequest, ProviderCustomer
from app.core.errors import ProviderUnavailable
from app.core.security import create_access_token
from app.db.session import get_db

# Ensure Base + models are registered before create_all
from app.db.base import Base  # noqa: F401
import app.models  # noqa: F401
from app.models.user import User

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


# ---------------------------------------------------------
# Database: one SQLite file per test
# ---------------------------------------------------------
def _enable_sqlite_savepoints(engine) -> None:
    """
    pysqlite's own transaction handling breaks SAVEPOINT; take it over
    (SQLAlchemy's documented recipe). WAL lets the assertion session read
    while a request is writing.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        future=True,
        echo=False,
        poolclass=NullPool,
    )
    _enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


# ---------------------------------------------------------
# DB session for assertions / setup
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    """
    Session for test setup & assertions ONLY.
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Stripe stand-in
# ---------------------------------------------------------
class FakeBillingGateway:
    """
    In-memory BillingGateway. Customers are listed per email (newest first),
    subscriptions keyed by customer id; every call is recorded in `calls`.
    """

    def __init__(self) -> None:
        self.customers: dict[str, list[ProviderCustomer]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_checkout = False
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def add_customer(self, email: str, *, name: Optional[str] = None) -> ProviderCustomer:
        customer = ProviderCustomer(id=self._next_id("cus"), email=email, name=name)
        self.customers.setdefault(email, []).insert(0, customer)
        return customer

    def add_subscription(self, customer: ProviderCustomer, subscription: dict[str, Any]) -> None:
        self.subscriptions[customer.id] = subscription

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> str:
        self.calls.append(("create_checkout_session", request))
        if self.fail_checkout:
            raise ProviderUnavailable()
        return f"https://checkout.stripe.test/{request.tenant_id}"

    async def create_portal_session(self, *, customer_ref: str, return_url: str) -> str:
        self.calls.append(("create_portal_session", customer_ref))
        return f"https://billing.stripe.test/{customer_ref}"

    async def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> str:
        self.calls.append(("create_customer", dict(metadata)))
        return self.add_customer(email).id

    async def find_customers_by_email(self, email: str) -> list[ProviderCustomer]:
        self.calls.append(("find_customers_by_email", email))
        return list(self.customers.get(email, []))

    async def find_active_subscription(self, customer_ref: str) -> Optional[Mapping[str, Any]]:
        self.calls.append(("find_active_subscription", customer_ref))
        return self.subscriptions.get(customer_ref)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture()
def gateway() -> FakeBillingGateway:
    return FakeBillingGateway()


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, gateway):
    from app.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_billing_gateway] = lambda: gateway
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------
async def create_user(db, email: str) -> User:
    user = User(email=User.normalize_email(email), is_active=True)
    db.add(user)
    await db.flush()
    return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def stripe_event(
    event_type: str,
    obj: Mapping[str, Any],
    *,
    event_id: Optional[str] = None,
    created: Optional[int] = None,
) -> dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": dict(obj)},
    }


def sign_payload(payload: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


async def post_webhook(client, evt: Mapping[str, Any], *, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(evt).encode("utf-8")
    return await client.post(
        "/api/v1/billing/webhook",
        content=payload,
        headers={
            "Stripe-Signature": sign_payload(payload, secret=secret),
            "Content-Type": "application/json",
        },
    )


def subscription_object(
    *,
    sub_id: str = "sub_1",
    customer: str = "cus_1",
    status: str = "active",
    price: str = "price_basic",
    extra_seats: int = 0,
    period_end: int = 1_900_000_000,
    created: int = 1_700_000_000,
    metadata: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    items = [{"id": "si_plan", "price": {"id": price}, "quantity": 1, "current_period_end": period_end}]
    if extra_seats:
        items.append({"id": "si_seats", "price": {"id": "price_extra_seat"}, "quantity": extra_seats})
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "created": created,
        "currency": "usd",
        "items": {"object": "list", "data": items},
        "metadata": dict(metadata or {}),
    }


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
