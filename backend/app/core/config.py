# backend/app/core/config.py

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    If these appear in the URL query, SQLAlchemy can end up passing them to
    asyncpg.connect(), causing:
      TypeError: connect() got an unexpected keyword argument 'sslmode'
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"

    # -----------------------------
    # Logging
    # -----------------------------
    LOG_LEVEL: str = "INFO"
    # JSON lines outside dev; colored console renderer when False
    LOG_JSON: bool = True

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str
    DATABASE_URL_SYNC: str

    # -----------------------------
    # JWT
    # -----------------------------
    # Keep a dev default, but enforce stronger requirements outside dev.
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    # dev convenience: echo the magic code in /auth/request-code (ignored in staging/production)
    RETURN_MAGIC_CODE_IN_RESPONSE: bool = True

    # -----------------------------
    # Stripe
    # -----------------------------
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # price ids per tier + the per-seat add-on
    STRIPE_PRICE_BASIC: str = ""
    STRIPE_PRICE_PRO: str = ""
    STRIPE_PRICE_PLUS: str = ""
    STRIPE_PRICE_EXTRA_SEAT: str = ""

    # bounded timeout for every outbound Stripe call (seconds)
    STRIPE_TIMEOUT_SECONDS: float = 10.0
    # customer search / subscription listing only; session creation is never retried
    STRIPE_SEARCH_MAX_ATTEMPTS: int = 3

    # -----------------------------
    # Billing
    # -----------------------------
    # Must outlive Stripe's redelivery schedule (up to 3 days in live mode).
    BILLING_EVENT_RETENTION_DAYS: int = 30
    # restore / provisioning date their Stripe read this far back, so webhooks
    # from a Stripe clock slightly behind ours still count as newer
    BILLING_CLOCK_SKEW_SECONDS: int = 10

    # Used to build default checkout / portal return URLs
    APP_BASE_URL: str = "http://localhost:5173"
    CHECKOUT_SUCCESS_PATH: str = "/dashboard/settings?subscription=success"
    CHECKOUT_CANCEL_PATH: str = "/dashboard/settings?subscription=canceled"
    PORTAL_RETURN_PATH: str = "/dashboard/settings"

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    @property
    def STRIPE_PRICE_IDS(self) -> dict[str, str]:
        """tier -> Stripe price id, unconfigured tiers omitted."""
        prices = {
            "basic": self.STRIPE_PRICE_BASIC,
            "pro": self.STRIPE_PRICE_PRO,
            "plus": self.STRIPE_PRICE_PLUS,
        }
        return {tier: price for tier, price in prices.items() if price}

    def default_url(self, path: str) -> str:
        return self.APP_BASE_URL.rstrip("/") + path

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        env = (self.ENVIRONMENT or "").strip().lower()

        # Enforce that we never run staging/production with a placeholder secret.
        if env in {"staging", "production"}:
            if not self.JWT_SECRET or self.JWT_SECRET.strip() == "dev-secret-change-me":
                raise ValueError("JWT_SECRET must be set to a strong value in staging/production.")
            if len(self.JWT_SECRET.strip()) < 32:
                raise ValueError("JWT_SECRET is too short; use at least 32 characters in staging/production.")
            if not self.STRIPE_SECRET_KEY.strip() or not self.STRIPE_WEBHOOK_SECRET.strip():
                raise ValueError("STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET are required in staging/production.")

        # Light sanity checks (all envs)
        if self.JWT_ALGORITHM not in {"HS256"}:
            raise ValueError(f"Unsupported JWT_ALGORITHM={self.JWT_ALGORITHM!r}. Allowed: HS256")
        if self.STRIPE_SEARCH_MAX_ATTEMPTS < 1:
            raise ValueError("STRIPE_SEARCH_MAX_ATTEMPTS must be >= 1")
        if self.BILLING_CLOCK_SKEW_SECONDS < 0:
            raise ValueError("BILLING_CLOCK_SKEW_SECONDS must be >= 0")


# this must exist for: `from app.core.config import settings`
settings = Settings()
