# backend/sitefleet/core/config.py

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic import AliasChoices, Field
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
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str = "postgresql+asyncpg://localhost:5432/sitefleet"

    # -----------------------------
    # Admin session (JWT in a cookie)
    # -----------------------------
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ADMIN_SESSION_COOKIE: str = "admin-token"

    # -----------------------------
    # Instance role + plan
    # -----------------------------
    IS_PRIMARY_INSTANCE: bool = False
    # basic | pro; anything else resolves to basic
    SITE_PLAN: str = "basic"
    # Shared secret between this tenant and the primary instance
    SITE_API_KEY: Optional[str] = None

    PRIMARY_URL: str = Field(
        default="https://www.glossysites.live",
        validation_alias=AliasChoices("PRIMARY_URL", "NEXT_PUBLIC_PRIMARY_URL"),
    )
    SERVER_URL: str = Field(
        default="",
        validation_alias=AliasChoices("SERVER_URL", "NEXT_PUBLIC_SERVER_URL"),
    )
    # Tenant sites live at https://<subdomain>.<SITE_DOMAIN>
    SITE_DOMAIN: str = "glossysites.live"

    # -----------------------------
    # Blob storage
    # -----------------------------
    BLOB_READ_WRITE_TOKEN: Optional[str] = None
    BLOB_API_URL: str = "https://blob.vercel-storage.com"

    # -----------------------------
    # Stripe (primary instance only)
    # -----------------------------
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_BASIC_PRICE_ID: Optional[str] = None
    STRIPE_PRO_PRICE_ID: Optional[str] = None

    # Outbound calls to the primary instance, tenants and blob storage
    OUTBOUND_TIMEOUT_SECONDS: float = 10.0

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    @property
    def primary_base_url(self) -> str:
        return self.PRIMARY_URL.rstrip("/")

    @property
    def server_base_url(self) -> str:
        return self.SERVER_URL.rstrip("/")

    def price_id_for_plan(self, plan: str) -> Optional[str]:
        return self.STRIPE_PRO_PRICE_ID if plan == "pro" else self.STRIPE_BASIC_PRICE_ID

    def plan_for_price_id(self, price_id: Optional[str]) -> Optional[str]:
        if not price_id:
            return None
        if price_id == self.STRIPE_PRO_PRICE_ID:
            return "pro"
        if price_id == self.STRIPE_BASIC_PRICE_ID:
            return "basic"
        return None

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        env = (self.ENVIRONMENT or "").strip().lower()

        # Enforce that we never run staging/production with a placeholder secret.
        if env in {"staging", "production"}:
            if not self.JWT_SECRET or self.JWT_SECRET.strip() == "dev-secret-change-me":
                raise ValueError("JWT_SECRET must be set to a strong value in staging/production.")
            if len(self.JWT_SECRET.strip()) < 32:
                raise ValueError("JWT_SECRET is too short; use at least 32 characters in staging/production.")

        # Light sanity checks (all envs)
        if self.JWT_ALGORITHM not in {"HS256"}:
            raise ValueError(f"Unsupported JWT_ALGORITHM={self.JWT_ALGORITHM!r}. Allowed: HS256")
        if self.OUTBOUND_TIMEOUT_SECONDS <= 0:
            raise ValueError("OUTBOUND_TIMEOUT_SECONDS must be positive.")


@lru_cache
def get_settings() -> Settings:
    """
    Built once per process and injected into handlers via Depends(get_settings).
    """
    return Settings()
