from __future__ import annotations

import json
import os
from typing import Any, Callable, Mapping, Optional

# Import-time engine in sitefleet.db.session; tests bind their own below.
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite://")

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from sitefleet.core.config import Settings, get_settings
from sitefleet.core.rate_limit import FixedWindowRateLimiter, get_subdomain_rate_limiter
from sitefleet.core.security import create_access_token
from sitefleet.db.session import get_db, get_session_factory
from sitefleet.services.billing import CheckoutSession, get_billing
from sitefleet.services.blob_storage import BlobStorage, get_blob_storage
from sitefleet.services.deployer import get_deployer
from sitefleet.services.site_api import (
    PrimaryApiClient,
    TenantApiClient,
    get_primary_client,
    get_tenant_client,
)

# Ensure Base + models are registered before create_all
from sitefleet.db.base import Base  # noqa: F401
import sitefleet.models  # noqa: F401
from sitefleet.models.user import User


# ---------------------------------------------------------
# Settings
# ---------------------------------------------------------
@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="development",
        DATABASE_URL_ASYNC="sqlite+aiosqlite://",
        JWT_SECRET="test-secret-0123456789abcdef0123456789",
        IS_PRIMARY_INSTANCE=True,
        SITE_PLAN="basic",
        SITE_API_KEY=None,
        PRIMARY_URL="https://primary.test",
        SERVER_URL="https://acme.glossysites.live",
        SITE_DOMAIN="glossysites.live",
        BLOB_READ_WRITE_TOKEN="blob-token",
        BLOB_API_URL="https://blob.test",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        STRIPE_BASIC_PRICE_ID="price_basic",
        STRIPE_PRO_PRICE_ID="price_pro",
    )


# ---------------------------------------------------------
# Database (one SQLite file per test)
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        future=True,
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture()
async def db(sessionmaker):
    """
    Session for test setup & assertions ONLY.
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Fakes for external collaborators
# ---------------------------------------------------------
class FakeBilling:
    """Stands in for StripeBilling; records calls, fails on demand."""

    def __init__(self) -> None:
        self.portal_sessions: list[tuple[str, Optional[str]]] = []
        self.price_changes: list[tuple[str, str]] = []
        self.checkouts: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def create_portal_session(self, customer_id: str, return_url: Optional[str] = None) -> str:
        if self.error:
            raise self.error
        self.portal_sessions.append((customer_id, return_url))
        return f"https://billing.stripe.test/p/{customer_id}"

    async def change_subscription_price(self, subscription_id: str, price_id: str) -> None:
        if self.error:
            raise self.error
        self.price_changes.append((subscription_id, price_id))

    async def create_checkout_session(self, **kwargs) -> CheckoutSession:
        if self.error:
            raise self.error
        self.checkouts.append(kwargs)
        n = len(self.checkouts)
        return CheckoutSession(id=f"cs_test_{n}", url=f"https://checkout.stripe.test/cs_test_{n}")

    def construct_event(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        if signature != "valid-signature":
            raise ValueError("No signatures found matching the expected signature for payload")
        return json.loads(payload)


class FakeDeployer:
    def __init__(self) -> None:
        self.deployed: list[dict[str, Any]] = []
        self.env_updates: list[tuple[str, dict[str, str]]] = []
        self.deploy_error: Optional[Exception] = None
        self.update_env_error: Optional[Exception] = None

    async def deploy(self, project_name: str, domain: str, env: Mapping[str, str]) -> str:
        if self.deploy_error:
            raise self.deploy_error
        self.deployed.append({"project_name": project_name, "domain": domain, "env": dict(env)})
        return f"prj_{project_name}"

    async def update_env(self, deployment_id: str, env: Mapping[str, str]) -> None:
        if self.update_env_error:
            raise self.update_env_error
        self.env_updates.append((deployment_id, dict(env)))


class Upstream:
    """
    httpx.MockTransport handler: records requests and answers with
    `respond` (a callable taking the request).
    """

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self.respond = respond

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture()
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture()
def deployer() -> FakeDeployer:
    return FakeDeployer()


@pytest.fixture()
def upstream() -> Upstream:
    """Other instances (primary / tenant sites)."""
    return Upstream(lambda request: httpx.Response(200, json={}))


@pytest.fixture()
def blob() -> Upstream:
    return Upstream(
        lambda request: httpx.Response(200, json={"url": f"https://cdn.blob.test{request.url.path}"})
    )


# ---------------------------------------------------------
# FastAPI app + dependency overrides
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, settings, billing, deployer, upstream, blob):
    from sitefleet.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    def _primary_client(s: Settings = Depends(get_settings)) -> PrimaryApiClient:
        return PrimaryApiClient(s, transport=upstream.transport())

    def _tenant_client(s: Settings = Depends(get_settings)) -> TenantApiClient:
        return TenantApiClient(s, transport=upstream.transport())

    def _blob_storage(s: Settings = Depends(get_settings)) -> BlobStorage:
        return BlobStorage(s, transport=blob.transport())

    limiter = FixedWindowRateLimiter()

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: sessionmaker
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_billing] = lambda: billing
    fastapi_app.dependency_overrides[get_deployer] = lambda: deployer
    fastapi_app.dependency_overrides[get_primary_client] = _primary_client
    fastapi_app.dependency_overrides[get_tenant_client] = _tenant_client
    fastapi_app.dependency_overrides[get_blob_storage] = _blob_storage
    fastapi_app.dependency_overrides[get_subdomain_rate_limiter] = lambda: limiter
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def configure(app, settings) -> Callable[..., Settings]:
    """
    Swap the Settings every handler sees, e.g. configure(IS_PRIMARY_INSTANCE=False).
    """

    def _configure(**overrides: Any) -> Settings:
        updated = settings.model_copy(update=overrides)
        app.dependency_overrides[get_settings] = lambda: updated
        return updated

    return _configure


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


@pytest_asyncio.fixture()
async def admin_client(client, db, settings):
    """client carrying a valid admin session cookie."""
    user = User(email="admin@example.com", role="admin", is_active=True)
    db.add(user)
    await db.commit()

    client.cookies.set(settings.ADMIN_SESSION_COOKIE, create_access_token(str(user.id), settings))
    return client

