from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sitefleet.core.config import get_settings

# One engine per process. The primary instance keeps provisioned sites and
# the job queue here; tenant instances keep users and media.
engine: AsyncEngine = create_async_engine(
    get_settings().DATABASE_URL_ASYNC_CLEAN,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=300,
)

# Rows outlive commits: routes commit mid-request (signup, provisioning
# status changes) and keep reading the same objects afterwards.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Background tasks (queue nudges after a webhook or status poll) run after
    the response is sent, when the request session is already closed; they
    open their own sessions from this factory.
    """
    return AsyncSessionLocal
