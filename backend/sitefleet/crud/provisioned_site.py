# sitefleet/crud/provisioned_site.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.core.security import api_keys_match
from sitefleet.models.provisioned_site import ProvisionedSite


# ids are a 32-bit INTEGER column
MAX_SITE_ID = 2**31 - 1


async def get_site(db: AsyncSession, site_id: int) -> Optional[ProvisionedSite]:
    if not 0 < site_id <= MAX_SITE_ID:
        return None
    return await db.get(ProvisionedSite, site_id)


async def subdomain_exists(db: AsyncSession, subdomain: str) -> bool:
    stmt = select(ProvisionedSite.id).where(ProvisionedSite.subdomain == subdomain).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def get_site_by_api_key(db: AsyncSession, api_key: Optional[str]) -> Optional[ProvisionedSite]:
    """
    Resolve the site owning a site API key.
    The final comparison is constant-time; None for no match or no key.
    """
    if not api_key:
        return None

    stmt = select(ProvisionedSite).where(ProvisionedSite.site_api_key == api_key).limit(1)
    site = (await db.execute(stmt)).scalar_one_or_none()
    if site is None or not api_keys_match(api_key, site.site_api_key):
        return None
    return site


async def get_site_by_subscription(db: AsyncSession, subscription_id: str) -> Optional[ProvisionedSite]:
    stmt = (
        select(ProvisionedSite)
        .where(ProvisionedSite.stripe_subscription_id == subscription_id)
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def count_signups_since(db: AsyncSession, owner_email: str, since: datetime) -> int:
    stmt = (
        select(func.count(ProvisionedSite.id))
        .where(ProvisionedSite.owner_email == owner_email)
        .where(ProvisionedSite.created_at > since)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)
