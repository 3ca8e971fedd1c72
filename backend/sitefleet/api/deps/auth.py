from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.api.deps.instance import require_primary_instance
from sitefleet.core.config import Settings, get_settings
from sitefleet.core.security import api_keys_match, decode_access_token, extract_bearer_token
from sitefleet.crud.provisioned_site import get_site_by_api_key
from sitefleet.db.session import get_db
from sitefleet.models.provisioned_site import ProvisionedSite
from sitefleet.models.user import User


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Admin session: a signed JWT in the admin cookie whose subject is a user id.
    """
    token = request.cookies.get(settings.ADMIN_SESSION_COOKIE)
    if not token:
        raise _unauthorized()

    user_id = decode_access_token(token, settings)
    try:
        user_pk = int(user_id)
    except ValueError:
        raise _unauthorized()

    user = await db.get(User, user_pk)
    if not user or not getattr(user, "is_active", True):
        raise _unauthorized()

    return user


def require_site_api_key(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Tenant-side endpoints the primary instance calls with this site's key.
    """
    expected = (settings.SITE_API_KEY or "").strip()
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not configured")

    if not api_keys_match(extract_bearer_token(authorization), expected):
        raise _unauthorized()


def get_bearer_api_key(
    authorization: Optional[str] = Header(default=None),
    _: Settings = Depends(require_primary_instance),
) -> str:
    """
    Primary-side: the calling tenant's site API key, unverified.
    """
    api_key = extract_bearer_token(authorization)
    if not api_key:
        raise _unauthorized()
    return api_key


async def get_site_from_bearer(
    api_key: str = Depends(get_bearer_api_key),
    db: AsyncSession = Depends(get_db),
) -> ProvisionedSite:
    site = await get_site_by_api_key(db, api_key)
    if site is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return site
