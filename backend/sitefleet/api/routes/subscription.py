# sitefleet/api/routes/subscription.py
"""
Tenant-side billing: the admin panel talks to these, they relay to the
primary instance with this site's API key.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from sitefleet.api.deps.auth import get_current_user
from sitefleet.core.config import Settings, get_settings
from sitefleet.core.plan import get_site_plan, has_pro_features, is_primary_instance
from sitefleet.models.user import User
from sitefleet.schemas.billing import ChangePlanRequest, PortalSessionOut, SubscriptionOut
from sitefleet.services.site_api import (
    PrimaryApiClient,
    UpstreamBodyError,
    UpstreamUnavailable,
    get_primary_client,
)

router = APIRouter(prefix="/subscription", tags=["subscription"])

BILLING_UNREACHABLE = "Failed to connect to billing service"


def _site_api_key(settings: Settings) -> str:
    key = (settings.SITE_API_KEY or "").strip()
    if not key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Billing is not configured for this site",
        )
    return key


@router.get("", response_model=SubscriptionOut)
async def get_subscription(
    _: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    return SubscriptionOut(
        plan=get_site_plan(settings).value,
        is_primary_instance=is_primary_instance(settings),
        can_upload_video=has_pro_features(settings),
    )


@router.post("/portal-session", response_model=PortalSessionOut)
async def create_portal_session(
    _: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    primary: PrimaryApiClient = Depends(get_primary_client),
):
    api_key = _site_api_key(settings)
    return_url = f"{settings.server_base_url}/admin/globals/subscription"

    try:
        upstream = await primary.create_portal_session(api_key, return_url)
    except UpstreamUnavailable:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=BILLING_UNREACHABLE)
    except UpstreamBodyError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=BILLING_UNREACHABLE)

    if not upstream.ok:
        raise HTTPException(
            status_code=upstream.status_code,
            detail=upstream.error_message("Failed to create portal session"),
        )

    url = upstream.data.get("url")
    if not isinstance(url, str) or not url:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=BILLING_UNREACHABLE)
    return PortalSessionOut(url=url)


@router.post("/change-plan")
async def change_plan(
    request: Request,
    _: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    primary: PrimaryApiClient = Depends(get_primary_client),
):
    api_key = _site_api_key(settings)

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    try:
        plan = ChangePlanRequest.model_validate(body).plan
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan")

    try:
        upstream = await primary.change_plan(api_key, plan)
    except UpstreamUnavailable:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=BILLING_UNREACHABLE)
    except UpstreamBodyError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to change plan")

    if not upstream.ok:
        raise HTTPException(
            status_code=upstream.status_code,
            detail=upstream.error_message("Failed to change plan"),
        )

    # relayed verbatim, normally {"success": true}
    return upstream.data
