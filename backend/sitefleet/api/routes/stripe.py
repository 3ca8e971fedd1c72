# sitefleet/api/routes/stripe.py
"""
Primary-instance billing endpoints.

create-portal-session and change-plan are called by tenant sites with their
site API key; the webhook is called by Stripe.
"""
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitefleet.api.deps.auth import get_bearer_api_key, get_site_from_bearer
from sitefleet.api.deps.instance import require_primary_instance
from sitefleet.core.config import Settings
from sitefleet.crud.provisioned_site import get_site_by_api_key
from sitefleet.db.session import get_db, get_session_factory
from sitefleet.models.provisioned_site import ProvisionedSite
from sitefleet.schemas.billing import ChangePlanOut, ChangePlanRequest, PortalSessionOut, PortalSessionRequest
from sitefleet.services.billing import BillingNotConfiguredError, BillingProviderError, StripeBilling, get_billing
from sitefleet.services.deployer import SiteDeployer, get_deployer
from sitefleet.services.jobs import nudge_job_queue
from sitefleet.services.site_api import TenantApiClient, get_tenant_client
from sitefleet.services.webhooks import handle_event

logger = structlog.get_logger()

router = APIRouter(prefix="/stripe", tags=["stripe"])


async def _json_body(request: Request) -> object:
    """Parsed JSON body, or None when the body is empty or not JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/create-portal-session", response_model=PortalSessionOut)
async def create_portal_session(
    request: Request,
    site: ProvisionedSite = Depends(get_site_from_bearer),
    billing: StripeBilling = Depends(get_billing),
):
    if not site.stripe_customer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No billing account found")

    # returnUrl is optional; a missing or malformed body is not an error
    body = await _json_body(request)
    return_url: Optional[str] = None
    if isinstance(body, dict):
        try:
            return_url = PortalSessionRequest.model_validate(body).return_url
        except ValidationError:
            return_url = None

    try:
        url = await billing.create_portal_session(site.stripe_customer_id, return_url)
    except BillingNotConfiguredError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Billing is not configured")
    except BillingProviderError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create portal session")

    return PortalSessionOut(url=url)


@router.post("/change-plan", response_model=ChangePlanOut)
async def change_plan(
    request: Request,
    api_key: str = Depends(get_bearer_api_key),
    settings: Settings = Depends(require_primary_instance),
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
):
    body = await _json_body(request)
    if body is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    try:
        plan = ChangePlanRequest.model_validate(body).plan
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid plan. Must be "basic" or "pro".')

    site = await get_site_by_api_key(db, api_key)
    if site is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not site.stripe_subscription_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No active subscription found")

    if site.plan == plan:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Site is already on the {plan} plan")

    price_id = settings.price_id_for_plan(plan)
    if not price_id:
        logger.error("change_plan.price_not_configured", plan=plan)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Plan pricing is not configured")

    try:
        await billing.change_subscription_price(site.stripe_subscription_id, price_id)
    except BillingProviderError as e:
        logger.error("change_plan.failed", site_id=site.id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update subscription. Please try again.",
        )

    # Plan column, deployment env and media cleanup follow via customer.subscription.updated
    logger.info("change_plan.requested", site_id=site.id, plan=plan)
    return ChangePlanOut(success=True)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    settings: Settings = Depends(require_primary_instance),
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    deployer: SiteDeployer = Depends(get_deployer),
    tenant_client: TenantApiClient = Depends(get_tenant_client),
):
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature")

    payload = await request.body()
    try:
        event = billing.construct_event(payload, stripe_signature)
    except BillingNotConfiguredError:
        logger.error("stripe_webhook.not_configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook is not configured")
    except ValueError as e:
        logger.warning("stripe_webhook.invalid_signature", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    queued = await handle_event(
        db,
        event,
        settings=settings,
        deployer=deployer,
        tenant_client=tenant_client,
    )
    if queued:
        background_tasks.add_task(
            nudge_job_queue,
            session_factory,
            deployer=deployer,
            settings=settings,
        )

    return {"received": True}
