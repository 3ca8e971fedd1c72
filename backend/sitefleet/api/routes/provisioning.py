# sitefleet/api/routes/provisioning.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitefleet.api.deps.instance import require_primary_instance
from sitefleet.core.config import Settings
from sitefleet.core.rate_limit import RateLimiter, get_subdomain_rate_limiter
from sitefleet.core.subdomains import (
    REASON_REQUIRED,
    check_subdomain_availability,
    normalize_subdomain,
    validate_subdomain,
)
from sitefleet.crud.provisioned_site import count_signups_since, get_site, subdomain_exists
from sitefleet.db.session import get_db, get_session_factory
from sitefleet.models.provisioned_site import ProvisionedSite, SiteStatus
from sitefleet.schemas.provisioning import (
    ProvisioningStatusOut,
    SignupOut,
    SignupRequest,
    SubdomainAvailability,
)
from sitefleet.services.billing import BillingNotConfiguredError, BillingProviderError, StripeBilling, get_billing
from sitefleet.services.deployer import SiteDeployer, get_deployer
from sitefleet.services.jobs import nudge_job_queue

logger = structlog.get_logger()

router = APIRouter(prefix="/provisioning", tags=["provisioning"])

RATE_LIMITED_REASON = "Too many requests. Please wait a moment."

SIGNUP_WINDOW = timedelta(hours=1)
MAX_SIGNUPS_PER_WINDOW = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------
# Subdomain availability (signup form, live)
# ---------------------------------------------------------
@router.get("/check-subdomain", response_model=SubdomainAvailability, response_model_exclude_none=True)
async def check_subdomain(
    request: Request,
    subdomain: Optional[str] = None,
    _: Settings = Depends(require_primary_instance),
    limiter: RateLimiter = Depends(get_subdomain_rate_limiter),
    db: AsyncSession = Depends(get_db),
):
    if limiter.is_rate_limited(client_ip(request)):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"available": False, "reason": RATE_LIMITED_REASON},
        )

    candidate = normalize_subdomain(subdomain)
    if not candidate:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"available": False, "reason": REASON_REQUIRED},
        )

    verdict = await check_subdomain_availability(db, candidate)
    return SubdomainAvailability(available=verdict.valid, reason=verdict.reason)


# ---------------------------------------------------------
# Status polling (signup status page)
# ---------------------------------------------------------
@router.get("/status/{site_id}", response_model=ProvisioningStatusOut, response_model_exclude_none=True)
async def provisioning_status(
    site_id: str,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(require_primary_instance),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    deployer: SiteDeployer = Depends(get_deployer),
):
    try:
        pk = int(site_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid ID")

    site = await get_site(db, pk)
    if site is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")

    if site.status == SiteStatus.PENDING.value:
        # Queued but not started; kick the runner once the response is out.
        background_tasks.add_task(
            nudge_job_queue,
            session_factory,
            deployer=deployer,
            settings=settings,
        )

    is_failed = site.status == SiteStatus.FAILED.value
    return ProvisioningStatusOut(
        status=site.status,
        subdomain=site.subdomain,
        provisioning_error=site.provisioning_error if is_failed else None,
        provisioned_at=site.provisioned_at,
    )


# ---------------------------------------------------------
# Signup -> Stripe Checkout
# ---------------------------------------------------------
@router.post("/signup", response_model=SignupOut, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    settings: Settings = Depends(require_primary_instance),
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
):
    subdomain = payload.subdomain
    owner_email = str(payload.owner_email).strip()

    verdict = validate_subdomain(subdomain)
    if not verdict.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=verdict.reason)

    recent = await count_signups_since(db, owner_email, _utcnow() - SIGNUP_WINDOW)
    if recent >= MAX_SIGNUPS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many signups. Please wait before trying again.",
        )

    if await subdomain_exists(db, subdomain):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f'The subdomain "{subdomain}" is already taken.')

    price_id = settings.price_id_for_plan(payload.plan)
    if not price_id:
        logger.error("signup.price_not_configured", plan=payload.plan)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment configuration error. Please try again later.",
        )

    site = ProvisionedSite(
        subdomain=subdomain,
        owner_email=owner_email,
        owner_name=payload.owner_name,
        site_name=payload.site_name,
        site_description=payload.site_description,
        plan=payload.plan,
        status=SiteStatus.PENDING_PAYMENT.value,
    )
    db.add(site)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race on the unique subdomain
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f'The subdomain "{subdomain}" is already taken.')
    await db.refresh(site)

    server_url = settings.server_base_url or settings.primary_base_url
    try:
        checkout = await billing.create_checkout_session(
            price_id=price_id,
            customer_email=owner_email,
            metadata={"siteId": str(site.id), "subdomain": subdomain},
            success_url=f"{server_url}/signup/status/{site.id}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{server_url}/signup?cancelled=true",
        )
    except BillingProviderError as e:
        # Release the subdomain; nothing was charged.
        await db.delete(site)
        await db.commit()
        if isinstance(e, BillingNotConfiguredError):
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Payment configuration error. Please try again later.",
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to start checkout. Please try again.",
        )

    site.stripe_checkout_session_id = checkout.id
    await db.commit()

    logger.info("signup.created", site_id=site.id, subdomain=subdomain, plan=payload.plan)
    return SignupOut(site_id=site.id, subdomain=subdomain, checkout_url=checkout.url)
