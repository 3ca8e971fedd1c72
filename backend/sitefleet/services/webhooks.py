"""
Stripe webhook event handling for the primary instance.

Handlers take an already-verified event and move ProvisionedSite rows through
their lifecycle. Unknown sites and unhandled event types are logged and
acknowledged; Stripe retries anything that is not a 2xx.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.core.config import Settings
from sitefleet.core.plan import SitePlan
from sitefleet.crud.provisioned_site import get_site, get_site_by_subscription
from sitefleet.models.provisioned_site import SiteStatus
from sitefleet.services.deployer import SiteDeployer
from sitefleet.services.jobs import enqueue_job
from sitefleet.services.provisioning import PROVISION_SITE_TASK
from sitefleet.services.site_api import TenantApiClient, UpstreamUnavailable

logger = structlog.get_logger()

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

SUSPENDING_SUBSCRIPTION_STATUSES = frozenset({"past_due", "canceled", "unpaid"})


def _as_id(value: Any) -> Optional[str]:
    """Stripe expands some references into objects; accept either shape."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return value.get("id") or None
    return getattr(value, "id", None)


def invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _as_id(details.get("subscription")) or _as_id(invoice.get("subscription"))


def subscription_price_id(subscription: Mapping[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return _as_id(items[0].get("price"))


async def handle_checkout_completed(db: AsyncSession, session: Mapping[str, Any]) -> bool:
    """
    Returns True when a provisioning job was queued.
    """
    raw_site_id = (session.get("metadata") or {}).get("siteId")
    try:
        site_id = int(raw_site_id)
    except (TypeError, ValueError):
        logger.error("stripe_webhook.missing_site_id", session_id=session.get("id"))
        return False

    site = await get_site(db, site_id)
    if site is None:
        logger.error("stripe_webhook.site_not_found", site_id=site_id)
        return False

    if site.status != SiteStatus.PENDING_PAYMENT.value:
        logger.info("stripe_webhook.checkout_already_processed", site_id=site_id, status=site.status)
        return False

    site.status = SiteStatus.PENDING.value
    site.stripe_customer_id = _as_id(session.get("customer"))
    site.stripe_subscription_id = _as_id(session.get("subscription"))
    await enqueue_job(db, PROVISION_SITE_TASK, site.id)
    await db.commit()

    logger.info("stripe_webhook.checkout_completed", site_id=site_id, subdomain=site.subdomain)
    return True


async def handle_subscription_deleted(db: AsyncSession, subscription: Mapping[str, Any]) -> None:
    subscription_id = _as_id(subscription.get("id"))
    site = await get_site_by_subscription(db, subscription_id) if subscription_id else None
    if site is None:
        logger.warning("stripe_webhook.subscription_site_not_found", subscription_id=subscription_id)
        return

    if site.status == SiteStatus.SUSPENDED.value:
        return

    site.status = SiteStatus.SUSPENDED.value
    await db.commit()
    logger.info("stripe_webhook.site_suspended", site_id=site.id, reason="subscription_deleted")


async def handle_payment_failed(db: AsyncSession, invoice: Mapping[str, Any]) -> None:
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("stripe_webhook.invoice_without_subscription", invoice_id=invoice.get("id"))
        return

    site = await get_site_by_subscription(db, subscription_id)
    if site is None:
        logger.warning("stripe_webhook.subscription_site_not_found", subscription_id=subscription_id)
        return

    if site.status == SiteStatus.ACTIVE.value:
        site.status = SiteStatus.SUSPENDED.value
        await db.commit()
        logger.info("stripe_webhook.site_suspended", site_id=site.id, reason="payment_failed")


async def handle_subscription_updated(
    db: AsyncSession,
    subscription: Mapping[str, Any],
    *,
    settings: Settings,
    deployer: SiteDeployer,
    tenant_client: TenantApiClient,
) -> None:
    subscription_id = _as_id(subscription.get("id"))
    site = await get_site_by_subscription(db, subscription_id) if subscription_id else None
    if site is None:
        logger.warning("stripe_webhook.subscription_site_not_found", subscription_id=subscription_id)
        return

    log = logger.bind(site_id=site.id, subdomain=site.subdomain)

    sub_status = subscription.get("status")
    if sub_status in SUSPENDING_SUBSCRIPTION_STATUSES and site.status == SiteStatus.ACTIVE.value:
        site.status = SiteStatus.SUSPENDED.value
        log.info("stripe_webhook.site_suspended", reason=f"subscription_{sub_status}")
    elif sub_status == "active" and site.status == SiteStatus.SUSPENDED.value:
        site.status = SiteStatus.ACTIVE.value
        log.info("stripe_webhook.site_reactivated")

    old_plan = site.plan
    new_plan = settings.plan_for_price_id(subscription_price_id(subscription))
    plan_changed = new_plan is not None and new_plan != old_plan
    if plan_changed:
        site.plan = new_plan

    await db.commit()

    if not plan_changed:
        return

    log.info("stripe_webhook.plan_changed", old_plan=old_plan, new_plan=new_plan)

    if site.deployment_id:
        try:
            await deployer.update_env(site.deployment_id, {"SITE_PLAN": new_plan})
        except Exception as e:
            # The plan column is already updated; a redeploy picks the env up later.
            log.error("stripe_webhook.update_env_failed", deployment_id=site.deployment_id, error=str(e))

    if old_plan == SitePlan.PRO.value and new_plan == SitePlan.BASIC.value:
        if not site.site_api_key:
            log.warning("stripe_webhook.media_cleanup_skipped", reason="no site api key")
            return
        try:
            deleted = await tenant_client.trigger_media_cleanup(site.subdomain, site.site_api_key)
            log.info("stripe_webhook.media_cleanup_triggered", deleted=deleted)
        except UpstreamUnavailable as e:
            log.error("stripe_webhook.media_cleanup_failed", error=str(e))


async def handle_event(
    db: AsyncSession,
    event: Mapping[str, Any],
    *,
    settings: Settings,
    deployer: SiteDeployer,
    tenant_client: TenantApiClient,
) -> bool:
    """
    Dispatch a verified event. Returns True when the job queue has new work.
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        return await handle_checkout_completed(db, obj)
    if event_type == SUBSCRIPTION_DELETED:
        await handle_subscription_deleted(db, obj)
    elif event_type == INVOICE_PAYMENT_FAILED:
        await handle_payment_failed(db, obj)
    elif event_type == SUBSCRIPTION_UPDATED:
        await handle_subscription_updated(
            db, obj, settings=settings, deployer=deployer, tenant_client=tenant_client
        )
    else:
        logger.debug("stripe_webhook.ignored", event_type=event_type)
    return False
