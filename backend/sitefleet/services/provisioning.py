"""
provision-site task: turns a paid, pending ProvisionedSite into a deployed tenant.

pending -> provisioning -> active, or -> failed with provisioning_error set.
The job runner (services.jobs) owns retries; this task re-raises so the runner
can count the attempt.
"""
from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sitefleet.core.config import Settings
from sitefleet.core.security import generate_secret
from sitefleet.models.provisioned_site import ProvisionedSite, SiteStatus
from sitefleet.services.deployer import SiteDeployer

logger = structlog.get_logger()

PROVISION_SITE_TASK = "provision-site"


class ProvisioningError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tenant_domain(subdomain: str, settings: Settings) -> str:
    return f"{subdomain}.{settings.SITE_DOMAIN}"


def build_tenant_env(site: ProvisionedSite, site_api_key: str, settings: Settings) -> dict[str, str]:
    domain = tenant_domain(site.subdomain, settings)
    return {
        "IS_PRIMARY_INSTANCE": "false",
        "SITE_PLAN": site.plan or "basic",
        "SITE_API_KEY": site_api_key,
        "SERVER_URL": f"https://{domain}",
        "PRIMARY_URL": settings.primary_base_url,
        "SITE_DOMAIN": settings.SITE_DOMAIN,
        "BLOB_READ_WRITE_TOKEN": settings.BLOB_READ_WRITE_TOKEN or "",
        "JWT_SECRET": generate_secret(),
        "SITE_NAME": site.site_name or site.subdomain,
        "SITE_DESCRIPTION": site.site_description or "",
    }


async def provision_site(
    db: AsyncSession,
    site_id: int,
    *,
    deployer: SiteDeployer,
    settings: Settings,
) -> str:
    site = await db.get(ProvisionedSite, site_id)
    if site is None:
        raise ProvisioningError(f"Provisioned site {site_id} not found.")

    log = logger.bind(site_id=site_id, subdomain=site.subdomain)

    site.status = SiteStatus.PROVISIONING.value
    site.provisioning_error = None
    await db.commit()

    try:
        # Tenants upload through the primary's shared blob store
        if not (settings.BLOB_READ_WRITE_TOKEN or "").strip():
            raise ProvisioningError(
                "BLOB_READ_WRITE_TOKEN is not set on the primary instance. "
                "Set it before provisioning new sites."
            )

        site_api_key = generate_secret()
        env = build_tenant_env(site, site_api_key, settings)
        deployment_id = await deployer.deploy(
            f"site-{site.subdomain}",
            tenant_domain(site.subdomain, settings),
            env,
        )

        site.status = SiteStatus.ACTIVE.value
        site.deployment_id = deployment_id
        site.site_api_key = site_api_key
        site.provisioned_at = _utcnow()
        await db.commit()
    except Exception as e:
        await db.rollback()
        site = await db.get(ProvisionedSite, site_id)
        if site is not None:
            site.status = SiteStatus.FAILED.value
            site.provisioning_error = str(e) or e.__class__.__name__
            await db.commit()
        log.error("provisioning.failed", error=str(e))
        raise

    log.info("provisioning.completed", deployment_id=deployment_id)
    return deployment_id
