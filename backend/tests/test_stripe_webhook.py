# tests/test_stripe_webhook.py
from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from sitefleet.models.provisioned_site import ProvisionedSite
from sitefleet.models.provisioning_job import ProvisioningJob

URL = "/api/stripe/webhook"


def event(event_type: str, obj: dict[str, Any]) -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


async def post_event(client, payload: bytes, signature: str = "valid-signature"):
    return await client.post(URL, content=payload, headers={"stripe-signature": signature})


async def create_site(db, **fields) -> ProvisionedSite:
    data = {
        "subdomain": "acme",
        "owner_email": "owner@example.com",
        "status": "active",
        "plan": "pro",
        "site_api_key": "tenant-key",
        "deployment_id": "prj_site-acme",
        "stripe_customer_id": "cus_123",
        "stripe_subscription_id": "sub_123",
    }
    data.update(fields)
    site = ProvisionedSite(**data)
    db.add(site)
    await db.commit()
    return site


async def jobs(db) -> list[ProvisioningJob]:
    return list((await db.execute(select(ProvisioningJob).order_by(ProvisioningJob.id))).scalars().all())


def subscription(status: str = "active", price: str = "price_pro", **extra) -> dict[str, Any]:
    obj = {
        "id": "sub_123",
        "object": "subscription",
        "status": status,
        "items": {"data": [{"id": "si_1", "price": {"id": price}}]},
    }
    obj.update(extra)
    return obj


# ---------------------------------------------------------
# Signature handling
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_missing_signature(client):
    r = await client.post(URL, content=event("checkout.session.completed", {}))
    assert r.status_code == 400
    assert r.json() == {"detail": "Missing signature"}


@pytest.mark.asyncio
async def test_invalid_signature(client):
    r = await post_event(client, event("checkout.session.completed", {}), signature="t=1,v1=forged")
    assert r.status_code == 400
    assert r.json() == {"detail": "Invalid signature"}


@pytest.mark.asyncio
async def test_not_found_on_tenants(client, configure):
    configure(IS_PRIMARY_INSTANCE=False)
    r = await post_event(client, event("checkout.session.completed", {}))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_unhandled_events_are_acknowledged(client):
    r = await post_event(client, event("charge.refunded", {"id": "ch_1"}))
    assert r.status_code == 200
    assert r.json() == {"received": True}


# ---------------------------------------------------------
# checkout.session.completed
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_checkout_completed_queues_and_runs_provisioning(client, db, deployer):
    site = await create_site(
        db,
        status="pending_payment",
        site_api_key=None,
        deployment_id=None,
        stripe_customer_id=None,
        stripe_subscription_id=None,
    )

    session = {"id": "cs_1", "metadata": {"siteId": str(site.id)}, "customer": "cus_9", "subscription": "sub_9"}
    r = await post_event(client, event("checkout.session.completed", session))
    assert r.status_code == 200
    assert r.json() == {"received": True}

    queued = await jobs(db)
    assert [(j.task, j.site_id) for j in queued] == [("provision-site", site.id)]
    assert queued[0].status == "succeeded"

    await db.refresh(site)
    assert site.stripe_customer_id == "cus_9"
    assert site.stripe_subscription_id == "sub_9"
    assert site.status == "active"
    assert site.deployment_id == "prj_site-acme"
    assert deployer.deployed[0]["domain"] == "acme.glossysites.live"


@pytest.mark.asyncio
async def test_checkout_completed_is_idempotent(client, db, deployer):
    site = await create_site(db, status="pending_payment", stripe_customer_id=None, stripe_subscription_id=None)
    session = {"id": "cs_1", "metadata": {"siteId": str(site.id)}, "customer": "cus_9", "subscription": "sub_9"}

    await post_event(client, event("checkout.session.completed", session))
    r = await post_event(client, event("checkout.session.completed", session))

    assert r.status_code == 200
    assert len(await jobs(db)) == 1
    assert len(deployer.deployed) == 1


@pytest.mark.asyncio
async def test_checkout_completed_for_unknown_site(client, db):
    r = await post_event(client, event("checkout.session.completed", {"id": "cs_1", "metadata": {"siteId": "404"}}))
    assert r.status_code == 200
    assert await jobs(db) == []

    r = await post_event(client, event("checkout.session.completed", {"id": "cs_1", "metadata": {}}))
    assert r.status_code == 200

    r = await post_event(
        client, event("checkout.session.completed", {"id": "cs_1", "metadata": {"siteId": "99999999999999999999"}})
    )
    assert r.status_code == 200
    assert await jobs(db) == []


# ---------------------------------------------------------
# subscription lifecycle
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_subscription_deleted_suspends(client, db):
    site = await create_site(db, status="active")

    r = await post_event(client, event("customer.subscription.deleted", subscription(status="canceled")))
    assert r.status_code == 200
    await db.refresh(site)
    assert site.status == "suspended"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "invoice",
    [
        {"id": "in_1", "parent": {"subscription_details": {"subscription": "sub_123"}}},
        {"id": "in_1", "parent": {"subscription_details": {"subscription": {"id": "sub_123", "object": "subscription"}}}},
        {"id": "in_1", "subscription": "sub_123"},
    ],
)
async def test_payment_failed_suspends_active_site(client, db, invoice):
    site = await create_site(db, status="active")

    r = await post_event(client, event("invoice.payment_failed", invoice))
    assert r.status_code == 200
    await db.refresh(site)
    assert site.status == "suspended"


@pytest.mark.asyncio
async def test_payment_failed_leaves_non_active_sites_alone(client, db):
    site = await create_site(db, status="provisioning")

    await post_event(
        client,
        event("invoice.payment_failed", {"id": "in_1", "parent": {"subscription_details": {"subscription": "sub_123"}}}),
    )
    await db.refresh(site)
    assert site.status == "provisioning"


@pytest.mark.asyncio
@pytest.mark.parametrize("sub_status", ["past_due", "canceled", "unpaid"])
async def test_subscription_updated_suspends(client, db, sub_status):
    site = await create_site(db, status="active")

    await post_event(client, event("customer.subscription.updated", subscription(status=sub_status)))
    await db.refresh(site)
    assert site.status == "suspended"


@pytest.mark.asyncio
async def test_subscription_updated_reactivates(client, db):
    site = await create_site(db, status="suspended")

    await post_event(client, event("customer.subscription.updated", subscription(status="active")))
    await db.refresh(site)
    assert site.status == "active"


@pytest.mark.asyncio
async def test_downgrade_updates_env_and_cleans_up_media(client, db, deployer, upstream):
    upstream.respond = lambda request: httpx.Response(200, json={"deleted": 4})
    site = await create_site(db, plan="pro")

    r = await post_event(client, event("customer.subscription.updated", subscription(price="price_basic")))
    assert r.status_code == 200

    await db.refresh(site)
    assert site.plan == "basic"
    assert site.status == "active"
    assert deployer.env_updates == [("prj_site-acme", {"SITE_PLAN": "basic"})]

    cleanup = upstream.requests[0]
    assert str(cleanup.url) == "https://acme.glossysites.live/api/media-cleanup"
    assert cleanup.method == "POST"
    assert cleanup.headers["Authorization"] == "Bearer tenant-key"


@pytest.mark.asyncio
async def test_upgrade_does_not_clean_up_media(client, db, deployer, upstream):
    site = await create_site(db, plan="basic")

    await post_event(client, event("customer.subscription.updated", subscription(price="price_pro")))

    await db.refresh(site)
    assert site.plan == "pro"
    assert deployer.env_updates == [("prj_site-acme", {"SITE_PLAN": "pro"})]
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_unknown_price_leaves_plan_alone(client, db, deployer):
    site = await create_site(db, plan="pro")

    await post_event(client, event("customer.subscription.updated", subscription(price="price_legacy")))

    await db.refresh(site)
    assert site.plan == "pro"
    assert deployer.env_updates == []


@pytest.mark.asyncio
async def test_downstream_failures_are_logged_not_raised(client, db, deployer, upstream):
    deployer.update_env_error = RuntimeError("hosting API 500")

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    upstream.respond = refuse
    site = await create_site(db, plan="pro")

    with capture_logs() as logs:
        r = await post_event(client, event("customer.subscription.updated", subscription(price="price_basic")))

    assert r.status_code == 200
    await db.refresh(site)
    assert site.plan == "basic"

    events = {e["event"] for e in logs}
    assert "stripe_webhook.update_env_failed" in events
    assert "stripe_webhook.media_cleanup_failed" in events
