# tests/test_jobs.py
from __future__ import annotations

import pytest
from sqlalchemy import select, update

from sitefleet.models.provisioned_site import ProvisionedSite
from sitefleet.models.provisioning_job import ProvisioningJob
from sitefleet.services.jobs import enqueue_job, nudge_job_queue, retry_delay, run_pending_jobs
from sitefleet.services.provisioning import PROVISION_SITE_TASK, ProvisioningError, provision_site


async def pending_site(db, subdomain: str = "acme", **fields) -> ProvisionedSite:
    site = ProvisionedSite(
        subdomain=subdomain,
        owner_email="owner@example.com",
        site_name="Acme Studio",
        status="pending",
        plan="pro",
        **fields,
    )
    db.add(site)
    await db.commit()
    return site


async def queue(db, site_id: int) -> ProvisioningJob:
    job = await enqueue_job(db, PROVISION_SITE_TASK, site_id)
    await db.commit()
    return job


async def reload(db, model, pk):
    db.expire_all()
    return await db.get(model, pk)


# ---------------------------------------------------------
# provision-site task
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_provision_site_deploys_and_activates(db, deployer, settings):
    site_id = (await pending_site(db)).id

    deployment_id = await provision_site(db, site_id, deployer=deployer, settings=settings)

    assert deployment_id == "prj_site-acme"
    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "active"
    assert site.deployment_id == "prj_site-acme"
    assert site.provisioned_at is not None
    assert site.site_api_key and len(site.site_api_key) >= 32

    env = deployer.deployed[0]["env"]
    assert env["SITE_PLAN"] == "pro"
    assert env["SITE_API_KEY"] == site.site_api_key
    assert env["IS_PRIMARY_INSTANCE"] == "false"
    assert env["SERVER_URL"] == "https://acme.glossysites.live"
    assert env["PRIMARY_URL"] == "https://primary.test"
    assert env["BLOB_READ_WRITE_TOKEN"] == "blob-token"
    assert env["JWT_SECRET"] and env["JWT_SECRET"] != settings.JWT_SECRET


@pytest.mark.asyncio
async def test_each_site_gets_its_own_api_key(db, deployer, settings):
    a_id = (await pending_site(db, "site-a")).id
    b_id = (await pending_site(db, "site-b")).id

    await provision_site(db, a_id, deployer=deployer, settings=settings)
    await provision_site(db, b_id, deployer=deployer, settings=settings)

    a_key = (await reload(db, ProvisionedSite, a_id)).site_api_key
    b_key = (await reload(db, ProvisionedSite, b_id)).site_api_key
    assert a_key and b_key
    assert a_key != b_key


@pytest.mark.asyncio
async def test_provision_site_requires_blob_token(db, deployer, settings):
    site_id = (await pending_site(db)).id
    no_blob = settings.model_copy(update={"BLOB_READ_WRITE_TOKEN": None})

    with pytest.raises(ProvisioningError):
        await provision_site(db, site_id, deployer=deployer, settings=no_blob)

    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "failed"
    assert "BLOB_READ_WRITE_TOKEN" in site.provisioning_error
    assert deployer.deployed == []


@pytest.mark.asyncio
async def test_provision_site_records_deploy_errors(db, deployer, settings):
    site_id = (await pending_site(db)).id
    deployer.deploy_error = RuntimeError("domain already assigned")

    with pytest.raises(RuntimeError):
        await provision_site(db, site_id, deployer=deployer, settings=settings)

    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "failed"
    assert site.provisioning_error == "domain already assigned"
    assert site.site_api_key is None


@pytest.mark.asyncio
async def test_provision_missing_site(db, deployer, settings):
    with pytest.raises(ProvisioningError):
        await provision_site(db, 12345, deployer=deployer, settings=settings)


# ---------------------------------------------------------
# queue runner
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_run_pending_jobs_marks_success(db, sessionmaker, deployer, settings):
    site_id = (await pending_site(db)).id
    job_id = (await queue(db, site_id)).id

    ran = await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings)

    assert ran == 1
    job = await reload(db, ProvisioningJob, job_id)
    assert job.status == "succeeded"
    assert job.attempts == 1
    assert job.completed_at is not None

    # nothing left to do
    assert await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings) == 0


@pytest.mark.asyncio
async def test_failed_job_is_retried_with_backoff_then_failed(db, sessionmaker, deployer, settings):
    site_id = (await pending_site(db)).id
    job_id = (await queue(db, site_id)).id
    deployer.deploy_error = RuntimeError("hosting API timeout")

    assert await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings) == 1
    job = await reload(db, ProvisioningJob, job_id)
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.run_after is not None
    assert job.last_error == "hosting API timeout"

    # not due yet
    assert await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings) == 0

    for expected_attempts in (2, 3):
        await db.execute(update(ProvisioningJob).where(ProvisioningJob.id == job_id).values(run_after=None))
        await db.commit()
        assert await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings) == 1
        job = await reload(db, ProvisioningJob, job_id)
        assert job.attempts == expected_attempts

    assert job.status == "failed"
    assert job.completed_at is not None

    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "failed"
    assert site.provisioning_error == "hosting API timeout"


@pytest.mark.asyncio
async def test_retry_can_recover(db, sessionmaker, deployer, settings):
    site_id = (await pending_site(db)).id
    job_id = (await queue(db, site_id)).id

    deployer.deploy_error = RuntimeError("flaky")
    await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings)

    deployer.deploy_error = None
    await db.execute(update(ProvisioningJob).where(ProvisioningJob.id == job_id).values(run_after=None))
    await db.commit()
    await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings)

    job = await reload(db, ProvisioningJob, job_id)
    assert job.status == "succeeded"
    assert job.last_error is None

    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "active"
    assert site.provisioning_error is None


def test_retry_delay_doubles_from_five_seconds():
    assert [retry_delay(n).total_seconds() for n in (1, 2, 3)] == [5, 10, 20]


@pytest.mark.asyncio
async def test_claimed_jobs_are_not_run_twice(db, sessionmaker, deployer, settings):
    site_id = (await pending_site(db)).id
    job_id = (await queue(db, site_id)).id

    # another runner already claimed it
    await db.execute(update(ProvisioningJob).where(ProvisioningJob.id == job_id).values(status="running"))
    await db.commit()

    assert await run_pending_jobs(sessionmaker, deployer=deployer, settings=settings) == 0
    assert deployer.deployed == []


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_tasks(db):
    site_id = (await pending_site(db)).id
    with pytest.raises(ValueError):
        await enqueue_job(db, "send-newsletter", site_id)


@pytest.mark.asyncio
async def test_nudge_swallows_infrastructure_errors(deployer, settings):
    calls = []

    def broken_factory():
        calls.append(1)
        raise ConnectionError("database is down")

    await nudge_job_queue(broken_factory, deployer=deployer, settings=settings, attempts=3, base_delay=0)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_nudge_runs_due_jobs(db, sessionmaker, deployer, settings):
    site_id = (await pending_site(db)).id
    await queue(db, site_id)

    await nudge_job_queue(sessionmaker, deployer=deployer, settings=settings)

    site = await reload(db, ProvisionedSite, site_id)
    assert site.status == "active"
    rows = (await db.execute(select(ProvisioningJob.status))).scalars().all()
    assert rows == ["succeeded"]
