"""
Persistent job queue for the primary instance.

Jobs are claimed with a conditional UPDATE (queued -> running) so two runners
never execute the same job. Failures are re-queued with exponential backoff
until max_attempts, then marked failed.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitefleet.core.config import Settings
from sitefleet.models.provisioning_job import JobStatus, ProvisioningJob
from sitefleet.services.deployer import SiteDeployer
from sitefleet.services.provisioning import PROVISION_SITE_TASK, provision_site

logger = structlog.get_logger()

DEFAULT_MAX_ATTEMPTS = 3  # one run + two retries
RETRY_BASE_DELAY_SECONDS = 5

NUDGE_ATTEMPTS = 3
NUDGE_BASE_DELAY_SECONDS = 0.5

TaskHandler = Callable[..., Awaitable[object]]

TASKS: dict[str, TaskHandler] = {
    PROVISION_SITE_TASK: provision_site,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=RETRY_BASE_DELAY_SECONDS * 2 ** max(attempts - 1, 0))


async def enqueue_job(
    db: AsyncSession,
    task: str,
    site_id: int,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> ProvisioningJob:
    if task not in TASKS:
        raise ValueError(f"Unknown task: {task}")

    job = ProvisioningJob(
        task=task,
        site_id=site_id,
        status=JobStatus.QUEUED.value,
        attempts=0,
        max_attempts=max_attempts,
    )
    db.add(job)
    await db.flush()
    logger.info("job_queue.enqueued", job_id=job.id, task=task, site_id=site_id)
    return job


async def _claim(db: AsyncSession, job_id: int) -> bool:
    res = await db.execute(
        update(ProvisioningJob)
        .where(ProvisioningJob.id == job_id)
        .where(ProvisioningJob.status == JobStatus.QUEUED.value)
        .values(
            status=JobStatus.RUNNING.value,
            attempts=ProvisioningJob.attempts + 1,
        )
    )
    await db.commit()
    return res.rowcount == 1


async def _run_job(
    session_factory: async_sessionmaker[AsyncSession],
    job_id: int,
    *,
    deployer: SiteDeployer,
    settings: Settings,
) -> bool:
    async with session_factory() as db:
        if not await _claim(db, job_id):
            return False

        job = await db.get(ProvisioningJob, job_id)
        log = logger.bind(job_id=job_id, task=job.task, site_id=job.site_id, attempt=job.attempts)

        try:
            handler = TASKS.get(job.task)
            if handler is None:
                raise ValueError(f"Unknown task: {job.task}")
            await handler(db, job.site_id, deployer=deployer, settings=settings)
        except Exception as e:
            await db.rollback()
            job = await db.get(ProvisioningJob, job_id)
            job.last_error = str(e) or e.__class__.__name__
            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED.value
                job.completed_at = _utcnow()
                log.error("job_queue.job_failed", error=job.last_error)
            else:
                job.status = JobStatus.QUEUED.value
                job.run_after = _utcnow() + retry_delay(job.attempts)
                log.warning("job_queue.job_retry_scheduled", error=job.last_error, run_after=job.run_after.isoformat())
            await db.commit()
            return True

        job.status = JobStatus.SUCCEEDED.value
        job.last_error = None
        job.completed_at = _utcnow()
        await db.commit()
        log.info("job_queue.job_succeeded")
        return True


async def run_pending_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    deployer: SiteDeployer,
    settings: Settings,
    limit: int = 10,
) -> int:
    """
    Run up to `limit` due jobs. Returns how many this runner executed.
    """
    async with session_factory() as db:
        now = _utcnow()
        stmt = (
            select(ProvisioningJob.id)
            .where(ProvisioningJob.status == JobStatus.QUEUED.value)
            .where(or_(ProvisioningJob.run_after.is_(None), ProvisioningJob.run_after <= now))
            .order_by(ProvisioningJob.id)
            .limit(limit)
        )
        job_ids = list((await db.execute(stmt)).scalars().all())

    ran = 0
    for job_id in job_ids:
        if await _run_job(session_factory, job_id, deployer=deployer, settings=settings):
            ran += 1
    return ran


async def nudge_job_queue(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    deployer: SiteDeployer,
    settings: Settings,
    attempts: int = NUDGE_ATTEMPTS,
    base_delay: float = NUDGE_BASE_DELAY_SECONDS,
) -> None:
    """
    Fire-and-forget: scheduled after a response is sent. Never raises.
    """
    for attempt in range(1, attempts + 1):
        try:
            ran = await run_pending_jobs(session_factory, deployer=deployer, settings=settings)
            logger.info("job_queue.nudged", ran=ran, attempt=attempt)
            return
        except Exception as e:
            logger.warning("job_queue.nudge_failed", attempt=attempt, error=str(e))
            if attempt < attempts:
                await asyncio.sleep(base_delay * 2 ** (attempt - 1))

    logger.error("job_queue.nudge_gave_up", attempts=attempts)
