"""Durable job queue helpers (Redis/RQ) and stalled-job recovery."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from redis import Redis
from rq import Queue, Retry
from rq.job import Job
from sqlalchemy import select

from config import settings
from database import async_session_maker
from models.generation_job import GenerationJob
from models.sync_job import SyncJob


GENERATION_QUEUE_NAME = "generation_jobs"
METERING_QUEUE_NAME = "metering_jobs"


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_generation_queue() -> Queue:
    """Return the configured generation queue."""
    return Queue(
        name=GENERATION_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=1800,
    )


def get_metering_queue() -> Queue:
    """Return the queue used for overage metering reports."""
    return Queue(
        name=METERING_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=300,
    )


def enqueue_generation_job(job_id: str) -> Job:
    """Enqueue a generation job. Execution itself is never retried by the queue."""
    queue = get_generation_queue()
    return queue.enqueue(
        "services.generation_jobs.process_generation_job_entrypoint",
        job_id,
        job_id=f"generation:{job_id}",
        job_timeout=1800,
        result_ttl=86400,
        failure_ttl=86400,
    )


def enqueue_overage_report(team_id: str, usage_type: str, quantity: int) -> Job:
    """Enqueue a metered-billing report with retry for transient provider errors."""
    queue = get_metering_queue()
    return queue.enqueue(
        "services.metering.process_overage_report_job",
        team_id,
        usage_type,
        quantity,
        retry=Retry(max=3, interval=[10, 60, 300]),
        job_timeout=120,
        result_ttl=86400,
        failure_ttl=86400,
    )


async def recover_stalled_generation_jobs(max_age_minutes: int = 120) -> int:
    """Mark stale running generation jobs as failed after restarts/worker interruptions."""
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=max(max_age_minutes, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(GenerationJob).where(
                GenerationJob.status == "running",
                GenerationJob.updated_at < cutoff,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            job.status = "failed"
            job.error_message = "Generation was interrupted. Retry the job to run it again."
            job.completed_at = now
            job.updated_at = now
        if jobs:
            await db.commit()
        return len(jobs)


async def recover_stalled_sync_jobs(max_age_minutes: int = 120) -> int:
    """Return stale running sync jobs to queued so the next invocation resumes from their cursor."""
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=max(max_age_minutes, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(SyncJob).where(
                SyncJob.status == "running",
                SyncJob.updated_at < cutoff,
            )
        )
        jobs = result.scalars().all()
        for job in jobs:
            job.status = "queued"
            job.updated_at = now
        if jobs:
            await db.commit()
        return len(jobs)
