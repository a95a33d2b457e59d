"""Generation jobs: reservation-gated submission, guarded state machine, and executor."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import async_session_maker
from models.batch import Batch
from models.generation import GeneratedImage, Generation
from models.generation_job import GenerationJob
from models.usage_record import UsageRecord
from services.batch_status import refresh_batch_status
from services.credits import refund_credits, reserve_credits
from services.errors import (
    ConflictError,
    InvalidJobStateError,
    NotFoundError,
    RetryOfRetryForbiddenError,
)
from services.generator import (
    BaseGenerator,
    CancellationToken,
    GenerationCanceledError,
    GenerationRequest,
    get_generator,
)
from services.job_payloads import (
    ImageEditPayload,
    ImageGenerationPayload,
    build_prompts,
    parse_job_payload,
)
from services.job_queue import enqueue_generation_job

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("queued", "running")
TERMINAL_STATUSES = ("success", "failed", "canceled")
BLOCKING_BATCH_STATUSES = ("paused", "canceled")
REFUNDABLE_STATUSES = ("failed", "canceled")

PayloadLike = Union[ImageGenerationPayload, ImageEditPayload, Dict[str, Any]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _initial_progress(total: int) -> Dict[str, Any]:
    return {"current": 0, "total": int(total), "completed_image_ids": []}


def build_generation_job(
    team_id: str,
    *,
    product_id: str,
    variant_id: str,
    payload: Union[ImageGenerationPayload, ImageEditPayload],
    credits_id: Optional[str],
    is_overage: bool,
    batch_id: Optional[str] = None,
    retry_of_job_id: Optional[str] = None,
    retry_attempt: int = 0,
    job_id: Optional[str] = None,
) -> GenerationJob:
    """Build a queued job row for credits that have already been reserved."""
    return GenerationJob(
        id=job_id or str(uuid.uuid4()),
        team_id=team_id,
        product_id=product_id,
        variant_id=variant_id,
        type=payload.type,
        status="queued",
        batch_id=batch_id,
        payload_json=payload.model_dump(),
        number_of_variations=payload.credit_cost,
        credits_id=credits_id,
        is_overage=bool(is_overage),
        retry_of_job_id=retry_of_job_id,
        retry_attempt=retry_attempt,
        progress_json=_initial_progress(payload.credit_cost),
    )


async def enqueue_jobs(jobs: Iterable[GenerationJob], db: AsyncSession) -> int:
    """Push queued jobs to the worker queue. The cron sweep picks up anything that fails to enqueue."""
    enqueued = 0
    for job in jobs:
        try:
            queue_job = enqueue_generation_job(job.id)
        except Exception as exc:
            logger.warning("Generation job %s not enqueued (%s); leaving it for the cron sweep", job.id, exc)
            continue
        job.queue_job_id = queue_job.id
        enqueued += 1
    if enqueued:
        await db.commit()
    return enqueued


async def submit_generation_job(
    team_id: str,
    user_id: Optional[str],
    db: AsyncSession,
    *,
    product_id: str,
    variant_id: str,
    payload: PayloadLike,
    confirm_overage: bool = False,
    batch_id: Optional[str] = None,
) -> GenerationJob:
    """Reserve image credits, then create and enqueue a queued job."""
    typed = parse_job_payload(payload) if isinstance(payload, dict) else payload
    job_id = str(uuid.uuid4())
    check = await reserve_credits(
        team_id,
        user_id,
        "image",
        typed.credit_cost,
        db,
        confirm_overage=confirm_overage,
        reference_type="generation_job",
        reference_id=job_id,
    )

    job = build_generation_job(
        team_id,
        product_id=product_id,
        variant_id=variant_id,
        payload=typed,
        credits_id=check.credits_id,
        is_overage=check.is_overage,
        batch_id=batch_id,
        job_id=job_id,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    await enqueue_jobs([job], db)
    return job


async def get_generation_job(team_id: str, job_id: str, db: AsyncSession) -> GenerationJob:
    result = await db.execute(
        select(GenerationJob).where(GenerationJob.id == job_id, GenerationJob.team_id == team_id)
    )
    job = result.scalar_one_or_none()
    if not job:
        raise NotFoundError("Generation job not found")
    return job


async def list_generation_jobs(
    team_id: str,
    db: AsyncSession,
    *,
    variant_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[GenerationJob]:
    query = select(GenerationJob).where(GenerationJob.team_id == team_id)
    if variant_id:
        query = query.where(GenerationJob.variant_id == variant_id)
    if batch_id:
        query = query.where(GenerationJob.batch_id == batch_id)
    if status:
        query = query.where(GenerationJob.status == status)
    result = await db.execute(
        query.order_by(GenerationJob.created_at.desc()).limit(max(1, min(int(limit), 200)))
    )
    return list(result.scalars().all())


async def count_active_generation_jobs(team_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(GenerationJob.id)).where(
            GenerationJob.team_id == team_id,
            GenerationJob.status.in_(ACTIVE_STATUSES),
        )
    )
    return int(result.scalar() or 0)


async def _transition(
    db: AsyncSession,
    job_id: str,
    from_statuses: Iterable[str],
    **values: Any,
) -> bool:
    """Conditional update: applies only while the job is in one of ``from_statuses``."""
    values.setdefault("updated_at", _now())
    result = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status.in_(tuple(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


async def mark_generation_job_running(job_id: str, db: AsyncSession) -> bool:
    now = _now()
    applied = await _transition(db, job_id, ("queued",), status="running", started_at=now)
    await db.commit()
    return applied


async def complete_generation_job(
    job_id: str,
    db: AsyncSession,
    *,
    generation_id: str,
    progress: Dict[str, Any],
) -> bool:
    """Record a successful result. A job canceled meanwhile keeps its status but stores the output."""
    now = _now()
    applied = await _transition(
        db,
        job_id,
        ("running",),
        status="success",
        generation_id=generation_id,
        progress_json=progress,
        error_message=None,
        completed_at=now,
    )
    if not applied:
        await _transition(db, job_id, ("canceled",), generation_id=generation_id, progress_json=progress)
    await db.commit()
    return applied


async def fail_generation_job(job_id: str, db: AsyncSession, *, error: str) -> bool:
    applied = await _transition(
        db,
        job_id,
        ACTIVE_STATUSES,
        status="failed",
        error_message=(error or "Generation failed")[:1000],
        completed_at=_now(),
    )
    await db.commit()
    return applied


async def update_generation_job_progress(
    job_id: str,
    db: AsyncSession,
    *,
    current: int,
    total: int,
    completed_image_ids: Optional[List[str]] = None,
) -> bool:
    progress = {
        "current": max(0, int(current)),
        "total": max(0, int(total)),
        "completed_image_ids": list(completed_image_ids or []),
    }
    applied = await _transition(db, job_id, ACTIVE_STATUSES, progress_json=progress)
    await db.commit()
    return applied


async def cancel_generation_job(
    team_id: str,
    user_id: Optional[str],
    job_id: str,
    db: AsyncSession,
) -> GenerationJob:
    """Cancel a queued or running job.

    A queued job outside a batch never started, so its full charge is refunded.
    Batch jobs are reconciled by the batch cancel, and running jobs keep their
    charge since the generator may already have produced images.
    """
    job = await get_generation_job(team_id, job_id, db)
    if job.status not in ACTIVE_STATUSES:
        raise InvalidJobStateError("cancel", job.status)

    previous_status = job.status
    applied = await _transition(db, job.id, ACTIVE_STATUSES, status="canceled", completed_at=_now())
    await db.commit()
    await db.refresh(job)
    if not applied:
        raise InvalidJobStateError("cancel", job.status)

    if previous_status == "queued" and not job.batch_id and job.credits_id:
        await refund_credits(
            team_id,
            user_id,
            "image",
            job.number_of_variations,
            db,
            credits_id=job.credits_id,
            is_overage=bool(job.is_overage),
            reference_type="job_refund",
            reference_id=job.id,
        )
    if job.batch_id:
        await refresh_batch_status(job.batch_id, db)
    logger.info("Generation job %s canceled (was %s)", job.id, previous_status)
    return job


async def retry_generation_job(
    team_id: str,
    user_id: Optional[str],
    job_id: str,
    db: AsyncSession,
    *,
    confirm_overage: bool = False,
) -> GenerationJob:
    """Create a fresh attempt of a failed job. Retries of retries are rejected."""
    original = await get_generation_job(team_id, job_id, db)
    if original.retry_of_job_id:
        raise RetryOfRetryForbiddenError(original.id, original.retry_of_job_id)
    if original.status != "failed":
        raise InvalidJobStateError("retry", original.status)

    payload = parse_job_payload(original.payload_json)
    new_id = str(uuid.uuid4())
    check = await reserve_credits(
        team_id,
        user_id,
        "image",
        payload.credit_cost,
        db,
        confirm_overage=confirm_overage,
        reference_type="generation_job",
        reference_id=new_id,
    )
    retry = build_generation_job(
        team_id,
        product_id=original.product_id,
        variant_id=original.variant_id,
        payload=payload,
        credits_id=check.credits_id,
        is_overage=check.is_overage,
        batch_id=original.batch_id,
        retry_of_job_id=original.id,
        retry_attempt=int(original.retry_attempt or 0) + 1,
        job_id=new_id,
    )
    db.add(retry)
    await db.commit()
    await db.refresh(retry)
    if retry.batch_id:
        await refresh_batch_status(retry.batch_id, db)
    await enqueue_jobs([retry], db)
    logger.info("Generation job %s retried as %s (attempt %s)", original.id, retry.id, retry.retry_attempt)
    return retry


async def count_generated_images(db: AsyncSession, generation_ids: Iterable[str]) -> Dict[str, int]:
    ids = [gid for gid in generation_ids if gid]
    if not ids:
        return {}
    result = await db.execute(
        select(GeneratedImage.generation_id, func.count(GeneratedImage.id))
        .where(GeneratedImage.generation_id.in_(ids))
        .group_by(GeneratedImage.generation_id)
    )
    return {generation_id: int(count) for generation_id, count in result.all()}


def generated_count_for_job(job: GenerationJob, image_counts: Dict[str, int]) -> int:
    """Images a job produced: stored images first, then progress bookkeeping."""
    if job.generation_id and job.generation_id in image_counts:
        return image_counts[job.generation_id]
    progress = job.progress_json or {}
    completed_ids = progress.get("completed_image_ids") or []
    if completed_ids:
        return len(completed_ids)
    try:
        return max(0, int(progress.get("current") or 0))
    except (TypeError, ValueError):
        return 0


async def job_refund_totals(db: AsyncSession, job_ids: Iterable[str]) -> Dict[str, int]:
    """Credits already returned per job through the explicit refund path."""
    ids = [job_id for job_id in job_ids if job_id]
    if not ids:
        return {}
    result = await db.execute(
        select(UsageRecord.reference_id, func.sum(UsageRecord.credits_used))
        .where(UsageRecord.reference_type == "job_refund", UsageRecord.reference_id.in_(ids))
        .group_by(UsageRecord.reference_id)
    )
    return {job_id: abs(int(total or 0)) for job_id, total in result.all()}


async def refund_generation_job(
    team_id: str,
    user_id: Optional[str],
    job_id: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Refund the images a failed or canceled job did not produce. At most once per job."""
    job = await get_generation_job(team_id, job_id, db)
    if job.status not in REFUNDABLE_STATUSES:
        raise InvalidJobStateError("refund", job.status)

    if job.id in await job_refund_totals(db, [job.id]):
        raise ConflictError("Generation job has already been refunded")
    if job.batch_id:
        batch_result = await db.execute(select(Batch.status).where(Batch.id == job.batch_id))
        if batch_result.scalar_one_or_none() == "canceled":
            raise ConflictError("Generation job was already reconciled when its batch was canceled")

    image_counts = await count_generated_images(db, [job.generation_id])
    expected = int(job.number_of_variations or 0)
    generated = generated_count_for_job(job, image_counts)
    to_refund = max(0, expected - generated)

    if to_refund > 0 and job.credits_id:
        await refund_credits(
            team_id,
            user_id,
            "image",
            to_refund,
            db,
            credits_id=job.credits_id,
            is_overage=bool(job.is_overage),
            reference_type="job_refund",
            reference_id=job.id,
        )
    else:
        to_refund = 0
    return {
        "job_id": job.id,
        "refunded": to_refund,
        "expected": expected,
        "generated": generated,
        "credits_id": job.credits_id,
    }


async def list_runnable_generation_job_ids(db: AsyncSession, *, limit: int) -> List[str]:
    """Queued jobs oldest first, skipping jobs whose batch is paused or canceled."""
    result = await db.execute(
        select(GenerationJob.id)
        .outerjoin(Batch, Batch.id == GenerationJob.batch_id)
        .where(
            GenerationJob.status == "queued",
            (Batch.id.is_(None)) | (Batch.status.not_in(BLOCKING_BATCH_STATUSES)),
        )
        .order_by(GenerationJob.created_at.asc())
        .limit(max(1, int(limit)))
    )
    return list(result.scalars().all())


def _build_request(job: GenerationJob) -> GenerationRequest:
    payload = parse_job_payload(job.payload_json)
    if isinstance(payload, ImageEditPayload):
        prompts = [payload.instruction]
        source = {
            "base_image_file_id": payload.base_image_file_id,
            "reference_image_file_ids": payload.reference_image_file_ids,
        }
    else:
        prompts = build_prompts(payload)
        source = {
            "product_image_file_ids": payload.product_image_file_ids,
            "model_image_file_id": payload.model_image_file_id,
            "background_image_file_id": payload.background_image_file_id,
            "moodboard_id": payload.moodboard_id,
        }
    return GenerationRequest(
        job_id=job.id,
        team_id=job.team_id,
        variant_id=job.variant_id,
        job_type=payload.type,
        prompts=prompts,
        input=source,
    )


async def _is_canceled(job_id: str) -> bool:
    async with async_session_maker() as db:
        result = await db.execute(
            select(GenerationJob.status, Batch.status)
            .outerjoin(Batch, Batch.id == GenerationJob.batch_id)
            .where(GenerationJob.id == job_id)
        )
        row = result.first()
    if row is None:
        return True
    job_status, batch_status = row
    return job_status == "canceled" or batch_status == "canceled"


async def _store_output(job: GenerationJob, image_urls: List[str]) -> Dict[str, Any]:
    async with async_session_maker() as db:
        generation = Generation(team_id=job.team_id, job_id=job.id, variant_id=job.variant_id, status="ready")
        db.add(generation)
        await db.flush()
        image_ids: List[str] = []
        for position, url in enumerate(image_urls):
            image = GeneratedImage(
                team_id=job.team_id,
                generation_id=generation.id,
                url=url,
                position=position,
            )
            db.add(image)
            await db.flush()
            image_ids.append(image.id)

        progress = {"current": len(image_ids), "total": len(image_ids), "completed_image_ids": image_ids}
        await complete_generation_job(job.id, db, generation_id=generation.id, progress=progress)
        await refresh_batch_status(job.batch_id, db)
        status_result = await db.execute(select(GenerationJob.status).where(GenerationJob.id == job.id))
        final_status = status_result.scalar_one()
    return {
        "job_id": job.id,
        "status": final_status,
        "generation_id": generation.id,
        "images": len(image_ids),
    }


async def process_generation_job(job_id: str, generator: Optional[BaseGenerator] = None) -> Dict[str, Any]:
    """Run one queued job to a terminal state."""
    async with async_session_maker() as db:
        result = await db.execute(select(GenerationJob).where(GenerationJob.id == job_id))
        job = result.scalar_one_or_none()
        if not job:
            logger.warning("Generation job %s not found", job_id)
            return {"job_id": job_id, "status": "missing", "skipped": True}
        if job.status != "queued":
            return {"job_id": job_id, "status": job.status, "skipped": True}
        if job.batch_id:
            batch_result = await db.execute(select(Batch.status).where(Batch.id == job.batch_id))
            batch_status = batch_result.scalar_one_or_none()
            if batch_status in BLOCKING_BATCH_STATUSES:
                logger.info("Skipping generation job %s: batch %s is %s", job_id, job.batch_id, batch_status)
                return {"job_id": job_id, "status": job.status, "skipped": True, "reason": f"batch_{batch_status}"}

        if not await mark_generation_job_running(job.id, db):
            return {"job_id": job_id, "status": "claimed_elsewhere", "skipped": True}
        await refresh_batch_status(job.batch_id, db)

    try:
        request = _build_request(job)
    except Exception as exc:
        logger.exception("Generation job %s has an invalid payload: %s", job_id, exc)
        async with async_session_maker() as db:
            await fail_generation_job(job_id, db, error=str(exc))
            await refresh_batch_status(job.batch_id, db)
        return {"job_id": job_id, "status": "failed", "error": str(exc)}

    async def on_progress(current: int, total: int) -> None:
        async with async_session_maker() as db:
            await update_generation_job_progress(job_id, db, current=current, total=total)

    backend = generator or get_generator()
    token = CancellationToken(lambda: _is_canceled(job_id))
    try:
        output = await backend.generate(request, cancel_token=token, on_progress=on_progress)
    except GenerationCanceledError:
        async with async_session_maker() as db:
            await _transition(db, job_id, ACTIVE_STATUSES, status="canceled", completed_at=_now())
            await db.commit()
            await refresh_batch_status(job.batch_id, db)
        logger.info("Generation job %s stopped after cancellation", job_id)
        return {"job_id": job_id, "status": "canceled"}
    except Exception as exc:
        logger.exception("Generation job %s failed: %s", job_id, exc)
        async with async_session_maker() as db:
            await fail_generation_job(job_id, db, error=str(exc))
            await refresh_batch_status(job.batch_id, db)
        return {"job_id": job_id, "status": "failed", "error": str(exc)}

    stored = await _store_output(job, output.image_urls)
    logger.info("Generation job %s finished as %s with %s images", job_id, stored["status"], stored["images"])
    return stored


def process_generation_job_entrypoint(job_id: str) -> Dict[str, Any]:
    """RQ worker entrypoint for generation jobs."""
    return asyncio.run(process_generation_job(job_id))


def serialize_generation_job(job: GenerationJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "team_id": job.team_id,
        "product_id": job.product_id,
        "variant_id": job.variant_id,
        "type": job.type,
        "status": job.status,
        "batch_id": job.batch_id,
        "generation_id": job.generation_id,
        "progress": job.progress_json or _initial_progress(job.number_of_variations or 0),
        "error": job.error_message,
        "number_of_variations": job.number_of_variations,
        "credits_id": job.credits_id,
        "is_overage": bool(job.is_overage),
        "retry_of_job_id": job.retry_of_job_id,
        "retry_attempt": job.retry_attempt,
        "payload": job.payload_json,
        "queue_job_id": job.queue_job_id,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
