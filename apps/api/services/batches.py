"""Batch coordinator: grouped generation jobs with pause, resume and refunding cancel."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.batch import Batch
from models.generation_job import GenerationJob
from services.batch_status import refresh_batch_status
from services.credits import refund_credits, reserve_credits
from services.errors import InvalidBatchStateError, NotFoundError, ValidationError
from services.generation_jobs import (
    build_generation_job,
    count_generated_images,
    enqueue_jobs,
    generated_count_for_job,
    job_refund_totals,
)
from services.job_payloads import ImageGenerationPayload, parse_job_payload

logger = logging.getLogger(__name__)

MAX_BATCH_VARIANTS = 100
PAUSABLE_STATUSES = ("queued", "running")
BATCH_SETTING_KEYS = (
    "prompts",
    "custom_instructions",
    "model_image_file_id",
    "background_image_file_id",
    "moodboard_id",
    "purpose",
)


def _build_variant_payloads(
    variants: Sequence[Dict[str, Any]],
    number_of_variations: int,
    settings: Dict[str, Any],
) -> List[ImageGenerationPayload]:
    shared = {key: settings[key] for key in BATCH_SETTING_KEYS if settings.get(key) is not None}
    payloads: List[ImageGenerationPayload] = []
    for variant in variants:
        payload = parse_job_payload(
            {
                **shared,
                "type": "generation",
                "number_of_variations": number_of_variations,
                "product_image_file_ids": variant.get("product_image_file_ids") or [],
            }
        )
        payloads.append(payload)
    return payloads


async def create_batch(
    team_id: str,
    user_id: Optional[str],
    db: AsyncSession,
    *,
    name: str,
    variants: Sequence[Dict[str, Any]],
    number_of_variations: int,
    settings: Optional[Dict[str, Any]] = None,
    folder_id: Optional[str] = None,
    confirm_overage: bool = False,
) -> Batch:
    """Reserve credits for every variant up front, then create the batch and its jobs."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Batch name is required")
    if not variants:
        raise ValidationError("A batch needs at least one variant")
    if len(variants) > MAX_BATCH_VARIANTS:
        raise ValidationError(f"A batch can include at most {MAX_BATCH_VARIANTS} variants")
    for variant in variants:
        if not variant.get("product_id") or not variant.get("variant_id"):
            raise ValidationError("Each batch variant needs product_id and variant_id")
    variant_ids = [str(variant["variant_id"]) for variant in variants]
    if len(set(variant_ids)) != len(variant_ids):
        raise ValidationError("Batch variants must be unique")

    settings = dict(settings or {})
    payloads = _build_variant_payloads(variants, number_of_variations, settings)
    total_images = sum(payload.credit_cost for payload in payloads)

    batch_id = str(uuid.uuid4())
    check = await reserve_credits(
        team_id,
        user_id,
        "image",
        total_images,
        db,
        confirm_overage=confirm_overage,
        reference_type="batch",
        reference_id=batch_id,
    )

    batch = Batch(
        id=batch_id,
        team_id=team_id,
        name=name[:255],
        status="queued",
        settings_json={**settings, "number_of_variations": number_of_variations},
        variant_count=len(variants),
        image_count=0,
        folder_id=folder_id,
    )
    db.add(batch)
    jobs = [
        build_generation_job(
            team_id,
            product_id=str(variant["product_id"]),
            variant_id=str(variant["variant_id"]),
            payload=payload,
            credits_id=check.credits_id,
            is_overage=check.is_overage,
            batch_id=batch_id,
        )
        for variant, payload in zip(variants, payloads)
    ]
    db.add_all(jobs)
    await db.commit()
    await db.refresh(batch)

    await enqueue_jobs(jobs, db)
    logger.info("Batch %s created with %s jobs (%s images)", batch.id, len(jobs), total_images)
    return batch


async def get_batch(team_id: str, batch_id: str, db: AsyncSession) -> Batch:
    result = await db.execute(select(Batch).where(Batch.id == batch_id, Batch.team_id == team_id))
    batch = result.scalar_one_or_none()
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


async def list_batches(team_id: str, db: AsyncSession, *, limit: int = 50) -> List[Batch]:
    result = await db.execute(
        select(Batch)
        .where(Batch.team_id == team_id, Batch.status != "canceled")
        .order_by(Batch.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    return list(result.scalars().all())


async def _set_status(batch: Batch, status: str, db: AsyncSession) -> Batch:
    batch.status = status
    batch.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(batch)
    return batch


async def pause_batch(team_id: str, batch_id: str, db: AsyncSession) -> Batch:
    batch = await get_batch(team_id, batch_id, db)
    if batch.status not in PAUSABLE_STATUSES:
        raise InvalidBatchStateError("pause", batch.status)
    batch = await _set_status(batch, "paused", db)
    logger.info("Batch %s paused", batch.id)
    return batch


async def resume_batch(team_id: str, batch_id: str, db: AsyncSession) -> Batch:
    """Resume a paused batch and hand its queued jobs back to the queue."""
    batch = await get_batch(team_id, batch_id, db)
    if batch.status != "paused":
        raise InvalidBatchStateError("resume", batch.status)
    batch = await _set_status(batch, "queued", db)
    await refresh_batch_status(batch.id, db)
    await db.refresh(batch)

    result = await db.execute(
        select(GenerationJob)
        .where(GenerationJob.batch_id == batch.id, GenerationJob.status == "queued")
        .order_by(GenerationJob.created_at.asc())
    )
    queued_jobs = list(result.scalars().all())
    await enqueue_jobs(queued_jobs, db)
    logger.info("Batch %s resumed with %s queued jobs", batch.id, len(queued_jobs))
    return batch


async def cancel_batch(
    team_id: str,
    user_id: Optional[str],
    batch_id: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Cancel a batch and refund the credits for images that were never generated.

    Accounting is read before anything is mutated. Running jobs are left to
    finish; their unproduced images are refunded here, and the executor stops
    them through their cancellation token. Credits a job already got back
    through its own refund are not returned again. Refunds go to the period
    charged by the first job that carries one.
    """
    batch = await get_batch(team_id, batch_id, db)
    if batch.status == "canceled":
        raise InvalidBatchStateError("cancel", batch.status)

    result = await db.execute(
        select(GenerationJob)
        .where(GenerationJob.team_id == team_id, GenerationJob.batch_id == batch.id)
        .order_by(GenerationJob.created_at.asc())
    )
    jobs = list(result.scalars().all())
    expected = sum(int(job.number_of_variations or 0) for job in jobs)
    image_counts = await count_generated_images(db, [job.generation_id for job in jobs])
    generated = sum(generated_count_for_job(job, image_counts) for job in jobs)
    already_refunded = sum((await job_refund_totals(db, [job.id for job in jobs])).values())
    not_generated = max(0, expected - generated - already_refunded)
    charged = next((job for job in jobs if job.credits_id), None)

    now = datetime.now(timezone.utc)
    batch.status = "canceled"
    batch.completed_at = now
    batch.updated_at = now
    stopped = await db.execute(
        update(GenerationJob)
        .where(GenerationJob.batch_id == batch.id, GenerationJob.status == "queued")
        .values(status="canceled", completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    canceled_jobs = int(stopped.rowcount or 0)
    await db.commit()

    refunded = 0
    if charged is not None and not_generated > 0:
        await refund_credits(
            team_id,
            user_id,
            "image",
            not_generated,
            db,
            credits_id=charged.credits_id,
            is_overage=bool(charged.is_overage),
            reference_type="batch_refund",
            reference_id=batch.id,
        )
        refunded = not_generated

    logger.info(
        "Batch %s canceled: %s jobs stopped, %s of %s images refunded",
        batch.id,
        canceled_jobs,
        refunded,
        expected,
    )
    return {
        "batch_id": batch.id,
        "refunded": refunded,
        "expected": expected,
        "generated": generated,
        "already_refunded": already_refunded,
        "canceled_jobs": canceled_jobs,
        "credits_id": charged.credits_id if charged is not None else None,
    }


def serialize_batch(batch: Batch, progress: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    data = {
        "id": batch.id,
        "name": batch.name,
        "status": batch.status,
        "settings": batch.settings_json or {},
        "variant_count": batch.variant_count,
        "image_count": batch.image_count,
        "folder_id": batch.folder_id,
        "created_at": batch.created_at.isoformat() if batch.created_at else None,
        "updated_at": batch.updated_at.isoformat() if batch.updated_at else None,
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
    }
    if progress is not None:
        data["progress"] = progress
    return data
