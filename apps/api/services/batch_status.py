"""Batch status derivation from the statuses of its generation jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.batch import Batch
from models.generation import GeneratedImage
from models.generation_job import GenerationJob

JOB_STATUSES = ("queued", "running", "success", "failed", "canceled")
DONE_STATUSES = ("success", "failed", "canceled")
STICKY_BATCH_STATUSES = ("paused", "canceled")


async def aggregate_status(team_id: str, batch_id: str, db: AsyncSession) -> Dict[str, int]:
    """Count the batch's jobs per status, plus ``total`` and ``done``."""
    result = await db.execute(
        select(GenerationJob.status, func.count(GenerationJob.id))
        .where(GenerationJob.team_id == team_id, GenerationJob.batch_id == batch_id)
        .group_by(GenerationJob.status)
    )
    counts = {status: 0 for status in JOB_STATUSES}
    for status, count in result.all():
        if status in counts:
            counts[status] = int(count)
    counts["total"] = sum(counts[status] for status in JOB_STATUSES)
    counts["done"] = sum(counts[status] for status in DONE_STATUSES)
    return counts


def derive_batch_status(stored: str, counts: Mapping[str, int]) -> str:
    if stored in STICKY_BATCH_STATUSES:
        return stored
    total = int(counts.get("total", 0))
    if total == 0:
        return stored
    queued = int(counts.get("queued", 0))
    running = int(counts.get("running", 0))
    done = int(counts.get("done", 0))
    if running > 0 or (queued > 0 and done > 0):
        return "running"
    if queued == total:
        return "queued"
    if int(counts.get("success", 0)) == 0 and int(counts.get("failed", 0)) > 0:
        return "failed"
    return "success"


async def refresh_batch_status(batch_id: Optional[str], db: AsyncSession) -> Optional[str]:
    """Re-derive and persist a batch's display status. Returns the new status."""
    if not batch_id:
        return None
    result = await db.execute(select(Batch).where(Batch.id == batch_id))
    batch = result.scalar_one_or_none()
    if not batch:
        return None

    counts = await aggregate_status(batch.team_id, batch.id, db)
    derived = derive_batch_status(batch.status, counts)
    image_count = await _count_batch_images(batch.id, db)
    if derived != batch.status or image_count != batch.image_count:
        now = datetime.now(timezone.utc)
        batch.status = derived
        batch.image_count = image_count
        batch.updated_at = now
        if derived in ("success", "failed") and batch.completed_at is None:
            batch.completed_at = now
        await db.commit()
    return derived


async def _count_batch_images(batch_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(GeneratedImage.id))
        .join(GenerationJob, GenerationJob.generation_id == GeneratedImage.generation_id)
        .where(GenerationJob.batch_id == batch_id)
    )
    return int(result.scalar() or 0)
