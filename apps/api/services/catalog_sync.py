"""Resumable catalog sync: one page per job per invocation, cursor persisted between runs."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.commerce_account import CommerceAccount
from models.external_catalog import ExternalProduct, ExternalVariant
from models.sync_job import SyncJob
from services.catalog import (
    BaseCatalogProvider,
    CatalogProviderError,
    ExternalProductData,
    ExternalVariantData,
    get_catalog_provider,
)
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[CommerceAccount], BaseCatalogProvider]
Clock = Callable[[], float]


@dataclass
class SyncStepResult:
    progress: Dict[str, Any]
    is_complete: bool
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _initial_progress() -> Dict[str, Any]:
    return {"cursor": None, "processed": 0, "variants_processed": 0, "pages": 0}


def _progress_of(job: SyncJob) -> Dict[str, Any]:
    progress = _initial_progress()
    progress.update(job.progress_json or {})
    return progress


async def _get_account(team_id: str, account_id: str, db: AsyncSession) -> CommerceAccount:
    result = await db.execute(
        select(CommerceAccount).where(CommerceAccount.id == account_id, CommerceAccount.team_id == team_id)
    )
    account = result.scalar_one_or_none()
    if not account:
        raise NotFoundError("Commerce account not found")
    return account


async def create_sync_job(
    team_id: str,
    account_id: str,
    db: AsyncSession,
    *,
    create_canonical: bool = False,
) -> SyncJob:
    account = await _get_account(team_id, account_id, db)
    if account.status != "connected":
        raise ValidationError("Commerce account is not connected")

    active = await db.execute(
        select(SyncJob.id).where(
            SyncJob.account_id == account.id,
            SyncJob.type == "catalog_sync",
            SyncJob.status.in_(("queued", "running")),
        )
    )
    if active.first() is not None:
        raise ConflictError("A catalog sync is already in progress for this account")

    job = SyncJob(
        team_id=team_id,
        account_id=account.id,
        provider=account.provider,
        type="catalog_sync",
        status="queued",
        progress_json=_initial_progress(),
        metadata_json={"create_canonical": bool(create_canonical)},
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info("Catalog sync %s queued for account %s", job.id, account.id)
    return job


async def get_latest_sync_job(team_id: str, account_id: str, db: AsyncSession) -> Optional[SyncJob]:
    await _get_account(team_id, account_id, db)
    result = await db.execute(
        select(SyncJob)
        .where(SyncJob.account_id == account_id, SyncJob.team_id == team_id, SyncJob.type == "catalog_sync")
        .order_by(SyncJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_sync_jobs(team_id: str, account_id: str, db: AsyncSession, *, limit: int = 10) -> List[SyncJob]:
    result = await db.execute(
        select(SyncJob)
        .where(SyncJob.account_id == account_id, SyncJob.team_id == team_id)
        .order_by(SyncJob.created_at.desc())
        .limit(max(1, min(int(limit), 50)))
    )
    return list(result.scalars().all())


async def upsert_external_products(
    db: AsyncSession,
    team_id: str,
    account_id: str,
    products: Sequence[ExternalProductData],
) -> int:
    if not products:
        return 0
    ids = [item.external_product_id for item in products]
    result = await db.execute(
        select(ExternalProduct).where(
            ExternalProduct.account_id == account_id,
            ExternalProduct.external_product_id.in_(ids),
        )
    )
    existing = {row.external_product_id: row for row in result.scalars().all()}
    for item in products:
        row = existing.get(item.external_product_id)
        if row is None:
            row = ExternalProduct(team_id=team_id, account_id=account_id, external_product_id=item.external_product_id)
            db.add(row)
            existing[item.external_product_id] = row
        row.title = item.title
        row.handle = item.handle
        row.status = item.status
        row.product_type = item.product_type
        row.vendor = item.vendor
        row.tags = item.tags
        row.featured_image_url = item.featured_image_url
        row.raw_json = item.raw
    return len(products)


async def upsert_external_variants(
    db: AsyncSession,
    team_id: str,
    account_id: str,
    variants: Sequence[ExternalVariantData],
) -> int:
    if not variants:
        return 0
    ids = [item.external_variant_id for item in variants]
    result = await db.execute(
        select(ExternalVariant).where(
            ExternalVariant.account_id == account_id,
            ExternalVariant.external_variant_id.in_(ids),
        )
    )
    existing = {row.external_variant_id: row for row in result.scalars().all()}
    for item in variants:
        row = existing.get(item.external_variant_id)
        if row is None:
            row = ExternalVariant(team_id=team_id, account_id=account_id, external_variant_id=item.external_variant_id)
            db.add(row)
            existing[item.external_variant_id] = row
        row.external_product_id = item.external_product_id
        row.title = item.title
        row.sku = item.sku
        row.price = item.price
        row.selected_options_json = item.selected_options
        row.featured_image_url = item.featured_image_url
        row.raw_json = item.raw
    return len(variants)


async def run_sync_step(
    job: SyncJob,
    db: AsyncSession,
    provider: BaseCatalogProvider,
    *,
    page_size: Optional[int] = None,
) -> SyncStepResult:
    """Fetch and store one page at the job's persisted cursor.

    Provider errors end the sync with an error; anything else propagates.
    """
    progress = _progress_of(job)
    try:
        page = await provider.fetch_page(progress.get("cursor"), int(page_size or settings.SYNC_PAGE_SIZE))
    except CatalogProviderError as exc:
        return SyncStepResult(progress=progress, is_complete=True, error=str(exc))

    products = await upsert_external_products(db, job.team_id, job.account_id, page.products)
    variants = await upsert_external_variants(db, job.team_id, job.account_id, page.variants)
    await db.flush()

    progress = {
        "cursor": page.next_cursor,
        "processed": int(progress.get("processed") or 0) + products,
        "variants_processed": int(progress.get("variants_processed") or 0) + variants,
        "pages": int(progress.get("pages") or 0) + 1,
    }
    return SyncStepResult(progress=progress, is_complete=page.next_cursor is None)


async def _claim(job_id: str, db: AsyncSession) -> bool:
    now = _now()
    result = await db.execute(
        update(SyncJob)
        .where(SyncJob.id == job_id, SyncJob.status == "queued")
        .values(status="running", started_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (result.rowcount or 0) == 1


async def _process_claimed(job_id: str, provider_factory: ProviderFactory) -> Dict[str, Any]:
    async with async_session_maker() as db:
        result = await db.execute(select(SyncJob).where(SyncJob.id == job_id))
        job = result.scalar_one()
        job_type = job.type
        try:
            account_result = await db.execute(select(CommerceAccount).where(CommerceAccount.id == job.account_id))
            account = account_result.scalar_one_or_none()
            if not account:
                raise CatalogProviderError("Commerce account no longer exists")
            step = await run_sync_step(job, db, provider_factory(account))
        except Exception as exc:
            await db.rollback()
            logger.exception("Catalog sync %s failed: %s", job_id, exc)
            job.status = "failed"
            job.error_message = str(exc)[:1000]
            job.completed_at = _now()
            job.updated_at = _now()
            await db.commit()
            return {"id": job_id, "type": job_type, "status": "failed", "error": str(exc)}

        job.progress_json = step.progress
        job.updated_at = _now()
        if step.is_complete:
            job.status = "failed" if step.error else "success"
            job.error_message = step.error
            job.completed_at = _now()
            await db.commit()
            logger.info(
                "Catalog sync %s completed as %s after %s products",
                job_id,
                job.status,
                step.progress["processed"],
            )
            entry = {"id": job_id, "type": job.type, "status": job.status}
            if step.error:
                entry["error"] = step.error
            return entry

        job.status = "queued"
        await db.commit()
        logger.info("Catalog sync %s continuing, %s products so far", job_id, step.progress["processed"])
        return {"id": job_id, "type": job.type, "status": "continued"}


async def run_sync_invocation(
    *,
    max_jobs: Optional[int] = None,
    budget_seconds: Optional[float] = None,
    safety_margin_seconds: Optional[float] = None,
    provider_factory: Optional[ProviderFactory] = None,
    clock: Optional[Clock] = None,
) -> List[Dict[str, Any]]:
    """Advance up to ``max_jobs`` queued syncs by one page each, oldest first."""
    clock = clock or time.monotonic
    started = clock()
    limit = int(max_jobs if max_jobs is not None else settings.SYNC_JOBS_PER_INVOCATION)
    budget = float(budget_seconds if budget_seconds is not None else settings.JOB_INVOCATION_BUDGET_SECONDS)
    margin = float(
        safety_margin_seconds if safety_margin_seconds is not None else settings.SYNC_SAFETY_MARGIN_SECONDS
    )
    factory = provider_factory or get_catalog_provider

    async with async_session_maker() as db:
        result = await db.execute(
            select(SyncJob.id)
            .where(SyncJob.status == "queued")
            .order_by(SyncJob.created_at.asc())
            .limit(max(1, limit))
        )
        job_ids = list(result.scalars().all())

    results: List[Dict[str, Any]] = []
    for job_id in job_ids:
        if clock() - started > budget - margin:
            logger.info("Sync invocation approaching its time budget, stopping early")
            break
        async with async_session_maker() as db:
            if not await _claim(job_id, db):
                continue
        results.append(await _process_claimed(job_id, factory))
    return results


def serialize_sync_job(job: SyncJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "account_id": job.account_id,
        "provider": job.provider,
        "type": job.type,
        "status": job.status,
        "progress": _progress_of(job),
        "error": job.error_message,
        "metadata": job.metadata_json or {},
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
