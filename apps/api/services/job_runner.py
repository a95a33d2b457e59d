"""Executor tick shared by the cron endpoint and the in-process periodic loop."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from config import settings
from database import async_session_maker
from services.catalog_sync import ProviderFactory, run_sync_invocation
from services.generation_jobs import list_runnable_generation_job_ids, process_generation_job
from services.generator import BaseGenerator

logger = logging.getLogger(__name__)


async def process_jobs_tick(
    *,
    budget_seconds: Optional[float] = None,
    clock: Optional[Callable[[], float]] = None,
    provider_factory: Optional[ProviderFactory] = None,
    generator: Optional[BaseGenerator] = None,
) -> Dict[str, Any]:
    """Advance queued sync jobs, then queued generation jobs, inside one time budget."""
    clock = clock or time.monotonic
    started = clock()
    budget = float(budget_seconds if budget_seconds is not None else settings.JOB_INVOCATION_BUDGET_SECONDS)

    results: List[Dict[str, Any]] = await run_sync_invocation(
        max_jobs=settings.SYNC_JOBS_PER_INVOCATION,
        budget_seconds=budget,
        safety_margin_seconds=settings.SYNC_SAFETY_MARGIN_SECONDS,
        provider_factory=provider_factory,
        clock=clock,
    )

    async with async_session_maker() as db:
        job_ids = await list_runnable_generation_job_ids(db, limit=settings.GENERATION_JOBS_PER_INVOCATION)
    logger.info("Job tick found %s runnable generation jobs", len(job_ids))

    for job_id in job_ids:
        if clock() - started > budget - settings.GENERATION_SAFETY_MARGIN_SECONDS:
            logger.info("Job tick approaching its time budget, stopping before generation jobs")
            break
        try:
            outcome = await process_generation_job(job_id, generator=generator)
        except Exception as exc:
            logger.exception("Generation job %s crashed the executor: %s", job_id, exc)
            results.append({"id": job_id, "type": "generation", "status": "failed", "error": str(exc)})
            continue
        if outcome.get("skipped"):
            continue
        entry = {"id": job_id, "type": "generation", "status": outcome.get("status")}
        if outcome.get("error"):
            entry["error"] = outcome["error"]
        results.append(entry)

    return {
        "processed": len(results),
        "results": results,
        "elapsed_ms": int((clock() - started) * 1000),
    }
