"""
Content Shop API - FastAPI Backend
Metered credits, generation jobs, batches and catalog sync.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    credits,
    batches,
    generation_jobs,
    commerce,
    cron,
)
from routers.errors import register_exception_handlers
from services.job_queue import recover_stalled_generation_jobs, recover_stalled_sync_jobs
from services.job_runner import process_jobs_tick


async def _periodic_job_tick() -> None:
    interval_seconds = max(int(settings.JOB_TICK_INTERVAL_SECONDS), 0)
    if interval_seconds <= 0:
        return
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            result = await process_jobs_tick()
            if result.get("processed"):
                print(f"⚙️ Job tick: processed={result['processed']} elapsed_ms={result['elapsed_ms']}")
        except Exception as exc:
            print(f"⚠️ Job tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Content Shop API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered_generation = await recover_stalled_generation_jobs(settings.STALLED_JOB_MINUTES)
        if recovered_generation:
            print(f"♻️ Marked {recovered_generation} stalled generation jobs as failed after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled generation job recovery skipped: {exc}")
    try:
        recovered_sync = await recover_stalled_sync_jobs(settings.STALLED_JOB_MINUTES)
        if recovered_sync:
            print(f"♻️ Requeued {recovered_sync} stalled catalog sync jobs after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled sync job recovery skipped: {exc}")
    tick_task = None
    if int(settings.JOB_TICK_INTERVAL_SECONDS) > 0:
        tick_task = asyncio.create_task(_periodic_job_tick())
        print(f"📅 In-process job tick enabled (every {int(settings.JOB_TICK_INTERVAL_SECONDS)} s).")
    yield
    # Shutdown
    if tick_task is not None:
        tick_task.cancel()
        try:
            await tick_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Content Shop API",
    description="Metered product image generation with batches and store catalog sync",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(credits.router, prefix="/team", tags=["Credits"])
app.include_router(batches.router, prefix="/batches", tags=["Batches"])
app.include_router(generation_jobs.router, prefix="/generation-jobs", tags=["Generation Jobs"])
app.include_router(commerce.router, prefix="/commerce", tags=["Commerce"])
app.include_router(cron.router, prefix="/cron", tags=["Cron"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Content Shop API",
        "version": "0.1.0",
        "status": "running"
    }
