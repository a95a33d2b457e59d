"""Scheduler entrypoint advancing queued sync and generation jobs."""

from fastapi import APIRouter, Depends

from routers.auth_scope import verify_cron_secret
from services.job_runner import process_jobs_tick

router = APIRouter()


@router.get("/process-jobs", dependencies=[Depends(verify_cron_secret)])
async def process_jobs():
    return await process_jobs_tick()
