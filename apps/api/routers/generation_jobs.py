"""Generation jobs router."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.credits import confirm_overage_header, overage_confirmed
from routers.rate_limit import team_rate_limit
from services.generation_jobs import (
    cancel_generation_job,
    count_active_generation_jobs,
    get_generation_job,
    list_generation_jobs,
    refund_generation_job,
    retry_generation_job,
    serialize_generation_job,
    submit_generation_job,
)
from services.job_payloads import JobPayload

router = APIRouter()

JobStatus = Literal["queued", "running", "success", "failed", "canceled"]


class SubmitGenerationJobRequest(BaseModel):
    product_id: str = Field(min_length=1)
    variant_id: str = Field(min_length=1)
    payload: JobPayload
    confirm_overage: bool = False


class RetryGenerationJobRequest(BaseModel):
    confirm_overage: bool = False


@router.post("", status_code=201)
async def submit_generation_job_route(
    request: SubmitGenerationJobRequest,
    _rate_limit: None = Depends(team_rate_limit("generation_job_create", limit=120, window_seconds=3600)),
    confirm_header: Optional[str] = Depends(confirm_overage_header),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    job = await submit_generation_job(
        auth.team_id,
        auth.user_id,
        db,
        product_id=request.product_id,
        variant_id=request.variant_id,
        payload=request.payload,
        confirm_overage=overage_confirmed(request.confirm_overage, confirm_header),
    )
    return serialize_generation_job(job)


@router.get("")
async def list_generation_jobs_route(
    variant_id: Optional[str] = Query(default=None),
    status: Optional[JobStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    jobs = await list_generation_jobs(auth.team_id, db, variant_id=variant_id, status=status, limit=limit)
    return {
        "items": [serialize_generation_job(job) for job in jobs],
        "active": await count_active_generation_jobs(auth.team_id, db),
    }


@router.get("/{job_id}")
async def get_generation_job_route(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return serialize_generation_job(await get_generation_job(auth.team_id, job_id, db))


@router.post("/{job_id}/retry", status_code=201)
async def retry_generation_job_route(
    job_id: str,
    request: Optional[RetryGenerationJobRequest] = None,
    confirm_header: Optional[str] = Depends(confirm_overage_header),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    body_flag = request.confirm_overage if request else False
    job = await retry_generation_job(
        auth.team_id,
        auth.user_id,
        job_id,
        db,
        confirm_overage=overage_confirmed(body_flag, confirm_header),
    )
    return serialize_generation_job(job)


@router.post("/{job_id}/cancel")
async def cancel_generation_job_route(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    job = await cancel_generation_job(auth.team_id, auth.user_id, job_id, db)
    return serialize_generation_job(job)


@router.post("/{job_id}/refund")
async def refund_generation_job_route(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await refund_generation_job(auth.team_id, auth.user_id, job_id, db)
