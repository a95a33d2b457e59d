"""Batches router: create, inspect, pause/resume and cancel grouped generation."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.credits import confirm_overage_header, overage_confirmed
from routers.rate_limit import team_rate_limit
from services.batch_status import aggregate_status
from services.batches import (
    cancel_batch,
    create_batch,
    get_batch,
    list_batches,
    pause_batch,
    resume_batch,
    serialize_batch,
)
from services.generation_jobs import list_generation_jobs, serialize_generation_job

router = APIRouter()


class BatchVariant(BaseModel):
    product_id: str = Field(min_length=1)
    variant_id: str = Field(min_length=1)
    product_image_file_ids: List[str] = Field(min_length=1, max_length=4)


class CreateBatchRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    variants: List[BatchVariant] = Field(min_length=1, max_length=100)
    number_of_variations: int = Field(ge=1, le=10)
    settings: Dict[str, Any] = Field(default_factory=dict)
    folder_id: Optional[str] = None
    confirm_overage: bool = False


class BatchActionRequest(BaseModel):
    action: Literal["pause", "resume"]


@router.post("", status_code=201)
async def create_batch_route(
    request: CreateBatchRequest,
    _rate_limit: None = Depends(team_rate_limit("batch_create", limit=30, window_seconds=3600)),
    confirm_header: Optional[str] = Depends(confirm_overage_header),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    batch = await create_batch(
        auth.team_id,
        auth.user_id,
        db,
        name=request.name,
        variants=[variant.model_dump() for variant in request.variants],
        number_of_variations=request.number_of_variations,
        settings=request.settings,
        folder_id=request.folder_id,
        confirm_overage=overage_confirmed(request.confirm_overage, confirm_header),
    )
    progress = await aggregate_status(auth.team_id, batch.id, db)
    return serialize_batch(batch, progress)


@router.get("")
async def list_batches_route(
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    batches = await list_batches(auth.team_id, db, limit=limit)
    items = []
    for batch in batches:
        items.append(serialize_batch(batch, await aggregate_status(auth.team_id, batch.id, db)))
    return {"items": items}


@router.get("/{batch_id}")
async def get_batch_route(
    batch_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    batch = await get_batch(auth.team_id, batch_id, db)
    progress = await aggregate_status(auth.team_id, batch.id, db)
    jobs = await list_generation_jobs(auth.team_id, db, batch_id=batch.id, limit=200)
    data = serialize_batch(batch, progress)
    data["jobs"] = [serialize_generation_job(job) for job in jobs]
    return data


@router.patch("/{batch_id}")
async def update_batch_route(
    batch_id: str,
    request: BatchActionRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if request.action == "pause":
        batch = await pause_batch(auth.team_id, batch_id, db)
    else:
        batch = await resume_batch(auth.team_id, batch_id, db)
    return serialize_batch(batch, await aggregate_status(auth.team_id, batch.id, db))


@router.delete("/{batch_id}")
async def cancel_batch_route(
    batch_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await cancel_batch(auth.team_id, auth.user_id, batch_id, db)
