"""Commerce router: catalog sync for connected store accounts."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.catalog_sync import create_sync_job, get_latest_sync_job, serialize_sync_job

router = APIRouter()


class StartSyncRequest(BaseModel):
    create_canonical: bool = False


@router.post("/accounts/{account_id}/sync", status_code=202)
async def start_catalog_sync(
    account_id: str,
    request: Optional[StartSyncRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    job = await create_sync_job(
        auth.team_id,
        account_id,
        db,
        create_canonical=request.create_canonical if request else False,
    )
    return serialize_sync_job(job)


@router.get("/accounts/{account_id}/sync")
async def latest_catalog_sync(
    account_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    job = await get_latest_sync_job(auth.team_id, account_id, db)
    return {"job": serialize_sync_job(job) if job else None}
