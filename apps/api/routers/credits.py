"""Team credits router: balance, overage settings and usage history."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.credits import (
    get_credit_balance,
    list_credit_history,
    list_usage_records,
    serialize_credit_period,
    serialize_usage_record,
    update_overage_settings,
)
from services.plans import get_plan

router = APIRouter()


class OverageSettingsRequest(BaseModel):
    enabled: Optional[bool] = None
    limit_cents: Optional[int] = Field(default=None, ge=0)
    clear_limit: bool = False


def overage_confirmed(body_flag: bool, header_value: Optional[str]) -> bool:
    """Overage may be confirmed in the request body or with ``X-Confirm-Overage: true``."""
    return bool(body_flag) or str(header_value or "").strip().lower() in {"1", "true", "yes"}


async def confirm_overage_header(x_confirm_overage: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_confirm_overage


@router.get("/credits")
async def team_credits(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    balance = await get_credit_balance(auth.team_id, db)
    if balance is None:
        return {"has_subscription": False}
    plan = get_plan(balance["plan_tier"])
    balance["plan_name"] = plan["name"] if plan else None
    return balance


@router.patch("/credits/overage")
async def team_overage_settings(
    request: OverageSettingsRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    team = await update_overage_settings(
        auth.team_id,
        db,
        enabled=request.enabled,
        limit_cents=request.limit_cents,
        clear_limit=request.clear_limit,
    )
    return {
        "overage_enabled": bool(team.overage_enabled),
        "overage_limit_cents": team.overage_limit_cents,
    }


@router.get("/usage")
async def team_usage(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    usage_type: Optional[Literal["image", "text"]] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    records = await list_usage_records(auth.team_id, db, limit=limit, offset=offset, usage_type=usage_type)
    return {"items": [serialize_usage_record(record) for record in records], "limit": limit, "offset": offset}


@router.get("/credits/history")
async def team_credit_history(
    limit: int = Query(default=12, ge=1, le=60),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    periods = await list_credit_history(auth.team_id, db, limit=limit)
    return {"items": [serialize_credit_period(period) for period in periods]}
