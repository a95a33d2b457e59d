"""Credit ledger: per-team, per-period balances with metered overage."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_period import CreditPeriod
from models.team import Team
from models.usage_record import UsageRecord
from services.errors import (
    InsufficientCreditsError,
    NotFoundError,
    OverageConfirmationRequiredError,
    ValidationError,
)
from services.metering import report_overage_usage
from services.plans import PLANS, calculate_overage_cost, get_plan

logger = logging.getLogger(__name__)

USAGE_TYPES = ("image", "text")


@dataclass
class CreditCheckResult:
    allowed: bool
    remaining: int
    is_overage: bool = False
    overage_count: int = 0
    overage_cost: int = 0
    reason: Optional[str] = None
    credits_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _counter_names(usage_type: str) -> Tuple[str, str, str]:
    if usage_type not in USAGE_TYPES:
        raise ValidationError(f"usage_type must be one of {', '.join(USAGE_TYPES)}")
    return f"{usage_type}_included", f"{usage_type}_used", f"{usage_type}_overage_used"


def _positive_quantity(quantity: Any) -> int:
    try:
        count = int(quantity)
    except (TypeError, ValueError) as exc:
        raise ValidationError("quantity must be an integer") from exc
    if count < 1:
        raise ValidationError("quantity must be at least 1")
    return count


async def _get_team(team_id: str, db: AsyncSession) -> Optional[Team]:
    result = await db.execute(select(Team).where(Team.id == team_id))
    return result.scalar_one_or_none()


async def _lock_period(team_id: str, credits_id: str, db: AsyncSession) -> CreditPeriod:
    result = await db.execute(
        select(CreditPeriod)
        .where(CreditPeriod.id == credits_id, CreditPeriod.team_id == team_id)
        .with_for_update()
    )
    period = result.scalar_one_or_none()
    if not period:
        raise NotFoundError(f"Credit period {credits_id} not found")
    return period


async def get_current_period(
    team_id: str,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Optional[CreditPeriod]:
    """Return the period with period_start <= now < period_end, latest start first."""
    current = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(CreditPeriod)
        .where(
            CreditPeriod.team_id == team_id,
            CreditPeriod.period_start <= current,
            CreditPeriod.period_end > current,
        )
        .order_by(CreditPeriod.period_start.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def calculate_current_overage_spent(period: CreditPeriod, tier: str) -> int:
    plan = PLANS[tier]
    return int(period.image_overage_used or 0) * int(plan["overage_image_cents"]) + int(
        period.text_overage_used or 0
    ) * int(plan["overage_text_cents"])


async def check_credits(
    team_id: str,
    usage_type: str,
    quantity: int,
    db: AsyncSession,
) -> CreditCheckResult:
    """Check whether ``quantity`` units fit in the current period, splitting into overage if enabled."""
    count = _positive_quantity(quantity)
    included_attr, used_attr, _ = _counter_names(usage_type)

    period = await get_current_period(team_id, db)
    if not period:
        return CreditCheckResult(allowed=False, remaining=0, reason="no_subscription")

    remaining = int(getattr(period, included_attr) or 0) - int(getattr(period, used_attr) or 0)
    if remaining >= count:
        return CreditCheckResult(
            allowed=True,
            remaining=remaining - count,
            credits_id=period.id,
        )

    team = await _get_team(team_id, db)
    available = max(0, remaining)
    if team is not None and not team.overage_enabled:
        return CreditCheckResult(
            allowed=False,
            remaining=available,
            reason="overage_disabled",
            credits_id=period.id,
        )

    overage_count = count - available
    tier = (team.plan_tier or "").strip().lower() if team else ""
    if not get_plan(tier):
        return CreditCheckResult(
            allowed=False,
            remaining=available,
            reason="no_subscription",
            credits_id=period.id,
        )

    overage_cost = calculate_overage_cost(tier, usage_type, overage_count)
    if team.overage_limit_cents is not None:
        spent = calculate_current_overage_spent(period, tier)
        if spent + overage_cost > int(team.overage_limit_cents):
            return CreditCheckResult(
                allowed=False,
                remaining=available,
                is_overage=True,
                overage_count=overage_count,
                overage_cost=overage_cost,
                reason="overage_limit_exceeded",
                credits_id=period.id,
            )

    return CreditCheckResult(
        allowed=True,
        remaining=0,
        is_overage=True,
        overage_count=overage_count,
        overage_cost=overage_cost,
        credits_id=period.id,
    )


async def deduct_credits(
    team_id: str,
    user_id: Optional[str],
    usage_type: str,
    quantity: int,
    db: AsyncSession,
    *,
    is_overage: bool,
    credits_id: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> UsageRecord:
    """Charge ``quantity`` units against period ``credits_id`` and append one usage record.

    Must only follow a check that returned ``allowed=True``. With overage, the
    units that still fit the included allotment go to ``used`` and the excess
    to ``overage_used``.
    """
    count = _positive_quantity(quantity)
    included_attr, used_attr, overage_attr = _counter_names(usage_type)
    period = await _lock_period(team_id, credits_id, db)

    used = int(getattr(period, used_attr) or 0)
    if is_overage:
        in_plan = min(count, max(0, int(getattr(period, included_attr) or 0) - used))
    else:
        in_plan = count
    overage = count - in_plan

    setattr(period, used_attr, used + in_plan)
    if overage:
        setattr(period, overage_attr, int(getattr(period, overage_attr) or 0) + overage)
    period.updated_at = datetime.now(timezone.utc)

    record = UsageRecord(
        team_id=team_id,
        user_id=user_id,
        credit_period_id=period.id,
        usage_type=usage_type,
        credits_used=count,
        is_overage=bool(is_overage),
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(record)
    await db.commit()

    if overage:
        try:
            report_overage_usage(team_id, usage_type, overage)
        except Exception as exc:
            logger.warning("Overage report enqueue failed for team %s: %s", team_id, exc)
    return record


async def reserve_credits(
    team_id: str,
    user_id: Optional[str],
    usage_type: str,
    quantity: int,
    db: AsyncSession,
    *,
    confirm_overage: bool,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> CreditCheckResult:
    """Check then deduct. Overage charges require an explicit caller confirmation."""
    count = _positive_quantity(quantity)
    check = await check_credits(team_id, usage_type, count, db)
    if not check.allowed:
        raise InsufficientCreditsError(check, required=count)
    if check.is_overage and not confirm_overage:
        raise OverageConfirmationRequiredError(check, required=count)

    await deduct_credits(
        team_id,
        user_id,
        usage_type,
        count,
        db,
        is_overage=check.is_overage,
        credits_id=check.credits_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    return check


async def refund_credits(
    team_id: str,
    user_id: Optional[str],
    usage_type: str,
    quantity: Any,
    db: AsyncSession,
    *,
    credits_id: str,
    is_overage: bool = False,
    reference_type: Optional[str] = "batch_refund",
    reference_id: Optional[str] = None,
) -> Optional[UsageRecord]:
    """Return ``quantity`` units to the period that was originally charged.

    Counters are clamped at zero, so refunding more than was used is tolerated.
    Overage refunds drain ``overage_used`` before ``used``.
    """
    try:
        count = max(0, math.floor(float(quantity or 0)))
    except (TypeError, ValueError) as exc:
        raise ValidationError("quantity must be numeric") from exc
    if count <= 0:
        return None

    _, used_attr, overage_attr = _counter_names(usage_type)
    period = await _lock_period(team_id, credits_id, db)

    remaining_refund = count
    if is_overage:
        overage_used = int(getattr(period, overage_attr) or 0)
        from_overage = min(remaining_refund, overage_used)
        setattr(period, overage_attr, overage_used - from_overage)
        remaining_refund -= from_overage
    setattr(period, used_attr, max(0, int(getattr(period, used_attr) or 0) - remaining_refund))
    period.updated_at = datetime.now(timezone.utc)

    record = UsageRecord(
        team_id=team_id,
        user_id=user_id,
        credit_period_id=period.id,
        usage_type=usage_type,
        credits_used=-count,
        is_overage=bool(is_overage),
        reference_type=reference_type or "batch_refund",
        reference_id=reference_id,
    )
    db.add(record)
    await db.commit()
    logger.info("Refunded %s %s credits to period %s (%s)", count, usage_type, period.id, record.reference_type)
    return record


async def provision_credits(
    team_id: str,
    tier: str,
    period_start: datetime,
    period_end: datetime,
    db: AsyncSession,
    *,
    stripe_subscription_id: Optional[str] = None,
) -> CreditPeriod:
    """Create a fresh credit period for a new subscription or renewal."""
    plan = get_plan(tier)
    if not plan:
        raise ValidationError(f"Unknown plan tier: {tier}")
    if _as_utc(period_end) <= _as_utc(period_start):
        raise ValidationError("period_end must be after period_start")

    period = CreditPeriod(
        team_id=team_id,
        period_start=period_start,
        period_end=period_end,
        image_included=int(plan["image_credits"]),
        text_included=int(plan["text_credits"]),
        image_used=0,
        text_used=0,
        image_overage_used=0,
        text_overage_used=0,
        stripe_subscription_id=stripe_subscription_id,
    )
    db.add(period)
    team = await _get_team(team_id, db)
    if team is not None:
        team.plan_tier = str(tier).strip().lower()
    await db.commit()
    return period


async def get_credit_balance(team_id: str, db: AsyncSession) -> Optional[Dict[str, Any]]:
    """Read-only snapshot of the current period. ``None`` without a subscription."""
    period = await get_current_period(team_id, db)
    if not period:
        return None

    team = await _get_team(team_id, db)
    tier = (team.plan_tier or "").strip().lower() if team else ""
    overage_cost_cents = calculate_current_overage_spent(period, tier) if get_plan(tier) else 0

    now = datetime.now(timezone.utc)
    seconds_left = (_as_utc(period.period_end) - now).total_seconds()
    days_remaining = max(0, math.ceil(seconds_left / 86400))

    def _bucket(usage_type: str) -> Dict[str, int]:
        included = int(getattr(period, f"{usage_type}_included") or 0)
        used = int(getattr(period, f"{usage_type}_used") or 0)
        return {"used": used, "included": included, "remaining": max(0, included - used)}

    image = _bucket("image")
    text = _bucket("text")
    return {
        "has_subscription": True,
        "credits_id": period.id,
        "plan_tier": tier or None,
        "image_credits": image,
        "text_credits": text,
        "overage": {
            "image_used": int(period.image_overage_used or 0),
            "text_used": int(period.text_overage_used or 0),
            "cost_cents": overage_cost_cents,
        },
        "overage_enabled": bool(team.overage_enabled) if team else True,
        "overage_limit_cents": team.overage_limit_cents if team else None,
        "period_start": _as_utc(period.period_start).isoformat(),
        "period_end": _as_utc(period.period_end).isoformat(),
        "days_remaining": days_remaining,
        "image_percent_used": round(image["used"] / image["included"] * 100) if image["included"] > 0 else 0,
        "text_percent_used": round(text["used"] / text["included"] * 100) if text["included"] > 0 else 0,
    }


async def update_overage_settings(
    team_id: str,
    db: AsyncSession,
    *,
    enabled: Optional[bool] = None,
    limit_cents: Optional[int] = None,
    clear_limit: bool = False,
) -> Team:
    team = await _get_team(team_id, db)
    if not team:
        raise NotFoundError("Team not found")
    if enabled is not None:
        team.overage_enabled = bool(enabled)
    if clear_limit:
        team.overage_limit_cents = None
    elif limit_cents is not None:
        if int(limit_cents) < 0:
            raise ValidationError("overage_limit_cents must be >= 0")
        team.overage_limit_cents = int(limit_cents)
    await db.commit()
    return team


async def list_usage_records(
    team_id: str,
    db: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
    usage_type: Optional[str] = None,
) -> List[UsageRecord]:
    query = select(UsageRecord).where(UsageRecord.team_id == team_id)
    if usage_type:
        _counter_names(usage_type)
        query = query.where(UsageRecord.usage_type == usage_type)
    result = await db.execute(
        query.order_by(UsageRecord.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
        .offset(max(0, int(offset)))
    )
    return list(result.scalars().all())


async def list_credit_history(team_id: str, db: AsyncSession, *, limit: int = 12) -> List[CreditPeriod]:
    result = await db.execute(
        select(CreditPeriod)
        .where(CreditPeriod.team_id == team_id)
        .order_by(CreditPeriod.period_start.desc())
        .limit(max(1, min(int(limit), 60)))
    )
    return list(result.scalars().all())


def serialize_usage_record(record: UsageRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "usage_type": record.usage_type,
        "credits_used": record.credits_used,
        "is_overage": bool(record.is_overage),
        "credits_id": record.credit_period_id,
        "reference_type": record.reference_type,
        "reference_id": record.reference_id,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


def serialize_credit_period(period: CreditPeriod) -> Dict[str, Any]:
    return {
        "id": period.id,
        "period_start": _as_utc(period.period_start).isoformat(),
        "period_end": _as_utc(period.period_end).isoformat(),
        "image_included": period.image_included,
        "image_used": period.image_used,
        "image_overage_used": period.image_overage_used,
        "text_included": period.text_included,
        "text_used": period.text_used,
        "text_overage_used": period.text_overage_used,
    }
