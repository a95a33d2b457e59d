from unittest.mock import patch

import pytest
from sqlalchemy.future import select

from conftest import TEAM_ID, USER_ID, load_period, seed_team
from models.usage_record import UsageRecord
from services.credits import (
    check_credits,
    deduct_credits,
    get_credit_balance,
    refund_credits,
    reserve_credits,
    update_overage_settings,
)
from services.errors import (
    InsufficientCreditsError,
    OverageConfirmationRequiredError,
    ValidationError,
)
from services.plans import calculate_overage_cost


@pytest.mark.asyncio
async def test_check_within_allotment_is_not_overage(session_maker):
    period_id = await seed_team(session_maker, image_included=100, image_used=20)
    async with session_maker() as db:
        check = await check_credits(TEAM_ID, "image", 30, db)

    assert check.allowed is True
    assert check.is_overage is False
    assert check.remaining == 50
    assert check.credits_id == period_id


@pytest.mark.asyncio
async def test_overage_split_on_check_and_confirmed_deduct(session_maker):
    period_id = await seed_team(session_maker, image_included=100, image_used=95)

    async with session_maker() as db:
        check = await check_credits(TEAM_ID, "image", 10, db)
    assert check.allowed is True
    assert check.is_overage is True
    assert check.overage_count == 5
    assert check.overage_cost == calculate_overage_cost("growth", "image", 5) == 200
    assert check.remaining == 0

    with patch("services.credits.report_overage_usage") as report:
        async with session_maker() as db:
            await reserve_credits(
                TEAM_ID,
                USER_ID,
                "image",
                10,
                db,
                confirm_overage=True,
                reference_type="generation_job",
                reference_id="job-1",
            )
    report.assert_called_once_with(TEAM_ID, "image", 5)

    period = await load_period(session_maker, period_id)
    assert period.image_used == 100
    assert period.image_overage_used == 5

    async with session_maker() as db:
        records = (await db.execute(select(UsageRecord))).scalars().all()
    assert len(records) == 1
    assert records[0].credits_used == 10
    assert records[0].is_overage is True
    assert records[0].reference_id == "job-1"


@pytest.mark.asyncio
async def test_unconfirmed_overage_is_rejected_without_charging(session_maker):
    period_id = await seed_team(session_maker, image_included=100, image_used=95)

    async with session_maker() as db:
        with pytest.raises(OverageConfirmationRequiredError) as exc_info:
            await reserve_credits(TEAM_ID, USER_ID, "image", 10, db, confirm_overage=False)

    assert exc_info.value.code == "overage_confirmation_required"
    assert exc_info.value.detail["overage_count"] == 5
    period = await load_period(session_maker, period_id)
    assert period.image_used == 95
    assert period.image_overage_used == 0


@pytest.mark.asyncio
async def test_overage_disabled_blocks_request(session_maker):
    await seed_team(session_maker, image_included=10, image_used=8, overage_enabled=False)

    async with session_maker() as db:
        check = await check_credits(TEAM_ID, "image", 5, db)
        assert check.allowed is False
        assert check.reason == "overage_disabled"
        assert check.remaining == 2

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await reserve_credits(TEAM_ID, USER_ID, "image", 5, db, confirm_overage=True)
    assert exc_info.value.status_code == 402
    assert exc_info.value.detail["reason"] == "overage_disabled"


@pytest.mark.asyncio
async def test_overage_limit_counts_prior_overage_spend(session_maker):
    period_id = await seed_team(session_maker, image_included=10, image_used=10, overage_limit_cents=100)

    async with session_maker() as db:
        first = await check_credits(TEAM_ID, "image", 2, db)
        assert first.allowed is True
        await deduct_credits(TEAM_ID, USER_ID, "image", 2, db, is_overage=True, credits_id=period_id)

        second = await check_credits(TEAM_ID, "image", 1, db)

    assert second.allowed is False
    assert second.reason == "overage_limit_exceeded"
    assert second.is_overage is True
    assert second.overage_cost == 40


@pytest.mark.asyncio
async def test_no_current_period_means_no_subscription(session_maker):
    await seed_team(session_maker, with_period=False)
    async with session_maker() as db:
        check = await check_credits(TEAM_ID, "image", 1, db)
        balance = await get_credit_balance(TEAM_ID, db)

    assert check.allowed is False
    assert check.reason == "no_subscription"
    assert balance is None


@pytest.mark.asyncio
async def test_quantity_must_be_positive(session_maker):
    await seed_team(session_maker)
    async with session_maker() as db:
        with pytest.raises(ValidationError):
            await check_credits(TEAM_ID, "image", 0, db)
        with pytest.raises(ValidationError):
            await check_credits(TEAM_ID, "video", 1, db)


@pytest.mark.asyncio
async def test_refund_clamps_used_at_zero(session_maker):
    period_id = await seed_team(session_maker, image_included=50, image_used=3)

    async with session_maker() as db:
        record = await refund_credits(
            TEAM_ID, USER_ID, "image", 10, db, credits_id=period_id, reference_id="batch-1"
        )

    assert record.credits_used == -10
    assert record.reference_type == "batch_refund"
    period = await load_period(session_maker, period_id)
    assert period.image_used == 0
    assert period.image_overage_used == 0


@pytest.mark.asyncio
async def test_overage_refund_drains_overage_before_included(session_maker):
    period_id = await seed_team(session_maker, image_included=100, image_used=95)

    async with session_maker() as db:
        await deduct_credits(TEAM_ID, USER_ID, "image", 10, db, is_overage=True, credits_id=period_id)
        await refund_credits(TEAM_ID, USER_ID, "image", 7, db, credits_id=period_id, is_overage=True)

    period = await load_period(session_maker, period_id)
    assert period.image_overage_used == 0
    assert period.image_used == 98


@pytest.mark.asyncio
async def test_refund_floors_fractional_and_ignores_zero(session_maker):
    period_id = await seed_team(session_maker, image_included=50, image_used=10)

    async with session_maker() as db:
        assert await refund_credits(TEAM_ID, USER_ID, "image", 0.9, db, credits_id=period_id) is None
        record = await refund_credits(TEAM_ID, USER_ID, "image", 2.7, db, credits_id=period_id)

    assert record.credits_used == -2
    period = await load_period(session_maker, period_id)
    assert period.image_used == 8


@pytest.mark.asyncio
async def test_balance_snapshot_reports_usage_and_overage_cost(session_maker):
    period_id = await seed_team(session_maker, image_included=100, image_used=95)

    async with session_maker() as db:
        await deduct_credits(TEAM_ID, USER_ID, "image", 10, db, is_overage=True, credits_id=period_id)
        await update_overage_settings(TEAM_ID, db, limit_cents=5000)
        balance = await get_credit_balance(TEAM_ID, db)

    assert balance["has_subscription"] is True
    assert balance["credits_id"] == period_id
    assert balance["plan_tier"] == "growth"
    assert balance["image_credits"] == {"used": 100, "included": 100, "remaining": 0}
    assert balance["text_credits"]["remaining"] == 500
    assert balance["overage"] == {"image_used": 5, "text_used": 0, "cost_cents": 200}
    assert balance["overage_enabled"] is True
    assert balance["overage_limit_cents"] == 5000
    assert balance["image_percent_used"] == 100
    assert 26 <= balance["days_remaining"] <= 28
