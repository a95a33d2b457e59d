from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.credit_period import CreditPeriod
from models.team import Team
from models.user import User
from routers import rate_limit
from services.session_token import create_session_token


TEAM_ID = "team-primary"
USER_ID = "user-primary"
OTHER_TEAM_ID = "team-other"
OTHER_USER_ID = "user-other"


def auth_header(user_id: str = USER_ID, team_id: str = TEAM_ID) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id, team_id)['token']}"}


class FakeQueueJob:
    def __init__(self, job_id: str):
        self.id = job_id


class QueueRecorder:
    """Captures enqueue calls in place of Redis/RQ."""

    def __init__(self):
        self.generation_job_ids = []

    def enqueue_generation(self, job_id: str):
        self.generation_job_ids.append(job_id)
        return FakeQueueJob(f"generation:{job_id}")


@pytest.fixture(autouse=True)
def reset_rate_limit_windows():
    """Keep in-process quota state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._team_windows.clear()
    yield
    rate_limit._team_windows.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Per-test SQLite database wired into every background processor."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'content_shop.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with ExitStack() as stack:
        for target in (
            "services.generation_jobs.async_session_maker",
            "services.catalog_sync.async_session_maker",
            "services.job_runner.async_session_maker",
            "services.job_queue.async_session_maker",
            "services.metering.async_session_maker",
        ):
            stack.enter_context(patch(target, maker))
        yield maker

    await engine.dispose()


@pytest.fixture
def queue():
    recorder = QueueRecorder()
    with patch("services.generation_jobs.enqueue_generation_job", side_effect=recorder.enqueue_generation):
        yield recorder


async def seed_team(
    maker,
    *,
    team_id: str = TEAM_ID,
    user_id: str = USER_ID,
    plan_tier: str = "growth",
    image_included: int = 200,
    image_used: int = 0,
    text_included: int = 500,
    overage_enabled: bool = True,
    overage_limit_cents=None,
    with_period: bool = True,
) -> str:
    """Create a team with a member and, by default, a current credit period. Returns the period id."""
    now = datetime.now(timezone.utc)
    async with maker() as db:
        db.add(
            Team(
                id=team_id,
                name=f"Team {team_id}",
                plan_tier=plan_tier,
                overage_enabled=overage_enabled,
                overage_limit_cents=overage_limit_cents,
            )
        )
        db.add(User(id=user_id, email=f"{user_id}@example.com", team_id=team_id))
        period_id = None
        if with_period:
            period = CreditPeriod(
                team_id=team_id,
                period_start=now - timedelta(days=3),
                period_end=now + timedelta(days=27),
                image_included=image_included,
                image_used=image_used,
                text_included=text_included,
                text_used=0,
                image_overage_used=0,
                text_overage_used=0,
            )
            db.add(period)
            await db.flush()
            period_id = period.id
        await db.commit()
    return period_id


async def load_period(maker, period_id: str) -> CreditPeriod:
    async with maker() as db:
        return await db.get(CreditPeriod, period_id)
