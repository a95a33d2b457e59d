from types import SimpleNamespace
from unittest.mock import patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import OTHER_TEAM_ID, OTHER_USER_ID, TEAM_ID, USER_ID
from routers.auth_scope import AuthContext
from routers.rate_limit import team_rate_limit
from services.errors import RateLimitedError


def _request(disabled=False):
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(disable_rate_limits=disabled)))


@pytest.mark.asyncio
async def test_quota_is_counted_per_team_when_redis_is_down():
    now = {"value": 1000.0}
    dependency = team_rate_limit("batch_create", limit=2, window_seconds=60, clock=lambda: now["value"])
    primary = AuthContext(user_id=USER_ID, team_id=TEAM_ID)
    other = AuthContext(user_id=OTHER_USER_ID, team_id=OTHER_TEAM_ID)

    with patch("routers.rate_limit._count_in_redis", side_effect=RedisConnectionError("down")):
        await dependency(_request(), primary)
        await dependency(_request(), primary)
        with pytest.raises(RateLimitedError) as exc_info:
            await dependency(_request(), primary)
        await dependency(_request(), other)

        now["value"] = 1021.0
        await dependency(_request(), primary)

    error = exc_info.value
    assert error.status_code == 429
    assert error.code == "rate_limited"
    assert error.detail == {"action": "batch_create", "limit": 2, "window_seconds": 60, "retry_after": 20}


@pytest.mark.asyncio
async def test_quota_keys_are_scoped_by_action_and_team():
    dependency = team_rate_limit("generation_job_create", limit=5, window_seconds=3600, clock=lambda: 7200.0)

    with patch("routers.rate_limit._count_in_redis", return_value=1) as count:
        await dependency(_request(), AuthContext(user_id=USER_ID, team_id=TEAM_ID))

    key, window = count.await_args.args
    assert key == f"content_shop:quota:generation_job_create:team:{TEAM_ID}:2"
    assert window == 3600


@pytest.mark.asyncio
async def test_disabled_quota_skips_counting():
    dependency = team_rate_limit("batch_create", limit=0, window_seconds=60)

    with patch("routers.rate_limit._count_in_redis") as count:
        await dependency(_request(disabled=True), AuthContext(user_id=USER_ID, team_id=TEAM_ID))

    count.assert_not_called()
