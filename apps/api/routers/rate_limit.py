"""Per-team submission quotas for credit-spending endpoints."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Dict, Optional

from fastapi import Depends, Request
import redis.asyncio as redis

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from services.errors import RateLimitedError


# Fixed windows per team, used only while Redis is unreachable.
_team_windows: Dict[str, int] = {}


def _window_key(action: str, team_id: str, window_seconds: int, now: float) -> str:
    bucket = int(now // window_seconds)
    return f"content_shop:quota:{action}:team:{team_id}:{bucket}"


def _retry_after(window_seconds: int, now: float) -> int:
    return max(1, int(window_seconds - (now % window_seconds)))


async def _count_in_redis(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            current, _ = await pipe.execute()
    finally:
        await client.aclose()
    return int(current)


def _count_in_process(key: str) -> int:
    # Keys carry the window bucket, so stale windows are simply never read again.
    current = _team_windows.get(key, 0) + 1
    _team_windows[key] = current
    return current


def team_rate_limit(
    action: str,
    limit: int,
    window_seconds: int,
    *,
    clock: Optional[Callable[[], float]] = None,
) -> Callable[..., Awaitable[None]]:
    """Dependency allowing each team ``limit`` submissions of ``action`` per window."""
    now_fn = clock or time.time

    async def _dependency(request: Request, auth: AuthContext = Depends(get_auth_context)) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        now = now_fn()
        key = _window_key(action, auth.team_id, window_seconds, now)
        try:
            current = await _count_in_redis(key, window_seconds)
        except redis.RedisError:
            current = _count_in_process(key)

        if current > limit:
            raise RateLimitedError(action, limit, window_seconds, _retry_after(window_seconds, now))

    return _dependency
