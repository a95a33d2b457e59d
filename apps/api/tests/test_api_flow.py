from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import settings
from conftest import OTHER_TEAM_ID, OTHER_USER_ID, auth_header, load_period, seed_team
from database import get_db
from main import app


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


def _job_body(variations=3, **extra):
    return {
        "product_id": "product-1",
        "variant_id": "variant-1",
        "payload": {
            "type": "generation",
            "number_of_variations": variations,
            "product_image_file_ids": ["upload-1"],
        },
        **extra,
    }


@pytest.mark.asyncio
async def test_requests_without_session_token_are_rejected(api_client):
    response = await api_client.get("/team/credits")
    assert response.status_code == 401

    live = await api_client.get("/health/live")
    assert live.json() == {"alive": True}


@pytest.mark.asyncio
async def test_team_credits_reports_balance(api_client, session_maker):
    await seed_team(session_maker, image_included=100, image_used=40)

    response = await api_client.get("/team/credits", headers=auth_header())

    assert response.status_code == 200
    body = response.json()
    assert body["has_subscription"] is True
    assert body["image_credits"]["remaining"] == 60
    assert body["plan_name"]

    settings_response = await api_client.patch(
        "/team/credits/overage", json={"enabled": False}, headers=auth_header()
    )
    assert settings_response.json()["overage_enabled"] is False


@pytest.mark.asyncio
async def test_insufficient_credits_returns_402_envelope(api_client, session_maker, queue):
    await seed_team(session_maker, image_included=2, overage_enabled=False)

    response = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())

    assert response.status_code == 402
    body = response.json()
    assert body["type"] == "error"
    assert body["error"]["type"] == "insufficient_credits"
    assert body["detail"]["required"] == 3
    assert body["detail"]["remaining"] == 2
    assert response.headers["X-Request-ID"] == body["request_id"]
    assert queue.generation_job_ids == []


@pytest.mark.asyncio
async def test_overage_requires_explicit_confirmation(api_client, session_maker, queue):
    period_id = await seed_team(session_maker, image_included=2)

    first = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())
    assert first.status_code == 409
    body = first.json()
    assert body["error"]["type"] == "overage_confirmation_required"
    assert body["detail"]["requires_overage_confirmation"] is True
    assert body["detail"]["overage_count"] == 1

    confirmed = await api_client.post(
        "/generation-jobs",
        json=_job_body(),
        headers={**auth_header(), "X-Confirm-Overage": "true"},
    )
    assert confirmed.status_code == 201
    job = confirmed.json()
    assert job["is_overage"] is True
    assert job["status"] == "queued"
    assert queue.generation_job_ids == [job["id"]]

    period = await load_period(session_maker, period_id)
    assert (period.image_used, period.image_overage_used) == (2, 1)


@pytest.mark.asyncio
async def test_job_lifecycle_over_http(api_client, session_maker, queue):
    await seed_team(session_maker, image_included=50)

    created = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())
    job_id = created.json()["id"]

    listing = await api_client.get("/generation-jobs", headers=auth_header())
    assert listing.json()["active"] == 1
    assert [item["id"] for item in listing.json()["items"]] == [job_id]

    retry = await api_client.post(f"/generation-jobs/{job_id}/retry", headers=auth_header())
    assert retry.status_code == 400
    assert retry.json()["error"]["type"] == "invalid_job_state"

    canceled = await api_client.post(f"/generation-jobs/{job_id}/cancel", headers=auth_header())
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"

    fetched = await api_client.get(f"/generation-jobs/{job_id}", headers=auth_header())
    assert fetched.json()["status"] == "canceled"

    usage = await api_client.get("/team/usage", headers=auth_header())
    assert sorted(item["credits_used"] for item in usage.json()["items"]) == [-3, 3]


@pytest.mark.asyncio
async def test_jobs_are_scoped_to_their_team(api_client, session_maker, queue):
    await seed_team(session_maker)
    await seed_team(session_maker, team_id=OTHER_TEAM_ID, user_id=OTHER_USER_ID)

    created = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())
    job_id = created.json()["id"]

    response = await api_client.get(
        f"/generation-jobs/{job_id}", headers=auth_header(OTHER_USER_ID, OTHER_TEAM_ID)
    )
    assert response.status_code == 404
    assert response.json()["error"]["type"] == "not_found"


@pytest.mark.asyncio
async def test_batch_pause_and_cancel_over_http(api_client, session_maker, queue):
    period_id = await seed_team(session_maker, image_included=100)

    created = await api_client.post(
        "/batches",
        json={
            "name": "Holiday drop",
            "number_of_variations": 2,
            "variants": [
                {"product_id": "product-1", "variant_id": "variant-1", "product_image_file_ids": ["upload-1"]},
                {"product_id": "product-1", "variant_id": "variant-2", "product_image_file_ids": ["upload-2"]},
            ],
        },
        headers=auth_header(),
    )
    assert created.status_code == 201
    batch = created.json()
    assert batch["progress"]["queued"] == 2

    paused = await api_client.patch(f"/batches/{batch['id']}", json={"action": "pause"}, headers=auth_header())
    assert paused.json()["status"] == "paused"

    detail = await api_client.get(f"/batches/{batch['id']}", headers=auth_header())
    assert len(detail.json()["jobs"]) == 2

    canceled = await api_client.delete(f"/batches/{batch['id']}", headers=auth_header())
    assert canceled.status_code == 200
    assert canceled.json()["refunded"] == 4

    again = await api_client.delete(f"/batches/{batch['id']}", headers=auth_header())
    assert again.status_code == 400
    assert again.json()["error"]["type"] == "invalid_batch_state_for_action"

    period = await load_period(session_maker, period_id)
    assert period.image_used == 0


@pytest.mark.asyncio
async def test_cron_endpoint_requires_secret_and_runs_jobs(api_client, session_maker, queue):
    await seed_team(session_maker)
    created = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())
    job_id = created.json()["id"]

    with patch.object(settings, "CRON_SECRET", "cron-secret"), patch.object(settings, "OPENAI_API_KEY", ""):
        denied = await api_client.get("/cron/process-jobs")
        assert denied.status_code == 401

        response = await api_client.get(
            "/cron/process-jobs", headers={"Authorization": "Bearer cron-secret"}
        )

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 1
    assert body["results"][0]["id"] == job_id
    assert body["results"][0]["status"] == "failed"
    assert "OPENAI_API_KEY" in body["results"][0]["error"]


@pytest.mark.asyncio
async def test_submission_quota_returns_429_envelope(api_client, session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    app.state.disable_rate_limits = False

    with patch("routers.rate_limit._count_in_redis", return_value=121):
        response = await api_client.post("/generation-jobs", json=_job_body(), headers=auth_header())

    assert response.status_code == 429
    body = response.json()
    assert body["error"]["type"] == "rate_limited"
    assert body["detail"]["action"] == "generation_job_create"
    assert body["detail"]["limit"] == 120
    assert queue.generation_job_ids == []
    period = await load_period(session_maker, period_id)
    assert period.image_used == 0
