from unittest.mock import patch

import pytest
from sqlalchemy.future import select

from conftest import TEAM_ID, USER_ID, load_period, seed_team
from models.generation import GeneratedImage
from models.generation_job import GenerationJob
from services.errors import (
    ConflictError,
    InvalidJobStateError,
    RetryOfRetryForbiddenError,
    ValidationError,
)
from services.generation_jobs import (
    cancel_generation_job,
    fail_generation_job,
    mark_generation_job_running,
    process_generation_job,
    refund_generation_job,
    retry_generation_job,
    submit_generation_job,
)
from services.generator import (
    BaseGenerator,
    GenerationOutput,
    GeneratorUnavailableError,
    UnconfiguredGenerator,
    get_generator,
)


GENERATION_PAYLOAD = {
    "type": "generation",
    "number_of_variations": 3,
    "product_image_file_ids": ["upload-1"],
    "prompts": ["Model wearing the jacket on a rooftop"],
}


class FakeGenerator(BaseGenerator):
    provider_name = "fake"

    def __init__(self):
        self.requests = []

    async def generate(self, request, *, cancel_token, on_progress=None):
        self.requests.append(request)
        urls = []
        for idx in range(request.expected_images):
            urls.append(f"https://cdn.example.com/{request.job_id}/{idx}.png")
            if on_progress is not None:
                await on_progress(len(urls), request.expected_images)
        return GenerationOutput(image_urls=urls, provider=self.provider_name)


class FailingGenerator(BaseGenerator):
    provider_name = "failing"

    async def generate(self, request, *, cancel_token, on_progress=None):
        raise RuntimeError("model overloaded")


class CanceledMidwayGenerator(BaseGenerator):
    """Simulates a user cancel that lands while the generator is already producing output."""

    provider_name = "late"

    def __init__(self, session_maker):
        self.session_maker = session_maker

    async def generate(self, request, *, cancel_token, on_progress=None):
        async with self.session_maker() as db:
            await cancel_generation_job(TEAM_ID, USER_ID, request.job_id, db)
        return GenerationOutput(image_urls=["https://cdn.example.com/late.png"], provider=self.provider_name)


class RecoveredMidwayGenerator(BaseGenerator):
    """Finishes after stalled-job recovery has already failed the job."""

    provider_name = "slow"

    def __init__(self, session_maker):
        self.session_maker = session_maker

    async def generate(self, request, *, cancel_token, on_progress=None):
        async with self.session_maker() as db:
            await fail_generation_job(request.job_id, db, error="Job stalled. Retry to run it again.")
        urls = [f"https://cdn.example.com/{request.job_id}/{idx}.png" for idx in range(request.expected_images)]
        return GenerationOutput(image_urls=urls, provider=self.provider_name)


async def _submit(session_maker, payload=None, **kwargs):
    async with session_maker() as db:
        return await submit_generation_job(
            TEAM_ID,
            USER_ID,
            db,
            product_id="product-1",
            variant_id=kwargs.pop("variant_id", "variant-1"),
            payload=payload or GENERATION_PAYLOAD,
            **kwargs,
        )


async def _load_job(session_maker, job_id) -> GenerationJob:
    async with session_maker() as db:
        return await db.get(GenerationJob, job_id)


@pytest.mark.asyncio
async def test_submit_reserves_credits_and_enqueues(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50, image_used=0)

    job = await _submit(session_maker)

    assert job.status == "queued"
    assert job.number_of_variations == 3
    assert job.credits_id == period_id
    assert job.is_overage is False
    assert job.queue_job_id == f"generation:{job.id}"
    assert queue.generation_job_ids == [job.id]
    assert job.progress_json == {"current": 0, "total": 3, "completed_image_ids": []}
    period = await load_period(session_maker, period_id)
    assert period.image_used == 3


@pytest.mark.asyncio
async def test_edit_job_costs_one_credit(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)

    job = await _submit(
        session_maker,
        payload={"type": "edit", "base_image_file_id": "image-9", "instruction": "Remove the background"},
    )

    assert job.type == "edit"
    assert job.number_of_variations == 1
    period = await load_period(session_maker, period_id)
    assert period.image_used == 1


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected_before_charging(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)

    with pytest.raises(ValidationError):
        await _submit(session_maker, payload={"type": "generation", "number_of_variations": 11})

    period = await load_period(session_maker, period_id)
    assert period.image_used == 0
    assert queue.generation_job_ids == []


@pytest.mark.asyncio
async def test_executor_stores_images_and_marks_success(session_maker, queue):
    await seed_team(session_maker)
    job = await _submit(session_maker)
    generator = FakeGenerator()

    outcome = await process_generation_job(job.id, generator=generator)

    assert outcome["status"] == "success"
    assert outcome["images"] == 3
    assert len(generator.requests[0].prompts) == 3
    stored = await _load_job(session_maker, job.id)
    assert stored.status == "success"
    assert stored.generation_id == outcome["generation_id"]
    assert stored.started_at is not None and stored.completed_at is not None
    assert len(stored.progress_json["completed_image_ids"]) == 3

    async with session_maker() as db:
        images = (await db.execute(select(GeneratedImage))).scalars().all()
    assert sorted(image.position for image in images) == [0, 1, 2]

    again = await process_generation_job(job.id, generator=generator)
    assert again["skipped"] is True
    assert len(generator.requests) == 1


@pytest.mark.asyncio
async def test_generator_error_is_recorded_as_failure(session_maker, queue):
    await seed_team(session_maker)
    job = await _submit(session_maker)

    outcome = await process_generation_job(job.id, generator=FailingGenerator())

    assert outcome["status"] == "failed"
    stored = await _load_job(session_maker, job.id)
    assert stored.status == "failed"
    assert stored.error_message == "model overloaded"


@pytest.mark.asyncio
async def test_unconfigured_generator_fails_deterministically(session_maker, queue):
    await seed_team(session_maker)
    job = await _submit(session_maker)

    with patch("services.generator.providers.settings.OPENAI_API_KEY", ""):
        assert isinstance(get_generator(), UnconfiguredGenerator)
        outcome = await process_generation_job(job.id)

    assert outcome["status"] == "failed"
    stored = await _load_job(session_maker, job.id)
    assert "OPENAI_API_KEY" in stored.error_message
    with pytest.raises(GeneratorUnavailableError):
        await UnconfiguredGenerator().generate(None, cancel_token=None)


@pytest.mark.asyncio
async def test_retry_creates_new_attempt_and_retry_of_retry_is_forbidden(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    original = await _submit(session_maker)
    await process_generation_job(original.id, generator=FailingGenerator())

    async with session_maker() as db:
        retry = await retry_generation_job(TEAM_ID, USER_ID, original.id, db)

    assert retry.id != original.id
    assert retry.status == "queued"
    assert retry.retry_of_job_id == original.id
    assert retry.retry_attempt == 1
    assert retry.payload_json == original.payload_json
    assert queue.generation_job_ids == [original.id, retry.id]

    # The original charge stays; the retry is charged again.
    period = await load_period(session_maker, period_id)
    assert period.image_used == 6

    async with session_maker() as db:
        with pytest.raises(RetryOfRetryForbiddenError) as exc_info:
            await retry_generation_job(TEAM_ID, USER_ID, retry.id, db)
    assert exc_info.value.code == "retry_of_retry_forbidden"

    await process_generation_job(retry.id, generator=FailingGenerator())
    async with session_maker() as db:
        with pytest.raises(RetryOfRetryForbiddenError):
            await retry_generation_job(TEAM_ID, USER_ID, retry.id, db)


@pytest.mark.asyncio
async def test_retry_requires_failed_status(session_maker, queue):
    await seed_team(session_maker)
    job = await _submit(session_maker)

    async with session_maker() as db:
        with pytest.raises(InvalidJobStateError) as exc_info:
            await retry_generation_job(TEAM_ID, USER_ID, job.id, db)
    assert exc_info.value.code == "invalid_job_state"


@pytest.mark.asyncio
async def test_terminal_states_are_never_overwritten(session_maker, queue):
    await seed_team(session_maker)
    job = await _submit(session_maker)
    await process_generation_job(job.id, generator=FakeGenerator())

    async with session_maker() as db:
        assert await fail_generation_job(job.id, db, error="late failure") is False
        assert await mark_generation_job_running(job.id, db) is False

    stored = await _load_job(session_maker, job.id)
    assert stored.status == "success"
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_late_result_on_canceled_job_is_stored_without_changing_status(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)

    outcome = await process_generation_job(job.id, generator=CanceledMidwayGenerator(session_maker))

    assert outcome["status"] == "canceled"
    stored = await _load_job(session_maker, job.id)
    assert stored.status == "canceled"
    assert stored.generation_id == outcome["generation_id"]
    assert stored.progress_json["current"] == 1
    # Running jobs keep their charge on cancel.
    period = await load_period(session_maker, period_id)
    assert period.image_used == 3


@pytest.mark.asyncio
async def test_cancel_queued_job_refunds_full_charge(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)

    async with session_maker() as db:
        canceled = await cancel_generation_job(TEAM_ID, USER_ID, job.id, db)
        assert canceled.status == "canceled"
        with pytest.raises(InvalidJobStateError):
            await cancel_generation_job(TEAM_ID, USER_ID, job.id, db)

    period = await load_period(session_maker, period_id)
    assert period.image_used == 0
    assert await process_generation_job(job.id, generator=FakeGenerator()) == {
        "job_id": job.id,
        "status": "canceled",
        "skipped": True,
    }


@pytest.mark.asyncio
async def test_failed_job_refund_happens_once(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)
    await process_generation_job(job.id, generator=FailingGenerator())

    async with session_maker() as db:
        result = await refund_generation_job(TEAM_ID, USER_ID, job.id, db)
        assert result["refunded"] == 3
        assert result["generated"] == 0
        with pytest.raises(ConflictError):
            await refund_generation_job(TEAM_ID, USER_ID, job.id, db)

    period = await load_period(session_maker, period_id)
    assert period.image_used == 0


@pytest.mark.asyncio
async def test_canceled_running_job_refunds_unproduced_images_once(session_maker, queue):
    period_id = await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)
    await process_generation_job(job.id, generator=CanceledMidwayGenerator(session_maker))

    async with session_maker() as db:
        result = await refund_generation_job(TEAM_ID, USER_ID, job.id, db)
        assert result["expected"] == 3
        assert result["generated"] == 1
        assert result["refunded"] == 2
        with pytest.raises(ConflictError):
            await refund_generation_job(TEAM_ID, USER_ID, job.id, db)

    period = await load_period(session_maker, period_id)
    assert period.image_used == 1


@pytest.mark.asyncio
async def test_refund_rejects_jobs_that_are_still_active(session_maker, queue):
    await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)

    async with session_maker() as db:
        with pytest.raises(InvalidJobStateError):
            await refund_generation_job(TEAM_ID, USER_ID, job.id, db)


@pytest.mark.asyncio
async def test_late_result_reports_the_stored_status_after_recovery(session_maker, queue):
    await seed_team(session_maker, image_included=50)
    job = await _submit(session_maker)

    outcome = await process_generation_job(job.id, generator=RecoveredMidwayGenerator(session_maker))

    assert outcome["status"] == "failed"
    assert outcome["images"] == 3
    stored = await _load_job(session_maker, job.id)
    assert stored.status == "failed"
    assert "stalled" in stored.error_message
