"""Metered overage reporting to Stripe Billing Meter Events."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.team import Team
from services.job_queue import enqueue_overage_report

logger = logging.getLogger(__name__)


def _meter_event_name(usage_type: str) -> str:
    if usage_type == "image":
        return settings.STRIPE_IMAGE_METER_EVENT
    return settings.STRIPE_TEXT_METER_EVENT


def report_overage_usage(team_id: str, usage_type: str, quantity: int) -> Optional[str]:
    """Queue an overage report. Returns the queue job id, or None when billing is not configured."""
    if not settings.STRIPE_SECRET_KEY or int(quantity) <= 0:
        return None
    job = enqueue_overage_report(team_id, usage_type, int(quantity))
    return job.id


async def send_meter_event(stripe_customer_id: str, usage_type: str, quantity: int) -> Optional[str]:
    """Post one meter event. Returns the Stripe event identifier."""
    async with httpx.AsyncClient(base_url=settings.STRIPE_API_BASE, timeout=15.0) as client:
        response = await client.post(
            "/v1/billing/meter_events",
            auth=(settings.STRIPE_SECRET_KEY, ""),
            data={
                "event_name": _meter_event_name(usage_type),
                "payload[value]": str(int(quantity)),
                "payload[stripe_customer_id]": stripe_customer_id,
                "timestamp": str(int(time.time())),
            },
        )
        response.raise_for_status()
        return response.json().get("identifier")


async def process_overage_report_job_async(team_id: str, usage_type: str, quantity: int) -> Optional[str]:
    async with async_session_maker() as db:
        result = await db.execute(select(Team.stripe_customer_id).where(Team.id == team_id))
        customer_id = result.scalar_one_or_none()
    if not customer_id:
        logger.warning("No Stripe customer for team %s; overage of %s %s not reported", team_id, quantity, usage_type)
        return None
    identifier = await send_meter_event(customer_id, usage_type, quantity)
    logger.info("Reported %s %s overage units for team %s (%s)", quantity, usage_type, team_id, identifier)
    return identifier


def process_overage_report_job(team_id: str, usage_type: str, quantity: int) -> Optional[str]:
    """RQ worker entrypoint for overage reports."""
    return asyncio.run(process_overage_report_job_async(team_id, usage_type, quantity))
