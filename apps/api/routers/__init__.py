"""Routers package."""

from . import (
    health,
    credits,
    batches,
    generation_jobs,
    commerce,
    cron,
)
