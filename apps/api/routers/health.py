"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


async def _database_up() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Overall system health: database, Redis and configured collaborators.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_up(),
        "redis": "unknown",
        "generator": "configured" if settings.OPENAI_API_KEY else "unconfigured",
        "metered_billing": "configured" if settings.STRIPE_SECRET_KEY else "disabled",
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Readiness probe: the job tables must be reachable."""
    database = await _database_up()
    if database != "up":
        return JSONResponse(status_code=503, content={"ready": False, "database": database})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
