from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis
import logging

from api.src.db.database import get_db
from api.src.config import get_settings
from api.src.services.queue import get_queue_length

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "deployline-api"}

@router.get("/health/all")
async def full_health_check(db: AsyncSession = Depends(get_db)):
    """Combined health check for the database, Redis and the job queue."""
    health = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "queue_length": 0,
    }

    try:
        await db.execute(text("SELECT 1"))
        health["database"] = "healthy"
    except SQLAlchemyError as e:
        health["database"] = f"unhealthy: {e}"

    try:
        client = redis.from_url(settings.redis_url)
        try:
            await client.ping()
        finally:
            await client.aclose()
        health["redis"] = "healthy"
        health["queue_length"] = await get_queue_length()
    except redis.RedisError as e:
        health["redis"] = f"unhealthy: {e}"

    overall = "healthy" if all(
        v == "healthy" for k, v in health.items()
        if k != "queue_length"
    ) else "degraded"

    if overall != "healthy":
        logger.warning(f"Health check degraded: {health}")

    return {"status": overall, "services": health}
