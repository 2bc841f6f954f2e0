"""
Redis queue service for deployment jobs.
"""

import redis.asyncio as redis
import json
from typing import Dict, Any, Optional
from datetime import datetime

from api.src.config import get_settings

settings = get_settings()

PIPELINE_QUEUE = "deployline:jobs"
PIPELINE_STATUS = "deployline:status"
BUILD_NUMBER = "deployline:build_number"
CANCEL_PREFIX = "deployline:cancel:"
CANCEL_TTL = 24 * 60 * 60

async def get_redis_client() -> redis.Redis:
    """Get async Redis client."""
    return redis.from_url(settings.redis_url, decode_responses=True)

async def allocate_build_id() -> str:
    """Next build number; unique across every run and every API replica."""
    client = await get_redis_client()

    try:
        return str(await client.incr(BUILD_NUMBER))
    finally:
        await client.aclose()

async def enqueue_pipeline_run(build_id: str, profile: Dict[str, Any], repo_info: Dict[str, Any]):
    """Add deployment run to processing queue."""
    client = await get_redis_client()

    job = {
        "build_id": build_id,
        "profile": profile,
        "repo_info": repo_info,
        "queued_at": datetime.utcnow().isoformat(),
    }

    try:
        await client.lpush(PIPELINE_QUEUE, json.dumps(job))
        await client.hset(PIPELINE_STATUS, build_id, "pending")
    finally:
        await client.aclose()

async def request_cancel(build_id: str):
    """Flag a run for abort; the controller honors it at the next stage boundary."""
    client = await get_redis_client()

    try:
        await client.set(f"{CANCEL_PREFIX}{build_id}", "1", ex=CANCEL_TTL)
    finally:
        await client.aclose()

async def get_run_status(build_id: str) -> Optional[str]:
    """Get live run status from Redis."""
    client = await get_redis_client()

    try:
        return await client.hget(PIPELINE_STATUS, build_id)
    finally:
        await client.aclose()

async def get_queue_length() -> int:
    """Get number of jobs in queue."""
    client = await get_redis_client()

    try:
        return await client.llen(PIPELINE_QUEUE)
    finally:
        await client.aclose()
