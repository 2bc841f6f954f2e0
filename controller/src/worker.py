"""
Queue worker - pulls jobs from Redis and executes them.
"""

import asyncio
import logging
import redis
import json
from typing import Optional, Dict, Any

from controller.src.config import get_settings
from controller.src.services.executor import execute_pipeline
from controller.src.services.status_reporter import StatusReporter

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_QUEUE = "deployline:jobs"
PIPELINE_STATUS = "deployline:status"
CANCEL_PREFIX = "deployline:cancel:"

def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.redis_url, decode_responses=True)

def cancel_flag(client: redis.Redis, build_id: str):
    """Cancellation check for one run, read at every stage boundary."""
    def cancel_requested() -> bool:
        return bool(client.exists(f"{CANCEL_PREFIX}{build_id}"))
    return cancel_requested

async def get_next_job(client: redis.Redis) -> Optional[Dict[str, Any]]:
    """Pull next job from Redis queue."""
    result = await asyncio.to_thread(client.brpop, PIPELINE_QUEUE, timeout=5)
    if result:
        _, job_data = result
        return json.loads(job_data)
    return None

def run_job(client: redis.Redis, job: Dict[str, Any]):
    build_id = job["build_id"]
    reporter = StatusReporter(redis_client=client, status_key=PIPELINE_STATUS)
    try:
        run = execute_pipeline(
            job,
            observer=reporter,
            cancel_requested=cancel_flag(client, build_id),
        )
    finally:
        client.delete(f"{CANCEL_PREFIX}{build_id}")
    return run

async def worker_loop():
    """Main worker loop."""
    logger.info("Worker started, waiting for jobs...")
    client = get_redis_client()

    try:
        while True:
            try:
                job = await get_next_job(client)

                if job:
                    build_id = job.get("build_id", "unknown")
                    logger.info(f"Received job for run {build_id}")

                    try:
                        # Stages block on external tools; keep the loop responsive
                        await asyncio.to_thread(run_job, client, job)
                    except Exception as e:
                        logger.exception(f"Failed to execute pipeline {build_id}: {e}")

            except KeyboardInterrupt:
                logger.info("Worker shutting down...")
                break
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(5)
    finally:
        client.close()

def run_worker():
    """Entry point for worker."""
    asyncio.run(worker_loop())
