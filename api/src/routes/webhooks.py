"""
GitHub webhook endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, Dict, Any
import logging

from api.src.db.database import get_db
from api.src.models.pipeline import Repository, PipelineRun
from api.src.services.github import (
    verify_signature,
    parse_webhook_payload,
    should_trigger,
    clone_repository,
    fetch_profile,
    cleanup_repo,
    RepositoryError,
)
from api.src.services.pipeline_parser import parse_profile_dict, PipelineConfigError
from api.src.services.queue import allocate_build_id, enqueue_pipeline_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

async def load_profile(clone_url: str, branch: str, commit_sha: Optional[str] = None) -> Dict[str, Any]:
    """
    Read and validate the repository's deployment profile.
    A repository without .deployline.yml deploys with the controller defaults.
    """
    repo_path = None
    try:
        repo_path = await clone_repository(clone_url, branch, commit_sha)
        raw_profile = await fetch_profile(repo_path)
    finally:
        if repo_path:
            cleanup_repo(repo_path)

    if raw_profile is None:
        return {}

    return parse_profile_dict(raw_profile)

async def queue_deployment(
    db: AsyncSession,
    repo_info: Dict[str, Any],
    profile: Dict[str, Any],
) -> str:
    """Persist a pending run and hand it to the controller. Returns the build id."""
    repo_query = select(Repository).where(
        Repository.full_name == repo_info["repo_full_name"]
    )
    result = await db.execute(repo_query)
    repository = result.scalar_one_or_none()

    if not repository:
        repository = Repository(
            name=repo_info["repo_name"],
            full_name=repo_info["repo_full_name"],
            clone_url=repo_info["clone_url"],
        )
        db.add(repository)
        await db.flush()

    build_id = await allocate_build_id()

    pipeline_run = PipelineRun(
        repository_id=repository.id,
        build_id=build_id,
        commit_sha=repo_info["commit_sha"] or None,
        branch=repo_info["branch"],
        status="pending",
        triggered_by=repo_info["pusher"],
        config=profile,
    )
    db.add(pipeline_run)
    await db.commit()

    await enqueue_pipeline_run(
        build_id=build_id,
        profile=profile,
        repo_info=repo_info,
    )

    logger.info(f"Build {build_id} for {repo_info['repo_full_name']}@{repo_info['branch']} queued")

    return build_id

async def process_push_event(
    payload: dict,
    db: AsyncSession,
):
    """Process GitHub push event and queue a deployment run."""
    webhook_data = parse_webhook_payload(payload)

    trigger, reason = should_trigger(webhook_data)
    if not trigger:
        logger.info(f"Push to {webhook_data['repo_full_name']} skipped: {reason}")
        return {"status": "skipped", "reason": reason}

    try:
        profile = await load_profile(
            webhook_data["clone_url"],
            webhook_data["branch"],
            webhook_data["commit_sha"],
        )
    except PipelineConfigError as e:
        logger.error(f"Invalid deployment profile in {webhook_data['repo_full_name']}: {e}")
        return {"status": "error", "reason": str(e)}
    except RepositoryError as e:
        logger.error(f"Failed to read {webhook_data['repo_full_name']}: {e}")
        return {"status": "error", "reason": str(e)}

    build_id = await queue_deployment(db, webhook_data, profile)

    return {
        "status": "queued",
        "build_id": build_id,
    }

@router.post("/github")
async def github_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    # Get raw body for signature verification
    body = await request.body()

    if not verify_signature(body, x_hub_signature_256):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event == "push":
        return await process_push_event(payload, db)

    return {
        "status": "ignored",
        "event": x_github_event,
        "message": f"Event type '{x_github_event}' not handled"
    }
