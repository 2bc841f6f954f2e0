from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import List, Optional

from api.src.db.database import get_db
from api.src.models.pipeline import PipelineRun, PipelineStage, Repository
from api.src.models.run import (
    ManualTriggerRequest,
    PipelineRunResponse,
    RepositoryResponse,
    TriggerResponse,
)
from api.src.routes.webhooks import load_profile, queue_deployment
from api.src.services.github import RepositoryError
from api.src.services.pipeline_parser import parse_profile_dict, PipelineConfigError
from api.src.services.queue import get_run_status, request_cancel

router = APIRouter(prefix="/pipelines", tags=["pipelines"])

FINAL_STATUSES = ("succeeded", "failed", "aborted")

async def _get_run(db: AsyncSession, build_id: str) -> PipelineRun:
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.stages))
        .where(PipelineRun.build_id == build_id)
    )
    result = await db.execute(query)
    run = result.scalar_one_or_none()

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return run

@router.post("/trigger", response_model=TriggerResponse)
async def trigger_run(request: ManualTriggerRequest, db: AsyncSession = Depends(get_db)):
    """Start a deployment run by hand, with the same parameters a push carries."""
    repo_info = request.repo_info()

    try:
        if request.profile:
            profile = parse_profile_dict(request.profile)
        else:
            profile = await load_profile(request.repository_url, request.branch, request.commit_sha)
    except PipelineConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RepositoryError as e:
        raise HTTPException(status_code=400, detail=str(e))

    build_id = await queue_deployment(db, repo_info, profile)
    return {"status": "queued", "build_id": build_id}

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List deployment runs, newest first."""
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.stages))
        .order_by(PipelineRun.created_at.desc())
    )

    if status:
        query = query.where(PipelineRun.status == status)

    query = query.limit(limit).offset(offset)

    result = await db.execute(query)
    return result.scalars().all()

@router.get("/runs/{build_id}", response_model=PipelineRunResponse)
async def get_run(build_id: str, db: AsyncSession = Depends(get_db)):
    """Get a specific deployment run."""
    return await _get_run(db, build_id)

@router.get("/runs/{build_id}/status")
async def get_run_status_endpoint(build_id: str, db: AsyncSession = Depends(get_db)):
    """Get real-time status of a deployment run."""
    run = await _get_run(db, build_id)

    # Live status from Redis is ahead of the archived row while the run is active
    redis_status = await get_run_status(build_id)

    return {
        "build_id": build_id,
        "db_status": run.status,
        "live_status": redis_status,
        "warnings": run.warnings or [],
        "stages": [
            {
                "name": stage.name,
                "policy": stage.policy,
                "status": stage.status,
                "order": stage.stage_order,
            }
            for stage in sorted(run.stages, key=lambda s: s.stage_order)
        ]
    }

@router.get("/runs/{build_id}/logs")
async def get_run_logs(build_id: str, db: AsyncSession = Depends(get_db)):
    """Get logs for all stages in a deployment run."""
    query = (
        select(PipelineStage)
        .join(PipelineRun, PipelineStage.run_id == PipelineRun.id)
        .where(PipelineRun.build_id == build_id)
        .order_by(PipelineStage.stage_order)
    )
    result = await db.execute(query)
    stages = result.scalars().all()

    if not stages:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return {
        "build_id": build_id,
        "stages": [
            {
                "name": stage.name,
                "status": stage.status,
                "error": stage.error,
                "logs": stage.logs,
                "started_at": stage.started_at,
                "finished_at": stage.finished_at,
            }
            for stage in stages
        ]
    }

@router.post("/runs/{build_id}/cancel")
async def cancel_run(build_id: str, db: AsyncSession = Depends(get_db)):
    """Ask the controller to abort a run at its next stage boundary."""
    run = await _get_run(db, build_id)

    if run.status in FINAL_STATUSES:
        raise HTTPException(status_code=409, detail=f"Run already {run.status}")

    await request_cancel(build_id)
    return {"build_id": build_id, "status": "cancel_requested"}

@router.get("/repositories", response_model=List[RepositoryResponse])
async def list_repositories(db: AsyncSession = Depends(get_db)):
    """List all registered repositories."""
    query = select(Repository).order_by(Repository.created_at.desc())
    result = await db.execute(query)
    return result.scalars().all()

@router.get("/stats")
async def get_pipeline_stats(db: AsyncSession = Depends(get_db)):
    """Get deployment statistics."""
    status_query = (
        select(PipelineRun.status, func.count(PipelineRun.id))
        .group_by(PipelineRun.status)
    )
    result = await db.execute(status_query)
    status_counts = {row[0]: row[1] for row in result.all()}

    repo_count_query = select(func.count(Repository.id))
    result = await db.execute(repo_count_query)
    repo_count = result.scalar()

    return {
        "repositories": repo_count,
        "runs": status_counts,
        "total_runs": sum(status_counts.values()),
    }
