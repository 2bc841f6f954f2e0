"""
Report pipeline run and stage status to the database.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Optional
from sqlalchemy import create_engine, delete, select, update
from sqlalchemy.orm import sessionmaker

from controller.src.config import get_settings
from controller.src.models.db import PipelineRun as RunRow, PipelineStage as StageRow
from controller.src.services.engine import RunObserver

logger = logging.getLogger(__name__)

@lru_cache()
def get_session_factory() -> sessionmaker:
    """Sync database sessions for the controller."""
    engine = create_engine(get_settings().database_url)
    return sessionmaker(bind=engine)

class StatusReporter(RunObserver):
    """Archives a run: one row per run, one row per stage."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        redis_client=None,
        status_key: str = "deployline:status",
    ):
        self.session_factory = session_factory or get_session_factory()
        self.redis_client = redis_client
        self.status_key = status_key

    def _run_row(self, session, run) -> RunRow:
        row = session.execute(
            select(RunRow).where(RunRow.build_id == run.build_id)
        ).scalar_one_or_none()

        if row is None:
            # Runs queued outside the API have no row yet
            config = run.config
            row = RunRow(
                build_id=run.build_id,
                branch=config.branch if config else "",
                commit_sha=config.commit_sha if config else None,
                triggered_by=config.triggered_by if config else None,
            )
            session.add(row)
            session.flush()
        return row

    def _publish_live_status(self, run):
        if self.redis_client is None:
            return
        try:
            self.redis_client.hset(self.status_key, run.build_id, run.status.value)
        except Exception as e:
            logger.warning(f"Failed to publish live status for run {run.build_id}: {e}")

    def run_started(self, run):
        with self.session_factory() as session:
            row = self._run_row(session, run)
            row.status = run.status.value
            row.started_at = run.started_at
            row.updated_at = datetime.utcnow()

            session.execute(delete(StageRow).where(StageRow.run_id == row.id))
            for order, stage in enumerate(run.stages):
                session.add(StageRow(
                    run_id=row.id,
                    name=stage.name,
                    policy=stage.policy.value,
                    status=stage.result.value,
                    stage_order=order,
                ))
            session.commit()
            logger.info(f"Updated run {run.build_id} status to {run.status.value}")
        self._publish_live_status(run)

    def stage_updated(self, run, index, stage):
        with self.session_factory() as session:
            row = self._run_row(session, run)
            session.execute(
                update(StageRow)
                .where(StageRow.run_id == row.id)
                .where(StageRow.stage_order == index)
                .values(
                    status=stage.result.value,
                    error=stage.error,
                    logs=stage.logs,
                    started_at=stage.started_at,
                    finished_at=stage.finished_at,
                    updated_at=datetime.utcnow(),
                )
            )
            if run.status.value != row.status:
                row.status = run.status.value
            session.commit()
            logger.debug(f"Updated stage {index} of run {run.build_id} to {stage.result.value}")

    def run_finished(self, run):
        with self.session_factory() as session:
            row = self._run_row(session, run)
            row.status = run.status.value
            row.finished_at = run.finished_at
            row.warnings = list(run.warnings)
            row.gate_decisions = [d.model_dump(mode="json") for d in run.gate_decisions]
            row.reports = {name: str(path) for name, path in run.reports.items()}
            row.published_tags = run.published.pushed_tags if run.published else list(run.partial_publish)
            row.manifest_commit = run.commit.commit_sha if run.commit else None
            row.updated_at = datetime.utcnow()
            session.commit()
            logger.info(f"Archived run {run.build_id} with status {run.status.value}")
        self._publish_live_status(run)

def get_run_stages(build_id: str, session_factory: Optional[sessionmaker] = None):
    """Get all archived stages for a run."""
    session_factory = session_factory or get_session_factory()

    with session_factory() as session:
        run = session.execute(
            select(RunRow).where(RunRow.build_id == build_id)
        ).scalar_one_or_none()
        if run is None:
            return []

        stages = session.execute(
            select(StageRow)
            .where(StageRow.run_id == run.id)
            .order_by(StageRow.stage_order)
        ).scalars().all()

        return [
            {
                "order": s.stage_order,
                "name": s.name,
                "policy": s.policy,
                "status": s.status,
                "error": s.error,
            }
            for s in stages
        ]
