"""
Pipeline engine - runs an ordered list of stages as one unit of work.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from controller.src.errors import PipelineError, StageStateError
from controller.src.models.pipeline import (
    Artifact,
    CommitChange,
    GateDecision,
    GatePolicy,
    ManifestDescriptor,
    PublishedReference,
    RunConfig,
    RunStatus,
    StageResult,
)

logger = logging.getLogger(__name__)

StageAction = Callable[["PipelineRun"], Optional[str]]


class Stage:
    """
    One named unit of pipeline work.

    The action receives the run and may return log text. Raising marks the
    stage failed; the stage policy decides whether that halts the run.
    """

    def __init__(
        self,
        name: str,
        action: StageAction,
        policy: GatePolicy = GatePolicy.BLOCKING,
        always_run: bool = False,
    ):
        self.name = name
        self.action = action
        self.policy = policy
        self.always_run = always_run
        self.result = StageResult.NOT_RUN
        self.error: Optional[str] = None
        self.logs: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def blocking(self) -> bool:
        return self.policy == GatePolicy.BLOCKING

    def _transition(self, allowed_from: StageResult, new: StageResult):
        if self.result != allowed_from:
            raise StageStateError(
                f"Stage '{self.name}' cannot go from {self.result.value} to {new.value}"
            )
        self.result = new

    def start(self):
        self._transition(StageResult.NOT_RUN, StageResult.RUNNING)
        self.started_at = datetime.utcnow()

    def passed(self, logs: Optional[str] = None):
        self._transition(StageResult.RUNNING, StageResult.PASSED)
        self.logs = logs
        self.finished_at = datetime.utcnow()

    def failed(self, error: str, logs: Optional[str] = None):
        self._transition(StageResult.RUNNING, StageResult.FAILED)
        self.error = error
        self.logs = logs
        self.finished_at = datetime.utcnow()

    def skip(self):
        self._transition(StageResult.NOT_RUN, StageResult.SKIPPED)

    def __repr__(self):
        return f"Stage({self.name!r}, {self.policy.value}, {self.result.value})"


class RunObserver:
    """Receives run and stage state changes; the default does nothing."""

    def run_started(self, run: "PipelineRun"):
        pass

    def stage_updated(self, run: "PipelineRun", index: int, stage: Stage):
        pass

    def run_finished(self, run: "PipelineRun"):
        pass


class PipelineRun:
    """
    A single deployment run.

    Owns its stages and every output they produce (artifact, reports,
    manifest, commit) so stages share state only through the run.
    """

    def __init__(
        self,
        config: Optional[RunConfig],
        build_id: Optional[str] = None,
        observer: Optional[RunObserver] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ):
        if config is None and build_id is None:
            raise ValueError("PipelineRun needs a config or a build id")
        self.config = config
        self.build_id = build_id or config.build_id
        self.observer = observer or RunObserver()
        self._cancel_requested = cancel_requested
        self._cancelled = False

        self.status = RunStatus.PENDING
        self.stages: List[Stage] = []
        self.warnings: List[str] = []
        self.gate_decisions: List[GateDecision] = []
        self.reports: Dict[str, Path] = {}
        self.artifact: Optional[Artifact] = None
        self.published: Optional[PublishedReference] = None
        self.partial_publish: List[str] = []
        self.manifest: Optional[ManifestDescriptor] = None
        self.commit: Optional[CommitChange] = None
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.status in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED)

    def cancel(self):
        """Request an abort; honored at the next stage boundary."""
        self._cancelled = True

    def cancellation_requested(self) -> bool:
        if self._cancelled:
            return True
        if self._cancel_requested is None:
            return False
        try:
            self._cancelled = bool(self._cancel_requested())
        except Exception as e:
            logger.warning(f"Cancellation check failed for run {self.build_id}: {e}")
        return self._cancelled

    def warn(self, message: str):
        logger.warning(f"Run {self.build_id}: {message}")
        self.warnings.append(message)

    def _set_status(self, status: RunStatus):
        if self.is_final:
            raise StageStateError(
                f"Run {self.build_id} is already {self.status.value}"
            )
        self.status = status

    def execute(self, stages: List[Stage]) -> "PipelineRun":
        """
        Run `stages` strictly in order.

        The first blocking failure (or a cancellation) skips every remaining
        stage that is not marked always_run. The status is final once the
        last regular stage is done, so always-run stages see it.
        """
        if self.status != RunStatus.PENDING:
            raise StageStateError(f"Run {self.build_id} has already been executed")

        self.stages = list(stages)
        self.status = RunStatus.RUNNING
        self.started_at = datetime.utcnow()
        logger.info(f"Starting run {self.build_id} with {len(self.stages)} stages")
        self._observe("run_started")

        regular = [i for i, s in enumerate(self.stages) if not s.always_run]
        last_regular = regular[-1] if regular else -1
        if last_regular < 0:
            self._finalize()

        for index, stage in enumerate(self.stages):
            if not stage.always_run:
                if not self.is_final and self.cancellation_requested():
                    logger.warning(f"Run {self.build_id} aborted before stage '{stage.name}'")
                    self._set_status(RunStatus.ABORTED)

                if self.is_final:
                    stage.skip()
                    self._observe("stage_updated", index, stage)
                    continue

            self._run_stage(index, stage)

            if index == last_regular and not self.is_final:
                self._finalize()

        self.finished_at = datetime.utcnow()
        logger.info(f"Run {self.build_id} finished with status: {self.status.value}")
        self._observe("run_finished")
        return self

    def _observe(self, event: str, *args):
        # Status reporting must never stop the run (or its notifier)
        try:
            getattr(self.observer, event)(self, *args)
        except Exception:
            logger.exception(f"Observer {event} failed for run {self.build_id}")

    def _finalize(self):
        self._set_status(RunStatus.SUCCEEDED)

    def _run_stage(self, index: int, stage: Stage):
        logger.info(f"Executing stage {index}: {stage.name}")
        stage.start()
        self._observe("stage_updated", index, stage)

        try:
            logs = stage.action(self)
        except PipelineError as e:
            self._stage_failed(stage, f"{type(e).__name__}: {e}", e.logs)
        except Exception as e:
            logger.exception(f"Stage {index} ({stage.name}) failed with exception")
            self._stage_failed(stage, f"{type(e).__name__}: {e}")
        else:
            stage.passed(logs)
            logger.info(f"Stage {index} ({stage.name}) passed")

        self._observe("stage_updated", index, stage)

    def _stage_failed(self, stage: Stage, error: str, logs: Optional[str] = None):
        stage.failed(error, logs)
        if stage.blocking and not self.is_final:
            logger.error(f"Blocking stage '{stage.name}' failed: {error}")
            self._set_status(RunStatus.FAILED)
        else:
            # Advisory failures, and any failure once the status is final
            self.warn(f"{stage.name}: {error}")
