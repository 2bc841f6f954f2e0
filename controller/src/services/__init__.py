from controller.src.services.engine import PipelineRun, Stage, RunObserver
from controller.src.services.executor import (
    execute_pipeline,
    build_deployment_stages,
    build_run_config,
)
from controller.src.services.status_reporter import StatusReporter, get_run_stages

__all__ = [
    "PipelineRun",
    "Stage",
    "RunObserver",
    "execute_pipeline",
    "build_deployment_stages",
    "build_run_config",
    "StatusReporter",
    "get_run_stages",
]
