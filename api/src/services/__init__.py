from api.src.services.github import (
    verify_signature,
    clone_repository,
    fetch_profile,
    parse_webhook_payload,
    should_trigger,
    cleanup_repo,
    RepositoryError,
)
from api.src.services.pipeline_parser import (
    parse_profile_config,
    parse_profile_dict,
    PipelineConfigError,
)
from api.src.services.queue import (
    allocate_build_id,
    enqueue_pipeline_run,
    request_cancel,
    get_run_status,
    get_queue_length,
)

__all__ = [
    "verify_signature",
    "clone_repository",
    "fetch_profile",
    "parse_webhook_payload",
    "should_trigger",
    "cleanup_repo",
    "RepositoryError",
    "parse_profile_config",
    "parse_profile_dict",
    "PipelineConfigError",
    "allocate_build_id",
    "enqueue_pipeline_run",
    "request_cancel",
    "get_run_status",
    "get_queue_length",
]
