from controller.src.k8s.client import (
    init_k8s_client,
    get_batch_api,
    get_core_api,
    ensure_namespace,
    delete_job,
    apply_secret,
    set_owner_job,
    delete_secret,
)
from controller.src.k8s.job_builder import (
    build_job,
    build_job_name,
    build_job_secret,
    get_job_status,
)

__all__ = [
    "init_k8s_client",
    "get_batch_api",
    "get_core_api",
    "ensure_namespace",
    "delete_job",
    "apply_secret",
    "set_owner_job",
    "delete_secret",
    "build_job",
    "build_job_name",
    "build_job_secret",
    "get_job_status",
]
