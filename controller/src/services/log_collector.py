"""
Collect tool output from Kubernetes Job pods.
"""

import logging
from typing import List, Optional
from kubernetes.client.rest import ApiException

from controller.src.k8s.client import get_core_api
from controller.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

def job_pod_names(job_name: str) -> List[str]:
    """Pods created for a tool Job."""
    try:
        pods = get_core_api().list_namespaced_pod(
            namespace=settings.k8s_namespace,
            label_selector=f"job-name={job_name}",
        )
    except ApiException as e:
        logger.error(f"Failed to list pods for job {job_name}: {e.reason}")
        return []

    return [p.metadata.name for p in pods.items]

def collect_logs(job_name: str, tail_lines: Optional[int] = None) -> str:
    """
    Collect the full output of a finished tool Job.

    Scanner reports are built from this output, so it is not truncated
    unless `tail_lines` is given.
    """
    core_v1 = get_core_api()
    output = []

    for pod_name in job_pod_names(job_name):
        try:
            output.append(core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=settings.k8s_namespace,
                tail_lines=tail_lines,
            ))
        except ApiException as e:
            logger.error(f"Failed to collect logs for {pod_name}: {e.reason}")
            output.append(f"Error collecting logs from {pod_name}: {e.reason}")

    return "".join(output)
