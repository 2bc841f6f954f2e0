"""
Kubernetes Job builder for pipeline tool commands.
"""

from kubernetes import client
from typing import Dict, Optional
import hashlib

from controller.src.config import get_settings

settings = get_settings()

WORKSPACE_VOLUME = "workspace"

def build_job_name(run_id: str, sequence: int, tool_name: str) -> str:
    """Generate a unique job name."""
    # K8s names must be lowercase, alphanumeric, max 63 chars
    safe_name = tool_name.lower().replace(" ", "-").replace("_", "-")
    safe_name = "".join(c for c in safe_name if c.isalnum() or c == "-")
    safe_name = safe_name[:20].strip("-")

    # Use short hash of run_id for uniqueness
    run_hash = hashlib.md5(run_id.encode()).hexdigest()[:8]

    return f"dl-{run_hash}-{sequence}-{safe_name}"

def build_job(
    run_id: str,
    sequence: int,
    tool_name: str,
    image: str,
    command: str,
    env_vars: Optional[Dict[str, str]] = None,
    secret_env: Optional[Dict[str, str]] = None,
    working_dir: Optional[str] = None,
    timeout: Optional[int] = None,
) -> client.V1Job:
    """
    Build a Kubernetes Job that runs one tool command of a pipeline stage.

    Variables in `secret_env` are read from the Secret named after the Job
    (see `build_job_secret`); only their names appear in the Job spec.
    """
    job_name = build_job_name(run_id, sequence, tool_name)

    env = [
        client.V1EnvVar(name="DEPLOYLINE_BUILD_ID", value=run_id),
        client.V1EnvVar(name="DEPLOYLINE_STAGE", value=tool_name),
    ]

    if env_vars:
        for key, value in env_vars.items():
            env.append(client.V1EnvVar(name=key, value=value))

    for key in sorted(secret_env or {}):
        env.append(client.V1EnvVar(
            name=key,
            value_from=client.V1EnvVarSource(
                secret_key_ref=client.V1SecretKeySelector(name=job_name, key=key),
            ),
        ))

    labels = {
        "app": "deployline",
        "build-id": run_id,
        "sequence": str(sequence),
    }

    volumes = None
    volume_mounts = None
    if settings.k8s_workspace_claim:
        volumes = [
            client.V1Volume(
                name=WORKSPACE_VOLUME,
                persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                    claim_name=settings.k8s_workspace_claim,
                ),
            )
        ]
        volume_mounts = [
            client.V1VolumeMount(name=WORKSPACE_VOLUME, mount_path=settings.workspace_root)
        ]

    container = client.V1Container(
        name="tool",
        image=image,
        command=["/bin/sh", "-c"],
        args=[command],
        env=env,
        working_dir=working_dir,
        volume_mounts=volume_mounts,
        resources=client.V1ResourceRequirements(
            requests={"cpu": "250m", "memory": "256Mi"},
            limits={"cpu": "2", "memory": "2Gi"},
        ),
    )

    pod_spec = client.V1PodSpec(
        containers=[container],
        restart_policy="Never",
        volumes=volumes,
    )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels),
        spec=pod_spec,
    )

    job_spec = client.V1JobSpec(
        template=template,
        backoff_limit=0,  # Don't retry failed tools
        active_deadline_seconds=timeout,
        ttl_seconds_after_finished=settings.job_ttl_after_finished,
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=settings.k8s_namespace,
            labels=labels,
        ),
        spec=job_spec,
    )

def build_job_secret(job_name: str, run_id: str, secret_env: Dict[str, str]) -> client.V1Secret:
    """Secret holding the scoped credentials of one tool Job."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=settings.k8s_namespace,
            labels={"app": "deployline", "build-id": run_id},
        ),
        type="Opaque",
        string_data=dict(secret_env),
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed'
    """
    if job.status is None:
        return "pending"

    if job.status.succeeded and job.status.succeeded > 0:
        return "succeeded"

    if job.status.failed and job.status.failed > 0:
        return "failed"

    if job.status.active and job.status.active > 0:
        return "running"

    return "pending"
