"""
Kubernetes API access for the Job runner and the Secret credential store.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from typing import Optional
import logging

from controller.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_apis = {}

def load_cluster_config():
    if settings.k8s_in_cluster:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    else:
        config.load_kube_config()
        logger.info("Loaded local Kubernetes config")

def init_k8s_client() -> bool:
    """
    Load cluster credentials and check that the controller namespace is reachable.
    Returns False (and leaves no clients behind) when the cluster cannot be used.
    """
    _apis.clear()
    try:
        load_cluster_config()
        api_client = client.ApiClient()
        batch_v1 = client.BatchV1Api(api_client)
        core_v1 = client.CoreV1Api(api_client)

        # Jobs and Secrets both live in this namespace
        core_v1.list_namespaced_pod(namespace=settings.k8s_namespace, limit=1)
    except Exception as e:
        logger.error(f"Kubernetes is not usable from this controller: {e}")
        return False

    _apis.update(batch=batch_v1, core=core_v1)
    logger.info(f"Kubernetes client ready for namespace '{settings.k8s_namespace}'")
    return True

def _api(kind: str):
    if kind not in _apis and not init_k8s_client():
        raise RuntimeError("Kubernetes client is not available")
    return _apis[kind]

def get_batch_api() -> client.BatchV1Api:
    """Jobs running tool commands."""
    return _api("batch")

def get_core_api() -> client.CoreV1Api:
    """Pods (tool output) and Secrets (credentials)."""
    return _api("core")

def ensure_namespace(namespace: Optional[str] = None):
    namespace = namespace or settings.k8s_namespace
    core_v1 = get_core_api()

    try:
        core_v1.read_namespace(name=namespace)
        return
    except ApiException as e:
        if e.status != 404:
            raise

    core_v1.create_namespace(
        body=client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
    )
    logger.info(f"Created namespace '{namespace}'")

def delete_job(job_name: str, namespace: Optional[str] = None):
    """Delete a tool Job together with its pod; a missing Job is not an error."""
    namespace = namespace or settings.k8s_namespace

    try:
        get_batch_api().delete_namespaced_job(
            name=job_name,
            namespace=namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )
        logger.debug(f"Deleted job {job_name}")
    except ApiException as e:
        if e.status != 404:
            logger.error(f"Failed to delete job {job_name}: {e.reason}")

def apply_secret(secret: client.V1Secret, namespace: Optional[str] = None):
    """Create a Secret, replacing a leftover one with the same name."""
    namespace = namespace or settings.k8s_namespace
    core_v1 = get_core_api()

    try:
        core_v1.create_namespaced_secret(namespace=namespace, body=secret)
    except ApiException as e:
        if e.status != 409:
            raise
        core_v1.replace_namespaced_secret(
            name=secret.metadata.name,
            namespace=namespace,
            body=secret,
        )

def set_owner_job(secret_name: str, job: client.V1Job, namespace: Optional[str] = None):
    """Make a Job own the Secret so the cluster deletes both together."""
    namespace = namespace or settings.k8s_namespace
    owner = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "name": job.metadata.name,
        "uid": job.metadata.uid,
    }
    get_core_api().patch_namespaced_secret(
        name=secret_name,
        namespace=namespace,
        body={"metadata": {"ownerReferences": [owner]}},
    )

def delete_secret(name: str, namespace: Optional[str] = None):
    namespace = namespace or settings.k8s_namespace

    try:
        get_core_api().delete_namespaced_secret(name=name, namespace=namespace)
        logger.debug(f"Deleted secret {name}")
    except ApiException as e:
        if e.status != 404:
            logger.error(f"Failed to delete secret {name}: {e.reason}")
