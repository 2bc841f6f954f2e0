"""
Tool runners - execute external tools (scanners, builder, git) for a stage.
"""

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from kubernetes.client.rest import ApiException

from controller.src.errors import StageTimeoutError
from controller.src.k8s import (
    apply_secret,
    build_job,
    build_job_secret,
    delete_job,
    delete_secret,
    get_batch_api,
    get_job_status,
    set_owner_job,
)
from controller.src.services.credentials import mask_secrets
from controller.src.services.log_collector import collect_logs

logger = logging.getLogger(__name__)

Command = Union[str, List[str]]


@dataclass
class ToolResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


def to_argv(command: Command) -> List[str]:
    """Shell strings run through /bin/sh -c, lists run as-is."""
    if isinstance(command, str):
        return ["/bin/sh", "-c", command]
    return list(command)


def to_shell(command: Command) -> str:
    if isinstance(command, str):
        return command
    return shlex.join(command)


class ToolRunner:
    def run(
        self,
        name: str,
        command: Command,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[int] = None,
        secrets: Iterable[str] = (),
    ) -> ToolResult:
        raise NotImplementedError


class LocalRunner(ToolRunner):
    """Runs tools as subprocesses of the controller."""

    def run(self, name, command, env=None, cwd=None, timeout=None, secrets=()):
        secrets = list(secrets)
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        logger.info(f"Running {name}: {mask_secrets(to_shell(command), secrets)}")
        start_time = time.time()

        try:
            result = subprocess.run(
                to_argv(command),
                cwd=cwd,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise StageTimeoutError(f"{name} timed out after {timeout}s")
        except OSError as e:
            logger.error(f"Failed to start {name}: {e}")
            return ToolResult(exit_code=127, stderr=str(e))

        duration = time.time() - start_time
        tool_result = ToolResult(
            exit_code=result.returncode,
            stdout=mask_secrets(result.stdout, secrets),
            stderr=mask_secrets(result.stderr, secrets),
        )
        if tool_result.succeeded:
            logger.info(f"{name} succeeded in {duration:.2f}s")
        else:
            logger.warning(f"{name} exited {result.returncode} after {duration:.2f}s")
        return tool_result


class KubernetesJobRunner(ToolRunner):
    """
    Runs each tool command as a Kubernetes Job.

    The run workspace must live on the PersistentVolumeClaim mounted at
    `workspace_root` so every Job sees the same checkout.
    """

    def __init__(self, settings, run_id: str, poll_interval: float = 2.0):
        self.settings = settings
        self.run_id = run_id
        self.poll_interval = poll_interval
        self._counter = 0

    def run(self, name, command, env=None, cwd=None, timeout=None, secrets=()):
        secrets = list(secrets)
        env = dict(env or {})
        # Credential-bearing variables go through a per-Job Secret
        secret_env = {
            key: value for key, value in env.items()
            if any(secret and secret in value for secret in secrets)
        }
        self._counter += 1
        job = build_job(
            run_id=self.run_id,
            sequence=self._counter,
            tool_name=name,
            image=self.settings.k8s_tool_image,
            command=to_shell(command),
            env_vars={key: value for key, value in env.items() if key not in secret_env},
            secret_env=secret_env,
            working_dir=cwd,
            timeout=timeout,
        )
        job_name = job.metadata.name

        if secret_env:
            apply_secret(build_job_secret(job_name, self.run_id, secret_env))
        try:
            created = self.create_job(job)
            if secret_env:
                set_owner_job(job_name, created)
            try:
                succeeded = self.wait_for_job(job_name, timeout)
                logs = collect_logs(job_name)
            finally:
                delete_job(job_name)
        finally:
            if secret_env:
                delete_secret(job_name)

        return ToolResult(
            exit_code=0 if succeeded else 1,
            stdout=mask_secrets(logs, secrets),
        )

    def create_job(self, job):
        job_name = job.metadata.name
        batch_v1 = get_batch_api()

        logger.info(f"Creating job {job_name}")
        try:
            return batch_v1.create_namespaced_job(
                namespace=self.settings.k8s_namespace,
                body=job,
            )
        except ApiException as e:
            if e.status != 409:
                raise
            # Job already exists, delete and recreate
            logger.warning(f"Job {job_name} already exists, deleting...")
            delete_job(job_name)
            time.sleep(self.poll_interval)
            return batch_v1.create_namespaced_job(
                namespace=self.settings.k8s_namespace,
                body=job,
            )

    def wait_for_job(self, job_name: str, timeout: Optional[int]) -> bool:
        """
        Wait for a job to complete.
        Returns True if succeeded, False if failed.
        """
        batch_v1 = get_batch_api()
        start_time = time.time()

        while True:
            if timeout is not None and time.time() - start_time > timeout:
                raise StageTimeoutError(f"Job {job_name} timed out after {timeout}s")

            try:
                job = batch_v1.read_namespaced_job(
                    name=job_name,
                    namespace=self.settings.k8s_namespace,
                )
                status = get_job_status(job)
                if status == "succeeded":
                    return True
                elif status == "failed":
                    return False
            except ApiException as e:
                logger.error(f"Error checking job status: {e}")

            time.sleep(self.poll_interval)


def create_runner(settings, run_id: str) -> ToolRunner:
    if settings.runner_backend == "local":
        return LocalRunner()
    if settings.runner_backend == "kubernetes":
        return KubernetesJobRunner(settings, run_id)
    raise ValueError(f"Unknown runner backend '{settings.runner_backend}'")
