"""Tests for tool runners and Kubernetes Job specs."""

from types import SimpleNamespace

import pytest

from controller.src.errors import StageTimeoutError
from controller.src.config import Settings
from controller.src.k8s.job_builder import build_job, build_job_name, build_job_secret, get_job_status
from controller.src.services import runner
from controller.src.services.runner import KubernetesJobRunner
from controller.src.services.runner import LocalRunner, ToolResult, to_argv, to_shell


def test_command_forms():
    assert to_argv("trivy fs .") == ["/bin/sh", "-c", "trivy fs ."]
    assert to_argv(["docker", "push", "a:1"]) == ["docker", "push", "a:1"]
    assert to_shell(["git", "commit", "-m", "Update image [skip ci]"]) == "git commit -m 'Update image [skip ci]'"


def test_tool_result_output():
    assert ToolResult(0, stdout="out\n", stderr="err").output == "out\nerr"
    assert ToolResult(1, stderr="err").output == "err"
    assert not ToolResult(1).succeeded


def test_local_runner_masks_secrets(tmp_path):
    result = LocalRunner().run(
        "echo",
        'echo "token=$API_TOKEN"',
        env={"API_TOKEN": "s3cr3t-value"},
        cwd=str(tmp_path),
        secrets=["s3cr3t-value"],
    )

    assert result.succeeded
    assert result.stdout == "token=****\n"


def test_local_runner_exit_code(tmp_path):
    result = LocalRunner().run("fail", "echo broken >&2; exit 3", cwd=str(tmp_path))

    assert result.exit_code == 3
    assert result.stderr == "broken\n"


def test_local_runner_missing_binary():
    result = LocalRunner().run("missing", ["definitely-not-a-real-tool-xyz"])

    assert result.exit_code == 127


def test_local_runner_timeout():
    with pytest.raises(StageTimeoutError, match="timed out"):
        LocalRunner().run("sleep", ["sleep", "5"], timeout=1)


def test_job_name_is_valid_k8s_name():
    name = build_job_name("42", 3, "Dependency Scan_With A Very Long Name")

    assert name.startswith("dl-")
    assert len(name) <= 63
    assert name == name.lower()
    assert " " not in name and "_" not in name


def test_build_job():
    job = build_job(
        run_id="42",
        sequence=1,
        tool_name="image-scan",
        image="deployline/toolbox:latest",
        command="trivy image asa96/netflix-clone-app:42",
        env_vars={"TRIVY_SEVERITY": "CRITICAL"},
        working_dir="/tmp/deployline/42/src",
        timeout=600,
    )

    container = job.spec.template.spec.containers[0]
    env = {e.name: e.value for e in container.env}
    assert container.command == ["/bin/sh", "-c"]
    assert container.args == ["trivy image asa96/netflix-clone-app:42"]
    assert container.working_dir == "/tmp/deployline/42/src"
    assert env["DEPLOYLINE_BUILD_ID"] == "42"
    assert env["DEPLOYLINE_STAGE"] == "image-scan"
    assert env["TRIVY_SEVERITY"] == "CRITICAL"
    assert job.spec.backoff_limit == 0
    assert job.spec.active_deadline_seconds == 600
    assert job.metadata.labels["build-id"] == "42"


@pytest.mark.parametrize("status,expected", [
    (None, "pending"),
    (SimpleNamespace(succeeded=1, failed=None, active=None), "succeeded"),
    (SimpleNamespace(succeeded=None, failed=1, active=None), "failed"),
    (SimpleNamespace(succeeded=None, failed=None, active=1), "running"),
])
def test_job_status(status, expected):
    assert get_job_status(SimpleNamespace(status=status)) == expected


def test_secret_env_is_referenced_not_inlined():
    job = build_job(
        run_id="42",
        sequence=2,
        tool_name="registry-login",
        image="deployline/toolbox:latest",
        command="docker login",
        env_vars={"REGISTRY_USER": "asa96"},
        secret_env={"REGISTRY_PASSWORD": "s3cr3t-value"},
    )
    secret = build_job_secret(job.metadata.name, "42", {"REGISTRY_PASSWORD": "s3cr3t-value"})

    env = {e.name: e for e in job.spec.template.spec.containers[0].env}
    assert env["REGISTRY_USER"].value == "asa96"
    assert env["REGISTRY_PASSWORD"].value is None
    assert env["REGISTRY_PASSWORD"].value_from.secret_key_ref.name == job.metadata.name
    assert env["REGISTRY_PASSWORD"].value_from.secret_key_ref.key == "REGISTRY_PASSWORD"
    assert secret.metadata.name == job.metadata.name
    assert secret.string_data == {"REGISTRY_PASSWORD": "s3cr3t-value"}


class FakeBatchApi:
    def __init__(self):
        self.jobs = []

    def create_namespaced_job(self, namespace, body):
        self.jobs.append(body)
        return SimpleNamespace(metadata=SimpleNamespace(name=body.metadata.name, uid="job-uid"))

    def read_namespaced_job(self, name, namespace):
        return SimpleNamespace(status=SimpleNamespace(succeeded=1, failed=None, active=None))


@pytest.fixture
def cluster(monkeypatch):
    state = SimpleNamespace(batch=FakeBatchApi(), secrets=[], owners=[], deleted=[])
    monkeypatch.setattr(runner, "get_batch_api", lambda: state.batch)
    monkeypatch.setattr(runner, "apply_secret", state.secrets.append)
    monkeypatch.setattr(runner, "set_owner_job", lambda name, job: state.owners.append((name, job.metadata.uid)))
    monkeypatch.setattr(runner, "delete_secret", lambda name: state.deleted.append(f"secret/{name}"))
    monkeypatch.setattr(runner, "delete_job", lambda name: state.deleted.append(f"job/{name}"))
    monkeypatch.setattr(runner, "collect_logs", lambda name: "Login Succeeded with s3cr3t-value\n")
    return state


def test_kubernetes_runner_keeps_credentials_out_of_job_spec(cluster):
    result = KubernetesJobRunner(Settings(), "42", poll_interval=0).run(
        "registry-login",
        "docker login -u $REGISTRY_USER --password-stdin",
        env={"REGISTRY_USER": "asa96", "REGISTRY_PASSWORD": "s3cr3t-value"},
        secrets=["s3cr3t-value"],
    )

    job = cluster.batch.jobs[0]
    job_name = job.metadata.name
    container = job.spec.template.spec.containers[0]
    assert all(e.value != "s3cr3t-value" for e in container.env)
    assert cluster.secrets[0].string_data == {"REGISTRY_PASSWORD": "s3cr3t-value"}
    assert cluster.owners == [(job_name, "job-uid")]
    assert cluster.deleted == [f"job/{job_name}", f"secret/{job_name}"]
    assert result.succeeded
    assert result.stdout == "Login Succeeded with ****\n"


def test_kubernetes_runner_without_credentials_creates_no_secret(cluster):
    KubernetesJobRunner(Settings(), "42", poll_interval=0).run("fs-scan", "trivy fs .", env={"TRIVY_SEVERITY": "CRITICAL"})

    assert cluster.secrets == []
    assert cluster.owners == []
    assert cluster.deleted == [f"job/{cluster.batch.jobs[0].metadata.name}"]
