"""Shared fixtures for controller tests."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from controller.src.config import Settings
from controller.src.services.credentials import EnvCredentialStore
from controller.src.services.runner import ToolResult, ToolRunner

MANIFEST = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: netflix-app
spec:
  replicas: 2
  template:
    spec:
      containers:
        - name: netflix-app
          image: asa96/netflix-clone-app:17
          ports:
            - containerPort: 80
"""

CREDENTIALS = {
    "DEPLOYLINE_CREDENTIAL_GITHUB_TOKEN_TOKEN": "ghp-secret-token",
    "DEPLOYLINE_CREDENTIAL_SONAR_TOKEN_TOKEN": "sonar-secret",
    "DEPLOYLINE_CREDENTIAL_DOCKER_CRED_USERNAME": "asa96",
    "DEPLOYLINE_CREDENTIAL_DOCKER_CRED_PASSWORD": "hub-password",
    "DEPLOYLINE_CREDENTIAL_TMDB_API_KEY_SECRET": "tmdb-key",
}


@dataclass
class ToolCall:
    name: str
    command: object
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None


class FakeRunner(ToolRunner):
    """
    Records every tool invocation.

    `results` maps a tool name to a ToolResult, a callable
    (command, env, cwd) -> ToolResult, or a list of either consumed in
    order (the last entry repeats). Unlisted tools succeed.
    """

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls: List[ToolCall] = []

    def run(self, name, command, env=None, cwd=None, timeout=None, secrets=()):
        self.calls.append(ToolCall(name, command, dict(env or {}), cwd))
        result = self.results.get(name, ToolResult(0))
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if callable(result):
            result = result(command, env, cwd)
        return result

    @property
    def names(self) -> List[str]:
        return [call.name for call in self.calls]

    def calls_named(self, name: str) -> List[ToolCall]:
        return [call for call in self.calls if call.name == name]


def fake_clone(manifest: str = MANIFEST):
    """A git-clone result that lays down a checkout with a Dockerfile and manifest."""
    def clone(command, env, cwd):
        dest = Path(command[-1])
        (dest / "Kubernetes").mkdir(parents=True, exist_ok=True)
        (dest / "Kubernetes" / "deployment.yml").write_text(manifest)
        (dest / "Dockerfile").write_text("FROM nginx\n")
        return ToolResult(0, stdout=f"Cloning into '{dest}'...\n")
    return clone


@pytest.fixture
def credential_env():
    return dict(CREDENTIALS)


@pytest.fixture
def credential_store(credential_env):
    return EnvCredentialStore(environ=credential_env)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        workspace_root=str(tmp_path / "workspaces"),
        app_name="netflix-clone-app",
        registry_account="asa96",
        notify_recipients=["ops@example.com"],
    )


@pytest.fixture
def job_data():
    return {
        "build_id": "42",
        "profile": {},
        "repo_info": {
            "repo_name": "netflix-clone",
            "repo_full_name": "asa96/netflix-clone",
            "clone_url": "https://github.com/asa96/netflix-clone.git",
            "commit_sha": "abc123",
            "branch": "main",
            "commit_message": "Add trailer",
            "pusher": "asa96",
        },
        "queued_at": "2026-10-19T12:00:00",
    }
