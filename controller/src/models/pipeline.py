"""
Pipeline run models.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple, Dict, Any
from enum import Enum

from pydantic import BaseModel, field_validator

TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*$")
LATEST_TAG = "latest"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class StageResult(str, Enum):
    NOT_RUN = "not_run"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StageResult.PASSED, StageResult.FAILED, StageResult.SKIPPED)


class GatePolicy(str, Enum):
    BLOCKING = "blocking"
    ADVISORY = "advisory"

    @classmethod
    def from_flag(cls, abort_on_failure: bool) -> "GatePolicy":
        return cls.BLOCKING if abort_on_failure else cls.ADVISORY


class Verdict(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


class GateResult(str, Enum):
    PROCEED = "proceed"
    HALT_RUN = "halt_run"


class GateDecision(BaseModel):
    gate: str
    verdict: Verdict
    policy: GatePolicy
    result: GateResult


def is_valid_tag(tag: str) -> bool:
    return bool(TAG_PATTERN.match(tag or ""))


class RunConfig(BaseModel):
    """
    Everything a stage may read about the current run.

    Built once per run from settings, the repository profile and the
    trigger; frozen afterwards.
    """

    build_id: str
    repo_url: str
    branch: str = "main"
    commit_sha: Optional[str] = None
    triggered_by: Optional[str] = None

    app_name: str
    registry_account: str
    registry_host: str = "docker.io"
    workspace: Path

    manifest_path: str = "Kubernetes/deployment.yml"
    manifest_branch: str = "main"

    quality_credential_id: str
    registry_credential_id: str
    git_credential_id: str
    api_key_credential_id: str
    api_key_build_arg: str

    quality_command: str
    quality_server_url: Optional[str] = None
    quality_abort_on_failure: bool = False
    install_command: str
    dependency_scan_command: str
    fs_scan_command: str
    image_scan_command: str
    scan_abort_on_failure: bool = False

    builder_binary: str = "docker"
    git_author_name: str = "DeployLine"
    git_author_email: str = "deployline@localhost"
    stage_timeout: Optional[int] = None
    keep_workspace: bool = False

    class Config:
        frozen = True

    @field_validator("build_id")
    @classmethod
    def check_build_id(cls, value: str) -> str:
        if not is_valid_tag(value):
            raise ValueError(f"build id '{value}' is not a valid image tag")
        if value == LATEST_TAG:
            raise ValueError("build id must not be 'latest'")
        return value

    @field_validator("app_name", "registry_account")
    @classmethod
    def check_name(cls, value: str) -> str:
        if not NAME_PATTERN.match(value or ""):
            raise ValueError(f"'{value}' is not a valid image name component")
        return value

    @field_validator("repo_url", "api_key_build_arg", "manifest_path")
    @classmethod
    def check_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @property
    def image_name(self) -> str:
        return f"{self.registry_account}/{self.app_name}"

    @property
    def source_dir(self) -> Path:
        return self.workspace / "src"

    @property
    def reports_dir(self) -> Path:
        return self.workspace / "reports"

    @property
    def quality_policy(self) -> GatePolicy:
        return GatePolicy.from_flag(self.quality_abort_on_failure)

    @property
    def scan_policy(self) -> GatePolicy:
        return GatePolicy.from_flag(self.scan_abort_on_failure)

    @property
    def required_build_args(self) -> List[str]:
        return [self.api_key_build_arg]


class Artifact(BaseModel):
    repository: str
    tags: Tuple[str, ...]
    registry: str = "docker.io"

    class Config:
        frozen = True

    def reference(self, tag: str) -> str:
        # Docker Hub references are left unqualified
        if self.registry in ("", "docker.io"):
            return f"{self.repository}:{tag}"
        return f"{self.registry}/{self.repository}:{tag}"

    @property
    def references(self) -> List[str]:
        return [self.reference(tag) for tag in self.tags]


class PublishedReference(BaseModel):
    artifact: Artifact
    pushed_tags: List[str] = []

    @property
    def references(self) -> List[str]:
        return [self.artifact.reference(tag) for tag in self.pushed_tags]


class ManifestDescriptor(BaseModel):
    path: Path
    content: str
    matched_lines: List[int]
    changed: bool


class CommitChange(BaseModel):
    paths: List[str]
    message: str
    branch: str
    commit_sha: Optional[str] = None


class PipelineJob(BaseModel):
    build_id: str
    profile: Dict[str, Any] = {}
    repo_info: Dict[str, Any]
    queued_at: str
