"""Tests for checkout and manifest publishing."""

import base64
import shutil
import subprocess

import pytest

from controller.src.errors import AuthError, ChangePublishError, CheckoutError, GitConflictError
from controller.src.services.credentials import CredentialScope
from controller.src.services.git import ChangePublisher, checkout, git_auth_env
from controller.src.services.manifest import ManifestUpdater
from controller.src.services.runner import LocalRunner, ToolResult

from conftest import MANIFEST, FakeRunner

GIT_BINDINGS = {"token": "GIT_TOKEN"}


@pytest.fixture
def git_scope(credential_store):
    with CredentialScope(credential_store, "github-token", GIT_BINDINGS) as creds:
        yield creds


def test_auth_env_keeps_token_out_of_argv(git_scope):
    env = git_auth_env(git_scope)
    expected = base64.b64encode(b"x-access-token:ghp-secret-token").decode()

    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["GIT_CONFIG_KEY_0"] == "http.extraHeader"
    assert env["GIT_CONFIG_VALUE_0"] == f"Authorization: Basic {expected}"


def test_checkout_pins_commit(tmp_path, git_scope):
    runner = FakeRunner()
    checkout(runner, "https://github.com/asa96/netflix-clone.git", "main", tmp_path / "src",
             commit_sha="abc123", credential=git_scope)

    assert runner.names == ["git-clone", "git-fetch", "git-checkout"]
    clone = runner.calls[0]
    assert clone.command[:5] == ["git", "clone", "--depth", "1", "--branch"]
    assert all("ghp-secret-token" not in part for part in clone.command)
    assert runner.calls[2].command == ["git", "checkout", "--quiet", "abc123"]


def test_checkout_failures(tmp_path):
    runner = FakeRunner({"git-clone": ToolResult(128, stderr="fatal: Remote branch nope not found")})
    with pytest.raises(CheckoutError, match="Failed to clone"):
        checkout(runner, "https://example.com/repo.git", "nope", tmp_path / "src")

    runner = FakeRunner({"git-clone": ToolResult(128, stderr="fatal: Authentication failed for 'https://...'")})
    with pytest.raises(AuthError):
        checkout(runner, "https://example.com/repo.git", "main", tmp_path / "src")


def publisher(runner, tmp_path):
    return ChangePublisher(runner, tmp_path, "DeployLine", "deployline@example.com")


def test_commit_and_push(tmp_path, git_scope):
    runner = FakeRunner({"git-rev-parse": ToolResult(0, stdout="deadbeef\n")})
    change = publisher(runner, tmp_path).commit_and_push(
        [tmp_path / "Kubernetes" / "deployment.yml"], "Update image [skip ci]", "main", git_scope,
    )

    assert runner.names == ["git-add", "git-commit", "git-rev-parse", "git-push"]
    assert runner.calls[0].command == ["git", "add", "--", "Kubernetes/deployment.yml"]
    assert runner.calls[3].command == ["git", "push", "origin", "HEAD:refs/heads/main"]
    assert "GIT_CONFIG_VALUE_0" in runner.calls[3].env
    assert change.paths == ["Kubernetes/deployment.yml"]
    assert change.commit_sha == "deadbeef"
    assert change.branch == "main"


@pytest.mark.parametrize("stderr,error", [
    (" ! [rejected]        HEAD -> main (fetch first)", GitConflictError),
    ("remote: Permission denied to deployline.\nfatal: unable to access", AuthError),
    ("fatal: the remote end hung up unexpectedly", ChangePublishError),
])
def test_push_failures_classified(tmp_path, git_scope, stderr, error):
    runner = FakeRunner({"git-push": ToolResult(1, stderr=stderr)})

    with pytest.raises(error):
        publisher(runner, tmp_path).commit_and_push(["deployment.yml"], "msg", "main", git_scope)


def test_push_requires_active_scope(tmp_path, credential_store):
    scope = CredentialScope(credential_store, "github-token", GIT_BINDINGS)

    with pytest.raises(AuthError):
        publisher(FakeRunner(), tmp_path).commit_and_push(["deployment.yml"], "msg", "main", scope)


def git(*args, cwd):
    return subprocess.run(
        ["git", "-c", "user.name=test", "-c", "user.email=test@example.com", *args],
        cwd=cwd, check=True, capture_output=True, text=True,
    ).stdout.strip()


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_one_commit_touching_only_the_manifest(tmp_path, git_scope):
    remote = tmp_path / "remote.git"
    work = tmp_path / "work"
    git("init", "--bare", str(remote), cwd=tmp_path)
    git("init", str(work), cwd=tmp_path)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=work)
    (work / "Kubernetes").mkdir()
    (work / "Kubernetes" / "deployment.yml").write_text(MANIFEST)
    (work / "README.md").write_text("netflix clone\n")
    git("add", ".", cwd=work)
    git("commit", "-m", "initial", cwd=work)
    git("remote", "add", "origin", str(remote), cwd=work)
    git("push", "origin", "main", cwd=work)

    manifest = work / "Kubernetes" / "deployment.yml"
    ManifestUpdater().update(manifest, "netflix-clone-app", "42")
    change = ChangePublisher(LocalRunner(), work, "DeployLine", "deployline@example.com").commit_and_push(
        [manifest], "Update netflix-clone-app image to version 42 [skip ci]", "main", git_scope,
    )

    assert git("rev-list", "--count", "main", cwd=remote) == "2"
    assert git("rev-parse", "main", cwd=remote) == change.commit_sha
    assert git("diff", "--name-only", "main~1", "main", cwd=remote) == "Kubernetes/deployment.yml"
    assert "netflix-clone-app:42" in git("show", "main:Kubernetes/deployment.yml", cwd=remote)
