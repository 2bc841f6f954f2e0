"""
Git operations - source checkout and publishing the updated manifest.
"""

import base64
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from controller.src.errors import (
    AuthError,
    ChangePublishError,
    CheckoutError,
    GitConflictError,
)
from controller.src.models.pipeline import CommitChange
from controller.src.services.credentials import CredentialScope
from controller.src.services.runner import ToolResult, ToolRunner

logger = logging.getLogger(__name__)

USER_BINDING = "GIT_USERNAME"
TOKEN_BINDING = "GIT_TOKEN"

AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "terminal prompts disabled",
    "permission denied",
    "returned error: 401",
    "returned error: 403",
    "invalid username or password",
)
CONFLICT_MARKERS = (
    "[rejected]",
    "[remote rejected]",
    "non-fast-forward",
    "fetch first",
)

def git_auth_env(credential: Optional[CredentialScope]) -> Dict[str, str]:
    """
    HTTP auth for git through GIT_CONFIG_* variables, keeping the token
    out of argv and out of the remote URL.
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if credential is None:
        return env

    username = credential.env().get(USER_BINDING) or "x-access-token"
    token = credential[TOKEN_BINDING]
    basic = base64.b64encode(f"{username}:{token}".encode()).decode()
    env.update({
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    })
    return env

def _secrets(env: Dict[str, str], credential: Optional[CredentialScope]) -> List[str]:
    secrets = [env["GIT_CONFIG_VALUE_0"]] if "GIT_CONFIG_VALUE_0" in env else []
    if credential is not None:
        secrets += credential.secret_values()
    return secrets

def _is_auth_failure(result: ToolResult) -> bool:
    output = result.output.lower()
    return any(marker in output for marker in AUTH_MARKERS)

def checkout(
    runner: ToolRunner,
    repo_url: str,
    branch: str,
    dest: Path,
    commit_sha: Optional[str] = None,
    credential: Optional[CredentialScope] = None,
    timeout: Optional[int] = None,
) -> Path:
    """Clone `branch` into `dest` and pin `commit_sha` when given."""
    env = git_auth_env(credential)
    secrets = _secrets(env, credential)
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    result = runner.run(
        "git-clone",
        ["git", "clone", "--depth", "1", "--branch", branch, repo_url, str(dest)],
        env=env,
        timeout=timeout,
        secrets=secrets,
    )
    if not result.succeeded:
        if _is_auth_failure(result):
            raise AuthError(f"Authentication failed cloning {repo_url}", logs=result.output)
        raise CheckoutError(f"Failed to clone {repo_url}@{branch}", logs=result.output)

    if commit_sha:
        # The commit may be older than the shallow tip
        runner.run(
            "git-fetch",
            ["git", "fetch", "--depth", "1", "origin", commit_sha],
            env=env,
            cwd=str(dest),
            timeout=timeout,
            secrets=secrets,
        )
        result = runner.run(
            "git-checkout",
            ["git", "checkout", "--quiet", commit_sha],
            cwd=str(dest),
            timeout=timeout,
        )
        if not result.succeeded:
            raise CheckoutError(f"Failed to check out {commit_sha}", logs=result.output)

    logger.info(f"Checked out {repo_url}@{commit_sha or branch} into {dest}")
    return dest

class ChangePublisher:
    """Commits descriptor changes and pushes them; conflicts are surfaced, never merged."""

    def __init__(
        self,
        runner: ToolRunner,
        repo_dir: Path,
        author_name: str,
        author_email: str,
        remote: str = "origin",
        timeout: Optional[int] = None,
    ):
        self.runner = runner
        self.repo_dir = Path(repo_dir)
        self.author_name = author_name
        self.author_email = author_email
        self.remote = remote
        self.timeout = timeout

    def _git(self, name: str, args: List[str], env=None, secrets=()) -> ToolResult:
        return self.runner.run(
            name,
            ["git", *args],
            env=env,
            cwd=str(self.repo_dir),
            timeout=self.timeout,
            secrets=secrets,
        )

    def _relative(self, path) -> str:
        path = Path(path)
        if path.is_absolute():
            return os.path.relpath(path, self.repo_dir)
        return str(path)

    def commit_and_push(
        self,
        paths: Sequence,
        message: str,
        branch: str,
        credential: CredentialScope,
    ) -> CommitChange:
        if not credential.active:
            raise AuthError("Pushing changes requires an active credential scope")

        env = git_auth_env(credential)
        secrets = _secrets(env, credential)
        rel_paths = [self._relative(p) for p in paths]

        result = self._git("git-add", ["add", "--", *rel_paths])
        if not result.succeeded:
            raise ChangePublishError(f"git add failed: {result.output.strip()}", logs=result.output)

        # Exactly one commit per update, even when the descriptor was unchanged
        result = self._git("git-commit", [
            "-c", f"user.name={self.author_name}",
            "-c", f"user.email={self.author_email}",
            "commit", "--allow-empty", "-m", message,
        ])
        if not result.succeeded:
            raise ChangePublishError(f"git commit failed: {result.output.strip()}", logs=result.output)

        commit_sha = self._git("git-rev-parse", ["rev-parse", "HEAD"]).stdout.strip() or None

        result = self._git(
            "git-push",
            ["push", self.remote, f"HEAD:refs/heads/{branch}"],
            env=env,
            secrets=secrets,
        )
        if not result.succeeded:
            output = result.output.lower()
            if _is_auth_failure(result):
                raise AuthError(f"Authentication failed pushing to {branch}", logs=result.output)
            if any(marker in output for marker in CONFLICT_MARKERS):
                raise GitConflictError(
                    f"Push to {branch} rejected; remote has diverged", logs=result.output,
                )
            raise ChangePublishError(f"git push failed: {result.output.strip()}", logs=result.output)

        logger.info(f"Pushed {commit_sha} to {self.remote}/{branch}")
        return CommitChange(
            paths=rel_paths,
            message=message,
            branch=branch,
            commit_sha=commit_sha,
        )
