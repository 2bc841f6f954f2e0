"""
GitHub service for webhook validation and repo operations.
"""

import hmac
import hashlib
import logging
import shutil
import tempfile
import subprocess
import os
from typing import Optional, Dict, Any, Tuple

import yaml

from api.src.config import get_settings
from api.src.services.pipeline_parser import PipelineConfigError

logger = logging.getLogger(__name__)
settings = get_settings()

PROFILE_FILES = (".deployline.yml", ".deployline.yaml")

class RepositoryError(Exception):
    """Raised when the repository cannot be fetched."""
    pass

def verify_signature(payload: bytes, signature: str) -> bool:
    """Verify GitHub webhook signature."""
    if not settings.github_webhook_secret:
        # Skip verification if no secret configured (development)
        return True

    expected = "sha256=" + hmac.new(
        settings.github_webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")

async def clone_repository(clone_url: str, branch: str, commit_sha: Optional[str] = None) -> str:
    """
    Shallow-clone a branch to a temporary directory.
    Returns path to cloned repo.
    """
    temp_dir = tempfile.mkdtemp(prefix="deployline_")
    repo_path = os.path.join(temp_dir, "repo")

    try:
        subprocess.run(
            ["git", "clone", "--depth", "1", "--branch", branch, clone_url, repo_path],
            check=True,
            capture_output=True,
            timeout=120
        )

        # Read the profile as of the pushed commit
        if commit_sha:
            subprocess.run(
                ["git", "fetch", "--depth", "1", "origin", commit_sha],
                cwd=repo_path,
                capture_output=True,
                timeout=60
            )
            subprocess.run(
                ["git", "checkout", "--quiet", commit_sha],
                cwd=repo_path,
                check=True,
                capture_output=True,
                timeout=30
            )

        return repo_path
    except subprocess.TimeoutExpired:
        cleanup_repo(repo_path)
        raise RepositoryError("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        cleanup_repo(repo_path)
        raise RepositoryError(f"Failed to clone repository: {e.stderr.decode(errors='replace')}")

async def fetch_profile(repo_path: str) -> Optional[Any]:
    """
    Read .deployline.yml from the repository.
    Returns the raw YAML document, or None if the repository has no profile.
    """
    for name in PROFILE_FILES:
        profile_path = os.path.join(repo_path, name)
        if os.path.exists(profile_path):
            with open(profile_path, "r") as f:
                try:
                    return yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise PipelineConfigError(f"Invalid YAML in {name}: {e}")

    return None

def parse_webhook_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract relevant info from GitHub webhook payload."""
    repo = payload.get("repository") or {}
    head_commit = payload.get("head_commit") or {}

    # Get branch from ref (refs/heads/main -> main)
    ref = payload.get("ref", "")
    branch = ref.replace("refs/heads/", "") if ref.startswith("refs/heads/") else ref

    return {
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        "clone_url": repo.get("clone_url", ""),
        "commit_sha": head_commit.get("id", payload.get("after", "")),
        "branch": branch,
        "commit_message": head_commit.get("message", ""),
        "pusher": (payload.get("pusher") or {}).get("name", ""),
        "deleted": bool(payload.get("deleted", False)),
    }

def should_trigger(webhook_data: Dict[str, Any]) -> Tuple[bool, str]:
    """Decide whether a push starts a deployment run."""
    if webhook_data.get("deleted"):
        return False, "Branch deleted"

    if not webhook_data["commit_sha"]:
        return False, "No commit SHA"

    if settings.deploy_branches and webhook_data["branch"] not in settings.deploy_branches:
        return False, f"Branch {webhook_data['branch']} not configured for deployment"

    # Manifest bumps pushed by the pipeline itself
    if settings.skip_marker and settings.skip_marker in webhook_data.get("commit_message", ""):
        return False, "Commit marked to skip CI"

    return True, ""

def cleanup_repo(repo_path: str):
    """Clean up cloned repository."""
    if repo_path and os.path.exists(os.path.dirname(repo_path)):
        shutil.rmtree(os.path.dirname(repo_path), ignore_errors=True)
        logger.debug(f"Removed {os.path.dirname(repo_path)}")
