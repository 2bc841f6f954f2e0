"""
Pipeline error taxonomy.

Stage actions raise these; the engine turns them into stage results.
"""

from typing import List, Optional


class PipelineError(Exception):
    """Base class for expected pipeline failures."""

    def __init__(self, message: str = "", logs: Optional[str] = None):
        super().__init__(message)
        self.logs = logs


class ConfigError(PipelineError):
    """Missing or invalid input, detected before any external call."""
    pass


class CheckoutError(PipelineError):
    """Source fetch failed."""
    pass


class ScanFailure(PipelineError):
    """A quality or security check reported a failing verdict."""
    pass


class AdvisoryScanFailure(ScanFailure):
    """Check failed but the gate is advisory; the run proceeds."""
    pass


class BlockingScanFailure(ScanFailure):
    """Check failed and the gate is configured to halt the run."""
    pass


class BuildError(PipelineError):
    """External image build exited non-zero."""
    pass


class PublishError(PipelineError):
    """
    A tag push failed.

    Tags pushed before the failure stay published; nothing is rolled back.
    """

    def __init__(
        self,
        message: str,
        pushed_tags: Optional[List[str]] = None,
        failed_tag: Optional[str] = None,
        logs: Optional[str] = None,
    ):
        super().__init__(message, logs=logs)
        self.pushed_tags = list(pushed_tags or [])
        self.failed_tag = failed_tag


class ManifestNotFoundError(PipelineError):
    """No matching image line (or no descriptor file at all)."""
    pass


class ChangePublishError(PipelineError):
    """Committing or pushing the descriptor failed."""
    pass


class GitConflictError(ChangePublishError):
    """Push rejected because the remote has diverged."""
    pass


class AuthError(PipelineError):
    """Credential resolution or remote authentication failed."""
    pass


class CredentialScopeError(PipelineError):
    """A credential binding was read outside its scope."""
    pass


class StageTimeoutError(PipelineError):
    """A tool exceeded the configured per-stage timeout."""
    pass


class StageStateError(PipelineError):
    """Illegal stage or run state transition."""
    pass
