from controller.src.models.pipeline import (
    RunStatus,
    StageResult,
    GatePolicy,
    Verdict,
    GateResult,
    GateDecision,
    RunConfig,
    Artifact,
    PublishedReference,
    ManifestDescriptor,
    CommitChange,
    PipelineJob,
)

__all__ = [
    "RunStatus",
    "StageResult",
    "GatePolicy",
    "Verdict",
    "GateResult",
    "GateDecision",
    "RunConfig",
    "Artifact",
    "PublishedReference",
    "ManifestDescriptor",
    "CommitChange",
    "PipelineJob",
]
