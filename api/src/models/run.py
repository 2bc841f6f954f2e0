from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

class StageResponse(BaseModel):
    name: str
    policy: str
    status: str
    stage_order: int
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PipelineRunBase(BaseModel):
    branch: str
    commit_sha: Optional[str] = None

class PipelineRunResponse(PipelineRunBase):
    id: UUID
    build_id: str
    status: str
    triggered_by: Optional[str] = None
    warnings: Optional[List[str]] = None
    gate_decisions: Optional[List[Dict[str, Any]]] = None
    published_tags: Optional[List[str]] = None
    manifest_commit: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    stages: List[StageResponse] = []

    class Config:
        from_attributes = True

class ManualTriggerRequest(BaseModel):
    repository_url: str
    branch: str = "main"
    commit_sha: Optional[str] = None
    triggered_by: Optional[str] = None
    profile: Dict[str, Any] = {}

    def repo_info(self) -> Dict[str, Any]:
        """Same shape as a parsed push webhook."""
        name = self.repository_url.rstrip("/").rsplit("/", 1)[-1]
        if name.endswith(".git"):
            name = name[:-4]
        return {
            "repo_name": name,
            "repo_full_name": self.repository_url,
            "clone_url": self.repository_url,
            "commit_sha": self.commit_sha or "",
            "branch": self.branch,
            "commit_message": "",
            "pusher": self.triggered_by or "manual",
        }

class TriggerResponse(BaseModel):
    status: str
    build_id: str

class RepositoryResponse(BaseModel):
    id: UUID
    name: str
    full_name: str
    clone_url: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
