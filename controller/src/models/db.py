"""
Database models for controller (sync version).
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_id = Column(Uuid)
    build_id = Column(String(64), nullable=False, unique=True)
    commit_sha = Column(String(40))
    branch = Column(String(255), nullable=False)
    status = Column(String(50), default="pending")
    triggered_by = Column(String(255))
    config = Column(JSONType)
    warnings = Column(JSONType)
    gate_decisions = Column(JSONType)
    reports = Column(JSONType)
    published_tags = Column(JSONType)
    manifest_commit = Column(String(40))
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class PipelineStage(Base):
    __tablename__ = "pipeline_stages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid, ForeignKey("pipeline_runs.id"))
    name = Column(String(255), nullable=False)
    policy = Column(String(50), nullable=False)
    status = Column(String(50), default="not_run")
    stage_order = Column(Integer, nullable=False)
    error = Column(Text)
    logs = Column(Text)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
