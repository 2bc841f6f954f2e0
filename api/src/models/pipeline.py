from sqlalchemy import JSON, Column, String, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from api.src.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

class Repository(Base):
    __tablename__ = "repositories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False, unique=True)
    clone_url = Column(String(500), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    runs = relationship("PipelineRun", back_populates="repository")

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    repository_id = Column(Uuid, ForeignKey("repositories.id", ondelete="CASCADE"))
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

    repository = relationship("Repository", back_populates="runs")
    stages = relationship("PipelineStage", back_populates="run", order_by="PipelineStage.stage_order")

class PipelineStage(Base):
    __tablename__ = "pipeline_stages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid, ForeignKey("pipeline_runs.id", ondelete="CASCADE"))
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

    run = relationship("PipelineRun", back_populates="stages")
