"""Tests for run archiving and live status."""

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from controller.src.errors import BuildError, PublishError
from controller.src.models.db import Base, PipelineRun as RunRow
from controller.src.models.pipeline import GatePolicy
from controller.src.services.engine import PipelineRun, Stage
from controller.src.services.status_reporter import StatusReporter, get_run_stages
from controller.src.worker import CANCEL_PREFIX, PIPELINE_STATUS, cancel_flag


class FakeRedis:
    def __init__(self):
        self.hashes = {}
        self.keys = set()

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value

    def exists(self, key):
        return int(key in self.keys)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def failing_build(run):
    raise BuildError("exit 1", logs="step 3/7 failed")


def test_run_archived_with_stage_rows(session_factory):
    redis_client = FakeRedis()
    reporter = StatusReporter(session_factory, redis_client=redis_client, status_key=PIPELINE_STATUS)
    stages = [
        Stage("checkout", lambda run: "cloned"),
        Stage("quality", lambda run: run.warn("coverage dropped"), policy=GatePolicy.ADVISORY),
        Stage("build", failing_build),
        Stage("publish", lambda run: None),
        Stage("notify", lambda run: None, always_run=True),
    ]

    PipelineRun(None, build_id="42", observer=reporter).execute(stages)

    assert get_run_stages("42", session_factory) == [
        {"order": 0, "name": "checkout", "policy": "blocking", "status": "passed", "error": None},
        {"order": 1, "name": "quality", "policy": "advisory", "status": "passed", "error": None},
        {"order": 2, "name": "build", "policy": "blocking", "status": "failed", "error": "BuildError: exit 1"},
        {"order": 3, "name": "publish", "policy": "blocking", "status": "skipped", "error": None},
        {"order": 4, "name": "notify", "policy": "blocking", "status": "passed", "error": None},
    ]

    with session_factory() as session:
        row = session.execute(select(RunRow).where(RunRow.build_id == "42")).scalar_one()
        assert row.status == "failed"
        assert row.warnings == ["coverage dropped"]
        assert row.published_tags == []
        assert row.started_at is not None and row.finished_at is not None

    assert redis_client.hashes[PIPELINE_STATUS]["42"] == "failed"


def partial_push(run):
    run.partial_publish = ["42"]
    raise PublishError("push of latest failed", pushed_tags=["42"], failed_tag="latest")


def test_partial_publish_archived_as_tags(session_factory):
    reporter = StatusReporter(session_factory)
    PipelineRun(None, build_id="43", observer=reporter).execute([Stage("publish", partial_push)])

    with session_factory() as session:
        row = session.execute(select(RunRow).where(RunRow.build_id == "43")).scalar_one()
        assert row.status == "failed"
        assert row.published_tags == ["42"]


def test_existing_row_is_reused(session_factory):
    with session_factory() as session:
        session.add(RunRow(build_id="7", branch="main", status="pending"))
        session.commit()

    reporter = StatusReporter(session_factory)
    PipelineRun(None, build_id="7", observer=reporter).execute([Stage("checkout", lambda run: None)])

    with session_factory() as session:
        rows = session.execute(select(RunRow).where(RunRow.build_id == "7")).scalars().all()
        assert len(rows) == 1
        assert rows[0].status == "succeeded"
        assert rows[0].branch == "main"


def test_unknown_run_has_no_stages(session_factory):
    assert get_run_stages("missing", session_factory) == []


def test_cancel_flag():
    client = FakeRedis()
    cancel_requested = cancel_flag(client, "42")

    assert cancel_requested() is False
    client.keys.add(f"{CANCEL_PREFIX}42")
    assert cancel_requested() is True
