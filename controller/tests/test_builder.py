"""Tests for the artifact builder."""

import pytest

from controller.src.errors import BuildError, ConfigError
from controller.src.services.builder import ArtifactBuilder
from controller.src.services.runner import ToolResult

from conftest import FakeRunner


def make_builder(runner, build_id="42", registry="docker.io"):
    return ArtifactBuilder(
        runner,
        image_name="asa96/netflix-clone-app",
        build_id=build_id,
        required_build_args=["TMDB_V3_API_KEY"],
        registry=registry,
    )


def test_build_tags_exactly_build_id_and_latest(tmp_path):
    runner = FakeRunner()
    artifact = make_builder(runner).build(tmp_path, {"TMDB_V3_API_KEY": "tmdb-key"})

    assert artifact.tags == ("42", "latest")
    assert artifact.references == ["asa96/netflix-clone-app:42", "asa96/netflix-clone-app:latest"]


def test_build_args_passed_by_name_only(tmp_path):
    runner = FakeRunner()
    make_builder(runner).build(tmp_path, {"TMDB_V3_API_KEY": "tmdb-key"})

    call = runner.calls[0]
    assert call.command == [
        "docker", "build",
        "-t", "asa96/netflix-clone-app:42",
        "-t", "asa96/netflix-clone-app:latest",
        "--build-arg", "TMDB_V3_API_KEY",
        str(tmp_path),
    ]
    assert "tmdb-key" not in call.command
    assert call.env == {"TMDB_V3_API_KEY": "tmdb-key"}


def test_private_registry_references(tmp_path):
    artifact = make_builder(FakeRunner(), registry="registry.example.com:5000").build(
        tmp_path, {"TMDB_V3_API_KEY": "tmdb-key"},
    )

    assert artifact.references[0] == "registry.example.com:5000/asa96/netflix-clone-app:42"


@pytest.mark.parametrize("build_args", [{}, {"TMDB_V3_API_KEY": ""}])
def test_missing_build_arg_detected_before_builder(tmp_path, build_args):
    runner = FakeRunner()

    with pytest.raises(ConfigError, match="TMDB_V3_API_KEY"):
        make_builder(runner).build(tmp_path, build_args)
    assert runner.calls == []


@pytest.mark.parametrize("build_id", ["latest", "", "bad tag"])
def test_invalid_build_id(tmp_path, build_id):
    runner = FakeRunner()

    with pytest.raises(ConfigError):
        make_builder(runner, build_id=build_id).build(tmp_path, {"TMDB_V3_API_KEY": "k"})
    assert runner.calls == []


def test_missing_context(tmp_path):
    with pytest.raises(ConfigError, match="does not exist"):
        make_builder(FakeRunner()).build(tmp_path / "nope", {"TMDB_V3_API_KEY": "k"})


def test_builder_failure(tmp_path):
    runner = FakeRunner({"build-image": ToolResult(1, stderr="COPY failed")})

    with pytest.raises(BuildError, match="code 1") as exc_info:
        make_builder(runner).build(tmp_path, {"TMDB_V3_API_KEY": "k"})
    assert exc_info.value.logs == "COPY failed"
