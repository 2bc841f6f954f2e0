"""
Pipeline executor - assembles the deployment stages for a queued job and runs them.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from controller.src.config import Settings, get_settings
from controller.src.errors import AuthError, BuildError, ConfigError, PublishError
from controller.src.models.pipeline import GatePolicy, PipelineJob, RunConfig
from controller.src.services import git
from controller.src.services.builder import ArtifactBuilder
from controller.src.services.credentials import (
    CredentialScope,
    CredentialStore,
    create_credential_store,
)
from controller.src.services.engine import PipelineRun, RunObserver, Stage
from controller.src.services.manifest import ManifestUpdater
from controller.src.services.notifier import Notifier
from controller.src.services.publisher import PASSWORD_BINDING, USER_BINDING, ArtifactPublisher
from controller.src.services.quality_gate import QualityGate
from controller.src.services.runner import ToolRunner, create_runner
from controller.src.services.scanners import run_code_analysis, run_scan

logger = logging.getLogger(__name__)

# Keys a repository's .deployline.yml may override
PROFILE_FIELDS = (
    "app_name",
    "manifest_path",
    "manifest_branch",
    "quality_abort_on_failure",
    "scan_abort_on_failure",
    "install_command",
    "quality_command",
    "dependency_scan_command",
    "fs_scan_command",
    "image_scan_command",
)

SETTINGS_FIELDS = (
    "app_name",
    "registry_account",
    "registry_host",
    "manifest_path",
    "manifest_branch",
    "quality_credential_id",
    "registry_credential_id",
    "git_credential_id",
    "api_key_credential_id",
    "api_key_build_arg",
    "quality_command",
    "quality_server_url",
    "quality_abort_on_failure",
    "install_command",
    "dependency_scan_command",
    "fs_scan_command",
    "image_scan_command",
    "scan_abort_on_failure",
    "builder_binary",
    "git_author_name",
    "git_author_email",
    "stage_timeout",
    "keep_workspace",
)

QUALITY_BINDINGS = {"token": "SONAR_TOKEN"}
REGISTRY_BINDINGS = {"username": USER_BINDING, "password": PASSWORD_BINDING}
GIT_BINDINGS = {"token": git.TOKEN_BINDING}

DEPENDENCY_REPORT = "dependency-check-report.txt"
FS_REPORT = "trivyfs.txt"
IMAGE_REPORT = "trivyimage.txt"

@dataclass
class PipelineServices:
    runner: ToolRunner
    credentials: CredentialStore
    notifier: Notifier
    manifest_updater: ManifestUpdater = field(default_factory=ManifestUpdater)
    http_client: Optional[httpx.Client] = None

def create_services(settings: Settings, build_id: str) -> PipelineServices:
    return PipelineServices(
        runner=create_runner(settings, build_id),
        credentials=create_credential_store(settings),
        notifier=Notifier(
            webhook_url=settings.notify_webhook_url,
            recipients=settings.notify_recipients,
            timeout=settings.notify_timeout,
        ),
    )

def build_run_config(job: PipelineJob, settings: Settings) -> RunConfig:
    """
    Merge settings, the repository profile and the trigger into a RunConfig.

    Raises ConfigError for anything missing or invalid.
    """
    repo = job.repo_info or {}
    values: Dict[str, Any] = {name: getattr(settings, name) for name in SETTINGS_FIELDS}
    values.update({k: v for k, v in (job.profile or {}).items() if k in PROFILE_FIELDS})

    if not values.get("app_name"):
        values["app_name"] = (repo.get("repo_name") or "").lower()

    values.update(
        build_id=job.build_id,
        repo_url=repo.get("clone_url") or "",
        branch=repo.get("branch") or "main",
        commit_sha=repo.get("commit_sha") or None,
        triggered_by=repo.get("pusher") or None,
        workspace=Path(settings.workspace_root) / job.build_id,
    )
    if not values.get("manifest_branch"):
        values["manifest_branch"] = values["branch"]

    try:
        return RunConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid run configuration: {problems}")

def render_command(template: str, **values: str) -> str:
    """Fill {name} placeholders, leaving any other braces for the shell."""
    for name, value in values.items():
        template = template.replace("{" + name + "}", value)
    return template

def notify_stage(notifier: Notifier) -> Stage:
    def notify(run: PipelineRun) -> str:
        delivered = notifier.notify(run)
        return "notification delivered" if delivered else "notification not delivered"

    return Stage("notify", notify, policy=GatePolicy.ADVISORY, always_run=True)

def build_deployment_stages(config: RunConfig, services: PipelineServices) -> List[Stage]:
    """The fixed deployment pipeline, in execution order."""
    runner = services.runner
    store = services.credentials
    timeout = config.stage_timeout
    source = config.source_dir
    placeholders = {
        "app_name": config.app_name,
        "build_id": config.build_id,
        "image": f"{config.image_name}:{config.build_id}",
    }

    def record_gate(run: PipelineRun, gate: QualityGate):
        run.gate_decisions.extend(gate.decisions)

    def clean_workspace(run: PipelineRun) -> str:
        if config.workspace.exists():
            shutil.rmtree(config.workspace)
        config.reports_dir.mkdir(parents=True)
        return f"Prepared workspace {config.workspace}"

    def checkout_source(run: PipelineRun) -> str:
        with CredentialScope(store, config.git_credential_id, GIT_BINDINGS) as creds:
            git.checkout(
                runner,
                config.repo_url,
                config.branch,
                source,
                commit_sha=config.commit_sha,
                credential=creds,
                timeout=timeout,
            )
        return f"Checked out {config.repo_url}@{config.commit_sha or config.branch}"

    def code_quality(run: PipelineRun) -> str:
        gate = QualityGate("code-quality")
        command = render_command(config.quality_command, **placeholders)
        try:
            with CredentialScope(store, config.quality_credential_id, QUALITY_BINDINGS) as creds:
                decision = run_code_analysis(
                    runner,
                    gate,
                    command,
                    source,
                    config.quality_abort_on_failure,
                    env=creds.env(),
                    secrets=creds.secret_values(),
                    server_url=config.quality_server_url,
                    project_key=config.app_name,
                    token=creds["SONAR_TOKEN"],
                    timeout=timeout,
                    http_client=services.http_client,
                )
        finally:
            record_gate(run, gate)
        return f"Quality verdict: {decision.verdict.value}"

    def install_dependencies(run: PipelineRun) -> str:
        result = runner.run(
            "install-dependencies", config.install_command, cwd=str(source), timeout=timeout,
        )
        if not result.succeeded:
            raise BuildError(
                f"Dependency install exited with code {result.exit_code}", logs=result.output,
            )
        return result.output

    def scan(name: str, template: str, report: str) -> Callable[[PipelineRun], str]:
        def action(run: PipelineRun) -> str:
            gate = QualityGate(name)
            report_path = config.reports_dir / report
            try:
                decision = run_scan(
                    runner,
                    gate,
                    render_command(template, **placeholders),
                    source,
                    report_path,
                    config.scan_abort_on_failure,
                    timeout=timeout,
                )
            finally:
                record_gate(run, gate)
                if report_path.exists():
                    run.reports[name] = report_path
            return f"{name} verdict: {decision.verdict.value}"
        return action

    def build_image(run: PipelineRun) -> str:
        builder = ArtifactBuilder(
            runner,
            image_name=config.image_name,
            build_id=config.build_id,
            required_build_args=config.required_build_args,
            registry=config.registry_host,
            builder_binary=config.builder_binary,
            timeout=timeout,
        )
        bindings = {"secret": config.api_key_build_arg}
        try:
            with CredentialScope(store, config.api_key_credential_id, bindings) as creds:
                run.artifact = builder.build(source, creds.env())
        except AuthError as e:
            raise ConfigError(f"Build arg {config.api_key_build_arg} unavailable: {e}")
        return f"Built {', '.join(run.artifact.references)}"

    def publish_image(run: PipelineRun) -> str:
        if run.artifact is None:
            raise ConfigError("No artifact to publish")

        publisher = ArtifactPublisher(runner, builder_binary=config.builder_binary, timeout=timeout)
        with CredentialScope(store, config.registry_credential_id, REGISTRY_BINDINGS) as creds:
            try:
                run.published = publisher.publish(run.artifact, creds)
            except PublishError as e:
                run.partial_publish = list(e.pushed_tags)
                raise
        return f"Published {', '.join(run.published.references)}"

    def update_manifest(run: PipelineRun) -> str:
        run.manifest = services.manifest_updater.update(
            source / config.manifest_path,
            config.app_name,
            config.build_id,
        )
        state = "updated" if run.manifest.changed else "already current"
        return f"{config.manifest_path} {state} (lines {run.manifest.matched_lines})"

    def push_manifest(run: PipelineRun) -> str:
        if run.manifest is None:
            raise ConfigError("No manifest update to publish")

        publisher = git.ChangePublisher(
            runner,
            source,
            author_name=config.git_author_name,
            author_email=config.git_author_email,
            timeout=timeout,
        )
        message = f"Update {config.app_name} image to version {config.build_id} [skip ci]"
        with CredentialScope(store, config.git_credential_id, GIT_BINDINGS) as creds:
            run.commit = publisher.commit_and_push(
                [run.manifest.path], message, config.manifest_branch, creds,
            )
        return f"Pushed {run.commit.commit_sha} to {config.manifest_branch}"

    def cleanup_workspace(run: PipelineRun) -> str:
        if config.keep_workspace:
            return f"Kept workspace {config.workspace}"
        shutil.rmtree(config.workspace, ignore_errors=True)
        return f"Removed workspace {config.workspace}"

    scan_policy = config.scan_policy
    return [
        Stage("clean-workspace", clean_workspace),
        Stage("checkout", checkout_source),
        Stage("code-quality", code_quality, policy=config.quality_policy),
        Stage("install-dependencies", install_dependencies),
        Stage("dependency-scan", scan("dependency-scan", config.dependency_scan_command, DEPENDENCY_REPORT), policy=scan_policy),
        Stage("filesystem-scan", scan("filesystem-scan", config.fs_scan_command, FS_REPORT), policy=scan_policy),
        Stage("build-image", build_image),
        Stage("publish-image", publish_image),
        Stage("image-scan", scan("image-scan", config.image_scan_command, IMAGE_REPORT), policy=scan_policy),
        Stage("update-manifest", update_manifest),
        Stage("push-manifest", push_manifest),
        notify_stage(services.notifier),
        Stage("cleanup-workspace", cleanup_workspace, policy=GatePolicy.ADVISORY, always_run=True),
    ]

def execute_pipeline(
    job_data: Dict[str, Any],
    services: Optional[PipelineServices] = None,
    observer: Optional[RunObserver] = None,
    cancel_requested: Optional[Callable[[], bool]] = None,
    settings: Optional[Settings] = None,
) -> PipelineRun:
    """
    Execute a queued pipeline job.

    A job whose configuration is invalid still produces a run: a failing
    `configure` stage followed by the notifier.
    """
    settings = settings or get_settings()
    job = PipelineJob(**job_data)
    services = services or create_services(settings, job.build_id)

    config = None
    config_error = None
    try:
        config = build_run_config(job, settings)
    except ConfigError as e:
        logger.error(f"Run {job.build_id} has invalid configuration: {e}")
        config_error = e

    run = PipelineRun(
        config,
        build_id=job.build_id,
        observer=observer,
        cancel_requested=cancel_requested,
    )

    if config_error is not None:
        def configure(run: PipelineRun):
            raise config_error

        stages = [Stage("configure", configure), notify_stage(services.notifier)]
    else:
        stages = build_deployment_stages(config, services)

    return run.execute(stages)
