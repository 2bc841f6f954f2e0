"""
External quality and security scanners.

The tools themselves are opaque: their output becomes a report file and
their exit code (or the quality server) becomes a verdict for the gate.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

import httpx

from controller.src.models.pipeline import GateDecision, Verdict
from controller.src.services.quality_gate import (
    QualityGate,
    fetch_quality_verdict,
    verdict_from_exit_code,
)
from controller.src.services.runner import ToolResult, ToolRunner

logger = logging.getLogger(__name__)

def write_report(report_path: Path, result: ToolResult) -> Path:
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(result.stdout or result.output or "")
    return report_path

def run_scan(
    runner: ToolRunner,
    gate: QualityGate,
    command: str,
    cwd: Path,
    report_path: Path,
    abort_on_failure: bool,
    timeout: Optional[int] = None,
) -> GateDecision:
    """Run a scanner, keep its report and gate on its exit code."""
    result = runner.run(gate.name, command, cwd=str(cwd), timeout=timeout)
    write_report(report_path, result)
    logger.info(f"{gate.name} report written to {report_path}")

    return gate.enforce(
        verdict_from_exit_code(result.exit_code),
        abort_on_failure,
        detail=f"exit code {result.exit_code}",
        logs=result.output,
    )

def run_code_analysis(
    runner: ToolRunner,
    gate: QualityGate,
    command: str,
    cwd: Path,
    abort_on_failure: bool,
    env: Optional[Dict[str, str]] = None,
    secrets: Iterable[str] = (),
    server_url: Optional[str] = None,
    project_key: Optional[str] = None,
    token: Optional[str] = None,
    timeout: Optional[int] = None,
    http_client: Optional[httpx.Client] = None,
) -> GateDecision:
    """
    Run the static analysis and gate on its verdict.

    With a quality server configured the verdict is the server's quality
    gate status; otherwise the analyzer's exit code decides.
    """
    result = runner.run(
        gate.name, command, env=env, cwd=str(cwd), timeout=timeout, secrets=secrets,
    )
    verdict = verdict_from_exit_code(result.exit_code)
    detail = f"exit code {result.exit_code}"

    if result.succeeded and server_url:
        try:
            verdict = fetch_quality_verdict(
                server_url, project_key, token=token, client=http_client,
            )
            detail = "quality server"
        except httpx.HTTPError as e:
            logger.error(f"Failed to read quality gate from {server_url}: {e}")
            verdict = Verdict.FAILED
            detail = f"quality server unreachable: {e}"

    return gate.enforce(verdict, abort_on_failure, detail=detail, logs=result.output)
