"""Tests for the quality gate and scanners."""

import httpx
import pytest

from controller.src.errors import AdvisoryScanFailure, BlockingScanFailure
from controller.src.models.pipeline import GatePolicy, GateResult, Verdict
from controller.src.services.quality_gate import QualityGate, fetch_quality_verdict
from controller.src.services.runner import ToolResult
from controller.src.services.scanners import run_code_analysis, run_scan

from conftest import FakeRunner


@pytest.mark.parametrize("verdict,abort,expected", [
    (Verdict.FAILED, True, GateResult.HALT_RUN),
    (Verdict.FAILED, False, GateResult.PROCEED),
    (Verdict.PASSED, True, GateResult.PROCEED),
    (Verdict.PASSED, False, GateResult.PROCEED),
])
def test_evaluate(verdict, abort, expected):
    assert QualityGate("code-quality").evaluate(verdict, abort) == expected


def test_advisory_verdict_still_recorded():
    gate = QualityGate("code-quality")
    gate.evaluate(Verdict.FAILED, abort_on_failure=False)

    decision = gate.decisions[0]
    assert decision.verdict == Verdict.FAILED
    assert decision.policy == GatePolicy.ADVISORY
    assert decision.result == GateResult.PROCEED


def test_enforce_raises_by_policy():
    gate = QualityGate("filesystem-scan")

    with pytest.raises(BlockingScanFailure, match="filesystem-scan verdict: failed"):
        gate.enforce(Verdict.FAILED, abort_on_failure=True)
    with pytest.raises(AdvisoryScanFailure):
        gate.enforce(Verdict.FAILED, abort_on_failure=False)
    assert gate.enforce(Verdict.PASSED, abort_on_failure=True).result == GateResult.PROCEED
    assert len(gate.decisions) == 3


def sonar_client(status_code=200, status="OK", seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json={"projectStatus": {"status": status}})
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_fetch_quality_verdict():
    seen = []
    verdict = fetch_quality_verdict(
        "http://sonar:9000/", "netflix-clone-app", token="sonar-secret",
        client=sonar_client(status="ERROR", seen=seen),
    )

    assert verdict == Verdict.FAILED
    assert seen[0].url.path == "/api/qualitygates/project_status"
    assert seen[0].url.params["projectKey"] == "netflix-clone-app"
    assert seen[0].headers["authorization"].startswith("Basic ")


@pytest.mark.parametrize("status", ["OK", "WARN", "NONE"])
def test_non_error_statuses_pass(status):
    assert fetch_quality_verdict("http://sonar", "app", client=sonar_client(status=status)) == Verdict.PASSED


def test_run_scan_writes_report(tmp_path):
    runner = FakeRunner({"filesystem-scan": ToolResult(1, stdout="CRITICAL: 3\n")})
    gate = QualityGate("filesystem-scan")
    report = tmp_path / "reports" / "trivyfs.txt"

    with pytest.raises(AdvisoryScanFailure, match="exit code 1"):
        run_scan(runner, gate, "trivy fs .", tmp_path, report, abort_on_failure=False)

    assert report.read_text() == "CRITICAL: 3\n"
    assert runner.calls[0].command == "trivy fs ."
    assert runner.calls[0].cwd == str(tmp_path)


def test_code_analysis_uses_quality_server(tmp_path):
    runner = FakeRunner()
    gate = QualityGate("code-quality")

    with pytest.raises(BlockingScanFailure, match="quality server"):
        run_code_analysis(
            runner, gate, "sonar-scanner", tmp_path, abort_on_failure=True,
            server_url="http://sonar", project_key="app",
            http_client=sonar_client(status="ERROR"),
        )


def test_code_analysis_unreachable_server_fails_verdict(tmp_path):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    gate = QualityGate("code-quality")
    with pytest.raises(AdvisoryScanFailure, match="unreachable"):
        run_code_analysis(
            FakeRunner(), gate, "sonar-scanner", tmp_path, abort_on_failure=False,
            server_url="http://sonar", project_key="app",
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
    assert gate.decisions[0].verdict == Verdict.FAILED


def test_code_analysis_without_server_uses_exit_code(tmp_path):
    gate = QualityGate("code-quality")
    decision = run_code_analysis(FakeRunner(), gate, "sonar-scanner", tmp_path, abort_on_failure=True)

    assert decision.verdict == Verdict.PASSED
