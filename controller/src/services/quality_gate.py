"""
Quality gate - turns an external verdict into a proceed/halt decision.
"""

import logging
from typing import List, Optional

import httpx

from controller.src.errors import AdvisoryScanFailure, BlockingScanFailure
from controller.src.models.pipeline import (
    GateDecision,
    GatePolicy,
    GateResult,
    Verdict,
)

logger = logging.getLogger(__name__)

class QualityGate:
    """
    Code-quality and security failures are advisory unless the operator
    sets abort_on_failure. Every evaluation is kept in `decisions`.
    """

    def __init__(self, name: str):
        self.name = name
        self.decisions: List[GateDecision] = []

    def evaluate(self, verdict: Verdict, abort_on_failure: bool) -> GateResult:
        policy = GatePolicy.from_flag(abort_on_failure)
        if verdict == Verdict.FAILED and policy == GatePolicy.BLOCKING:
            result = GateResult.HALT_RUN
        else:
            result = GateResult.PROCEED

        decision = GateDecision(
            gate=self.name,
            verdict=verdict,
            policy=policy,
            result=result,
        )
        self.decisions.append(decision)
        logger.info(
            f"Gate {self.name}: verdict={verdict.value} policy={policy.value} -> {result.value}"
        )
        return result

    def enforce(
        self,
        verdict: Verdict,
        abort_on_failure: bool,
        detail: str = "",
        logs: Optional[str] = None,
    ) -> GateDecision:
        """
        Evaluate and raise for a failing verdict.

        HaltRun raises BlockingScanFailure; a failed verdict that proceeds
        raises AdvisoryScanFailure so the advisory stage records it.
        """
        result = self.evaluate(verdict, abort_on_failure)
        message = f"{self.name} verdict: {verdict.value}"
        if detail:
            message = f"{message} ({detail})"

        if result == GateResult.HALT_RUN:
            raise BlockingScanFailure(message, logs=logs)
        if verdict == Verdict.FAILED:
            raise AdvisoryScanFailure(message, logs=logs)
        return self.decisions[-1]

def verdict_from_exit_code(exit_code: int) -> Verdict:
    return Verdict.PASSED if exit_code == 0 else Verdict.FAILED

def fetch_quality_verdict(
    server_url: str,
    project_key: str,
    token: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> Verdict:
    """
    Read the project's quality-gate status from a SonarQube server.

    Only ERROR fails the gate; OK, WARN and NONE pass.
    """
    url = f"{server_url.rstrip('/')}/api/qualitygates/project_status"
    auth = (token, "") if token else None
    owns_client = client is None
    client = client or httpx.Client(timeout=30.0)

    try:
        response = client.get(url, params={"projectKey": project_key}, auth=auth)
        response.raise_for_status()
        status = response.json().get("projectStatus", {}).get("status", "NONE")
    finally:
        if owns_client:
            client.close()

    logger.info(f"Quality gate status for {project_key}: {status}")
    return Verdict.FAILED if status == "ERROR" else Verdict.PASSED
