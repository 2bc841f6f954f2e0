"""
Terminal run notification.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

MAX_REPORT_BYTES = 512 * 1024

def _read_report(path: Path) -> Optional[str]:
    try:
        data = Path(path).read_bytes()[:MAX_REPORT_BYTES]
        return data.decode("utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not attach report {path}: {e}")
        return None

def build_payload(run, recipients: List[str]) -> Dict[str, Any]:
    config = run.config
    subject = f"'{config.app_name if config else 'deployment'}' build {run.build_id}: {run.status.value.upper()}"

    attachments = []
    for name, path in run.reports.items():
        content = _read_report(path)
        if content is not None:
            attachments.append({"name": name, "filename": Path(path).name, "content": content})

    return {
        "subject": subject,
        "recipients": recipients,
        "status": run.status.value,
        "build_id": run.build_id,
        "app_name": config.app_name if config else None,
        "image": config.image_name if config else None,
        "repository": config.repo_url if config else None,
        "branch": config.branch if config else None,
        "commit_sha": config.commit_sha if config else None,
        "triggered_by": config.triggered_by if config else None,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "stages": [
            {"name": s.name, "policy": s.policy.value, "result": s.result.value, "error": s.error}
            for s in run.stages
        ],
        "warnings": list(run.warnings),
        "gate_decisions": [d.model_dump(mode="json") for d in run.gate_decisions],
        "published": run.published.references if run.published else [],
        "partial_publish": [run.artifact.reference(tag) for tag in run.partial_publish] if run.artifact else [],
        "commit": run.commit.commit_sha if run.commit else None,
        "attachments": attachments,
    }

class Notifier:
    """
    Posts the run outcome to a notification relay (which fans out to email).

    Delivery problems are logged; they never change the run.
    """

    def __init__(
        self,
        webhook_url: str = "",
        recipients: Optional[List[str]] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.webhook_url = webhook_url
        self.recipients = list(recipients or [])
        self.timeout = timeout
        self.client = client

    def notify(self, run) -> bool:
        payload = build_payload(run, self.recipients)

        if not self.webhook_url:
            logger.info(f"No notification relay configured; run {run.build_id} is {run.status.value}")
            return False

        client = self.client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            logger.info(f"Sent notification for run {run.build_id} ({run.status.value})")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver notification for run {run.build_id}: {e}")
            return False
        finally:
            if self.client is None:
                client.close()
