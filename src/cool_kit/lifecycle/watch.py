"""Watching an application deployment through the HTTP API."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..api.client import CoolifyClient, parse_logs
from ..errors import APIError
from ..readiness import PollOutcome, PollResult, ProbeResult, wait_until

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = ("finished",)
FAILURE_STATUSES = ("failed", "error", "cancelled")


def classify_status(status: str) -> ProbeResult:
    normalized = status.strip().lower()
    if normalized in SUCCESS_STATUSES:
        return ProbeResult.ready(normalized)
    if normalized in FAILURE_STATUSES or normalized.startswith("cancelled"):
        return ProbeResult.failed(f"deployment {normalized}")
    return ProbeResult.not_ready(normalized or "unknown")


class DeploymentWatcher:
    """Readiness probe over the latest deployment of one application.

    Each call lists the application's deployments, forwards log lines not
    seen before to ``on_log`` and classifies the status. Too many API errors
    in a row, or no deployment at all after ``no_deployment_grace`` polls,
    count as failure.
    """

    def __init__(
        self,
        client: CoolifyClient,
        application_uuid: str,
        *,
        on_log: Optional[Callable[[str], None]] = None,
        max_consecutive_errors: int = 5,
        no_deployment_grace: int = 15,
    ) -> None:
        self.client = client
        self.application_uuid = application_uuid
        self.on_log = on_log
        self.max_consecutive_errors = max_consecutive_errors
        self.no_deployment_grace = no_deployment_grace
        self.attempts = 0
        self.consecutive_errors = 0
        self.seen_deployment = False
        self.deployment_uuid: Optional[str] = None
        self._log_offset = 0

    def __call__(self) -> ProbeResult:
        self.attempts += 1
        try:
            deployments = self.client.list_deployments(self.application_uuid)
        except APIError as exc:
            self.consecutive_errors += 1
            logger.debug("Listing deployments failed (%d in a row): %s", self.consecutive_errors, exc)
            if self.consecutive_errors >= self.max_consecutive_errors:
                return ProbeResult.failed(f"too many consecutive API errors: {exc}")
            return ProbeResult.not_ready(str(exc))
        self.consecutive_errors = 0

        if not deployments:
            if not self.seen_deployment and self.attempts > self.no_deployment_grace:
                return ProbeResult.failed(f"no deployment found after {self.attempts - 1} polls")
            return ProbeResult.not_ready("no deployment yet")

        self.seen_deployment = True
        latest = deployments[0]
        if latest.uuid != self.deployment_uuid:
            self.deployment_uuid = latest.uuid
            self._log_offset = 0

        status = latest.status
        try:
            detail = self.client.get_deployment(latest.uuid)
        except APIError as exc:
            logger.debug("Reading deployment %s failed: %s", latest.uuid, exc)
        else:
            self._emit_new_logs(detail.logs)
            status = detail.status or status
        return classify_status(status)

    def _emit_new_logs(self, raw_logs: str) -> None:
        text = parse_logs(raw_logs)
        if len(text) <= self._log_offset:
            return
        new_text = text[self._log_offset :]
        self._log_offset = len(text)
        if self.on_log is None:
            return
        for line in new_text.splitlines():
            if line.strip():
                self.on_log(line)

    def watch(
        self,
        *,
        interval: float = 2.0,
        deadline: float = 240.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> PollResult:
        """Poll until the deployment settles; on timeout fall back to the application status."""
        result = wait_until(self, interval=interval, deadline=deadline, clock=clock, sleep=sleep)
        if result.outcome is not PollOutcome.TIMEOUT:
            return result
        try:
            application = self.client.get_application(self.application_uuid)
        except APIError as exc:
            logger.debug("Final application status check failed: %s", exc)
            return result
        if application.status.strip().lower().startswith("running"):
            return PollResult(PollOutcome.SUCCESS, result.attempts, result.elapsed, application.status)
        return result
