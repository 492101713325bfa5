"""Steps shared by every target once a host can run commands."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

import requests

from ..config import AppConfig
from ..executor import CommandExecutor
from ..lifecycle.compose import AppLayout
from ..lifecycle.install import AppInstaller, AppSecrets
from ..orchestrator.context import DeploymentContext
from ..orchestrator.models import StepDefinition
from ..orchestrator.pipeline import StepReporter
from ..readiness import (
    ProbeResult,
    ProbeStatus,
    containers_healthy_probe,
    docker_ready_probe,
    wait_until,
)

logger = logging.getLogger(__name__)


def http_health_probe(url: str, session: Optional[requests.Session] = None, timeout: float = 10.0):
    """Ready once ``url`` answers with a 2xx status."""
    http = session or requests.Session()

    def probe() -> ProbeResult:
        try:
            response = http.get(url, timeout=timeout)
        except requests.exceptions.RequestException as exc:
            return ProbeResult.not_ready(str(exc))
        if 200 <= response.status_code < 300:
            return ProbeResult.ready(str(response.status_code))
        return ProbeResult.not_ready(f"HTTP {response.status_code}")

    return probe


class StackSteps:
    """Install-and-verify steps for the application stack.

    ``executor_factory`` is called lazily so that targets whose host address
    is only known mid-pipeline can share these steps.
    """

    def __init__(
        self,
        config: AppConfig,
        context: DeploymentContext,
        executor_factory: Callable[[], CommandExecutor],
        *,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.context = context
        self.layout = AppLayout.from_config(config.application)
        self._executor_factory = executor_factory
        self._http_session = http_session
        self._clock = clock
        self._sleep = sleep
        self.secrets: Optional[AppSecrets] = None
        self.fresh_install = False

    @property
    def installer(self) -> AppInstaller:
        return AppInstaller(self._executor_factory(), self.layout, image=self.config.application.image)

    def _wait(self, probe, deadline: float, what: str, reporter: StepReporter) -> None:
        def on_attempt(attempt: int, result: ProbeResult) -> None:
            if result.status is ProbeStatus.NOT_READY:
                reporter.debug(f"{what} not ready yet (attempt {attempt}): {result.detail}")

        wait_until(
            probe,
            interval=self.config.lifecycle.poll_interval,
            deadline=deadline,
            clock=self._clock,
            sleep=self._sleep,
            on_attempt=on_attempt,
        ).raise_for_outcome(what)

    # ------------------------------------------------------------------ actions

    def check_requirements(self, reporter: StepReporter) -> None:
        facts = self.installer.check_requirements()
        reporter.info(f"OS: {facts['os']}, free disk: {facts['free_disk_gb']} GB")

    def install_docker(self, reporter: StepReporter) -> None:
        reporter.progress(0.2, "Checking for Docker")
        installer = self.installer
        if installer.install_docker():
            self._wait(docker_ready_probe(installer.executor), 120.0, "Docker engine", reporter)
            reporter.info("Docker installed")
        else:
            reporter.info("Docker is already installed")

    def generate_credentials(self, reporter: StepReporter) -> None:
        self.secrets = AppSecrets.generate()
        reporter.info("Generated application credentials")

    def write_configuration(self, reporter: StepReporter) -> None:
        installer = self.installer
        installer.prepare_directories()
        if installer.configuration_present():
            reporter.warning("Existing configuration found; keeping it")
            return
        if self.secrets is None:
            self.secrets = AppSecrets.generate()
        installer.write_configuration(self.secrets, self.context.require_public_address())
        self.fresh_install = True
        reporter.info(f"Configuration written to {self.layout.root_dir}")

    def pull_images(self, reporter: StepReporter) -> None:
        self.installer.compose.pull()
        reporter.info("Images pulled")

    def start_services(self, reporter: StepReporter) -> None:
        self.installer.compose.up()
        reporter.info("Services started")

    def install_application(self, reporter: StepReporter) -> None:
        reporter.progress(0.1, "Writing configuration")
        self.write_configuration(reporter)
        reporter.progress(0.4, "Pulling images")
        self.pull_images(reporter)
        reporter.progress(0.8, "Starting services")
        self.start_services(reporter)

    def wait_for_services(self, reporter: StepReporter) -> None:
        self._wait(
            containers_healthy_probe(self.installer.compose, self.layout.services),
            self.config.lifecycle.services_ready_timeout,
            "services",
            reporter,
        )
        reporter.info("All services are running")

    def initial_setup(self, reporter: StepReporter) -> None:
        if not self.fresh_install:
            self.installer.initial_setup()
            return
        self.installer.initial_setup(self.context.admin_email, self.context.admin_password)
        if self.context.admin_email:
            reporter.info(f"Administrator account: {self.context.admin_email}")

    def health_check(self, reporter: StepReporter) -> None:
        url = self.application_url + "/api/health"
        self._wait(
            http_health_probe(url, self._http_session),
            self.config.lifecycle.services_ready_timeout,
            url,
            reporter,
        )
        reporter.success(f"Application is reachable at {self.application_url}")

    @property
    def application_url(self) -> str:
        return f"http://{self.context.require_public_address()}:{self.layout.http_port}"

    # ------------------------------------------------------------------ step lists

    def install_steps(self) -> List[StepDefinition]:
        return [
            StepDefinition("install_docker", "Installing Docker Engine", self.install_docker),
            StepDefinition("install_application", "Installing the application stack", self.install_application),
            StepDefinition("wait_for_services", "Waiting for services to be ready", self.wait_for_services),
            StepDefinition("initial_setup", "Running migrations and initial setup", self.initial_setup),
            StepDefinition("health_check", "Validating deployment", self.health_check),
        ]
