"""Stack on the local Docker engine."""

from __future__ import annotations

import time
from typing import Callable, List, Optional

import requests

from ..config import AppConfig
from ..local import LocalSession
from ..orchestrator.context import DeploymentContext
from ..orchestrator.models import StepDefinition
from ..orchestrator.pipeline import StepReporter
from .common import StackSteps


class DockerTarget:
    name = "docker"

    def __init__(
        self,
        config: AppConfig,
        context: Optional[DeploymentContext] = None,
        *,
        session: Optional[LocalSession] = None,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.context = context or DeploymentContext.from_config(config)
        if not self.context.public_address:
            self.context.public_address = "localhost"
        self._session = session or LocalSession(use_sudo=config.ssh.use_sudo)
        self._clock = clock
        self._sleep = sleep
        self.stack = StackSteps(
            config, self.context, self.executor, http_session=http_session, clock=clock, sleep=sleep
        )

    def executor(self) -> LocalSession:
        return self._session

    def close(self) -> None:
        self._session.close()

    def validate_docker(self, reporter: StepReporter) -> None:
        self._session.execute("docker info >/dev/null")
        version = self._session.execute("docker compose version")
        reporter.info(version.strip())

    def deploy_steps(self) -> List[StepDefinition]:
        stack = self.stack
        return [
            StepDefinition("validate_docker", "Checking Docker and Docker Compose", self.validate_docker),
            StepDefinition("generate_credentials", "Creating secure credentials", stack.generate_credentials),
            StepDefinition("configure_environment", "Writing environment and compose files", stack.write_configuration),
            StepDefinition("pull_images", "Downloading required images", stack.pull_images),
            StepDefinition("start_services", "Starting Docker Compose services", stack.start_services),
            StepDefinition("wait_for_services", "Waiting for services to be ready", stack.wait_for_services),
            StepDefinition("initial_setup", "Running migrations and initial setup", stack.initial_setup),
            StepDefinition("health_check", "Validating deployment", stack.health_check),
        ]

    def destroy(self, *, wait: bool = False) -> None:
        self.stack.installer.uninstall()
