"""Existing server reachable over SSH."""

from __future__ import annotations

import time
from typing import Callable, List, Optional

import requests

from ..config import AppConfig
from ..orchestrator.context import DeploymentContext
from ..orchestrator.models import StepDefinition
from ..orchestrator.pipeline import StepReporter
from ..readiness import ssh_reachable_probe, wait_until
from ..ssh import SSHCredentials, SSHSession
from .common import StackSteps


def credentials_from_config(config: AppConfig) -> SSHCredentials:
    ssh = config.ssh
    credentials = SSHCredentials(
        host=ssh.host or "",
        username=ssh.username,
        port=ssh.port,
        auth_method=ssh.auth_method,
        key_path=ssh.key_path,
        password=ssh.password,
        timeout=ssh.timeout,
    )
    credentials.validate()
    return credentials


class BareMetalTarget:
    name = "baremetal"

    def __init__(
        self,
        config: AppConfig,
        context: Optional[DeploymentContext] = None,
        *,
        session_factory: Optional[Callable[[SSHCredentials], SSHSession]] = None,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.context = context or DeploymentContext.from_config(config)
        self._session_factory = session_factory or (
            lambda creds: SSHSession(creds, use_sudo=config.ssh.use_sudo)
        )
        self._session: Optional[SSHSession] = None
        self._clock = clock
        self._sleep = sleep
        self.stack = StackSteps(
            config, self.context, self.executor, http_session=http_session, clock=clock, sleep=sleep
        )

    def executor(self) -> SSHSession:
        if self._session is None:
            credentials = credentials_from_config(self.config)
            self.context.public_address = credentials.host
            self._session = self._session_factory(credentials)
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def validate_ssh(self, reporter: StepReporter) -> None:
        session = self.executor()
        wait_until(
            ssh_reachable_probe(session),
            interval=self.config.lifecycle.poll_interval,
            deadline=self.config.lifecycle.ssh_ready_timeout,
            clock=self._clock,
            sleep=self._sleep,
        ).raise_for_outcome(f"SSH on {session.target}")
        reporter.info(f"Connected to {session.target}")

    def deploy_steps(self) -> List[StepDefinition]:
        return [
            StepDefinition("validate_ssh", "Testing SSH connection to the server", self.validate_ssh),
            StepDefinition("check_requirements", "Verifying OS and disk space", self.stack.check_requirements),
        ] + self.stack.install_steps()

    def destroy(self, *, wait: bool = False) -> None:
        """Stop the stack; the server itself is not ours to remove."""
        self.stack.installer.uninstall()
        self.close()
