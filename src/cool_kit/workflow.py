"""High-level workflow orchestration."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .api.client import CoolifyClient
from .config import AppConfig
from .errors import CoolKitError
from .executor import CommandExecutor
from .interaction import AutoConfirm, InteractionHandler
from .lifecycle import BackupManager, BackupRecord, BackupType, ServiceStatus, StatusChecker
from .lifecycle.compose import AppLayout
from .lifecycle.update import UpdateController, UpdateResult
from .lifecycle.watch import DeploymentWatcher
from .orchestrator import EventBus, LoggingSink, LogLevel, PipelineRun, StepPipeline
from .readiness import PollResult
from .targets import create_target
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StatusReport:
    services: List[ServiceStatus]
    version: str
    resources: str

    @property
    def healthy(self) -> bool:
        return bool(self.services) and all(s.running for s in self.services)


class DeploymentWorkflow:
    """Ties a target, its executor and the event bus to the lifecycle operations.

    One workflow serves one command invocation. Operations raise
    :class:`~cool_kit.errors.CoolKitError` subclasses on failure.
    """

    def __init__(
        self,
        config: AppConfig,
        target_name: str = "azure",
        *,
        bus: Optional[EventBus] = None,
        interaction: Optional[InteractionHandler] = None,
        target: Any = None,
        client_factory: Callable[..., CoolifyClient] = CoolifyClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.bus = bus or EventBus(LoggingSink())
        self.interaction: InteractionHandler = interaction or AutoConfirm()
        self.target = target or create_target(target_name, config, clock=clock, sleep=sleep)
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep

    def __enter__(self) -> "DeploymentWorkflow":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.target.close()
        self.bus.close()

    @property
    def layout(self) -> AppLayout:
        return self.target.stack.layout

    @property
    def executor(self) -> CommandExecutor:
        return self.target.executor()

    def backup_manager(self) -> BackupManager:
        lifecycle = self.config.lifecycle
        return BackupManager(
            self.executor,
            self.layout,
            poll_interval=lifecycle.poll_interval,
            verify_timeout=lifecycle.restore_verify_timeout,
            database_timeout=lifecycle.database_ready_timeout,
            clock=self._clock,
            sleep=self._sleep,
        )

    def update_controller(self) -> UpdateController:
        return UpdateController(
            self.backup_manager(),
            bus=self.bus,
            services_timeout=self.config.lifecycle.update_services_timeout,
            poll_interval=self.config.lifecycle.poll_interval,
            clock=self._clock,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------ deploy

    def deploy(self) -> PipelineRun:
        steps = self.target.deploy_steps()
        logger.info("Deploying to %s (%d steps)", self.target.name, len(steps))
        run = StepPipeline(self.bus).run(steps)
        self.bus.flush()
        run.raise_for_failure()
        self.bus.log(LogLevel.SUCCESS, f"Deployment to {self.target.name} completed")
        return run

    # ------------------------------------------------------------------ lifecycle

    def update(self, auto_rollback: Optional[bool] = None) -> UpdateResult:
        if auto_rollback is None:
            auto_rollback = self.config.lifecycle.auto_rollback
        try:
            return self.update_controller().update(auto_rollback=auto_rollback)
        finally:
            self.bus.flush()

    def create_backup(self) -> BackupRecord:
        record = self.backup_manager().create(BackupType.MANUAL)
        self.bus.log(LogLevel.SUCCESS, f"Backup created: {record.id}")
        return record

    def list_backups(self) -> List[BackupRecord]:
        return self.backup_manager().list()

    def delete_backup(self, backup_id: str) -> None:
        self.backup_manager().delete(backup_id)
        self.bus.log(LogLevel.SUCCESS, f"Backup deleted: {backup_id}")

    def restore(self, backup_id: str) -> BackupRecord:
        record = self.backup_manager().restore(
            backup_id, notify=lambda phase: self.bus.log(LogLevel.INFO, f"Restore: {phase}")
        )
        self.bus.log(LogLevel.SUCCESS, f"Restored backup {backup_id}")
        return record

    def rollback(self, backup_id: str) -> BackupRecord:
        record = self.update_controller().rollback(backup_id)
        self.bus.log(LogLevel.SUCCESS, f"Rolled back to {backup_id}")
        return record

    def status(self) -> StatusReport:
        checker = StatusChecker(self.executor, self.layout)
        return StatusReport(
            services=checker.services(),
            version=checker.application_version(),
            resources=checker.resources(),
        )

    def destroy(self, *, wait: bool = False) -> bool:
        """Tear the target down after confirmation; returns False when declined."""
        question = f"Destroy the {self.target.name} deployment? This cannot be undone"
        if not self.interaction.confirm(question, default=False):
            logger.info("Destroy cancelled")
            return False
        self.target.destroy(wait=wait)
        self.bus.log(LogLevel.SUCCESS, f"{self.target.name} deployment destroyed")
        return True

    # ------------------------------------------------------------------ API

    def api_client(self) -> CoolifyClient:
        api = self.config.api
        if not api.base_url or not api.token:
            raise CoolKitError("API URL and token are required (COOL_KIT_API_URL, COOL_KIT_API_TOKEN)")
        return self._client_factory(api.base_url, api.token, retries=api.max_retries, timeout=api.timeout)

    def watch(self, application_uuid: str, *, trigger: bool = False, force: bool = False) -> PollResult:
        """Follow the latest deployment of an application until it settles."""
        api = self.config.api
        client = self.api_client()
        if trigger:
            client.deploy(application_uuid, force=force)
            self.bus.log(LogLevel.INFO, f"Deployment triggered for {application_uuid}")

        watcher = DeploymentWatcher(
            client,
            application_uuid,
            on_log=lambda line: self.bus.log(LogLevel.INFO, line),
            max_consecutive_errors=api.max_consecutive_errors,
            no_deployment_grace=api.no_deployment_grace,
        )
        result = watcher.watch(
            interval=api.watch_interval,
            deadline=api.watch_timeout,
            clock=self._clock,
            sleep=self._sleep,
        )
        self.bus.flush()
        result.raise_for_outcome(f"deployment of {application_uuid}")
        self.bus.log(LogLevel.SUCCESS, f"Deployment of {application_uuid} finished")
        return result

    def shell(self) -> int:
        return self.executor.interactive()
