"""Update protocol: snapshot, mutate, verify, and undo on failure."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..errors import (
    BackupError,
    CoolKitError,
    RollbackFailedError,
    UpdateError,
    VerificationError,
)
from ..orchestrator.events import EventBus, LogLevel
from ..orchestrator.models import PipelineRun, StepDefinition
from ..orchestrator.pipeline import StepPipeline, StepReporter
from ..readiness import ProbeStatus, containers_running_probe, wait_until
from .backup import BackupManager, BackupRecord, BackupType
from .compose import MIGRATION_COMMANDS, ComposeCommands

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    backup: BackupRecord
    run: PipelineRun

    @property
    def backup_id(self) -> str:
        return self.backup.id


class UpdateController:
    """Updates the stack in place with a pre-update backup as the safety net.

    The update phase is a :class:`StepPipeline` (pull, recreate, wait,
    migrate) so its progress reaches the same bus as every other operation.
    Nothing in the update phase is retried.
    """

    def __init__(
        self,
        backups: BackupManager,
        *,
        bus: Optional[EventBus] = None,
        services_timeout: float = 180.0,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backups = backups
        self.compose: ComposeCommands = backups.compose
        self.bus = bus or EventBus()
        self.services_timeout = services_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------ steps

    def _pull(self, reporter: StepReporter) -> None:
        self.compose.pull()
        reporter.info("Latest images pulled")

    def _recreate(self, reporter: StepReporter) -> None:
        self.compose.up(recreate=True)
        reporter.info("Containers recreated")

    def _wait_for_services(self, reporter: StepReporter) -> None:
        services = self.compose.layout.services

        def on_attempt(attempt, result) -> None:
            if result.status is not ProbeStatus.READY:
                reporter.debug(f"Waiting for services ({attempt}): {result.detail}")

        wait_until(
            containers_running_probe(self.compose, services),
            interval=self.poll_interval,
            deadline=self.services_timeout,
            clock=self._clock,
            sleep=self._sleep,
            on_attempt=on_attempt,
        ).raise_for_outcome("services")
        reporter.info("All services are running")

    def _migrate(self, reporter: StepReporter) -> None:
        app = self.compose.layout.app_service
        for index, command in enumerate(MIGRATION_COMMANDS):
            reporter.progress(index / len(MIGRATION_COMMANDS), command)
            self.compose.exec(app, command)
        reporter.info("Migrations completed")

    def update_steps(self) -> List[StepDefinition]:
        return [
            StepDefinition("pull_images", "Pulling latest images", self._pull),
            StepDefinition("recreate_containers", "Recreating containers", self._recreate),
            StepDefinition("wait_for_services", "Waiting for services", self._wait_for_services),
            StepDefinition("run_migrations", "Running migrations", self._migrate),
        ]

    # ------------------------------------------------------------------ protocol

    def verify(self) -> None:
        """One pass: every service running and the in-container health probe passing."""
        ok, detail = self.compose.all_running()
        if not ok:
            raise VerificationError(detail)
        try:
            self.compose.health_check()
        except CoolKitError as exc:
            raise VerificationError(f"health check failed: {exc}") from exc

    def update(self, auto_rollback: bool = True) -> UpdateResult:
        self.bus.log(LogLevel.INFO, "Creating pre-update backup")
        try:
            backup = self.backups.create(BackupType.PRE_UPDATE)
        except BackupError as exc:
            raise UpdateError(f"update aborted, pre-update backup failed: {exc}") from exc
        self.bus.log(LogLevel.INFO, f"Backup created: {backup.id}")

        run = StepPipeline(self.bus).run(self.update_steps())
        if not run.succeeded:
            self._handle_failure(run.error, backup, auto_rollback)

        try:
            self.verify()
        except CoolKitError as exc:
            logger.error("Update applied but verification failed: %s", exc)
            self.bus.log(LogLevel.ERROR, f"Update applied but verification failed: {exc}")
            failure = VerificationError(
                f"update applied but verification failed: {exc}", backup_id=backup.id
            )
            failure.__cause__ = exc
            self._handle_failure(failure, backup, auto_rollback)

        self.bus.log(LogLevel.SUCCESS, "Update completed")
        self.bus.log(LogLevel.INFO, f"Backup {backup.id} is available for rollback if needed")
        return UpdateResult(backup=backup, run=run)

    def _handle_failure(self, error, backup: BackupRecord, auto_rollback: bool) -> None:
        if not auto_rollback:
            raise _with_backup(error, backup.id, rolled_back=False) from error

        self.bus.log(LogLevel.WARNING, f"Update failed, rolling back to {backup.id}")
        try:
            self.rollback(backup.id)
        except Exception as rollback_error:
            logger.error("Rollback to %s failed: %s", backup.id, rollback_error)
            raise RollbackFailedError(error, rollback_error, backup_id=backup.id) from error
        raise _with_backup(error, backup.id, rolled_back=True) from error

    def rollback(self, backup_id: str) -> BackupRecord:
        """Restore ``backup_id``; used both automatically and on request."""
        return self.backups.restore(
            backup_id, notify=lambda phase: self.bus.log(LogLevel.INFO, f"Rollback: {phase}")
        )


def _with_backup(error: BaseException, backup_id: str, *, rolled_back: bool) -> UpdateError:
    if rolled_back:
        message = f"update failed, rolled back to backup {backup_id}: {error}"
    else:
        message = f"update failed: {error} (backup {backup_id} is available for rollback)"
    if isinstance(error, VerificationError):
        return VerificationError(message, backup_id=backup_id, rolled_back=rolled_back)
    return UpdateError(message, backup_id=backup_id, rolled_back=rolled_back)
