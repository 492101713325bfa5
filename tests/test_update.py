import unittest
from typing import List, Optional

from cool_kit.errors import (
    BackupError,
    RestoreError,
    RollbackFailedError,
    UpdateError,
    VerificationError,
)
from cool_kit.lifecycle import AppLayout, BackupRecord, BackupType, ComposeCommands, UpdateController
from cool_kit.orchestrator import CollectingSink, EventBus, LogLevel

from fakes import FakeClock, FakeExecutor, failed


class StubBackups:
    """Stands in for BackupManager; records creates and restores."""

    def __init__(self, executor: FakeExecutor) -> None:
        self.compose = ComposeCommands(executor, AppLayout())
        self.created: List[BackupType] = []
        self.restored: List[str] = []
        self.create_error: Optional[Exception] = None
        self.restore_error: Optional[Exception] = None

    def create(self, backup_type: BackupType = BackupType.MANUAL) -> BackupRecord:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(backup_type)
        return BackupRecord(id="pre-update-20240501-103000", timestamp="2024-05-01T10:30:00", type=backup_type.value)

    def restore(self, backup_id: str, notify=None) -> BackupRecord:
        self.restored.append(backup_id)
        if notify is not None:
            notify("stop services")
        if self.restore_error is not None:
            raise self.restore_error
        return BackupRecord(id=backup_id, timestamp="2024-05-01T10:30:00", type="pre-update")


class UpdateControllerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.executor = FakeExecutor().when("State.Status", "running")
        self.backups = StubBackups(self.executor)
        self.sink = CollectingSink()
        self.bus = EventBus(self.sink)
        self.addCleanup(self.bus.close)
        clock = FakeClock()
        self.controller = UpdateController(
            self.backups,  # type: ignore[arg-type]
            bus=self.bus,
            services_timeout=10,
            poll_interval=1,
            clock=clock,
            sleep=clock.sleep,
        )

    def test_successful_update_returns_the_backup_id(self) -> None:
        result = self.controller.update()

        self.assertEqual(result.backup_id, "pre-update-20240501-103000")
        self.assertEqual(self.backups.created, [BackupType.PRE_UPDATE])
        self.assertEqual(self.backups.restored, [])
        self.assertTrue(result.run.succeeded)
        commands = "\n".join(self.executor.commands)
        self.assertIn("docker compose pull", commands)
        self.assertIn("up -d --force-recreate --remove-orphans", commands)
        self.assertIn("php artisan migrate --force", commands)
        self.assertIn("curl -fsS http://localhost:80/api/health", commands)

    def test_failed_step_rolls_back_to_the_pre_update_backup(self) -> None:
        self.executor.when("migrate --force", failed("SQLSTATE[42P01]"))

        with self.assertRaises(UpdateError) as ctx:
            self.controller.update()

        error = ctx.exception
        self.assertNotIsInstance(error, RollbackFailedError)
        self.assertTrue(error.rolled_back)
        self.assertEqual(error.backup_id, "pre-update-20240501-103000")
        self.assertIn("run_migrations", str(error))
        self.assertEqual(len(self.backups.created), 1)
        self.assertEqual(self.backups.restored, ["pre-update-20240501-103000"])
        self.bus.flush()
        self.assertIn("Rollback: stop services", self.sink.messages(LogLevel.INFO))

    def test_failure_without_auto_rollback_keeps_state(self) -> None:
        self.executor.when("docker compose pull", failed("manifest unknown"))

        with self.assertRaises(UpdateError) as ctx:
            self.controller.update(auto_rollback=False)

        self.assertFalse(ctx.exception.rolled_back)
        self.assertEqual(ctx.exception.backup_id, "pre-update-20240501-103000")
        self.assertEqual(self.backups.restored, [])
        self.assertFalse(self.executor.ran("force-recreate"))

    def test_failed_rollback_reports_both_errors(self) -> None:
        self.executor.when("force-recreate", failed("port is already allocated"))
        self.backups.restore_error = RestoreError("restore database", RuntimeError("psql missing"))

        with self.assertRaises(RollbackFailedError) as ctx:
            self.controller.update()

        message = str(ctx.exception)
        self.assertIn("port is already allocated", message)
        self.assertIn("psql missing", message)
        self.assertEqual(ctx.exception.backup_id, "pre-update-20240501-103000")
        self.assertFalse(ctx.exception.rolled_back)

    def test_transport_error_during_rollback_keeps_the_update_error(self) -> None:
        self.executor.when("force-recreate", failed("port is already allocated"))
        self.backups.restore_error = OSError("Socket is closed")

        with self.assertRaises(RollbackFailedError) as ctx:
            self.controller.update()

        self.assertIn("port is already allocated", str(ctx.exception.update_error))
        self.assertIsInstance(ctx.exception.rollback_error, OSError)
        self.assertIn("Socket is closed", str(ctx.exception))

    def test_backup_failure_aborts_before_any_change(self) -> None:
        self.backups.create_error = BackupError("disk full")

        with self.assertRaises(UpdateError) as ctx:
            self.controller.update()

        self.assertIn("pre-update backup failed", str(ctx.exception))
        self.assertIsNone(ctx.exception.backup_id)
        self.assertEqual(self.executor.commands, [])
        self.assertEqual(self.backups.restored, [])

    def test_verification_failure_triggers_rollback(self) -> None:
        self.executor.when("curl -fsS", failed("HTTP 502"))

        with self.assertRaises(VerificationError) as ctx:
            self.controller.update()

        self.assertTrue(ctx.exception.rolled_back)
        self.assertIn("verification failed", str(ctx.exception))
        self.assertEqual(self.backups.restored, ["pre-update-20240501-103000"])

    def test_manual_rollback_restores_the_given_backup(self) -> None:
        record = self.controller.rollback("pre-update-20240401-000000")
        self.assertEqual(record.id, "pre-update-20240401-000000")
        self.assertEqual(self.backups.restored, ["pre-update-20240401-000000"])


if __name__ == "__main__":
    unittest.main()
