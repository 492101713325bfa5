import io
import unittest
from unittest import mock

from rich.console import Console

from cool_kit.cli import build_parser, dispatch_command, run_cli
from cool_kit.config import AppConfig
from cool_kit.errors import CoolKitError, UpdateError
from cool_kit.lifecycle import ServiceStatus
from cool_kit.workflow import StatusReport


def recording_console() -> Console:
    return Console(file=io.StringIO(), width=120, color_system=None)


class ParserTests(unittest.TestCase):
    def test_global_options_and_subcommand(self) -> None:
        args = build_parser().parse_args(["--target", "baremetal", "-y", "update", "--no-rollback"])
        self.assertEqual(args.target, "baremetal")
        self.assertTrue(args.yes)
        self.assertEqual(args.command, "update")
        self.assertTrue(args.no_rollback)

    def test_defaults(self) -> None:
        args = build_parser().parse_args(["status"])
        self.assertEqual(args.target, "azure")
        self.assertFalse(args.verbose)

    def test_backup_delete_needs_an_id(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["backup", "delete"])

    def test_unknown_target_is_rejected(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--target", "gcp", "deploy"])


class DispatchTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("cool_kit.cli.DeploymentWorkflow")
        self.workflow_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.workflow = self.workflow_cls.return_value.__enter__.return_value

        config_patcher = mock.patch("cool_kit.cli.load_config", return_value=AppConfig())
        config_patcher.start()
        self.addCleanup(config_patcher.stop)

    def dispatch(self, *argv: str):
        console = recording_console()
        code = dispatch_command(build_parser().parse_args(list(argv)), console)
        return code, console.file.getvalue()

    def test_status_exit_code_follows_health(self) -> None:
        self.workflow.status.return_value = StatusReport(
            services=[ServiceStatus("coolify", running=False)], version="4.0.0", resources=""
        )
        code, output = self.dispatch("status")
        self.assertEqual(code, 1)
        self.assertIn("coolify", output)
        self.assertIn("4.0.0", output)

    def test_declined_destroy(self) -> None:
        self.workflow.destroy.return_value = False
        code, _ = self.dispatch("destroy", "--wait")
        self.assertEqual(code, 1)
        self.workflow.destroy.assert_called_once_with(wait=True)

    def test_update_passes_rollback_choice(self) -> None:
        self.workflow.update.return_value.backup_id = "pre-update-20240501-100000"
        code, output = self.dispatch("update", "--no-rollback")
        self.assertEqual(code, 0)
        self.workflow.update.assert_called_once_with(auto_rollback=False)
        self.assertIn("pre-update-20240501-100000", output)

    def test_yes_selects_automatic_confirmation(self) -> None:
        self.workflow.destroy.return_value = True
        self.dispatch("-y", "-t", "docker", "destroy")
        args, kwargs = self.workflow_cls.call_args
        self.assertEqual(args[1], "docker")
        self.assertEqual(type(kwargs["interaction"]).__name__, "AutoConfirm")

    def test_empty_backup_list(self) -> None:
        self.workflow.list_backups.return_value = []
        code, output = self.dispatch("backup", "list")
        self.assertEqual(code, 0)
        self.assertIn("No backups found.", output)


class RunCLITests(unittest.TestCase):
    def test_errors_become_exit_code_one(self) -> None:
        with mock.patch("cool_kit.cli.dispatch_command", side_effect=CoolKitError("no credentials")):
            self.assertEqual(run_cli(["deploy"]), 1)

    def test_failed_update_without_rollback_prints_hint(self) -> None:
        error = UpdateError("services did not come back", backup_id="pre-update-1", rolled_back=False)
        console = recording_console()
        with mock.patch("cool_kit.cli.dispatch_command", side_effect=error), mock.patch(
            "cool_kit.cli.Console", return_value=console
        ):
            self.assertEqual(run_cli(["update"]), 1)
        self.assertIn("cool-kit rollback pre-update-1", console.file.getvalue())


if __name__ == "__main__":
    unittest.main()
