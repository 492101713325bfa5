"""Command-line interface for cool-kit."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .errors import CoolKitError, UpdateError
from .interaction import AutoConfirm, ConsoleInteraction, ConsoleSink
from .orchestrator import EventBus
from .targets import TARGETS
from .utils.logging import get_logger
from .workflow import DeploymentWorkflow, StatusReport

logger = get_logger(__name__)


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    target: str
    assume_yes: bool
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cool-kit",
        description="Deploy and manage a Coolify stack on Azure, an existing server or local Docker.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--target",
        "-t",
        choices=sorted(TARGETS),
        default="azure",
        help="Where the stack runs (default: azure).",
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Answer yes to every confirmation")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("deploy", help="Provision the target and install the stack")

    update_parser = subparsers.add_parser("update", help="Update the stack with a pre-update backup")
    update_parser.add_argument(
        "--no-rollback",
        action="store_true",
        help="Keep the failed state instead of restoring the pre-update backup",
    )

    backup_parser = subparsers.add_parser("backup", help="Manage backups")
    backup_sub = backup_parser.add_subparsers(dest="backup_command", required=True)
    backup_sub.add_parser("create", help="Create a manual backup")
    backup_sub.add_parser("list", help="List backups, newest first")
    delete_parser = backup_sub.add_parser("delete", help="Delete a backup")
    delete_parser.add_argument("backup_id")

    restore_parser = subparsers.add_parser("restore", help="Restore a backup")
    restore_parser.add_argument("backup_id")

    rollback_parser = subparsers.add_parser("rollback", help="Roll back to a pre-update backup")
    rollback_parser.add_argument("backup_id")

    subparsers.add_parser("status", help="Show service status, version and resources")

    destroy_parser = subparsers.add_parser("destroy", help="Remove the deployment")
    destroy_parser.add_argument(
        "--wait", action="store_true", help="Block until the cloud resources are deleted"
    )

    watch_parser = subparsers.add_parser("watch", help="Follow an application deployment via the API")
    watch_parser.add_argument("application_uuid")
    watch_parser.add_argument("--deploy", action="store_true", help="Trigger a deployment first")
    watch_parser.add_argument("--force", action="store_true", help="Force a rebuild when triggering")

    subparsers.add_parser("ssh", help="Open an interactive shell on the target")

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    return CLIContext(
        config=load_config(args.config),
        target=args.target,
        assume_yes=args.yes,
        verbose=args.verbose,
    )


def render_status(console: Console, report: StatusReport) -> None:
    table = Table(title="Services")
    table.add_column("Service")
    table.add_column("State")
    table.add_column("Started")
    for service in report.services:
        style = "green" if service.running else "red"
        table.add_row(service.name, f"[{style}]{service.summary}[/]", service.started_at or "-")
    console.print(table)
    console.print(f"Version: [bold]{report.version}[/]")
    console.print(report.resources)


def render_backups(console: Console, backups) -> None:
    if not backups:
        console.print("No backups found.")
        return
    table = Table(title="Backups")
    for column in ("ID", "Type", "Created", "Version", "Size"):
        table.add_column(column)
    for record in backups:
        table.add_row(
            record.id,
            record.type,
            record.timestamp,
            record.application_version,
            f"{record.size_bytes / (1024 * 1024):.1f} MB",
        )
    console.print(table)


def dispatch_command(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()
    context = _build_context(args)
    bus = EventBus(ConsoleSink(console, verbose=context.verbose))
    interaction = AutoConfirm() if context.assume_yes else ConsoleInteraction(console)

    with DeploymentWorkflow(
        context.config, context.target, bus=bus, interaction=interaction
    ) as workflow:
        if args.command == "deploy":
            workflow.deploy()
            console.print(f"[green]Application URL:[/] {workflow.target.stack.application_url}")
            return 0

        if args.command == "update":
            result = workflow.update(auto_rollback=not args.no_rollback)
            console.print(f"Pre-update backup: [bold]{result.backup_id}[/]")
            return 0

        if args.command == "backup":
            if args.backup_command == "create":
                record = workflow.create_backup()
                console.print(f"Backup: [bold]{record.id}[/] at {record.storage_path}")
            elif args.backup_command == "list":
                render_backups(console, workflow.list_backups())
            else:
                workflow.delete_backup(args.backup_id)
            return 0

        if args.command == "restore":
            workflow.restore(args.backup_id)
            return 0

        if args.command == "rollback":
            workflow.rollback(args.backup_id)
            return 0

        if args.command == "status":
            report = workflow.status()
            render_status(console, report)
            return 0 if report.healthy else 1

        if args.command == "destroy":
            return 0 if workflow.destroy(wait=args.wait) else 1

        if args.command == "watch":
            workflow.watch(args.application_uuid, trigger=args.deploy, force=args.force)
            return 0

        if args.command == "ssh":
            return workflow.shell()

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger("cool_kit").setLevel(logging.DEBUG)
    console = Console()
    try:
        return dispatch_command(args, console)
    except UpdateError as exc:
        logger.error("%s", exc)
        console.print(f"[bold red]✗ {exc}[/]")
        if exc.backup_id and not exc.rolled_back:
            console.print(f"Roll back with: cool-kit rollback {exc.backup_id}")
        return 1
    except (CoolKitError, ValueError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        console.print(f"[bold red]✗ {exc}[/]")
        return 1
