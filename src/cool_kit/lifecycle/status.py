"""Point-in-time status of the application stack."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import CommandFailedError
from ..executor import CommandExecutor
from .compose import AppLayout, ComposeCommands

logger = logging.getLogger(__name__)

_INSPECT_FORMAT = (
    "{{.Name}}|{{.State.Running}}|"
    "{{if .State.Health}}{{.State.Health.Status}}{{end}}|{{.State.StartedAt}}"
)


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    running: bool
    health: Optional[str] = None
    started_at: Optional[str] = None

    @property
    def summary(self) -> str:
        if not self.running:
            return "stopped"
        if self.health:
            return f"running ({self.health})"
        return "running"


class StatusChecker:
    """Reads service, version and resource information; never cached."""

    def __init__(self, executor: CommandExecutor, layout: Optional[AppLayout] = None) -> None:
        self.executor = executor
        self.layout = layout or AppLayout()
        self.compose = ComposeCommands(executor, self.layout)

    def services(self) -> List[ServiceStatus]:
        names = list(self.layout.services)
        command = "docker inspect --format {} {}".format(
            shlex.quote(_INSPECT_FORMAT), " ".join(shlex.quote(name) for name in names)
        )
        # inspect exits non-zero when any container is missing but still prints the rest
        result = self.executor.run(command)

        found: Dict[str, ServiceStatus] = {}
        for line in result.stdout.splitlines():
            parts = line.strip().split("|")
            if len(parts) != 4:
                continue
            name, running, health, started_at = parts
            name = name.lstrip("/")
            found[name] = ServiceStatus(
                name=name,
                running=running == "true",
                health=health or None,
                started_at=started_at or None,
            )
        return [found.get(name, ServiceStatus(name=name, running=False)) for name in names]

    def all_running(self) -> bool:
        return all(status.running for status in self.services())

    def application_version(self) -> str:
        try:
            return self.compose.app_version()
        except CommandFailedError as exc:
            logger.warning("Could not read application version: %s", exc)
            return "unknown"

    def resources(self) -> str:
        """Memory and root-disk usage as printed by ``free`` and ``df``."""
        return self.executor.execute("free -h | sed -n '1,2p'; echo; df -h / | sed -n '1,2p'").strip()
