"""Docker Compose commands for the application stack on a target."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence, Tuple

from ..config import DEFAULT_SERVICES

if TYPE_CHECKING:
    from ..config import ApplicationConfig
    from ..executor import CommandExecutor

DATA_DIRS = ("source", "ssh", "applications", "databases", "services", "proxy")

MIGRATION_COMMANDS = (
    "php artisan migrate --force",
    "php artisan config:cache",
    "php artisan route:cache",
    "php artisan view:cache",
)


def bash_script(script: str) -> str:
    """Run a multi-line script under bash regardless of the login shell."""
    return f"bash -c {shlex.quote(script)}"


@dataclass(frozen=True)
class AppLayout:
    """Remote paths and service names of the stack."""

    root_dir: str = "/data/coolify"
    backup_dir: str = "/data/coolify/backups"
    services: Tuple[str, ...] = field(default_factory=lambda: tuple(DEFAULT_SERVICES))
    app_service: str = "coolify"
    db_service: str = "coolify-db"
    cache_service: str = "coolify-redis"
    db_user: str = "coolify"
    db_name: str = "coolify"
    http_port: int = 8000

    @property
    def env_path(self) -> str:
        return f"{self.root_dir}/.env"

    @property
    def compose_path(self) -> str:
        return f"{self.root_dir}/docker-compose.yml"

    def backup_path(self, backup_id: str) -> str:
        return f"{self.backup_dir}/{backup_id}"

    @classmethod
    def from_config(cls, config: "ApplicationConfig") -> "AppLayout":
        return cls(
            root_dir=config.root_dir.rstrip("/"),
            backup_dir=config.backup_dir.rstrip("/"),
            services=tuple(config.services),
            http_port=config.http_port,
        )


class ComposeCommands:
    """Thin wrapper that runs ``docker compose`` inside the stack directory."""

    def __init__(self, executor: "CommandExecutor", layout: Optional[AppLayout] = None) -> None:
        self.executor = executor
        self.layout = layout or AppLayout()

    def _in_root(self, command: str) -> str:
        return f"cd {shlex.quote(self.layout.root_dir)} && {command}"

    def compose(self, args: str) -> str:
        return self.executor.execute(self._in_root(f"docker compose {args}"))

    def pull(self) -> str:
        return self.compose("pull")

    def up(self, *, recreate: bool = False) -> str:
        if recreate:
            return self.compose("up -d --force-recreate --remove-orphans")
        return self.compose("up -d")

    def down(self) -> str:
        return self.compose("down")

    def stop(self, service: str) -> str:
        return self.compose(f"stop {shlex.quote(service)}")

    def start(self, service: str) -> str:
        return self.compose(f"start {shlex.quote(service)}")

    def restart(self, service: str) -> str:
        return self.compose(f"restart {shlex.quote(service)}")

    def exec(self, service: str, command: str) -> str:
        return self.compose(f"exec -T {shlex.quote(service)} {command}")

    def container_state(self, container: str) -> str:
        """``running``, ``exited``, ... or ``not found``."""
        output = self.executor.execute(
            f"docker inspect --format='{{{{.State.Status}}}}' {shlex.quote(container)} "
            "2>/dev/null || echo 'not found'"
        )
        return output.strip() or "not found"

    def container_health(self, container: str) -> Tuple[str, str]:
        """Return ``(state, health)``; health is empty when no health check is defined."""
        output = self.executor.execute(
            "docker inspect --format="
            "'{{.State.Status}} {{if .State.Health}}{{.State.Health.Status}}{{end}}' "
            f"{shlex.quote(container)} 2>/dev/null || echo 'not found'"
        )
        parts = output.strip().split()
        if not parts or parts[0] == "not":
            return "not found", ""
        state = parts[0]
        health = parts[1] if len(parts) > 1 else ""
        return state, health

    def all_running(self, services: Optional[Sequence[str]] = None) -> Tuple[bool, str]:
        """Check every service once; returns (ok, description of the first laggard)."""
        for service in services or self.layout.services:
            state = self.container_state(service)
            if state != "running":
                return False, f"service {service} is not running: {state}"
        return True, ""

    def app_version(self) -> str:
        output = self.exec(self.layout.app_service, "php artisan --version")
        words = output.strip().split()
        return words[-1] if words else "unknown"

    def health_check(self) -> str:
        """In-container HTTP probe of the application; raises on failure."""
        return self.exec(self.layout.app_service, "curl -fsS http://localhost:80/api/health")
