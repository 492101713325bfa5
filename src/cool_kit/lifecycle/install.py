"""Installing the application stack onto a prepared host."""

from __future__ import annotations

import base64
import logging
import secrets
import shlex
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from ..errors import CommandFailedError, CoolKitError
from ..executor import CommandExecutor
from .compose import DATA_DIRS, MIGRATION_COMMANDS, AppLayout, ComposeCommands, bash_script

logger = logging.getLogger(__name__)

DOCKER_INSTALL_SCRIPT = """set -e
if ! command -v docker >/dev/null 2>&1; then
    curl -fsSL https://get.docker.com -o /tmp/get-docker.sh
    sh /tmp/get-docker.sh
    rm -f /tmp/get-docker.sh
    systemctl enable docker
    systemctl start docker
fi
docker --version
docker compose version
"""

COMPOSE_TEMPLATE = """services:
  {db}:
    image: postgres:15-alpine
    container_name: {db}
    restart: unless-stopped
    environment:
      POSTGRES_USER: {db_user}
      POSTGRES_PASSWORD: ${{DB_PASSWORD}}
      POSTGRES_DB: {db_name}
    volumes:
      - coolify-db:/var/lib/postgresql/data
    networks:
      - coolify
    healthcheck:
      test: ["CMD-SHELL", "pg_isready -U {db_user}"]
      interval: 10s
      timeout: 5s
      retries: 5

  {cache}:
    image: redis:7-alpine
    container_name: {cache}
    restart: unless-stopped
    command: redis-server --requirepass ${{REDIS_PASSWORD}}
    environment:
      REDIS_PASSWORD: ${{REDIS_PASSWORD}}
    volumes:
      - coolify-redis:/data
    networks:
      - coolify
    healthcheck:
      test: ["CMD", "redis-cli", "-a", "${{REDIS_PASSWORD}}", "ping"]
      interval: 10s
      timeout: 5s
      retries: 5

  coolify-realtime:
    image: quay.io/soketi/soketi:1.6-16-alpine
    container_name: coolify-realtime
    restart: unless-stopped
    ports:
      - "6001:6001"
    environment:
      SOKETI_DEFAULT_APP_ID: ${{PUSHER_APP_ID}}
      SOKETI_DEFAULT_APP_KEY: ${{PUSHER_APP_KEY}}
      SOKETI_DEFAULT_APP_SECRET: ${{PUSHER_APP_SECRET}}
    networks:
      - coolify

  {app}:
    image: {image}
    container_name: {app}
    restart: unless-stopped
    env_file: .env
    ports:
      - "{http_port}:80"
    volumes:
{volumes}
      - /var/run/docker.sock:/var/run/docker.sock
    networks:
      - coolify
    depends_on:
      {db}:
        condition: service_healthy
      {cache}:
        condition: service_healthy
    healthcheck:
      test: ["CMD", "curl", "-f", "http://localhost:80/api/health"]
      interval: 10s
      timeout: 5s
      retries: 5

volumes:
  coolify-db:
  coolify-redis:

networks:
  coolify:
    driver: bridge
"""


@dataclass
class AppSecrets:
    """Credentials generated once per installation."""

    app_id: str
    app_key: str
    db_password: str
    redis_password: str
    pusher_app_id: str
    pusher_app_key: str
    pusher_app_secret: str

    @classmethod
    def generate(cls) -> "AppSecrets":
        return cls(
            app_id=uuid.uuid4().hex,
            app_key="base64:" + base64.b64encode(secrets.token_bytes(32)).decode("ascii"),
            db_password=secrets.token_urlsafe(24),
            redis_password=secrets.token_urlsafe(24),
            pusher_app_id=uuid.uuid4().hex[:12],
            pusher_app_key=secrets.token_hex(16),
            pusher_app_secret=secrets.token_hex(16),
        )


def render_env(app_secrets: AppSecrets, public_address: str, layout: AppLayout) -> str:
    values: Dict[str, str] = {
        "APP_ID": app_secrets.app_id,
        "APP_NAME": "Coolify",
        "APP_KEY": app_secrets.app_key,
        "APP_ENV": "production",
        "APP_DEBUG": "false",
        "APP_URL": f"http://{public_address}:{layout.http_port}",
        "APP_PORT": str(layout.http_port),
        "DB_CONNECTION": "pgsql",
        "DB_HOST": layout.db_service,
        "DB_PORT": "5432",
        "DB_DATABASE": layout.db_name,
        "DB_USERNAME": layout.db_user,
        "DB_PASSWORD": app_secrets.db_password,
        "REDIS_HOST": layout.cache_service,
        "REDIS_PASSWORD": app_secrets.redis_password,
        "REDIS_PORT": "6379",
        "PUSHER_APP_ID": app_secrets.pusher_app_id,
        "PUSHER_APP_KEY": app_secrets.pusher_app_key,
        "PUSHER_APP_SECRET": app_secrets.pusher_app_secret,
        "PUSHER_HOST": "coolify-realtime",
        "PUSHER_PORT": "6001",
        "PUSHER_SCHEME": "http",
        "QUEUE_CONNECTION": "redis",
        "SESSION_DRIVER": "redis",
        "CACHE_DRIVER": "redis",
        "SSL_MODE": "off",
    }
    lines = ["# Generated by cool-kit"]
    lines.extend(f"{key}={value}" for key, value in values.items())
    return "\n".join(lines) + "\n"


def render_compose(layout: AppLayout, image: str) -> str:
    mounts = [f"{layout.root_dir}/{name}:/data/coolify/{name}" for name in DATA_DIRS]
    mounts.append(f"{layout.backup_dir}:/data/coolify/backups")
    volumes = "\n".join(f"      - {mount}" for mount in mounts)
    return COMPOSE_TEMPLATE.format(
        db=layout.db_service,
        db_user=layout.db_user,
        db_name=layout.db_name,
        cache=layout.cache_service,
        app=layout.app_service,
        image=image,
        http_port=layout.http_port,
        volumes=volumes,
    )


class AppInstaller:
    """Docker, directories, configuration files and first start of the stack."""

    def __init__(
        self,
        executor: CommandExecutor,
        layout: Optional[AppLayout] = None,
        *,
        image: str = "ghcr.io/coollabsio/coolify:latest",
    ) -> None:
        self.executor = executor
        self.layout = layout or AppLayout()
        self.compose = ComposeCommands(executor, self.layout)
        self.image = image

    def check_requirements(self, min_free_disk_gb: int = 10) -> Dict[str, str]:
        os_release = self.executor.execute("cat /etc/os-release")
        pretty_name = "unknown"
        for line in os_release.splitlines():
            if line.startswith("PRETTY_NAME="):
                pretty_name = line.split("=", 1)[1].strip().strip('"')
        free_kb = self.executor.execute("df -Pk / | tail -1 | awk '{print $4}'").strip()
        try:
            free_gb = int(free_kb) // (1024 * 1024)
        except ValueError as exc:
            raise CoolKitError(f"could not read free disk space: {free_kb!r}") from exc
        if free_gb < min_free_disk_gb:
            raise CoolKitError(
                f"not enough free disk space: {free_gb} GB available, {min_free_disk_gb} GB required"
            )
        return {"os": pretty_name, "free_disk_gb": str(free_gb)}

    def docker_installed(self) -> bool:
        try:
            output = self.executor.execute("docker --version && docker ps >/dev/null")
        except CommandFailedError:
            return False
        return "Docker version" in output

    def install_docker(self) -> bool:
        """Install Docker unless present; returns True when an install ran."""
        if self.docker_installed():
            logger.info("Docker is already installed")
            return False
        logger.info("Installing Docker")
        self.executor.execute_with_retry(bash_script(DOCKER_INSTALL_SCRIPT), max_attempts=3, delay=10.0)
        return True

    def prepare_directories(self) -> None:
        root = shlex.quote(self.layout.root_dir)
        subdirs = " ".join(f"{root}/{name}" for name in DATA_DIRS)
        self.executor.execute(
            f"mkdir -p {subdirs} {shlex.quote(self.layout.backup_dir)} "
            f"{root}/ssh/keys {root}/proxy/dynamic"
        )

    def write_configuration(self, app_secrets: AppSecrets, public_address: str) -> None:
        self.executor.copy_content(render_env(app_secrets, public_address, self.layout), self.layout.env_path)
        self.executor.copy_content(render_compose(self.layout, self.image), self.layout.compose_path)

    def configuration_present(self) -> bool:
        result = self.executor.run(
            f"test -f {shlex.quote(self.layout.env_path)} && test -f {shlex.quote(self.layout.compose_path)}"
        )
        return result.ok

    def initial_setup(self, admin_email: str = "", admin_password: str = "") -> None:
        app = self.layout.app_service
        for command in MIGRATION_COMMANDS:
            self.compose.exec(app, command)
        if admin_email and admin_password:
            self.compose.exec(
                app,
                "php artisan coolify:user:create "
                f"--email={shlex.quote(admin_email)} "
                f"--password={shlex.quote(admin_password)} "
                "--name=Administrator --is-admin",
            )

    def uninstall(self) -> None:
        """Stop the stack and remove its volumes; data directories are kept."""
        self.compose.compose("down -v")
