"""Configuration loading utilities for cool-kit."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

DEFAULT_SERVICES = ["coolify-db", "coolify-redis", "coolify-realtime", "coolify"]


@dataclass
class AzureConfig:
    """Control-plane identifiers and instance shape."""

    subscription_id: Optional[str] = None
    backend: str = "auto"  # "auto" | "sdk" | "cli"
    resource_group: str = "coolify-rg"
    location: str = "eastus"
    vm_name: str = "coolify-vm"
    vm_size: str = "Standard_B2s"
    image: str = "Canonical:0001-com-ubuntu-server-jammy:22_04-lts-gen2:latest"
    os_disk_size_gb: int = 30
    admin_username: str = "azureuser"
    ssh_public_key_path: str = "~/.ssh/id_rsa.pub"
    open_ports: List[int] = field(default_factory=lambda: [22, 80, 443, 8000, 6001])


@dataclass
class SSHConfig:
    """How to reach an existing host (bare metal, or a VM after provisioning)."""

    host: Optional[str] = None
    port: int = 22
    username: str = "root"
    auth_method: str = "key"
    key_path: Optional[str] = "~/.ssh/id_rsa"
    password: Optional[str] = None
    use_sudo: bool = False
    timeout: int = 20


@dataclass
class ApplicationConfig:
    """Where the stack lives on the target and how it is laid out."""

    root_dir: str = "/data/coolify"
    backup_dir: str = "/data/coolify/backups"
    services: List[str] = field(default_factory=lambda: list(DEFAULT_SERVICES))
    http_port: int = 8000
    image: str = "ghcr.io/coollabsio/coolify:latest"
    admin_email: str = ""
    admin_password: Optional[str] = None


@dataclass
class LifecycleConfig:
    """Polling intervals and deadlines, in seconds."""

    poll_interval: float = 5.0
    vm_ready_timeout: float = 600.0
    ssh_ready_timeout: float = 300.0
    services_ready_timeout: float = 300.0
    update_services_timeout: float = 180.0
    restore_verify_timeout: float = 180.0
    database_ready_timeout: float = 60.0
    auto_rollback: bool = True


@dataclass
class APIConfig:
    """Managed-application HTTP API."""

    base_url: Optional[str] = None
    token: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3
    watch_interval: float = 2.0
    watch_timeout: float = 240.0
    max_consecutive_errors: int = 5
    no_deployment_grace: int = 15


@dataclass
class AppConfig:
    """Top-level configuration."""

    azure: AzureConfig = field(default_factory=AzureConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    application: ApplicationConfig = field(default_factory=ApplicationConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str) -> Dict[str, Any]:
            # keys starting with "_" are comments
            values = payload.get(name, {}) or {}
            return {k: v for k, v in values.items() if not k.startswith("_")}

        return cls(
            azure=AzureConfig(**{**AzureConfig().__dict__, **section("azure")}),
            ssh=SSHConfig(**{**SSHConfig().__dict__, **section("ssh")}),
            application=ApplicationConfig(
                **{**ApplicationConfig().__dict__, **section("application")}
            ),
            lifecycle=LifecycleConfig(**{**LifecycleConfig().__dict__, **section("lifecycle")}),
            api=APIConfig(**{**APIConfig().__dict__, **section("api")}),
        )


def _apply_env(config: AppConfig) -> None:
    subscription = os.getenv("COOL_KIT_AZURE_SUBSCRIPTION_ID") or os.getenv("AZURE_SUBSCRIPTION_ID")
    if subscription:
        config.azure.subscription_id = subscription

    env_backend = os.getenv("COOL_KIT_AZURE_BACKEND")
    if env_backend:
        config.azure.backend = env_backend.lower()

    env_group = os.getenv("COOL_KIT_RESOURCE_GROUP")
    if env_group:
        config.azure.resource_group = env_group

    env_location = os.getenv("COOL_KIT_LOCATION")
    if env_location:
        config.azure.location = env_location

    env_vm = os.getenv("COOL_KIT_VM_NAME")
    if env_vm:
        config.azure.vm_name = env_vm

    env_host = os.getenv("COOL_KIT_SSH_HOST")
    if env_host:
        config.ssh.host = env_host

    env_port = os.getenv("COOL_KIT_SSH_PORT")
    if env_port:
        config.ssh.port = int(env_port)

    env_username = os.getenv("COOL_KIT_SSH_USERNAME")
    if env_username:
        config.ssh.username = env_username

    env_password = os.getenv("COOL_KIT_SSH_PASSWORD")
    if env_password:
        config.ssh.password = env_password
        config.ssh.auth_method = "password"

    env_key_path = os.getenv("COOL_KIT_SSH_KEY_PATH")
    if env_key_path:
        config.ssh.key_path = env_key_path
        config.ssh.auth_method = "key"

    env_email = os.getenv("COOL_KIT_ADMIN_EMAIL")
    if env_email:
        config.application.admin_email = env_email

    env_admin_password = os.getenv("COOL_KIT_ADMIN_PASSWORD")
    if env_admin_password:
        config.application.admin_password = env_admin_password

    env_api_url = os.getenv("COOL_KIT_API_URL")
    if env_api_url:
        config.api.base_url = env_api_url

    env_token = os.getenv("COOL_KIT_API_TOKEN")
    if env_token:
        config.api.token = env_token


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    A missing default file yields the built-in defaults; an explicitly
    requested file must exist.

    Environment variables (higher priority than config file):
    - COOL_KIT_AZURE_SUBSCRIPTION_ID or AZURE_SUBSCRIPTION_ID
    - COOL_KIT_AZURE_BACKEND: "auto", "sdk" or "cli"
    - COOL_KIT_RESOURCE_GROUP, COOL_KIT_LOCATION, COOL_KIT_VM_NAME
    - COOL_KIT_SSH_HOST, COOL_KIT_SSH_PORT, COOL_KIT_SSH_USERNAME
    - COOL_KIT_SSH_PASSWORD, COOL_KIT_SSH_KEY_PATH
    - COOL_KIT_ADMIN_EMAIL, COOL_KIT_ADMIN_PASSWORD
    - COOL_KIT_API_URL, COOL_KIT_API_TOKEN
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    _apply_env(config)
    return config
