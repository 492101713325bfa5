"""Provisioning backend that shells out to the ``az`` command line."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Callable, Dict, List, Optional

from ..errors import ProvisioningError
from .base import (
    DEFAULT_TAGS,
    InstanceSpec,
    NetworkInterfaceSpec,
    NetworkSpec,
    PowerState,
    PublicAddressSpec,
    ResourceGroupSpec,
    ResourceHandle,
    SecurityGroupSpec,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("ResourceNotFound", "ResourceGroupNotFound", "was not found", "could not be found")


class AzureCLIError(ProvisioningError):
    """Raised when an ``az`` invocation fails."""

    def __init__(self, command: List[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"az command {' '.join(command[1:4])} failed with code {exit_code}: {stderr}")

    @property
    def not_found(self) -> bool:
        return any(marker in self.stderr for marker in _NOT_FOUND_MARKERS)


class AzureCLIBackend:
    """Wraps ``az`` invocations; every call asks for JSON output."""

    name = "cli"

    def __init__(
        self,
        az_binary: str = "az",
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        timeout: int = 1800,
    ) -> None:
        self.az_binary = az_binary
        self._runner = runner
        self.timeout = timeout

    def _run(self, args: List[str], *, parse: bool = True) -> Any:
        command = [self.az_binary] + args + (["-o", "json"] if parse else ["-o", "none"])
        logger.debug("Running %s", " ".join(command))
        try:
            process = self._runner(
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise AzureCLIError(command, -1, str(exc)) from exc
        if process.returncode != 0:
            raise AzureCLIError(command, process.returncode, (process.stderr or "").strip())
        if not parse:
            return None
        output = (process.stdout or "").strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise ProvisioningError(f"unparsable output from {' '.join(command[:4])}: {exc}") from exc

    def _show(self, args: List[str]) -> Optional[Dict[str, Any]]:
        try:
            return self._run(args)
        except AzureCLIError as exc:
            if exc.not_found:
                return None
            raise

    # ------------------------------------------------------------------ account

    def validate_credentials(self) -> None:
        self._run(["account", "show"])

    def current_subscription_id(self) -> str:
        account = self._run(["account", "show"]) or {}
        subscription_id = account.get("id")
        if not subscription_id:
            raise ProvisioningError("az account show returned no subscription id")
        return subscription_id

    # ------------------------------------------------------------------ resources

    def get_resource_group(self, name: str) -> Optional[ResourceHandle]:
        data = self._show(["group", "show", "--name", name])
        return None if data is None else _handle("resource_group", data)

    def create_resource_group(self, spec: ResourceGroupSpec) -> ResourceHandle:
        data = self._run(
            ["group", "create", "--name", spec.name, "--location", spec.location, "--tags"]
            + _tags(spec.tags)
        )
        return _handle("resource_group", data)

    def get_security_group(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        data = self._show(["network", "nsg", "show", "-g", resource_group, "-n", name])
        return None if data is None else _nsg_handle(data)

    def create_security_group(
        self, resource_group: str, location: str, spec: SecurityGroupSpec
    ) -> ResourceHandle:
        self._run(
            ["network", "nsg", "create", "-g", resource_group, "-n", spec.name, "-l", location, "--tags"]
            + _tags(DEFAULT_TAGS),
            parse=False,
        )
        for rule in spec.rules:
            self._run(
                [
                    "network", "nsg", "rule", "create",
                    "-g", resource_group,
                    "--nsg-name", spec.name,
                    "-n", rule.name,
                    "--priority", str(rule.priority),
                    "--direction", "Inbound",
                    "--access", "Allow",
                    "--protocol", "Tcp",
                    "--destination-port-ranges", str(rule.port),
                ],
                parse=False,
            )
        return self._require(self.get_security_group(resource_group, spec.name), spec.name)

    def get_network(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        data = self._show(["network", "vnet", "show", "-g", resource_group, "-n", name])
        return None if data is None else _vnet_handle(data)

    def create_network(self, resource_group: str, location: str, spec: NetworkSpec) -> ResourceHandle:
        self._run(
            [
                "network", "vnet", "create",
                "-g", resource_group,
                "-n", spec.name,
                "-l", location,
                "--address-prefix", spec.address_prefix,
                "--subnet-name", spec.subnet_name,
                "--subnet-prefix", spec.subnet_prefix,
                "--tags",
            ]
            + _tags(DEFAULT_TAGS),
            parse=False,
        )
        return self._require(self.get_network(resource_group, spec.name), spec.name)

    def get_public_address(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        data = self._show(["network", "public-ip", "show", "-g", resource_group, "-n", name])
        return None if data is None else _ip_handle(data)

    def create_public_address(
        self, resource_group: str, location: str, spec: PublicAddressSpec
    ) -> ResourceHandle:
        self._run(
            [
                "network", "public-ip", "create",
                "-g", resource_group,
                "-n", spec.name,
                "-l", location,
                "--sku", spec.sku,
                "--allocation-method", spec.allocation_method,
                "--tags",
            ]
            + _tags(DEFAULT_TAGS),
            parse=False,
        )
        return self._require(self.get_public_address(resource_group, spec.name), spec.name)

    def get_network_interface(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        data = self._show(["network", "nic", "show", "-g", resource_group, "-n", name])
        return None if data is None else _handle("network_interface", data)

    def create_network_interface(
        self, resource_group: str, location: str, spec: NetworkInterfaceSpec
    ) -> ResourceHandle:
        self._run(
            [
                "network", "nic", "create",
                "-g", resource_group,
                "-n", spec.name,
                "-l", location,
                "--subnet", spec.subnet_id,
                "--public-ip-address", spec.public_ip_id,
                "--network-security-group", spec.nsg_id,
                "--tags",
            ]
            + _tags(DEFAULT_TAGS),
            parse=False,
        )
        return self._require(self.get_network_interface(resource_group, spec.name), spec.name)

    def get_instance(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        data = self._show(["vm", "show", "-g", resource_group, "-n", name])
        return None if data is None else _handle("instance", data)

    def create_instance(self, resource_group: str, location: str, spec: InstanceSpec) -> ResourceHandle:
        self._run(
            [
                "vm", "create",
                "-g", resource_group,
                "-n", spec.name,
                "-l", location,
                "--nics", spec.nic_id,
                "--size", spec.size,
                "--image", spec.image,
                "--admin-username", spec.admin_username,
                "--ssh-key-values", spec.ssh_public_key,
                "--os-disk-size-gb", str(spec.os_disk_size_gb),
                "--tags",
            ]
            + _tags(DEFAULT_TAGS),
            parse=False,
        )
        return self._require(self.get_instance(resource_group, spec.name), spec.name)

    def get_power_state(self, resource_group: str, name: str) -> PowerState:
        data = self._run(["vm", "get-instance-view", "-g", resource_group, "-n", name]) or {}
        statuses = (data.get("instanceView") or {}).get("statuses") or []
        power = None
        provisioning = None
        for status in statuses:
            code = status.get("code") or ""
            if code.startswith("PowerState/"):
                power = status.get("displayStatus") or code.split("/", 1)[1]
            elif code.startswith("ProvisioningState/"):
                provisioning = code.split("/", 1)[1]
        return PowerState(power_state=power, provisioning_state=provisioning)

    def delete_resource_group(self, name: str, *, wait: bool = False) -> None:
        args = ["group", "delete", "--name", name, "--yes"]
        if not wait:
            args.append("--no-wait")
        self._run(args, parse=False)

    @staticmethod
    def _require(handle: Optional[ResourceHandle], name: str) -> ResourceHandle:
        if handle is None:
            raise ProvisioningError(f"{name} was created but cannot be read back")
        return handle


def _tags(tags: Dict[str, str]) -> List[str]:
    return [f"{key}={value}" for key, value in tags.items()]


def _handle(kind: str, data: Dict[str, Any], attributes: Optional[Dict[str, Any]] = None) -> ResourceHandle:
    return ResourceHandle(kind, data.get("name", ""), data.get("id", ""), data.get("location"), attributes or {})


def _nsg_handle(data: Dict[str, Any]) -> ResourceHandle:
    ports = []
    for rule in data.get("securityRules") or []:
        port = rule.get("destinationPortRange") or ""
        if port.isdigit():
            ports.append(int(port))
    return _handle("security_group", data, {"ports": tuple(ports)})


def _vnet_handle(data: Dict[str, Any]) -> ResourceHandle:
    subnets = {subnet.get("name"): subnet.get("id") for subnet in data.get("subnets") or []}
    return _handle("network", data, {"subnets": subnets})


def _ip_handle(data: Dict[str, Any]) -> ResourceHandle:
    return _handle("public_address", data, {"ip_address": data.get("ipAddress")})
