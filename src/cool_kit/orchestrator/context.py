"""Per-run deployment context.

A :class:`DeploymentContext` is owned by exactly one pipeline run. Steps read
the identifiers they need from it and write back facts they discover (resource
ids, the allocated public address) for the steps that follow.
"""

from __future__ import annotations

import ipaddress
import re
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..config import AppConfig

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


def is_valid_address(value: str) -> bool:
    """True for an IPv4/IPv6 literal or an RFC 1123 host name."""
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        pass
    if not value or len(value) > 253:
        return False
    labels = value.rstrip(".").split(".")
    # a dotted all-numeric string that failed ip parsing is a bad IPv4, not a name
    if all(label.isdigit() for label in labels):
        return False
    return all(_HOSTNAME_LABEL.match(label) for label in labels)


@dataclass
class DeploymentContext:
    """Identifiers, generated secrets and discovered facts for one target."""

    resource_group: str = ""
    location: str = ""
    vm_name: str = ""
    vm_size: str = "Standard_B2s"
    vm_image: str = "Canonical:0001-com-ubuntu-server-jammy:22_04-lts-gen2:latest"
    os_disk_size_gb: int = 30

    vnet_name: str = ""
    subnet_name: str = "default"
    nsg_name: str = ""
    public_ip_name: str = ""
    nic_name: str = ""
    vnet_address_prefix: str = "10.0.0.0/16"
    subnet_address_prefix: str = "10.0.0.0/24"
    open_ports: tuple = (22, 80, 443, 8000, 6001)

    admin_username: str = "azureuser"
    ssh_key_path: str = "~/.ssh/id_rsa"
    ssh_public_key_path: str = "~/.ssh/id_rsa.pub"
    admin_email: str = ""
    admin_password: str = field(default_factory=lambda: secrets.token_urlsafe(24), repr=False)

    # discovered while the pipeline runs
    subnet_id: Optional[str] = None
    nsg_id: Optional[str] = None
    public_ip_id: Optional[str] = None
    nic_id: Optional[str] = None
    vm_id: Optional[str] = None
    _public_address: Optional[str] = field(default=None, repr=False)

    @property
    def public_address(self) -> Optional[str]:
        return self._public_address

    @public_address.setter
    def public_address(self, value: Optional[str]) -> None:
        if value is not None:
            value = value.strip()
            if not is_valid_address(value):
                raise ValueError(f"not a valid network address: {value!r}")
        self._public_address = value

    def require_public_address(self) -> str:
        if not self._public_address:
            raise ValueError(
                "public address is not known yet; it is available only after the "
                "network, the instance and the address lookup steps have run"
            )
        return self._public_address

    @classmethod
    def from_config(cls, config: "AppConfig") -> "DeploymentContext":
        azure = config.azure
        vm_name = azure.vm_name
        ctx = cls(
            resource_group=azure.resource_group,
            location=azure.location,
            vm_name=vm_name,
            vm_size=azure.vm_size,
            vm_image=azure.image,
            os_disk_size_gb=azure.os_disk_size_gb,
            vnet_name=f"{vm_name}-vnet",
            nsg_name=f"{vm_name}-nsg",
            public_ip_name=f"{vm_name}-ip",
            nic_name=f"{vm_name}-nic",
            open_ports=tuple(azure.open_ports),
            admin_username=azure.admin_username,
            ssh_key_path=config.ssh.key_path or "~/.ssh/id_rsa",
            ssh_public_key_path=azure.ssh_public_key_path,
            admin_email=config.application.admin_email,
        )
        if config.application.admin_password:
            ctx.admin_password = config.application.admin_password
        if config.ssh.host:
            ctx.public_address = config.ssh.host
        return ctx
