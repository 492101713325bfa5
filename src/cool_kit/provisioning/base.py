"""Provisioning capability shared by both control-plane backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

DEFAULT_TAGS = {"createdby": "cool-kit", "application": "coolify"}


@dataclass(frozen=True)
class ResourceHandle:
    """A resource as the control plane reports it."""

    kind: str
    name: str
    id: str
    location: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PowerState:
    power_state: Optional[str]
    provisioning_state: Optional[str] = None


@dataclass(frozen=True)
class ResourceGroupSpec:
    name: str
    location: str
    tags: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TAGS))


@dataclass(frozen=True)
class SecurityRule:
    name: str
    port: int
    priority: int


@dataclass(frozen=True)
class SecurityGroupSpec:
    name: str
    ports: Tuple[int, ...]

    @property
    def rules(self) -> List[SecurityRule]:
        return [
            SecurityRule(name=f"Allow{port}", port=port, priority=100 + index * 10)
            for index, port in enumerate(self.ports)
        ]


@dataclass(frozen=True)
class NetworkSpec:
    name: str
    subnet_name: str
    address_prefix: str = "10.0.0.0/16"
    subnet_prefix: str = "10.0.0.0/24"


@dataclass(frozen=True)
class PublicAddressSpec:
    name: str
    sku: str = "Standard"
    allocation_method: str = "Static"


@dataclass(frozen=True)
class NetworkInterfaceSpec:
    name: str
    subnet_id: str
    public_ip_id: str
    nsg_id: str


@dataclass(frozen=True)
class InstanceSpec:
    name: str
    size: str
    image: str
    admin_username: str
    ssh_public_key: str
    nic_id: str
    os_disk_size_gb: int = 30

    @property
    def image_reference(self) -> Dict[str, str]:
        """Split a ``publisher:offer:sku:version`` URN."""
        parts = self.image.split(":")
        if len(parts) != 4:
            raise ValueError(f"image must be publisher:offer:sku:version, got {self.image!r}")
        publisher, offer, sku, version = parts
        return {"publisher": publisher, "offer": offer, "sku": sku, "version": version}


class ProvisioningBackend(Protocol):
    """Operations a control-plane backend must offer.

    ``get_*`` return None when the resource does not exist and raise
    :class:`~cool_kit.errors.ProvisioningError` on any other failure.
    """

    name: str

    def validate_credentials(self) -> None: ...

    def get_resource_group(self, name: str) -> Optional[ResourceHandle]: ...

    def create_resource_group(self, spec: ResourceGroupSpec) -> ResourceHandle: ...

    def get_security_group(self, resource_group: str, name: str) -> Optional[ResourceHandle]: ...

    def create_security_group(
        self, resource_group: str, location: str, spec: SecurityGroupSpec
    ) -> ResourceHandle: ...

    def get_network(self, resource_group: str, name: str) -> Optional[ResourceHandle]: ...

    def create_network(
        self, resource_group: str, location: str, spec: NetworkSpec
    ) -> ResourceHandle: ...

    def get_public_address(self, resource_group: str, name: str) -> Optional[ResourceHandle]: ...

    def create_public_address(
        self, resource_group: str, location: str, spec: PublicAddressSpec
    ) -> ResourceHandle: ...

    def get_network_interface(self, resource_group: str, name: str) -> Optional[ResourceHandle]: ...

    def create_network_interface(
        self, resource_group: str, location: str, spec: NetworkInterfaceSpec
    ) -> ResourceHandle: ...

    def get_instance(self, resource_group: str, name: str) -> Optional[ResourceHandle]: ...

    def create_instance(
        self, resource_group: str, location: str, spec: InstanceSpec
    ) -> ResourceHandle: ...

    def get_power_state(self, resource_group: str, name: str) -> PowerState: ...

    def delete_resource_group(self, name: str, *, wait: bool = False) -> None: ...
