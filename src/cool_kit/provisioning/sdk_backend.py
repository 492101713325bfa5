"""Provisioning backend on top of the Azure management SDKs."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient

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

T = TypeVar("T")


class AzureSDKBackend:
    """Talks to Azure Resource Manager through the Python management clients.

    Clients are created on first use; tests pass prebuilt fakes instead.
    """

    name = "sdk"

    def __init__(
        self,
        subscription_id: str,
        credential: Any = None,
        *,
        resource_client: Any = None,
        network_client: Any = None,
        compute_client: Any = None,
    ) -> None:
        if not subscription_id:
            raise ProvisioningError("an Azure subscription id is required for the SDK backend")
        self.subscription_id = subscription_id
        self._credential = credential
        self._resource_client = resource_client
        self._network_client = network_client
        self._compute_client = compute_client

    # ------------------------------------------------------------------ clients

    @property
    def credential(self) -> Any:
        if self._credential is None:
            self._credential = DefaultAzureCredential()
        return self._credential

    @property
    def resources(self) -> Any:
        if self._resource_client is None:
            self._resource_client = ResourceManagementClient(self.credential, self.subscription_id)
        return self._resource_client

    @property
    def network(self) -> Any:
        if self._network_client is None:
            self._network_client = NetworkManagementClient(self.credential, self.subscription_id)
        return self._network_client

    @property
    def compute(self) -> Any:
        if self._compute_client is None:
            self._compute_client = ComputeManagementClient(self.credential, self.subscription_id)
        return self._compute_client

    # ------------------------------------------------------------------ helpers

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except AzureError as exc:
            raise ProvisioningError(f"failed to {what}: {exc}") from exc

    def _lookup(self, what: str, fn: Callable[[], T]) -> Optional[T]:
        try:
            return fn()
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise ProvisioningError(f"failed to look up {what}: {exc}") from exc

    # ------------------------------------------------------------------ operations

    def validate_credentials(self) -> None:
        # listing one group proves both the token and the subscription
        self._call(
            "validate Azure credentials",
            lambda: next(iter(self.resources.resource_groups.list()), None),
        )

    def get_resource_group(self, name: str) -> Optional[ResourceHandle]:
        group = self._lookup(f"resource group {name}", lambda: self.resources.resource_groups.get(name))
        if group is None:
            return None
        return ResourceHandle("resource_group", group.name, group.id, group.location)

    def create_resource_group(self, spec: ResourceGroupSpec) -> ResourceHandle:
        group = self._call(
            f"create resource group {spec.name}",
            lambda: self.resources.resource_groups.create_or_update(
                spec.name, {"location": spec.location, "tags": dict(spec.tags)}
            ),
        )
        return ResourceHandle("resource_group", group.name, group.id, group.location)

    def get_security_group(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        nsg = self._lookup(
            f"network security group {name}",
            lambda: self.network.network_security_groups.get(resource_group, name),
        )
        return None if nsg is None else _nsg_handle(nsg)

    def create_security_group(
        self, resource_group: str, location: str, spec: SecurityGroupSpec
    ) -> ResourceHandle:
        rules = [
            {
                "name": rule.name,
                "priority": rule.priority,
                "protocol": "Tcp",
                "access": "Allow",
                "direction": "Inbound",
                "source_address_prefix": "*",
                "source_port_range": "*",
                "destination_address_prefix": "*",
                "destination_port_range": str(rule.port),
            }
            for rule in spec.rules
        ]
        params = {"location": location, "security_rules": rules, "tags": dict(DEFAULT_TAGS)}
        nsg = self._call(
            f"create network security group {spec.name}",
            lambda: self.network.network_security_groups.begin_create_or_update(
                resource_group, spec.name, params
            ).result(),
        )
        return _nsg_handle(nsg)

    def get_network(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        vnet = self._lookup(
            f"virtual network {name}",
            lambda: self.network.virtual_networks.get(resource_group, name),
        )
        return None if vnet is None else _vnet_handle(vnet)

    def create_network(self, resource_group: str, location: str, spec: NetworkSpec) -> ResourceHandle:
        params = {
            "location": location,
            "address_space": {"address_prefixes": [spec.address_prefix]},
            "subnets": [{"name": spec.subnet_name, "address_prefix": spec.subnet_prefix}],
            "tags": dict(DEFAULT_TAGS),
        }
        vnet = self._call(
            f"create virtual network {spec.name}",
            lambda: self.network.virtual_networks.begin_create_or_update(
                resource_group, spec.name, params
            ).result(),
        )
        return _vnet_handle(vnet)

    def get_public_address(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        ip = self._lookup(
            f"public IP {name}",
            lambda: self.network.public_ip_addresses.get(resource_group, name),
        )
        return None if ip is None else _ip_handle(ip)

    def create_public_address(
        self, resource_group: str, location: str, spec: PublicAddressSpec
    ) -> ResourceHandle:
        params = {
            "location": location,
            "sku": {"name": spec.sku},
            "public_ip_allocation_method": spec.allocation_method,
            "tags": dict(DEFAULT_TAGS),
        }
        ip = self._call(
            f"create public IP {spec.name}",
            lambda: self.network.public_ip_addresses.begin_create_or_update(
                resource_group, spec.name, params
            ).result(),
        )
        return _ip_handle(ip)

    def get_network_interface(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        nic = self._lookup(
            f"network interface {name}",
            lambda: self.network.network_interfaces.get(resource_group, name),
        )
        if nic is None:
            return None
        return ResourceHandle("network_interface", nic.name, nic.id, nic.location)

    def create_network_interface(
        self, resource_group: str, location: str, spec: NetworkInterfaceSpec
    ) -> ResourceHandle:
        params = {
            "location": location,
            "ip_configurations": [
                {
                    "name": "ipconfig1",
                    "subnet": {"id": spec.subnet_id},
                    "public_ip_address": {"id": spec.public_ip_id},
                    "private_ip_allocation_method": "Dynamic",
                }
            ],
            "network_security_group": {"id": spec.nsg_id},
            "tags": dict(DEFAULT_TAGS),
        }
        nic = self._call(
            f"create network interface {spec.name}",
            lambda: self.network.network_interfaces.begin_create_or_update(
                resource_group, spec.name, params
            ).result(),
        )
        return ResourceHandle("network_interface", nic.name, nic.id, nic.location)

    def get_instance(self, resource_group: str, name: str) -> Optional[ResourceHandle]:
        vm = self._lookup(
            f"virtual machine {name}",
            lambda: self.compute.virtual_machines.get(resource_group, name),
        )
        if vm is None:
            return None
        return ResourceHandle("instance", vm.name, vm.id, vm.location)

    def create_instance(self, resource_group: str, location: str, spec: InstanceSpec) -> ResourceHandle:
        params: Dict[str, Any] = {
            "location": location,
            "hardware_profile": {"vm_size": spec.size},
            "storage_profile": {
                "image_reference": spec.image_reference,
                "os_disk": {
                    "create_option": "FromImage",
                    "disk_size_gb": spec.os_disk_size_gb,
                    "managed_disk": {"storage_account_type": "Standard_LRS"},
                },
            },
            "os_profile": {
                "computer_name": spec.name,
                "admin_username": spec.admin_username,
                "linux_configuration": {
                    "disable_password_authentication": True,
                    "ssh": {
                        "public_keys": [
                            {
                                "path": f"/home/{spec.admin_username}/.ssh/authorized_keys",
                                "key_data": spec.ssh_public_key,
                            }
                        ]
                    },
                },
            },
            "network_profile": {"network_interfaces": [{"id": spec.nic_id}]},
            "tags": dict(DEFAULT_TAGS),
        }
        vm = self._call(
            f"create virtual machine {spec.name}",
            lambda: self.compute.virtual_machines.begin_create_or_update(
                resource_group, spec.name, params
            ).result(),
        )
        return ResourceHandle("instance", vm.name, vm.id, vm.location)

    def get_power_state(self, resource_group: str, name: str) -> PowerState:
        view = self._call(
            f"read instance view of {name}",
            lambda: self.compute.virtual_machines.instance_view(resource_group, name),
        )
        return _power_state_from_statuses(
            (status.code or "", status.display_status or "") for status in (view.statuses or [])
        )

    def delete_resource_group(self, name: str, *, wait: bool = False) -> None:
        poller = self._call(
            f"delete resource group {name}",
            lambda: self.resources.resource_groups.begin_delete(name),
        )
        if wait:
            self._call(f"wait for deletion of {name}", poller.result)


def _nsg_handle(nsg: Any) -> ResourceHandle:
    ports = []
    for rule in nsg.security_rules or []:
        if rule.destination_port_range and rule.destination_port_range.isdigit():
            ports.append(int(rule.destination_port_range))
    return ResourceHandle(
        "security_group", nsg.name, nsg.id, nsg.location, {"ports": tuple(ports)}
    )


def _vnet_handle(vnet: Any) -> ResourceHandle:
    subnets = {subnet.name: subnet.id for subnet in (vnet.subnets or [])}
    return ResourceHandle("network", vnet.name, vnet.id, vnet.location, {"subnets": subnets})


def _ip_handle(ip: Any) -> ResourceHandle:
    return ResourceHandle(
        "public_address", ip.name, ip.id, ip.location, {"ip_address": ip.ip_address}
    )


def _power_state_from_statuses(statuses) -> PowerState:
    power = None
    provisioning = None
    for code, display in statuses:
        if code.startswith("PowerState/"):
            power = display or code.split("/", 1)[1]
        elif code.startswith("ProvisioningState/"):
            provisioning = code.split("/", 1)[1]
    return PowerState(power_state=power, provisioning_state=provisioning)
