"""Ensure-exists provisioning on top of a :class:`ProvisioningBackend`."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from ..errors import BackendUnavailableError, ProvisioningError
from .base import (
    InstanceSpec,
    NetworkInterfaceSpec,
    NetworkSpec,
    PowerState,
    ProvisioningBackend,
    PublicAddressSpec,
    ResourceGroupSpec,
    ResourceHandle,
    SecurityGroupSpec,
)
from .cli_backend import AzureCLIBackend
from .sdk_backend import AzureSDKBackend

logger = logging.getLogger(__name__)


class ResourceProvisioner:
    """Creates resources in one resource group, reusing whatever already exists.

    Every ``ensure_*`` looks the resource up first. An existing resource is
    adopted as-is; only an absent one is created. The resource group's actual
    location wins over the requested one and is used for everything created
    inside it afterwards.
    """

    def __init__(self, backend: ProvisioningBackend, resource_group: str, location: str) -> None:
        self.backend = backend
        self.resource_group = resource_group
        self.location = location

    def validate(self) -> None:
        self.backend.validate_credentials()

    def ensure_resource_group(self) -> ResourceHandle:
        existing = self.backend.get_resource_group(self.resource_group)
        if existing is not None:
            if existing.location and existing.location != self.location:
                logger.info(
                    "Resource group %s already exists in %s; using that location instead of %s",
                    self.resource_group,
                    existing.location,
                    self.location,
                )
                self.location = existing.location
            return existing
        logger.info("Creating resource group %s in %s", self.resource_group, self.location)
        return self.backend.create_resource_group(ResourceGroupSpec(self.resource_group, self.location))

    def ensure_security_group(self, name: str, ports: Sequence[int]) -> ResourceHandle:
        existing = self.backend.get_security_group(self.resource_group, name)
        if existing is not None:
            missing = sorted(set(ports) - set(existing.attributes.get("ports", ())))
            if missing:
                logger.warning(
                    "Existing security group %s does not allow ports %s; leaving it unchanged",
                    name,
                    ", ".join(str(port) for port in missing),
                )
            return existing
        logger.info("Creating network security group %s", name)
        return self.backend.create_security_group(
            self.resource_group, self.location, SecurityGroupSpec(name, tuple(ports))
        )

    def ensure_network(self, spec: NetworkSpec) -> ResourceHandle:
        handle = self.backend.get_network(self.resource_group, spec.name)
        if handle is None:
            logger.info("Creating virtual network %s", spec.name)
            handle = self.backend.create_network(self.resource_group, self.location, spec)
        if spec.subnet_name not in handle.attributes.get("subnets", {}):
            raise ProvisioningError(
                f"virtual network {spec.name} has no subnet named {spec.subnet_name}"
            )
        return handle

    def ensure_public_address(self, name: str) -> ResourceHandle:
        existing = self.backend.get_public_address(self.resource_group, name)
        if existing is not None:
            return existing
        logger.info("Creating public IP %s", name)
        return self.backend.create_public_address(
            self.resource_group, self.location, PublicAddressSpec(name)
        )

    def ensure_network_interface(self, spec: NetworkInterfaceSpec) -> ResourceHandle:
        existing = self.backend.get_network_interface(self.resource_group, spec.name)
        if existing is not None:
            return existing
        logger.info("Creating network interface %s", spec.name)
        return self.backend.create_network_interface(self.resource_group, self.location, spec)

    def ensure_instance(self, spec: InstanceSpec) -> ResourceHandle:
        existing = self.backend.get_instance(self.resource_group, spec.name)
        if existing is not None:
            logger.info("Virtual machine %s already exists", spec.name)
            return existing
        logger.info("Creating virtual machine %s (%s)", spec.name, spec.size)
        return self.backend.create_instance(self.resource_group, self.location, spec)

    def power_state(self, vm_name: str) -> PowerState:
        return self.backend.get_power_state(self.resource_group, vm_name)

    def public_address(self, name: str) -> Optional[str]:
        handle = self.backend.get_public_address(self.resource_group, name)
        if handle is None:
            return None
        return handle.attributes.get("ip_address") or None

    def destroy(self, *, wait: bool = False) -> None:
        logger.info("Deleting resource group %s", self.resource_group)
        self.backend.delete_resource_group(self.resource_group, wait=wait)


def select_backend(
    subscription_id: Optional[str] = None,
    *,
    sdk_factory: Callable[[str], ProvisioningBackend] = AzureSDKBackend,
    cli_backend: Optional[AzureCLIBackend] = None,
) -> ProvisioningBackend:
    """Return the SDK backend when usable, otherwise the CLI backend.

    The subscription id is discovered through the CLI when it is not given.
    Raises :class:`BackendUnavailableError` naming every cause when neither
    backend works.
    """
    cli = cli_backend or AzureCLIBackend()
    causes: List[str] = []

    if not subscription_id:
        try:
            subscription_id = cli.current_subscription_id()
        except ProvisioningError as exc:
            causes.append(f"subscription lookup: {exc}")

    if subscription_id:
        try:
            sdk = sdk_factory(subscription_id)
            sdk.validate_credentials()
            logger.info("Using Azure SDK backend")
            return sdk
        except ProvisioningError as exc:
            causes.append(f"sdk: {exc}")
            logger.warning("Azure SDK backend unavailable, falling back to the az CLI: %s", exc)
    else:
        causes.append("sdk: no subscription id")

    try:
        cli.validate_credentials()
    except ProvisioningError as exc:
        causes.append(f"cli: {exc}")
        raise BackendUnavailableError(
            "no provisioning backend available: " + "; ".join(causes)
        ) from exc
    logger.info("Using az CLI backend")
    return cli
