"""Azure virtual machine target."""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, List, Optional

import requests

from ..config import AppConfig
from ..errors import ProvisioningError
from ..orchestrator.context import DeploymentContext
from ..orchestrator.models import StepDefinition
from ..orchestrator.pipeline import StepReporter
from ..provisioning import (
    InstanceSpec,
    NetworkInterfaceSpec,
    NetworkSpec,
    ProvisioningBackend,
    ResourceProvisioner,
    select_backend,
)
from ..provisioning.cli_backend import AzureCLIBackend
from ..provisioning.sdk_backend import AzureSDKBackend
from ..readiness import power_state_probe, ssh_reachable_probe, wait_until
from ..ssh import SSHCredentials, SSHSession
from .common import StackSteps

logger = logging.getLogger(__name__)


def build_backend(config: AppConfig) -> ProvisioningBackend:
    """Honour an explicit backend choice; otherwise prefer the SDK and fall back to the CLI."""
    choice = (config.azure.backend or "auto").lower()
    if choice == "cli":
        backend = AzureCLIBackend()
        backend.validate_credentials()
        return backend
    if choice == "sdk":
        subscription_id = config.azure.subscription_id or AzureCLIBackend().current_subscription_id()
        backend = AzureSDKBackend(subscription_id)
        backend.validate_credentials()
        return backend
    return select_backend(config.azure.subscription_id)


class AzureTarget:
    """Provisions a VM, then installs the stack on it over SSH."""

    name = "azure"

    def __init__(
        self,
        config: AppConfig,
        context: Optional[DeploymentContext] = None,
        *,
        backend_factory: Callable[[AppConfig], ProvisioningBackend] = build_backend,
        session_factory: Optional[Callable[[SSHCredentials], SSHSession]] = None,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.context = context or DeploymentContext.from_config(config)
        self._backend_factory = backend_factory
        self._session_factory = session_factory or (lambda creds: SSHSession(creds, use_sudo=True))
        self._provisioner: Optional[ResourceProvisioner] = None
        self._session: Optional[SSHSession] = None
        self._clock = clock
        self._sleep = sleep
        self.stack = StackSteps(
            config, self.context, self.executor, http_session=http_session, clock=clock, sleep=sleep
        )

    @property
    def provisioner(self) -> ResourceProvisioner:
        if self._provisioner is None:
            backend = self._backend_factory(self.config)
            self._provisioner = ResourceProvisioner(
                backend, self.context.resource_group, self.context.location
            )
        return self._provisioner

    def executor(self) -> SSHSession:
        if self._session is None:
            if not self.context.public_address:
                # lifecycle commands on an already deployed VM
                self.context.public_address = self._lookup_address()
            credentials = SSHCredentials(
                host=self.context.require_public_address(),
                username=self.context.admin_username,
                key_path=self.context.ssh_key_path,
                timeout=self.config.ssh.timeout,
            )
            self._session = self._session_factory(credentials)
        return self._session

    def _lookup_address(self) -> str:
        address = self.provisioner.public_address(self.context.public_ip_name)
        if not address:
            raise ProvisioningError(f"public IP {self.context.public_ip_name} has no address yet")
        return address

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    # ------------------------------------------------------------------ actions

    def validate_credentials(self, reporter: StepReporter) -> None:
        self.provisioner.validate()
        reporter.info(f"Using the {self.provisioner.backend.name} backend")

    def create_resource_group(self, reporter: StepReporter) -> None:
        group = self.provisioner.ensure_resource_group()
        self.context.location = self.provisioner.location
        reporter.info(f"Resource group {group.name} in {self.context.location}")

    def create_network(self, reporter: StepReporter) -> None:
        ctx = self.context
        provisioner = self.provisioner

        reporter.progress(0.1, "Network security group")
        nsg = provisioner.ensure_security_group(ctx.nsg_name, ctx.open_ports)
        ctx.nsg_id = nsg.id

        reporter.progress(0.35, "Virtual network")
        vnet = provisioner.ensure_network(
            NetworkSpec(
                ctx.vnet_name,
                ctx.subnet_name,
                address_prefix=ctx.vnet_address_prefix,
                subnet_prefix=ctx.subnet_address_prefix,
            )
        )
        ctx.subnet_id = vnet.attributes["subnets"][ctx.subnet_name]

        reporter.progress(0.6, "Public IP address")
        ip = provisioner.ensure_public_address(ctx.public_ip_name)
        ctx.public_ip_id = ip.id

        reporter.progress(0.8, "Network interface")
        nic = provisioner.ensure_network_interface(
            NetworkInterfaceSpec(ctx.nic_name, ctx.subnet_id, ctx.public_ip_id, ctx.nsg_id)
        )
        ctx.nic_id = nic.id
        reporter.info("Network resources ready")

    def create_vm(self, reporter: StepReporter) -> None:
        ctx = self.context
        key_path = os.path.expanduser(ctx.ssh_public_key_path)
        try:
            with open(key_path, "r", encoding="utf-8") as handle:
                public_key = handle.read().strip()
        except OSError as exc:
            raise ProvisioningError(f"cannot read SSH public key {key_path}: {exc}") from exc

        vm = self.provisioner.ensure_instance(
            InstanceSpec(
                name=ctx.vm_name,
                size=ctx.vm_size,
                image=ctx.vm_image,
                admin_username=ctx.admin_username,
                ssh_public_key=public_key,
                nic_id=ctx.nic_id or "",
                os_disk_size_gb=ctx.os_disk_size_gb,
            )
        )
        ctx.vm_id = vm.id
        reporter.info(f"Virtual machine {vm.name} created")

    def wait_for_vm(self, reporter: StepReporter) -> None:
        wait_until(
            power_state_probe(self.provisioner, self.context.vm_name),
            interval=self.config.lifecycle.poll_interval,
            deadline=self.config.lifecycle.vm_ready_timeout,
            clock=self._clock,
            sleep=self._sleep,
        ).raise_for_outcome(f"virtual machine {self.context.vm_name}")
        reporter.info("Virtual machine is running")

    def get_public_address(self, reporter: StepReporter) -> None:
        address = self._lookup_address()
        self.context.public_address = address
        reporter.info(f"Public address: {address}")

    def wait_for_ssh(self, reporter: StepReporter) -> None:
        wait_until(
            ssh_reachable_probe(self.executor()),
            interval=self.config.lifecycle.poll_interval,
            deadline=self.config.lifecycle.ssh_ready_timeout,
            clock=self._clock,
            sleep=self._sleep,
        ).raise_for_outcome(f"SSH on {self.context.public_address}")
        reporter.info("SSH connection established")

    # ------------------------------------------------------------------ step lists

    def deploy_steps(self) -> List[StepDefinition]:
        return [
            StepDefinition("validate_credentials", "Checking Azure credentials", self.validate_credentials),
            StepDefinition("create_resource_group", "Setting up the resource group", self.create_resource_group),
            StepDefinition("create_network", "Setting up NSG, VNet, public IP and NIC", self.create_network),
            StepDefinition("create_vm", "Launching the virtual machine", self.create_vm),
            StepDefinition("wait_for_vm", "Waiting for the VM to run", self.wait_for_vm),
            StepDefinition("get_public_address", "Retrieving the public address", self.get_public_address),
            StepDefinition("wait_for_ssh", "Waiting for SSH", self.wait_for_ssh),
        ] + self.stack.install_steps()

    def destroy(self, *, wait: bool = False) -> None:
        """Delete the whole resource group; explicit and separate from deploy."""
        self.close()
        self.provisioner.destroy(wait=wait)
