import unittest
from typing import Optional

import pytest

from cool_kit.errors import BackendUnavailableError, ProvisioningError
from cool_kit.provisioning import (
    InstanceSpec,
    NetworkInterfaceSpec,
    NetworkSpec,
    ResourceHandle,
    ResourceProvisioner,
    select_backend,
)

from fakes import InMemoryBackend


class ResourceProvisionerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = InMemoryBackend()
        self.provisioner = ResourceProvisioner(self.backend, "rg", "eastus")

    def test_ensure_resource_group_twice_creates_once(self) -> None:
        first = self.provisioner.ensure_resource_group()
        second = self.provisioner.ensure_resource_group()
        self.assertEqual(first.id, second.id)
        self.assertEqual(self.backend.creates, [("group", "rg")])

    def test_existing_group_location_wins(self) -> None:
        self.backend.resources[("group", "rg")] = ResourceHandle("group", "rg", "/group/rg", "westeurope")

        self.provisioner.ensure_resource_group()
        nsg = self.provisioner.ensure_security_group("nsg", [22])

        self.assertEqual(self.provisioner.location, "westeurope")
        self.assertEqual(nsg.location, "westeurope")
        self.assertEqual(self.backend.creates, [("nsg", "nsg")])

    def test_existing_security_group_is_adopted_unchanged(self) -> None:
        self.backend.resources[("nsg", "nsg")] = ResourceHandle("nsg", "nsg", "/nsg/nsg", "eastus", {"ports": [22]})
        with self.assertLogs("cool_kit.provisioning.provisioner", level="WARNING") as logs:
            handle = self.provisioner.ensure_security_group("nsg", [22, 80, 443])
        self.assertEqual(handle.attributes["ports"], [22])
        self.assertEqual(self.backend.creates, [])
        self.assertIn("80, 443", logs.output[0])

    def test_network_without_expected_subnet_is_an_error(self) -> None:
        self.backend.resources[("vnet", "vnet")] = ResourceHandle("vnet", "vnet", "/vnet/vnet", "eastus", {"subnets": {}})
        with self.assertRaises(ProvisioningError):
            self.provisioner.ensure_network(NetworkSpec("vnet", "default"))

    def test_full_chain_is_idempotent(self) -> None:
        def provision() -> None:
            self.provisioner.ensure_resource_group()
            nsg = self.provisioner.ensure_security_group("nsg", [22, 80])
            vnet = self.provisioner.ensure_network(NetworkSpec("vnet", "default"))
            ip = self.provisioner.ensure_public_address("ip")
            nic = self.provisioner.ensure_network_interface(
                NetworkInterfaceSpec("nic", vnet.attributes["subnets"]["default"], ip.id, nsg.id)
            )
            self.provisioner.ensure_instance(
                InstanceSpec("vm", "Standard_B2s", "Canonical:offer:sku:latest", "azureuser", "ssh-rsa AAA", nic.id)
            )

        provision()
        provision()

        self.assertEqual(
            [kind for kind, _ in self.backend.creates], ["group", "nsg", "vnet", "ip", "nic", "vm"]
        )

    def test_public_address_and_destroy(self) -> None:
        self.assertIsNone(self.provisioner.public_address("ip"))
        self.provisioner.ensure_public_address("ip")
        self.assertEqual(self.provisioner.public_address("ip"), "20.1.2.3")

        self.provisioner.destroy(wait=True)
        self.assertEqual(self.backend.deleted, ["rg"])


def test_instance_image_reference_parsing() -> None:
    spec = InstanceSpec("vm", "size", "Canonical:ubuntu:22_04-lts:latest", "azureuser", "key", "nic")
    assert spec.image_reference == {
        "publisher": "Canonical",
        "offer": "ubuntu",
        "sku": "22_04-lts",
        "version": "latest",
    }
    with pytest.raises(ValueError):
        InstanceSpec("vm", "size", "ubuntu", "azureuser", "key", "nic").image_reference


class StubCLI:
    name = "cli"

    def __init__(self, subscription: Optional[str] = "sub-1", valid: bool = True) -> None:
        self.subscription = subscription
        self.valid = valid

    def current_subscription_id(self) -> str:
        if self.subscription is None:
            raise ProvisioningError("az account show failed")
        return self.subscription

    def validate_credentials(self) -> None:
        if not self.valid:
            raise ProvisioningError("az login required")


class StubSDK:
    name = "sdk"

    def __init__(self, subscription_id: str, valid: bool = True) -> None:
        self.subscription_id = subscription_id
        self.valid = valid

    def validate_credentials(self) -> None:
        if not self.valid:
            raise ProvisioningError("DefaultAzureCredential failed")


class SelectBackendTests(unittest.TestCase):
    def test_prefers_sdk_and_discovers_subscription(self) -> None:
        backend = select_backend(None, sdk_factory=StubSDK, cli_backend=StubCLI())
        self.assertEqual(backend.name, "sdk")
        self.assertEqual(backend.subscription_id, "sub-1")

    def test_falls_back_to_cli_when_sdk_cannot_authenticate(self) -> None:
        cli = StubCLI()
        backend = select_backend("sub-2", sdk_factory=lambda sub: StubSDK(sub, valid=False), cli_backend=cli)
        self.assertIs(backend, cli)

    def test_neither_backend_available(self) -> None:
        with self.assertRaises(BackendUnavailableError) as ctx:
            select_backend(
                None,
                sdk_factory=StubSDK,
                cli_backend=StubCLI(subscription=None, valid=False),
            )
        message = str(ctx.exception)
        self.assertIn("az account show failed", message)
        self.assertIn("az login required", message)


if __name__ == "__main__":
    unittest.main()
