import unittest
from types import SimpleNamespace
from typing import List

from azure.core.exceptions import AzureError, ClientAuthenticationError, ResourceNotFoundError

from cool_kit.errors import ProvisioningError
from cool_kit.provisioning import (
    AzureSDKBackend,
    NetworkSpec,
    ResourceGroupSpec,
    SecurityGroupSpec,
    select_backend,
)


class FakePoller:
    def __init__(self, value) -> None:
        self.value = value
        self.waited = False

    def result(self):
        self.waited = True
        return self.value


class FakeOperations:
    """One operations group of a management client (``resource_groups``, ``virtual_networks``, ...)."""

    def __init__(self, items=None, error: Exception = None) -> None:
        self.items = dict(items or {})
        self.error = error
        self.calls: List[tuple] = []

    def _raise(self) -> None:
        if self.error is not None:
            raise self.error

    def get(self, *args):
        self.calls.append(("get",) + args)
        self._raise()
        try:
            return self.items[args[-1]]
        except KeyError:
            raise ResourceNotFoundError(message=f"{args[-1]} was not found") from None

    def list(self):
        self.calls.append(("list",))
        self._raise()
        return iter(self.items.values())

    def create_or_update(self, name, params):
        self.calls.append(("create_or_update", name, params))
        self._raise()
        item = SimpleNamespace(name=name, id=f"/groups/{name}", location=params["location"])
        self.items[name] = item
        return item

    def begin_create_or_update(self, resource_group, name, params):
        self.calls.append(("begin_create_or_update", resource_group, name, params))
        self._raise()
        return FakePoller(self.items[name])

    def begin_delete(self, name):
        self.calls.append(("begin_delete", name))
        self._raise()
        return FakePoller(None)

    def instance_view(self, resource_group, name):
        self.calls.append(("instance_view", resource_group, name))
        self._raise()
        return self.items[name]


def rule(port: str) -> SimpleNamespace:
    return SimpleNamespace(destination_port_range=port)


def status(code: str, display: str = None) -> SimpleNamespace:
    return SimpleNamespace(code=code, display_status=display)


class AzureSDKBackendTests(unittest.TestCase):
    def backend(self, *, groups=None, network=None, compute=None) -> AzureSDKBackend:
        return AzureSDKBackend(
            "sub-1",
            credential=object(),
            resource_client=SimpleNamespace(resource_groups=groups or FakeOperations()),
            network_client=network or SimpleNamespace(),
            compute_client=compute or SimpleNamespace(),
        )

    def test_subscription_id_is_required(self) -> None:
        with self.assertRaises(ProvisioningError):
            AzureSDKBackend("")

    def test_missing_resource_group_is_none(self) -> None:
        self.assertIsNone(self.backend().get_resource_group("coolify-rg"))

    def test_create_and_read_resource_group(self) -> None:
        groups = FakeOperations()
        backend = self.backend(groups=groups)

        handle = backend.create_resource_group(ResourceGroupSpec("coolify-rg", "westeurope"))

        self.assertEqual((handle.name, handle.location), ("coolify-rg", "westeurope"))
        self.assertEqual(backend.get_resource_group("coolify-rg").id, "/groups/coolify-rg")
        params = groups.calls[0][2]
        self.assertEqual(params["location"], "westeurope")

    def test_service_errors_become_provisioning_errors(self) -> None:
        groups = FakeOperations(error=AzureError("throttled"))
        backend = self.backend(groups=groups)

        with self.assertRaises(ProvisioningError) as ctx:
            backend.get_resource_group("coolify-rg")
        self.assertIn("throttled", str(ctx.exception))
        with self.assertRaises(ProvisioningError):
            backend.create_resource_group(ResourceGroupSpec("coolify-rg", "eastus"))

    def test_security_group_ports_are_read_from_rules(self) -> None:
        nsg = SimpleNamespace(
            name="nsg", id="/nsg/nsg", location="eastus", security_rules=[rule("22"), rule("8000"), rule("*")]
        )
        operations = FakeOperations({"nsg": nsg})
        backend = self.backend(network=SimpleNamespace(network_security_groups=operations))

        handle = backend.create_security_group("rg", "eastus", SecurityGroupSpec("nsg", (22, 8000)))

        self.assertEqual(handle.attributes["ports"], (22, 8000))
        rules = operations.calls[0][3]["security_rules"]
        self.assertEqual([r["destination_port_range"] for r in rules], ["22", "8000"])
        self.assertTrue(all(r["direction"] == "Inbound" for r in rules))

    def test_network_exposes_subnet_ids(self) -> None:
        vnet = SimpleNamespace(
            name="vnet",
            id="/vnet/vnet",
            location="eastus",
            subnets=[SimpleNamespace(name="default", id="/vnet/vnet/subnets/default")],
        )
        backend = self.backend(network=SimpleNamespace(virtual_networks=FakeOperations({"vnet": vnet})))

        handle = backend.create_network("rg", "eastus", NetworkSpec("vnet", "default"))

        self.assertEqual(handle.attributes["subnets"], {"default": "/vnet/vnet/subnets/default"})

    def test_public_address(self) -> None:
        ip = SimpleNamespace(name="ip", id="/ip/ip", location="eastus", ip_address="20.1.2.3")
        backend = self.backend(network=SimpleNamespace(public_ip_addresses=FakeOperations({"ip": ip})))
        self.assertEqual(backend.get_public_address("rg", "ip").attributes["ip_address"], "20.1.2.3")
        self.assertIsNone(backend.get_public_address("rg", "other-ip"))

    def test_power_state_from_instance_view(self) -> None:
        view = SimpleNamespace(
            statuses=[
                status("ProvisioningState/succeeded", "Provisioning succeeded"),
                status("PowerState/running", "VM running"),
            ]
        )
        backend = self.backend(compute=SimpleNamespace(virtual_machines=FakeOperations({"vm": view})))

        state = backend.get_power_state("rg", "vm")

        self.assertEqual(state.power_state, "VM running")
        self.assertEqual(state.provisioning_state, "succeeded")

    def test_power_state_without_display_status(self) -> None:
        view = SimpleNamespace(statuses=[status("PowerState/starting")])
        backend = self.backend(compute=SimpleNamespace(virtual_machines=FakeOperations({"vm": view})))
        self.assertEqual(backend.get_power_state("rg", "vm").power_state, "starting")

    def test_delete_waits_only_when_asked(self) -> None:
        groups = FakeOperations()
        self.backend(groups=groups).delete_resource_group("coolify-rg")
        self.assertEqual(groups.calls, [("begin_delete", "coolify-rg")])

    def test_credential_failure_falls_back_to_the_cli(self) -> None:
        failing = FakeOperations(error=ClientAuthenticationError(message="DefaultAzureCredential failed"))
        sdk = self.backend(groups=failing)
        with self.assertRaises(ProvisioningError):
            sdk.validate_credentials()

        cli = SimpleNamespace(name="cli", validate_credentials=lambda: None)
        backend = select_backend("sub-1", sdk_factory=lambda subscription_id: sdk, cli_backend=cli)
        self.assertIs(backend, cli)


if __name__ == "__main__":
    unittest.main()
