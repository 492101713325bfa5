import json
import subprocess
import unittest
from typing import List

from cool_kit.errors import ProvisioningError
from cool_kit.provisioning import SecurityGroupSpec
from cool_kit.provisioning.cli_backend import AzureCLIBackend, AzureCLIError


class FakeRunner:
    """Records ``az`` argument lists and answers from a queue of (code, stdout, stderr)."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.calls: List[List[str]] = []

    def __call__(self, command, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(command)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        code, stdout, stderr = answer
        return subprocess.CompletedProcess(command, code, stdout, stderr)


class AzureCLIBackendTests(unittest.TestCase):
    def test_reads_subscription_from_account_show(self) -> None:
        runner = FakeRunner((0, json.dumps({"id": "sub-123", "name": "Pay-As-You-Go"}), ""))
        backend = AzureCLIBackend(runner=runner)

        self.assertEqual(backend.current_subscription_id(), "sub-123")
        self.assertEqual(runner.calls[0], ["az", "account", "show", "-o", "json"])

    def test_missing_resource_is_none(self) -> None:
        runner = FakeRunner((3, "", "ERROR: (ResourceGroupNotFound) Resource group 'rg' could not be found."))
        self.assertIsNone(AzureCLIBackend(runner=runner).get_resource_group("rg"))

    def test_other_failures_propagate(self) -> None:
        runner = FakeRunner((1, "", "ERROR: AuthorizationFailed"))
        with self.assertRaises(AzureCLIError) as ctx:
            AzureCLIBackend(runner=runner).get_resource_group("rg")
        self.assertFalse(ctx.exception.not_found)
        self.assertEqual(ctx.exception.exit_code, 1)

    def test_missing_binary_is_a_cli_error(self) -> None:
        runner = FakeRunner(FileNotFoundError(2, "No such file or directory: 'az'"))
        with self.assertRaises(AzureCLIError) as ctx:
            AzureCLIBackend(runner=runner).validate_credentials()
        self.assertEqual(ctx.exception.exit_code, -1)

    def test_unparsable_output(self) -> None:
        runner = FakeRunner((0, "not json", ""))
        with self.assertRaises(ProvisioningError):
            AzureCLIBackend(runner=runner).current_subscription_id()

    def test_security_group_ports_are_read_from_rules(self) -> None:
        nsg = {
            "name": "nsg",
            "id": "/nsg/nsg",
            "location": "eastus",
            "securityRules": [
                {"destinationPortRange": "22"},
                {"destinationPortRange": "8000"},
                {"destinationPortRange": "*"},
            ],
        }
        runner = FakeRunner((0, json.dumps(nsg), ""))
        handle = AzureCLIBackend(runner=runner).get_security_group("rg", "nsg")
        self.assertEqual(handle.attributes["ports"], (22, 8000))
        self.assertEqual(handle.location, "eastus")

    def test_create_security_group_adds_one_rule_per_port(self) -> None:
        nsg = {"name": "nsg", "id": "/nsg/nsg", "location": "eastus", "securityRules": []}
        runner = FakeRunner((0, "", ""), (0, "", ""), (0, "", ""), (0, json.dumps(nsg), ""))
        AzureCLIBackend(runner=runner).create_security_group("rg", "eastus", SecurityGroupSpec("nsg", (22, 80)))

        rule_calls = [call for call in runner.calls if call[1:4] == ["network", "nsg", "rule"]]
        self.assertEqual(len(rule_calls), 2)
        self.assertIn("22", rule_calls[0])
        self.assertIn("80", rule_calls[1])

    def test_power_state_from_instance_view(self) -> None:
        view = {
            "instanceView": {
                "statuses": [
                    {"code": "ProvisioningState/succeeded"},
                    {"code": "PowerState/running", "displayStatus": "VM running"},
                ]
            }
        }
        runner = FakeRunner((0, json.dumps(view), ""))
        state = AzureCLIBackend(runner=runner).get_power_state("rg", "vm")
        self.assertEqual(state.power_state, "VM running")
        self.assertEqual(state.provisioning_state, "succeeded")

    def test_delete_without_wait(self) -> None:
        runner = FakeRunner((0, "", ""))
        AzureCLIBackend(runner=runner).delete_resource_group("rg")
        self.assertEqual(
            runner.calls[0], ["az", "group", "delete", "--name", "rg", "--yes", "--no-wait", "-o", "none"]
        )


if __name__ == "__main__":
    unittest.main()
