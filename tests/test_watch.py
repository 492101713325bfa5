import json
import unittest
from typing import List

from cool_kit.api import Application, Deployment
from cool_kit.errors import APIError
from cool_kit.lifecycle import DeploymentWatcher
from cool_kit.lifecycle.watch import classify_status
from cool_kit.readiness import PollOutcome, ProbeStatus

from fakes import FakeClock


def logs(*lines: str) -> str:
    return json.dumps([{"output": line} for line in lines])


class ScriptedClient:
    """Returns one scripted deployment state per ``list_deployments`` call."""

    def __init__(self, states, application_status: str = "exited") -> None:
        self.states = list(states)
        self.application_status = application_status
        self.current = None

    def list_deployments(self, application_uuid: str) -> List[Deployment]:
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        self.current = state
        return [state] if state is not None else []

    def get_deployment(self, deployment_uuid: str) -> Deployment:
        return self.current

    def get_application(self, application_uuid: str) -> Application:
        return Application(uuid=application_uuid, name="web", status=self.application_status)


class DeploymentWatcherTests(unittest.TestCase):
    def watch(self, client, **kwargs):
        clock = FakeClock()
        lines: List[str] = []
        watcher = DeploymentWatcher(client, "app-1", on_log=lines.append, **kwargs)
        result = watcher.watch(interval=2, deadline=20, clock=clock, sleep=clock.sleep)
        return result, lines

    def test_finished_deployment_streams_only_new_lines(self) -> None:
        client = ScriptedClient(
            [
                Deployment("d-1", "in_progress", logs=logs("Cloning")),
                Deployment("d-1", "in_progress", logs=logs("Cloning", "Building")),
                Deployment("d-1", "finished", logs=logs("Cloning", "Building", "Done")),
            ]
        )
        result, lines = self.watch(client)

        self.assertEqual(result.outcome, PollOutcome.SUCCESS)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(lines, ["Cloning", "Building", "Done"])

    def test_failed_deployment(self) -> None:
        client = ScriptedClient([Deployment("d-1", "in_progress"), Deployment("d-1", "failed")])
        result, _ = self.watch(client)
        self.assertEqual(result.outcome, PollOutcome.FAILED)
        self.assertIn("failed", result.detail)

    def test_new_deployment_resets_log_offset(self) -> None:
        client = ScriptedClient(
            [
                Deployment("d-1", "in_progress", logs=logs("old run")),
                Deployment("d-2", "finished", logs=logs("new run")),
            ]
        )
        _, lines = self.watch(client)
        self.assertEqual(lines, ["old run", "new run"])

    def test_too_many_consecutive_api_errors(self) -> None:
        client = ScriptedClient([APIError(0, "connection refused")])
        result, _ = self.watch(client, max_consecutive_errors=3)
        self.assertEqual(result.outcome, PollOutcome.FAILED)
        self.assertEqual(result.attempts, 3)

    def test_api_errors_reset_after_a_good_poll(self) -> None:
        error = APIError(500, "boom")
        client = ScriptedClient(
            [error, error, Deployment("d-1", "in_progress"), error, error, Deployment("d-1", "finished")]
        )
        result, _ = self.watch(client, max_consecutive_errors=3)
        self.assertEqual(result.outcome, PollOutcome.SUCCESS)

    def test_no_deployment_within_grace_polls(self) -> None:
        client = ScriptedClient([None])
        result, _ = self.watch(client, no_deployment_grace=4)
        self.assertEqual(result.outcome, PollOutcome.FAILED)
        self.assertEqual(result.attempts, 5)

    def test_timeout_with_running_application_counts_as_success(self) -> None:
        client = ScriptedClient([Deployment("d-1", "queued")], application_status="running:healthy")
        result, _ = self.watch(client)
        self.assertEqual(result.outcome, PollOutcome.SUCCESS)

        client = ScriptedClient([Deployment("d-1", "queued")], application_status="exited")
        result, _ = self.watch(client)
        self.assertEqual(result.outcome, PollOutcome.TIMEOUT)


def test_classify_status() -> None:
    assert classify_status("finished").status is ProbeStatus.READY
    assert classify_status("FAILED").status is ProbeStatus.FAILED
    assert classify_status("cancelled-by-user").status is ProbeStatus.FAILED
    assert classify_status("in_progress").status is ProbeStatus.NOT_READY
    assert classify_status("").detail == "unknown"
