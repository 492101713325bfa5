import io
import threading
import unittest

import pytest
from rich.console import Console

from cool_kit.config import AppConfig
from cool_kit.interaction import AutoConfirm, ConsoleSink
from cool_kit.orchestrator import CollectingSink, EventBus, LogEvent, LoggingSink, LogLevel, ProgressEvent
from cool_kit.targets import DockerTarget
from cool_kit.workflow import DeploymentWorkflow

from fakes import FakeExecutor


class EventBusTests(unittest.TestCase):
    def test_delivery_order_matches_emission_order(self) -> None:
        sink = CollectingSink()
        with EventBus(sink, maxsize=4) as bus:
            for index in range(200):
                bus.log(LogLevel.INFO, f"message {index}")
        self.assertEqual(sink.messages(), [f"message {index}" for index in range(200)])

    def test_sink_runs_on_a_separate_thread(self) -> None:
        threads = []

        class RecordingSink:
            def handle(self, event) -> None:
                threads.append(threading.current_thread().name)

        with EventBus(RecordingSink()) as bus:
            bus.log(LogLevel.INFO, "hello")
        self.assertEqual(threads, ["cool-kit-events"])

    def test_flush_waits_for_delivery(self) -> None:
        sink = CollectingSink()
        bus = EventBus(sink)
        bus.log(LogLevel.DEBUG, "one")
        bus.flush()
        self.assertEqual(sink.messages(), ["one"])
        bus.close()

    def test_emit_after_close_is_rejected(self) -> None:
        bus = EventBus()
        bus.close()
        with self.assertRaises(RuntimeError):
            bus.log(LogLevel.INFO, "late")

    def test_failing_sink_does_not_stop_delivery(self) -> None:
        delivered = []

        class FlakySink:
            def handle(self, event) -> None:
                if event.message == "bad":
                    raise KeyError("presenter bug")
                delivered.append(event.message)

        with self.assertLogs("cool_kit.orchestrator.events", level="ERROR"):
            with EventBus(FlakySink()) as bus:
                bus.log(LogLevel.INFO, "bad")
                bus.log(LogLevel.INFO, "good")
        self.assertEqual(delivered, ["good"])


class LoggingSinkTests(unittest.TestCase):
    def test_levels_map_to_stdlib_logging(self) -> None:
        sink = LoggingSink("cool_kit.events")
        with self.assertLogs("cool_kit.events", level="DEBUG") as logs:
            sink.handle(LogEvent(LogLevel.WARNING, "NSG nsg lacks ports 443"))
            sink.handle(LogEvent(LogLevel.SUCCESS, "Backup created"))
            sink.handle(ProgressEvent(step_index=2, total_steps=4, fraction_complete=0.5, message="Pulling"))

        self.assertEqual(
            logs.output,
            [
                "WARNING:cool_kit.events:NSG nsg lacks ports 443",
                "INFO:cool_kit.events:Backup created",
                "DEBUG:cool_kit.events:[3/4  50%] Pulling",
            ],
        )

    def test_workflow_without_a_presenter_logs_events(self) -> None:
        workflow = DeploymentWorkflow(AppConfig(), target=DockerTarget(AppConfig(), session=FakeExecutor()))
        self.addCleanup(workflow.close)
        self.assertIsInstance(workflow.bus.sink, LoggingSink)


def test_progress_fraction_must_be_in_range() -> None:
    with pytest.raises(ValueError):
        ProgressEvent(step_index=0, total_steps=1, fraction_complete=1.5, message="too far")


def test_console_sink_renders_progress_and_levels() -> None:
    buffer = io.StringIO()
    sink = ConsoleSink(Console(file=buffer, width=120, color_system=None))

    sink.handle(ProgressEvent(step_index=1, total_steps=4, fraction_complete=0.25, message="Installing [docker]"))
    sink.handle(ProgressEvent(step_index=1, total_steps=4, fraction_complete=0.3, message="Installing [docker]"))
    sink.handle(LogEvent(LogLevel.SUCCESS, "✓ install_docker completed"))
    sink.handle(LogEvent(LogLevel.DEBUG, "hidden detail"))

    output = buffer.getvalue()
    assert "[2/4]" in output
    assert " 25%" in output
    assert output.count("Installing [docker]") == 1
    assert "✓ install_docker completed" in output
    assert "hidden detail" not in output


def test_verbose_console_sink_shows_debug() -> None:
    buffer = io.StringIO()
    sink = ConsoleSink(Console(file=buffer, color_system=None), verbose=True)
    sink.handle(LogEvent(LogLevel.DEBUG, "health check attempt 3"))
    assert "health check attempt 3" in buffer.getvalue()


def test_auto_confirm_answers_without_prompting() -> None:
    assert AutoConfirm().confirm("Destroy?") is True
    assert AutoConfirm(answer=False).confirm("Destroy?", default=True) is False
