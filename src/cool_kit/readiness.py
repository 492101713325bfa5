"""Bounded, fixed-interval readiness polling.

``wait_until`` drives a probe until it reports ready, reports a terminal
failure, or the deadline passes. Probes run strictly one at a time and no
probe is started at or after the deadline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, TYPE_CHECKING

from .errors import (
    CommandFailedError,
    ExecutorConnectionError,
    ReadinessFailedError,
    ReadinessTimeoutError,
)

if TYPE_CHECKING:
    from .executor import CommandExecutor
    from .lifecycle.compose import ComposeCommands
    from .provisioning.provisioner import ResourceProvisioner

logger = logging.getLogger(__name__)


class ProbeStatus(Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    detail: str = ""

    @classmethod
    def ready(cls, detail: str = "") -> "ProbeResult":
        return cls(ProbeStatus.READY, detail)

    @classmethod
    def not_ready(cls, detail: str = "") -> "ProbeResult":
        return cls(ProbeStatus.NOT_READY, detail)

    @classmethod
    def failed(cls, detail: str) -> "ProbeResult":
        return cls(ProbeStatus.FAILED, detail)


Probe = Callable[[], ProbeResult]


class PollOutcome(Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    attempts: int
    elapsed: float
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.SUCCESS

    def raise_for_outcome(self, what: str) -> None:
        """Turn a non-successful outcome into an exception naming ``what``."""
        if self.outcome is PollOutcome.TIMEOUT:
            suffix = f" (last state: {self.detail})" if self.detail else ""
            raise ReadinessTimeoutError(
                f"{what} did not become ready within {self.elapsed:.0f}s{suffix}"
            )
        if self.outcome is PollOutcome.FAILED:
            raise ReadinessFailedError(f"{what} failed: {self.detail}")


def wait_until(
    probe: Probe,
    *,
    interval: float,
    deadline: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int, ProbeResult], None]] = None,
) -> PollResult:
    """Poll ``probe`` every ``interval`` seconds for at most ``deadline`` seconds."""
    if interval <= 0:
        raise ValueError("interval must be positive")
    start = clock()
    attempts = 0
    while True:
        attempts += 1
        result = probe()
        if on_attempt is not None:
            on_attempt(attempts, result)
        elapsed = clock() - start
        if result.status is ProbeStatus.READY:
            return PollResult(PollOutcome.SUCCESS, attempts, elapsed, result.detail)
        if result.status is ProbeStatus.FAILED:
            return PollResult(PollOutcome.FAILED, attempts, elapsed, result.detail)

        remaining = deadline - elapsed
        if remaining <= 0:
            return PollResult(PollOutcome.TIMEOUT, attempts, elapsed, result.detail)
        sleep(min(interval, remaining))
        elapsed = clock() - start
        if elapsed >= deadline:
            return PollResult(PollOutcome.TIMEOUT, attempts, elapsed, result.detail)


# --- probe factories -------------------------------------------------------


def ssh_reachable_probe(executor: "CommandExecutor") -> Probe:
    """Ready once a trivial command round-trips over the transport."""

    def probe() -> ProbeResult:
        try:
            executor.execute("echo ready")
        except ExecutorConnectionError as exc:
            return ProbeResult.not_ready(str(exc))
        except CommandFailedError as exc:
            return ProbeResult.not_ready(str(exc))
        return ProbeResult.ready()

    return probe


def docker_ready_probe(executor: "CommandExecutor") -> Probe:
    """Ready once the Docker daemon answers on the target."""

    def probe() -> ProbeResult:
        try:
            executor.execute("docker ps >/dev/null")
        except (ExecutorConnectionError, CommandFailedError) as exc:
            return ProbeResult.not_ready(str(exc))
        return ProbeResult.ready()

    return probe


def power_state_probe(provisioner: "ResourceProvisioner", vm_name: str) -> Probe:
    """Ready when the instance reports ``VM running``.

    A failed provisioning state is terminal; any other state keeps polling.
    """

    def probe() -> ProbeResult:
        state = provisioner.power_state(vm_name)
        if state.provisioning_state and state.provisioning_state.lower() == "failed":
            return ProbeResult.failed(f"provisioning state of {vm_name} is Failed")
        if state.power_state and state.power_state.lower() == "vm running":
            return ProbeResult.ready(state.power_state)
        return ProbeResult.not_ready(state.power_state or "unknown")

    return probe


def containers_running_probe(compose: "ComposeCommands", services: Sequence[str]) -> Probe:
    """Ready when every container in ``services`` reports state ``running``."""

    def probe() -> ProbeResult:
        pending = []
        for service in services:
            try:
                state = compose.container_state(service)
            except (ExecutorConnectionError, CommandFailedError) as exc:
                return ProbeResult.not_ready(f"{service}: {exc}")
            if state != "running":
                pending.append(f"{service}={state}")
        if pending:
            return ProbeResult.not_ready(", ".join(pending))
        return ProbeResult.ready()

    return probe


def containers_healthy_probe(compose: "ComposeCommands", services: Iterable[str]) -> Probe:
    """Ready when every container is ``healthy``, or ``running`` without a health check.

    A container whose health check reports ``unhealthy`` is not terminal:
    compose health checks flap while a service is still starting.
    """
    names = list(services)

    def probe() -> ProbeResult:
        pending = []
        for service in names:
            try:
                state, health = compose.container_health(service)
            except (ExecutorConnectionError, CommandFailedError) as exc:
                return ProbeResult.not_ready(f"{service}: {exc}")
            if state == "exited" and not health:
                return ProbeResult.failed(f"container {service} exited")
            if state != "running" or health not in ("", "healthy"):
                pending.append(f"{service}={health or state}")
        if pending:
            return ProbeResult.not_ready(", ".join(pending))
        return ProbeResult.ready()

    return probe
