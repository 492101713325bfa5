"""Common contract for running commands against a target host.

Both :class:`~cool_kit.ssh.SSHSession` and :class:`~cool_kit.local.LocalSession`
satisfy :class:`CommandExecutor`; lifecycle code only ever talks to this
protocol.
"""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from .errors import CommandFailedError, ExecutorConnectionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def check(self) -> "CommandResult":
        if not self.ok:
            raise CommandFailedError(self)
        return self


class CommandExecutor(Protocol):
    """Runs commands and scripts on one target."""

    def run(self, command: str, *, timeout: int | None = None) -> CommandResult: ...

    def execute(self, command: str) -> str: ...

    def execute_with_retry(self, command: str, max_attempts: int = 3, delay: float = 5.0) -> str: ...

    def copy_content(self, content: str, remote_path: str) -> None: ...

    def interactive(self) -> int: ...

    def close(self) -> None: ...


def wrap_sudo(command: str) -> str:
    """Run ``command`` as root through a non-interactive login-less shell."""
    return f"sudo -n bash -c {shlex.quote(command)}"


def retry_on_connection_error(
    call: Callable[[], str],
    *,
    max_attempts: int,
    delay: float,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Call ``call`` until it stops raising :class:`ExecutorConnectionError`.

    A :class:`CommandFailedError` means the transport worked and the command
    itself failed; it propagates on the first occurrence.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    last_error: ExecutorConnectionError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return call()
        except ExecutorConnectionError as exc:
            last_error = exc
            logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc)
            if attempt < max_attempts:
                sleep(delay)
    raise ExecutorConnectionError(
        f"command failed after {max_attempts} attempts: {last_error}"
    ) from last_error
