"""Local command execution session."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from ..errors import ExecutorConnectionError
from ..executor import CommandResult, retry_on_connection_error, wrap_sudo

logger = logging.getLogger(__name__)


class LocalSession:
    """
    Local command execution session.

    Provides the same interface as SSHSession but executes commands on this
    machine through bash. Used by the docker-compose target.
    """

    def __init__(
        self,
        working_dir: Optional[str] = None,
        *,
        use_sudo: bool = False,
        default_timeout: int = 1800,
        shell: str = "/bin/bash",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize local session.

        Args:
            working_dir: Working directory for commands. Defaults to home directory.
            use_sudo: Run every command through ``sudo -n``.
            default_timeout: Timeout in seconds applied when ``run`` gets none.
            shell: Shell used for commands and interactive sessions.
        """
        self.working_dir = working_dir or os.path.expanduser("~")
        self.use_sudo = use_sudo
        self.default_timeout = default_timeout
        self.shell = shell
        self._sleep = sleep

    def connect(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""

    def close(self) -> None:
        """No-op for local session (for API compatibility with SSHSession)."""

    def __enter__(self) -> "LocalSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(self, command: str, *, timeout: Optional[int] = None) -> CommandResult:
        if timeout is None:
            timeout = self.default_timeout
        actual_command = wrap_sudo(command) if self.use_sudo else command
        try:
            process = subprocess.run(
                [self.shell, "-c", actual_command],
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                env=os.environ.copy(),
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
            )
        except OSError as exc:
            # shell missing or working dir gone: the "transport" is broken
            raise ExecutorConnectionError(f"cannot start local shell: {exc}") from exc

        return CommandResult(
            command=command,
            stdout=process.stdout.strip(),
            stderr=process.stderr.strip(),
            exit_status=process.returncode,
        )

    def execute(self, command: str) -> str:
        return self.run(command).check().stdout

    def execute_with_retry(self, command: str, max_attempts: int = 3, delay: float = 5.0) -> str:
        return retry_on_connection_error(
            lambda: self.execute(command),
            max_attempts=max_attempts,
            delay=delay,
            sleep=self._sleep,
        )

    def copy_content(self, content: str, remote_path: str) -> None:
        target = Path(remote_path)
        if not target.is_absolute():
            target = Path(self.working_dir) / target
        with tempfile.NamedTemporaryFile(
            "w", prefix="cool-kit-local-", delete=False, encoding="utf-8"
        ) as handle:
            handle.write(content)
            staging = handle.name
        try:
            if self.use_sudo:
                self.execute(f"install -D -m 0644 {staging} {target}")
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(staging, target)
        finally:
            os.remove(staging)

    def interactive(self) -> int:
        logger.info("Opening local shell in %s", self.working_dir)
        return subprocess.call([self.shell], cwd=self.working_dir)
