"""SSH session management built on Paramiko."""

from __future__ import annotations

import logging
import os
import shlex
import socket
import subprocess
import tempfile
import time
import uuid
from typing import Callable, Optional

import paramiko

from ..errors import ExecutorConnectionError
from ..executor import CommandResult, retry_on_connection_error, wrap_sudo
from .credentials import SSHCredentials

logger = logging.getLogger(__name__)

# Options for the interactive ``ssh`` binary; hosts are freshly provisioned
# so their keys are never in known_hosts.
_SSH_OPTIONS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]


class SSHConnectionError(ExecutorConnectionError):
    """Raised when an SSH connection cannot be established."""

    pass


class SSHSession:
    """High-level wrapper around paramiko.SSHClient."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        use_sudo: bool = False,
        default_timeout: int = 1800,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.credentials = credentials
        self.use_sudo = use_sudo
        self.default_timeout = default_timeout
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None
        self._sleep = sleep

    @property
    def target(self) -> str:
        return f"{self.credentials.username}@{self.credentials.host}"

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            connect_kwargs = {
                "hostname": self.credentials.host,
                "port": self.credentials.port,
                "username": self.credentials.username,
                "timeout": self.credentials.timeout,
                "banner_timeout": self.credentials.timeout,
                "look_for_keys": False,
                "allow_agent": False,
            }
            if self.credentials.auth_method == "password":
                connect_kwargs["password"] = self.credentials.password
            else:
                connect_kwargs["key_filename"] = self.credentials.expanded_key_path
                if self.credentials.passphrase:
                    connect_kwargs["passphrase"] = self.credentials.passphrase
            client.connect(**connect_kwargs)
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise SSHConnectionError(f"cannot connect to {self.target}: {exc}") from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(self, command: str, *, timeout: Optional[int] = None) -> CommandResult:
        """
        Execute a command on the remote server and wait for it to finish.

        Args:
            command: The command or multi-line script to execute
            timeout: Total timeout in seconds (defaults to ``default_timeout``)

        Returns:
            CommandResult with command output and exit status. A command that
            exceeds ``timeout`` yields exit status -1.

        Raises:
            SSHConnectionError: the connection could not be opened or dropped
                while the command was being started.
        """
        self.connect()
        assert self._client is not None

        if timeout is None:
            timeout = self.default_timeout
        actual_command = wrap_sudo(command) if self.use_sudo else command

        try:
            _, stdout, stderr = self._client.exec_command(actual_command, timeout=timeout)
        except (paramiko.SSHException, OSError) as exc:
            # A dead transport is not reusable
            self.close()
            raise SSHConnectionError(f"lost connection to {self.target}: {exc}") from exc

        stdout.channel.settimeout(float(timeout))
        try:
            exit_status = stdout.channel.recv_exit_status()
            stdout_text = stdout.read().decode("utf-8", errors="replace")
            stderr_text = stderr.read().decode("utf-8", errors="replace")
        except socket.timeout:
            stdout.channel.close()
            return CommandResult(
                command=command,
                stdout="",
                stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                exit_status=-1,
            )

        return CommandResult(
            command=command,
            stdout=stdout_text.strip(),
            stderr=stderr_text.strip(),
            exit_status=exit_status,
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
        """Write ``content`` to ``remote_path`` through a temporary local file."""
        self.connect()
        assert self._client is not None

        staging_path = remote_path
        if self.use_sudo:
            staging_path = f"/tmp/cool-kit-{uuid.uuid4().hex}"

        fd, local_path = tempfile.mkstemp(prefix="cool-kit-remote-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            try:
                sftp = self._client.open_sftp()
                try:
                    sftp.put(local_path, staging_path)
                finally:
                    sftp.close()
            except (paramiko.SSHException, OSError) as exc:
                raise SSHConnectionError(
                    f"failed to copy content to {self.target}:{remote_path}: {exc}"
                ) from exc
        finally:
            os.remove(local_path)

        if staging_path != remote_path:
            staged, destination = shlex.quote(staging_path), shlex.quote(remote_path)
            self.execute(f"install -m 0644 {staged} {destination} && rm -f {staged}")

    def interactive(self) -> int:
        """Open an interactive shell on the target; returns when the user exits."""
        args = ["ssh", *_SSH_OPTIONS, "-p", str(self.credentials.port)]
        key_path = self.credentials.expanded_key_path
        if self.credentials.auth_method == "key" and key_path:
            args += ["-i", key_path]
        args.append(self.target)
        logger.info("Opening interactive session to %s", self.target)
        return subprocess.call(args)
