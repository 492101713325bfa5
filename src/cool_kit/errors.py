"""Exception hierarchy for cool-kit.

Every failure that reaches the CLI derives from :class:`CoolKitError` and
names the step or phase that failed together with the underlying cause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .executor import CommandResult


class CoolKitError(RuntimeError):
    """Base class for all cool-kit errors."""


class ExecutorConnectionError(CoolKitError):
    """Raised when the transport to a target cannot be used (refused, DNS, auth)."""


class CommandFailedError(CoolKitError):
    """Raised when a command ran but exited with a non-zero status."""

    def __init__(self, result: "CommandResult") -> None:
        self.result = result
        detail = result.stderr or result.stdout or "no output"
        super().__init__(
            f"command exited with status {result.exit_status}: {detail.strip()[-500:]}"
        )


class StepFailedError(CoolKitError):
    """A pipeline step failed; wraps the step's own exception."""

    def __init__(self, step_name: str, cause: BaseException) -> None:
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"step '{step_name}' failed: {cause}")


class ReadinessError(CoolKitError):
    """Base class for readiness polling failures."""


class ReadinessTimeoutError(ReadinessError):
    """A probe never reported ready before its deadline."""


class ReadinessFailedError(ReadinessError):
    """A probe reported a terminal failure."""


class ProvisioningError(CoolKitError):
    """A control-plane operation failed."""


class BackendUnavailableError(ProvisioningError):
    """Neither provisioning backend could be initialised."""


class BackupError(CoolKitError):
    """A backup operation failed."""


class BackupNotFoundError(BackupError):
    """The requested backup directory or its metadata does not exist."""

    def __init__(self, backup_id: str, detail: str = "") -> None:
        self.backup_id = backup_id
        message = f"backup not found: {backup_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class RestoreError(BackupError):
    """A restore phase failed."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(f"restore failed during '{phase}': {cause}")


class UpdateError(CoolKitError):
    """The update protocol failed.

    ``rolled_back`` is True when an automatic rollback restored the
    pre-update backup successfully.
    """

    def __init__(
        self,
        message: str,
        *,
        backup_id: Optional[str] = None,
        rolled_back: bool = False,
    ) -> None:
        self.backup_id = backup_id
        self.rolled_back = rolled_back
        super().__init__(message)


class VerificationError(UpdateError):
    """The update was applied but post-update verification failed."""


class RollbackFailedError(UpdateError):
    """Both the update and the automatic rollback failed."""

    def __init__(
        self,
        update_error: BaseException,
        rollback_error: BaseException,
        *,
        backup_id: Optional[str] = None,
    ) -> None:
        self.update_error = update_error
        self.rollback_error = rollback_error
        super().__init__(
            f"update failed and rollback failed: update error: {update_error}; "
            f"rollback error: {rollback_error}",
            backup_id=backup_id,
        )


class APIError(CoolKitError):
    """Non-success response from the managed-application API."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"API error (status {status_code}): {message}")

    @property
    def not_found(self) -> bool:
        return self.status_code == 404
