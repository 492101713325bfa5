"""Operations on an installed application stack."""

from .backup import BackupManager, BackupRecord, BackupType
from .compose import AppLayout, ComposeCommands
from .install import AppInstaller, AppSecrets
from .status import ServiceStatus, StatusChecker
from .update import UpdateController, UpdateResult
from .watch import DeploymentWatcher

__all__ = [
    "AppInstaller",
    "AppLayout",
    "AppSecrets",
    "BackupManager",
    "BackupRecord",
    "BackupType",
    "ComposeCommands",
    "DeploymentWatcher",
    "ServiceStatus",
    "StatusChecker",
    "UpdateController",
    "UpdateResult",
]
