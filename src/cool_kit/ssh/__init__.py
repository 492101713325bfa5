"""SSH transport for cool-kit."""

from .credentials import SSHCredentials
from .session import SSHConnectionError, SSHSession

__all__ = [
    "SSHCredentials",
    "SSHConnectionError",
    "SSHSession",
]
