"""SSH credential helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class SSHCredentials:
    """Normalized credential payload from CLI/config.

    Key-based authentication is the default; ``timeout`` bounds connection
    establishment only, not the commands run over the connection.
    """

    host: str
    username: str
    port: int = 22
    auth_method: str = "key"
    key_path: Optional[str] = "~/.ssh/id_rsa"
    passphrase: Optional[str] = None
    password: Optional[str] = None
    timeout: int = 20

    @property
    def expanded_key_path(self) -> Optional[str]:
        if not self.key_path:
            return None
        return os.path.expanduser(self.key_path)

    def validate(self) -> None:
        if not self.host:
            raise ValueError("SSH host is required")
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")
