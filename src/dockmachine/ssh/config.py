# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/ssh/config.py

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

from dockmachine.errors import SSHConnectionError


@dataclass(frozen=True)
class SSHConfig:
    """
    Connection descriptor for one host. Not a live connection.
    """
    user: str
    server: str
    key: Optional[str] = None          # private key path, '~' expanded
    port: int = 22
    password: Optional[str] = None
    connect_timeout: float = 20.0

    @property
    def addr(self) -> str:
        return f"{self.server}:{self.port}"

    def key_path(self) -> Optional[Path]:
        if not self.key:
            return None
        return Path(self.key).expanduser().resolve()

    def load_key(self) -> Optional[paramiko.PKey]:
        """
        Load the private key, trying the key types paramiko understands.
        Returns None when no key file is configured or the file is absent,
        leaving authentication to the agent or password. A file that exists
        but is not a readable private key raises SSHConnectionError.
        """
        path = self.key_path()
        if path is None or not path.is_file():
            return None

        last: Optional[Exception] = None
        for key_cls in (
            paramiko.Ed25519Key,
            paramiko.RSAKey,
            paramiko.ECDSAKey,
        ):
            try:
                return key_cls.from_private_key_file(str(path), password=self.password)
            except (paramiko.SSHException, OSError) as exc:
                last = exc
        raise SSHConnectionError(self.server, f"Unable to parse private key {path}: {last}")
