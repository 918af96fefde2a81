# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/engine/daemon_config.py

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dockmachine.errors import MachineError

DAEMON_CONFIG_PATH = "/etc/docker/daemon.json"
DOCKER_SOCKET = "unix:///var/run/docker.sock"


class DaemonConfig(BaseModel):
    """
    Subset of the engine's daemon.json. Keys this model does not name are
    kept as-is so an existing configuration survives a reconfigure.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    hosts: List[str] = Field(default_factory=list)
    tls: Optional[bool] = None
    tlsverify: Optional[bool] = None
    tlscacert: Optional[str] = None
    tlscert: Optional[str] = None
    tlskey: Optional[str] = None

    data_root: Optional[str] = Field(default=None, alias="data-root")
    graph: Optional[str] = None
    storage_driver: Optional[str] = Field(default=None, alias="storage-driver")
    log_driver: Optional[str] = Field(default=None, alias="log-driver")
    log_level: Optional[str] = Field(default=None, alias="log-level")
    log_opts: Optional[Dict[str, str]] = Field(default=None, alias="log-opts")
    labels: Optional[List[str]] = None
    dns: Optional[List[str]] = None
    debug: Optional[bool] = None
    mtu: Optional[int] = None
    bip: Optional[str] = None

    def add_host(self, *hosts: str) -> None:
        for h in hosts:
            if h not in self.hosts:
                self.hosts.append(h)

    def enable_tls(self, ca: str, cert: str, key: str) -> None:
        self.tlsverify = True
        self.tlscacert = ca
        self.tlscert = cert
        self.tlskey = key

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=4).encode()

    @classmethod
    def from_json(cls, data: bytes) -> "DaemonConfig":
        if not data.strip():
            return cls()
        try:
            return cls.model_validate_json(data)
        except ValidationError as exc:
            raise MachineError(f"Unable to parse daemon config: {exc}") from exc

    @classmethod
    def fresh(cls) -> "DaemonConfig":
        cfg = cls()
        cfg.add_host(DOCKER_SOCKET)
        return cfg
