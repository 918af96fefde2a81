# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/config/models.py

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    # ssh
    user: Optional[str] = None
    cert: Optional[str] = None                 # private key path
    password: Optional[str] = None
    port: int = Field(22, ge=1, le=65535)
    connect_timeout: float = 20.0

    # certificates
    organization: str = "dockmachine"
    certpath: str = "~/.machine"

    # playbook / roster
    staging_dir: str = "/tmp/.machine"
    roster_path: str = "~/.machine/instance.json"

    # engine provisioning
    ready_attempts: int = Field(12, ge=1)
    ready_interval: float = Field(5.0, ge=0)
    install_attempts: int = Field(3, ge=1)
    install_interval: float = Field(1.0, ge=0)
    engine_port: int = Field(2376, ge=1, le=65535)

    log_dir: str = "~/.machine/logs"

    model_config = {"extra": "ignore"}
