# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/playbook/models.py

from __future__ import annotations

import posixpath
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_STAGING_DIR = "/tmp/.machine"
HOST_TOKEN = "$HOST"


class Archive(BaseModel):
    """A local file pushed to the host before actions run."""
    model_config = ConfigDict(extra="ignore")

    src: str
    dst: str = ""
    dir: str = ""
    sudo: bool = False
    skip: bool = False
    perhost: bool = False

    def source(self, host: str) -> str:
        if self.perhost or HOST_TOKEN in self.src:
            return self.src.replace(HOST_TOKEN, host)
        return self.src

    def dest(self, host: str) -> str:
        dst = self.dst or posixpath.basename(self.source(host))
        return posixpath.join(self.dir, dst.lstrip("/")) if self.dir else dst


class Action(BaseModel):
    """Inline command or script; the first non-empty of cmd/script wins."""
    model_config = ConfigDict(extra="ignore")

    cmd: Optional[str] = None
    script: Optional[str] = None
    sudo: bool = False
    skip: bool = False

    @property
    def is_script(self) -> bool:
        return not self.cmd and bool(self.script)

    def staged_path(self, staging_dir: str = DEFAULT_STAGING_DIR) -> Optional[str]:
        if not self.is_script:
            return None
        return posixpath.join(staging_dir, posixpath.basename(self.script))

    def command(self, staging_dir: str = DEFAULT_STAGING_DIR) -> str:
        if self.cmd:
            return self.cmd
        if self.script:
            return f"bash {self.staged_path(staging_dir)}"
        return ""


class Provision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    ok2fail: bool = False
    archive: List[Archive] = Field(default_factory=list)
    action: List[Action] = Field(default_factory=list)
    skip: bool = False
    cleanup: bool = True            # remove staged scripts once the step is done


class Recipe(BaseModel):
    model_config = ConfigDict(extra="ignore")

    archive: List[Archive] = Field(default_factory=list)
    provision: List[Provision] = Field(default_factory=list)

    @classmethod
    def for_command(cls, cmd: str, *, sudo: bool = False) -> "Recipe":
        return cls(provision=[
            Provision(name="Running one command", action=[Action(cmd=cmd, sudo=sudo)]),
        ])

    @classmethod
    def for_scripts(cls, scripts: Sequence[str], *, sudo: bool = False) -> "Recipe":
        return cls(provision=[
            Provision(name=f"Running script {s}", action=[Action(script=s, sudo=sudo)])
            for s in scripts
        ])
