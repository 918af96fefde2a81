# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/roster/store.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterator, MutableMapping, Optional

from pydantic import BaseModel, ValidationError

from dockmachine.errors import MachineError

log = logging.getLogger("dockmachine")

DEFAULT_ROSTER_PATH = "~/.machine/instance.json"


class Instance(BaseModel):
    id: str
    driver: str = "generic"
    docker_host: Optional[str] = None      # "host:port" of the TLS engine endpoint
    state: str = "running"

    @property
    def address(self) -> Optional[str]:
        if not self.docker_host:
            return None
        host, _, _ = self.docker_host.rpartition(":")
        return host.strip("[]") or None


class InstanceRoster(MutableMapping[str, Instance]):
    """
    Name -> Instance registry persisted as JSON. Nothing is read or written
    until ``load()`` / ``save()`` are called.
    """

    def __init__(self, path: str | Path = DEFAULT_ROSTER_PATH):
        self.path = Path(path).expanduser()
        self._items: Dict[str, Instance] = {}

    def load(self) -> "InstanceRoster":
        if not self.path.exists():
            self._items = {}
            return self
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            self._items = {}
            return self
        try:
            data = json.loads(raw)
            self._items = {name: Instance.model_validate(v) for name, v in data.items()}
        except (ValueError, AttributeError, ValidationError) as exc:
            raise MachineError(f"Unable to read instance roster {self.path}: {exc}") from exc
        log.debug("loaded %d instance(s) from %s", len(self._items), self.path)
        return self

    def save(self) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        payload = {name: inst.model_dump() for name, inst in self._items.items()}
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        log.debug("saved %d instance(s) to %s", len(self._items), self.path)

    def __getitem__(self, name: str) -> Instance:
        return self._items[name]

    def __setitem__(self, name: str, inst: Instance) -> None:
        self._items[name] = inst

    def __delitem__(self, name: str) -> None:
        del self._items[name]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._items))

    def __len__(self) -> int:
        return len(self._items)
