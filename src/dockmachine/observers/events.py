# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Optional
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------
@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    host: str                       # target the event belongs to, "" for fleet-wide
    run_id: str = ""                # correlates all events of one invocation
    ts: str = field(default_factory=_now)

    is_error = False

    def dict(self) -> Dict[str, Any]:
        return asdict(self)

    def line(self) -> str:
        return ""


# ---------------------------------------------------------------------
# Playbook lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ArchiveSending(BaseEvent):
    src: str
    dst: str
    step: Optional[str] = None

    def line(self) -> str:
        prefix = f"{self.step} - " if self.step else ""
        return f"{prefix}sending - {self.src} - {self.dst}"

@dataclass(frozen=True)
class StepStarted(BaseEvent):
    step: str

    def line(self) -> str:
        return f"playbook section - {self.step}"

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    step: str

    def line(self) -> str:
        return f"skipping section - {self.step}"

@dataclass(frozen=True)
class ActionStarted(BaseEvent):
    step: str
    command: str

    def line(self) -> str:
        return f"{self.step} - {self.command}"

@dataclass(frozen=True)
class ActionOutput(BaseEvent):
    step: str
    text: str

    def line(self) -> str:
        return f"{self.step} - {self.text}"

@dataclass(frozen=True)
class ActionFailed(BaseEvent):
    step: str
    error: str
    tolerated: bool = False

    is_error = True

    def line(self) -> str:
        suffix = " (ok2fail)" if self.tolerated else ""
        return f"{self.step} - {self.error}{suffix}"

@dataclass(frozen=True)
class HostFinished(BaseEvent):
    ok: bool
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def is_error(self) -> bool:  # type: ignore[override]
        return not self.ok

    def line(self) -> str:
        return "done" if self.ok else f"failed - {self.error}"


# ---------------------------------------------------------------------
# Fleet
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class FleetSummary(BaseEvent):
    ok: int
    failed: int

    @property
    def is_error(self) -> bool:  # type: ignore[override]
        return self.failed > 0

    def line(self) -> str:
        if self.failed:
            return f"One or more task failed (OK={self.ok} FAILED={self.failed})"
        return f"All tasks completed (OK={self.ok})"


# ---------------------------------------------------------------------
# Engine provisioning
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ProvisionProgress(BaseEvent):
    stage: str
    message: str

    def line(self) -> str:
        return self.message

@dataclass(frozen=True)
class ProvisionFailed(BaseEvent):
    stage: str
    error: str

    is_error = True

    def line(self) -> str:
        return f"{self.stage} - {self.error}"
