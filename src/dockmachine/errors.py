# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from dockmachine.playbook.executor import HostOutcome


class MachineError(RuntimeError):
    """Base class for dockmachine failures."""


class SSHConnectionError(MachineError, ConnectionError):
    """Raised when dialing or authenticating against a host fails."""

    def __init__(self, host: str, message: str):
        super().__init__(f"{host} - {message}")
        self.host = host


class CommandError(MachineError):
    """Raised when a remote command exits non-zero or its session dies."""

    def __init__(
        self,
        command: str,
        exit_status: int,
        output: str = "",
        *,
        host: Optional[str] = None,
    ):
        where = f"{host} - " if host else ""
        super().__init__(f"{where}command exited with status {exit_status}: {command}")
        self.command = command
        self.exit_status = exit_status
        self.output = output
        self.host = host


class CopyError(MachineError):
    """Raised when a file cannot be transferred to a host."""


class UnreachableError(MachineError):
    """Raised when readiness polling gives up on a host."""

    def __init__(self, host: str, attempts: int):
        super().__init__(f"{host} - Unable to contact remote after {attempts} attempts")
        self.host = host
        self.attempts = attempts


class PlaybookDecodeError(MachineError):
    """Raised when a playbook document cannot be parsed or validated."""

    def __init__(self, index: int, message: str):
        super().__init__(f"Decoding playbook document {index} failed: {message}")
        self.index = index


class CertificateError(MachineError):
    """Raised when certificate material cannot be produced."""


class RetryError(MachineError):
    pass


class OperationCancelled(MachineError):
    """Raised when a run was cancelled before it finished."""


class FleetError(MachineError):
    """Raised when one or more hosts in a fleet run failed."""

    def __init__(self, outcomes: List["HostOutcome"]):
        failed = [o for o in outcomes if o.error is not None]
        hosts = ", ".join(o.host for o in failed)
        super().__init__(f"One or more task failed ({len(failed)}/{len(outcomes)}): {hosts}")
        self.outcomes = outcomes
        self.failed = failed
