# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass, field
from typing import List, Optional

from dockmachine.errors import MachineError, OperationCancelled
from dockmachine.observers.dispatcher import EventBus
from dockmachine.observers.events import (
    ActionFailed,
    ActionOutput,
    ActionStarted,
    ArchiveSending,
    HostFinished,
    StepSkipped,
    StepStarted,
)
from dockmachine.ssh.commander import Commander
from dockmachine.utils.execution import ExecutionContext
from .models import DEFAULT_STAGING_DIR, Archive, Provision, Recipe

log = logging.getLogger("dockmachine")

ARCHIVE_MODE = 0o644


@dataclass
class HostOutcome:
    host: str
    error: Optional[BaseException] = None
    tolerated: List[BaseException] = field(default_factory=list)   # ok2fail failures
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class PlaybookExecutor:
    """
    Runs one Recipe against one host, strictly in order. The first failure
    that is not covered by ``ok2fail`` stops the run; the result always
    comes back as a HostOutcome instead of an exception.
    """

    def __init__(
        self,
        *,
        ctx: Optional[ExecutionContext] = None,
        bus: Optional[EventBus] = None,
        staging_dir: str = DEFAULT_STAGING_DIR,
    ):
        self.ctx = ctx or ExecutionContext()
        self.bus = bus or EventBus()
        self.staging_dir = staging_dir

    def _emit(self, event_cls, host: str, **kw) -> None:
        self.bus.emit(event_cls(host=host, run_id=self.bus.run_id, **kw))

    def _check_cancel(self) -> None:
        if self.ctx.cancelled:
            raise OperationCancelled("run cancelled")

    def execute(self, cmdr: Commander, recipe: Recipe) -> HostOutcome:
        host, _ = cmdr.host()
        outcome = HostOutcome(host=host)
        t0 = time.monotonic()
        try:
            self._run(cmdr, host, recipe, outcome)
        except (MachineError, OSError) as exc:
            log.debug("[%s] playbook aborted", host, exc_info=True)
            outcome.error = exc
        finally:
            cmdr.close()
            outcome.duration_s = time.monotonic() - t0

        self._emit(
            HostFinished,
            host,
            ok=outcome.ok,
            error=str(outcome.error) if outcome.error else None,
            duration_ms=int(outcome.duration_s * 1000),
        )
        return outcome

    # ------------------ internals ------------------

    def _run(self, cmdr: Commander, host: str, recipe: Recipe, outcome: HostOutcome) -> None:
        for archive in recipe.archive:
            self._check_cancel()
            self._send(cmdr, host, archive)

        for step in recipe.provision:
            self._check_cancel()
            if step.skip:
                self._emit(StepSkipped, host, step=step.name)
                continue
            self._emit(StepStarted, host, step=step.name)
            self._run_step(cmdr, host, step, outcome)

    def _send(self, cmdr: Commander, host: str, archive: Archive, step: Optional[str] = None) -> None:
        if archive.skip:
            return
        src, dst = archive.source(host), archive.dest(host)
        self._emit(ArchiveSending, host, src=src, dst=dst, step=step)
        if self.ctx.dry_run:
            return
        target = cmdr.elevate() if archive.sudo else cmdr
        target.copy_file(src, dst, ARCHIVE_MODE)

    def _run_step(self, cmdr: Commander, host: str, step: Provision, outcome: HostOutcome) -> None:
        for archive in step.archive:
            self._check_cancel()
            self._send(cmdr, host, archive, step=step.name)

        staged: List[str] = []
        try:
            for action in step.action:
                self._check_cancel()
                if action.skip:
                    continue
                command = action.command(self.staging_dir)
                if not command:
                    continue
                self._emit(ActionStarted, host, step=step.name, command=command)
                if self.ctx.dry_run:
                    continue

                if action.is_script:
                    dst = action.staged_path(self.staging_dir)
                    cmdr.copy_file(action.script, dst, ARCHIVE_MODE)
                    staged.append(dst)

                target = cmdr.elevate() if action.sudo else cmdr
                error = self._stream(target, host, step.name, command)
                if error is None:
                    continue

                self._emit(ActionFailed, host, step=step.name, error=str(error), tolerated=step.ok2fail)
                if not step.ok2fail:
                    raise error
                outcome.tolerated.append(error)
        finally:
            # staged scripts go even when the step aborts, unless cancelled
            if step.cleanup and staged and not self.ctx.cancelled:
                self._cleanup(cmdr, host, staged)

    def _stream(self, cmdr: Commander, host: str, step: str, command: str) -> Optional[Exception]:
        responses = cmdr.stream(command)
        error: Optional[Exception] = None
        try:
            for resp in responses:
                self._check_cancel()
                text, err = resp.data()
                if resp.final:
                    error = err
                    break
                self._emit(ActionOutput, host, step=step, text=text)
        finally:
            close = getattr(responses, "close", None)
            if close is not None:
                close()
        return error

    def _cleanup(self, cmdr: Commander, host: str, staged: List[str]) -> None:
        paths = " ".join(shlex.quote(p) for p in staged)
        try:
            cmdr.run_quiet(f"rm -f {paths}")
        except MachineError as exc:
            log.warning("[%s] unable to remove staged scripts %s: %s", host, paths, exc)
