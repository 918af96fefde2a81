# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/fleet/dispatcher.py

from __future__ import annotations

import logging
import queue
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from dockmachine.errors import FleetError
from dockmachine.observers.dispatcher import EventBus
from dockmachine.observers.events import FleetSummary, HostFinished
from dockmachine.playbook.executor import HostOutcome, PlaybookExecutor
from dockmachine.playbook.models import DEFAULT_STAGING_DIR, Recipe
from dockmachine.ssh.commander import Commander
from dockmachine.utils.execution import ExecutionContext

log = logging.getLogger("dockmachine")

CommanderFactory = Callable[[str], Commander]
HostTask = Callable[[Commander], Any]


@dataclass
class FleetReport:
    outcomes: List[HostOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[HostOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def summary(self) -> str:
        failed = len(self.failed)
        return f"OK={len(self.outcomes) - failed} FAILED={failed}"

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise FleetError(self.outcomes)


class FleetDispatcher:
    """
    Fans a per-host task out over a thread pool and collects exactly one
    HostOutcome per host through a shared queue. A failing host never
    stops its siblings; ``cancel()`` asks every in-flight host to stop.
    """

    def __init__(
        self,
        build_commander: CommanderFactory,
        *,
        ctx: Optional[ExecutionContext] = None,
        bus: Optional[EventBus] = None,
        max_workers: Optional[int] = None,
        staging_dir: str = DEFAULT_STAGING_DIR,
    ):
        self.build_commander = build_commander
        self.ctx = ctx or ExecutionContext()
        self.bus = bus or EventBus()
        self.max_workers = max_workers
        self.staging_dir = staging_dir

    def cancel(self) -> None:
        self.ctx.cancel.set()

    def run_across_hosts(self, hosts: Sequence[str], recipe: Recipe) -> FleetReport:
        executor = PlaybookExecutor(ctx=self.ctx, bus=self.bus, staging_dir=self.staging_dir)
        return self.run_task(hosts, lambda cmdr: executor.execute(cmdr, recipe))

    def run_task(self, hosts: Sequence[str], task: HostTask) -> FleetReport:
        """
        Run ``task(commander)`` once per host. A task may return a
        HostOutcome; any other return value counts as success and an
        exception counts as that host's failure.
        """
        report = FleetReport()
        if not hosts:
            return report

        collect: "queue.Queue[HostOutcome]" = queue.Queue()
        workers = self.max_workers or len(hosts)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host") as pool:
            for host in hosts:
                pool.submit(self._work, host, task, collect)
            try:
                while len(report.outcomes) < len(hosts):
                    report.outcomes.append(collect.get())
            except KeyboardInterrupt:
                log.warning("interrupted, cancelling %d in-flight host(s)", len(hosts) - len(report.outcomes))
                self.cancel()
                while len(report.outcomes) < len(hosts):
                    report.outcomes.append(collect.get())

        failed = len(report.failed)
        self.bus.emit(FleetSummary(host="", run_id=self.bus.run_id, ok=len(hosts) - failed, failed=failed))
        log.info("fleet run finished: %s", report.summary())
        return report

    def _work(self, host: str, task: HostTask, collect: "queue.Queue[HostOutcome]") -> None:
        t0 = time.monotonic()
        try:
            result = task(self.build_commander(host))
            outcome = result if isinstance(result, HostOutcome) else HostOutcome(host=host)
        except Exception as exc:
            log.debug("[%s] task failed", host, exc_info=True)
            outcome = HostOutcome(host=host, error=exc)
            self.bus.emit(HostFinished(host=host, run_id=self.bus.run_id, ok=False, error=str(exc)))
        if not outcome.duration_s:
            outcome.duration_s = time.monotonic() - t0
        collect.put(outcome)
