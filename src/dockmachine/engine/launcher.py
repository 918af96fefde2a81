# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/engine/launcher.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from dockmachine.errors import MachineError
from dockmachine.fleet.dispatcher import FleetDispatcher, FleetReport
from dockmachine.roster.store import Instance, InstanceRoster
from .provisioner import ENGINE_PORT, EngineProvisioner

log = logging.getLogger("dockmachine")


class CloudProvider(Protocol):
    """
    Instance lifecycle seam. Implementations raise MachineError on failure.
    """

    driver: str

    def launch(self, spec: Any) -> List[str]: ...

    def wait_until_running(self, instance_id: str) -> None: ...

    def describe(self, instance_id: str) -> List[str]: ...


def _resolve(provider: CloudProvider, instance_id: str) -> str:
    provider.wait_until_running(instance_id)
    addrs = [a for a in provider.describe(instance_id) if a]
    if not addrs:
        raise MachineError(f"{instance_id} - instance has no reachable address")
    return addrs[0]


def launch_engines(
    provider: CloudProvider,
    spec: Any,
    *,
    dispatcher: FleetDispatcher,
    provisioner: EngineProvisioner,
    roster: InstanceRoster,
    names: Optional[Sequence[str]] = None,
    engine_port: int = ENGINE_PORT,
) -> FleetReport:
    """
    Launch instances, wait for each to run, provision the engine on all of
    them concurrently and record the ones that came up in the roster.

    ``names`` maps launched instances to roster names in launch order;
    the instance id is used when no name is given.
    """
    ids = provider.launch(spec)
    log.info("launched %d instance(s) via %s", len(ids), provider.driver)

    by_addr: Dict[str, tuple[str, str]] = {}
    for i, instance_id in enumerate(ids):
        name = names[i] if names and i < len(names) else instance_id
        addr = _resolve(provider, instance_id)
        log.debug("[%s] %s is running at %s", name, instance_id, addr)
        by_addr[addr] = (name, instance_id)

    report = dispatcher.run_task(list(by_addr), provisioner.provision)

    roster.load()
    for outcome in report.outcomes:
        name, instance_id = by_addr[outcome.host]
        if not outcome.ok:
            log.error("[%s] provisioning failed: %s", outcome.host, outcome.error)
            continue
        roster[name] = Instance(
            id=instance_id,
            driver=provider.driver,
            docker_host=f"{outcome.host}:{engine_port}",
            state="running",
        )
    roster.save()
    return report
