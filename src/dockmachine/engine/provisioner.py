# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/engine/provisioner.py

from __future__ import annotations

import io
import logging
import posixpath
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from dockmachine.cert.issuer import CertificateIssuer, PemBlock
from dockmachine.errors import CertificateError, MachineError, RetryError
from dockmachine.observers.dispatcher import EventBus
from dockmachine.observers.events import ProvisionFailed, ProvisionProgress
from dockmachine.ssh.commander import Commander
from dockmachine.utils.execution import ExecutionContext
from dockmachine.utils.retry import retry_call, wait_ready
from .daemon_config import DAEMON_CONFIG_PATH, DaemonConfig

log = logging.getLogger("dockmachine")

ENGINE_CONFIG_DIR = "/etc/docker"
ENGINE_PORT = 2376

# repository key, package index + kernel headers, repository, engine
INSTALL_DOCKER_STEPS = [
    "install -m 0755 -d /etc/apt/keyrings && curl -fsSL https://download.docker.com/linux/ubuntu/gpg -o /etc/apt/keyrings/docker.asc && chmod a+r /etc/apt/keyrings/docker.asc",
    "apt-get update && apt-get install -y ca-certificates curl linux-headers-$(uname -r)",
    'echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc] https://download.docker.com/linux/ubuntu $(. /etc/os-release && echo $VERSION_CODENAME) stable" | tee /etc/apt/sources.list.d/docker.list',
    "apt-get update && apt-get install -y docker-ce docker-ce-cli containerd.io",
]


class EngineState(str, Enum):
    NOT_STARTED = "NotStarted"
    AWAITING_SSH = "AwaitingSSH"
    INSTALLING_PACKAGES = "InstallingPackages"
    GENERATING_CERTIFICATE = "GeneratingCertificate"
    CONFIGURING_DAEMON = "ConfiguringDaemon"
    RESTARTING_SERVICE = "RestartingService"
    READY = "Ready"
    FAILED = "Failed"


@dataclass
class EngineOptions:
    """
    Tunables for one provisioning pass.

    provision=True starts from an empty daemon.json; False loads and
    merges the one already on the host (certificate regeneration).
    """
    is_docker: bool = True
    install: bool = True
    provision: bool = True
    altnames: List[str] = field(default_factory=list)
    install_steps: List[str] = field(default_factory=lambda: list(INSTALL_DOCKER_STEPS))
    ready_attempts: int = 12
    ready_interval: float = 5.0
    install_attempts: int = 3
    install_interval: float = 1.0
    engine_port: int = ENGINE_PORT


@dataclass
class EngineRun:
    host: str
    states: List[EngineState] = field(default_factory=lambda: [EngineState.NOT_STARTED])
    error: Optional[BaseException] = None

    @property
    def state(self) -> EngineState:
        return self.states[-1]


class EngineProvisioner:
    """
    Wait for SSH, install the engine, issue TLS material and restart the
    daemon with TLS enabled. One instance can serve many hosts at once;
    per-host progress lives in the EngineRun.
    """

    def __init__(
        self,
        issuer: CertificateIssuer,
        *,
        options: Optional[EngineOptions] = None,
        ctx: Optional[ExecutionContext] = None,
        bus: Optional[EventBus] = None,
    ):
        self.issuer = issuer
        self.options = options or EngineOptions()
        self.ctx = ctx or ExecutionContext()
        self.bus = bus or EventBus()

    def _progress(self, run: EngineRun, message: str) -> None:
        self.bus.emit(ProvisionProgress(host=run.host, run_id=self.bus.run_id, stage=run.state.value, message=message))

    def _enter(self, run: EngineRun, state: EngineState) -> None:
        log.debug("[%s] %s -> %s", run.host, run.state.value, state.value)
        run.states.append(state)

    def provision(self, cmdr: Commander, run: Optional[EngineRun] = None) -> EngineRun:
        host, _ = cmdr.host()
        run = run or EngineRun(host=host)
        try:
            self._provision(cmdr, run)
        except (MachineError, OSError) as exc:
            failed_in = run.state
            self._enter(run, EngineState.FAILED)
            run.error = exc
            self.bus.emit(ProvisionFailed(host=host, run_id=self.bus.run_id, stage=failed_in.value, error=str(exc)))
            raise
        finally:
            cmdr.close()
        return run

    def _provision(self, cmdr: Commander, run: EngineRun) -> None:
        opts = self.options

        self._enter(run, EngineState.AWAITING_SSH)
        self._progress(run, "waiting for SSH")
        wait_ready(cmdr, attempts=opts.ready_attempts, interval=opts.ready_interval, cancel=self.ctx.cancel)

        if not opts.is_docker:
            self._progress(run, "skipping Docker Engine install")
            self._enter(run, EngineState.READY)
            return

        root = cmdr.elevate()

        if opts.install:
            self._enter(run, EngineState.INSTALLING_PACKAGES)
            self._progress(run, "install Docker Engine")
            self._install(root, run)

        self._enter(run, EngineState.GENERATING_CERTIFICATE)
        names = [run.host, "localhost", "127.0.0.1", *opts.altnames]
        self._progress(run, f"generate cert for subjects - {names}")
        try:
            ca, cert, key = self.issuer.issue_server_certificate(names)
        except (OSError, ValueError) as exc:
            raise CertificateError(f"{run.host} - {exc}") from exc

        self._enter(run, EngineState.CONFIGURING_DAEMON)
        self._progress(run, "configure docker engine")
        self._send_pem(root, run, cert, 0o644, "Cert sent")
        self._send_pem(root, run, key, 0o600, "Key sent")
        self._send_pem(root, run, ca, 0o644, "CA sent")
        self._configure_tls(root, ca, cert, key)
        self._progress(run, "Configured Docker Engine")

        self._enter(run, EngineState.RESTARTING_SERVICE)
        try:
            root.run("service docker stop")
            self._progress(run, "Stopped Docker Engine")
        except MachineError as exc:
            log.warning("[%s] stopping docker failed, continuing: %s", run.host, exc)
        root.run("service docker start")
        self._progress(run, "Started Docker Engine")

        self._enter(run, EngineState.READY)

    def _install(self, root: Commander, run: EngineRun) -> None:
        opts = self.options
        for cmd in opts.install_steps:
            self._progress(run, cmd)

            def _log(attempt: int, exc: Exception) -> None:
                log.error("[%s] %s (attempt %d/%d)", run.host, exc, attempt, opts.install_attempts)

            try:
                retry_call(
                    lambda: root.run_quiet(f"bash -c {shlex.quote(cmd)}"),
                    retries=opts.install_attempts,
                    delay=opts.install_interval,
                    on_retry=_log,
                    cancel=self.ctx.cancel,
                    name="install",
                )
            except RetryError as exc:
                raise MachineError(f"{run.host} install Docker Engine failed: {cmd}") from exc.__cause__

    def _send_pem(self, root: Commander, run: EngineRun, block: PemBlock, mode: int, message: str) -> None:
        dst = posixpath.join(ENGINE_CONFIG_DIR, block.name)
        root.copy(io.BytesIO(block.data), len(block.data), dst, mode)
        self._progress(run, message)

    def _configure_tls(self, root: Commander, ca: PemBlock, cert: PemBlock, key: PemBlock) -> None:
        if self.options.provision:
            cfg = DaemonConfig.fresh()
        else:
            buf = io.BytesIO()
            root.load(DAEMON_CONFIG_PATH, buf)
            cfg = DaemonConfig.from_json(buf.getvalue())

        cfg.add_host(f"tcp://0.0.0.0:{self.options.engine_port}")
        cfg.enable_tls(
            posixpath.join(ENGINE_CONFIG_DIR, ca.name),
            posixpath.join(ENGINE_CONFIG_DIR, cert.name),
            posixpath.join(ENGINE_CONFIG_DIR, key.name),
        )
        data = cfg.to_json()
        root.copy(io.BytesIO(data), len(data), DAEMON_CONFIG_PATH, 0o600)

