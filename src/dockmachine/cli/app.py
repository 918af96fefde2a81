# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/cli/app.py
from __future__ import annotations

import contextlib
import getpass
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Iterator, List, Optional

import typer

from dockmachine.cert.issuer import (
    CLIENT_CERT,
    CLIENT_KEY,
    LocalCAIssuer,
    PemBlock,
    generate_ca_certificate,
    generate_client_certificate,
    generate_server_certificate,
)
from dockmachine.config.loader import load_settings
from dockmachine.config.models import Settings
from dockmachine.engine.provisioner import EngineOptions, EngineProvisioner
from dockmachine.errors import MachineError
from dockmachine.fleet.dispatcher import FleetDispatcher, FleetReport
from dockmachine.logging.log import init_logging
from dockmachine.observers.console import ConsoleObserver
from dockmachine.observers.dispatcher import EventBus
from dockmachine.observers.jsonfile import JsonFileObserver
from dockmachine.observers.logger import LoggerObserver
from dockmachine.playbook.loader import load_recipes
from dockmachine.playbook.models import Recipe
from dockmachine.playbook.starter import COMPOSE_FILE, write_starter_recipe
from dockmachine.roster.store import Instance, InstanceRoster
from dockmachine.ssh.commander import SSHCommander
from dockmachine.ssh.config import SSHConfig
from dockmachine.utils.execution import ExecutionContext


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Docker host provisioning and fleet execution", no_args_is_help=True)
exec_app = typer.Typer(help="Run commands, scripts and playbooks across hosts", no_args_is_help=True)
generic_app = typer.Typer(help="Provision Docker Engine on existing hosts", no_args_is_help=True)
tls_app = typer.Typer(help="Manage the local certificate authority", no_args_is_help=True)

app.add_typer(exec_app, name="exec")
app.add_typer(generic_app, name="generic")
app.add_typer(tls_app, name="tls")


HostsOpt = Annotated[List[str], typer.Option("--host", "-H", help="Target host (repeatable)")]
UserOpt = Annotated[Optional[str], typer.Option("--user", "-u", help="SSH user [env: MACHINE_USER]")]
CertOpt = Annotated[Optional[str], typer.Option("--cert", "-i", help="SSH private key [env: MACHINE_CERT_FILE]")]
PortOpt = Annotated[Optional[int], typer.Option("--port", "-p", help="SSH port")]
PasswordOpt = Annotated[Optional[str], typer.Option("--password", help="SSH password or key passphrase [env: MACHINE_PASSWORD]")]
DryRunOpt = Annotated[bool, typer.Option("--dryrun", help="Print what would run without touching hosts")]
SudoOpt = Annotated[bool, typer.Option("--sudo", help="Run with elevated privileges")]


@dataclass
class Runtime:
    settings: Settings
    debug: bool = False


@dataclass
class SSHOptions:
    user: Optional[str] = None
    cert: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None

    def resolve(self, settings: Settings) -> "SSHOptions":
        return SSHOptions(
            user=self.user or settings.user or getpass.getuser(),
            cert=self.cert or settings.cert,
            port=self.port or settings.port,
            password=self.password or settings.password,
        )


@contextlib.contextmanager
def _fail_on_error() -> Iterator[None]:
    try:
        yield
    except (MachineError, OSError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)


def _runtime(ctx: typer.Context) -> Runtime:
    if ctx.obj is None:
        with _fail_on_error():
            ctx.obj = Runtime(settings=load_settings())
    return ctx.obj


def _event_bus(rt: Runtime) -> EventBus:
    log_dir = Path(rt.settings.log_dir).expanduser()
    logger, run_id, _ = init_logging(base_dir=log_dir, verbose=rt.debug)
    observers = [
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(log_dir / f"{run_id}.jsonl"),
    ]
    return EventBus(observers=observers, run_id=run_id)


def _dispatcher(rt: Runtime, ssh: SSHOptions, *, dry_run: bool = False) -> FleetDispatcher:
    s = rt.settings
    ssh = ssh.resolve(s)
    exec_ctx = ExecutionContext(dry_run=dry_run)

    def build_commander(host: str) -> SSHCommander:
        config = SSHConfig(
            user=ssh.user,
            server=host,
            key=ssh.cert,
            port=ssh.port,
            password=ssh.password,
            connect_timeout=s.connect_timeout,
        )
        return SSHCommander(config, cancel=exec_ctx.cancel)

    return FleetDispatcher(
        build_commander,
        ctx=exec_ctx,
        bus=_event_bus(rt),
        staging_dir=s.staging_dir,
    )


def _require_hosts(hosts: Optional[List[str]]) -> List[str]:
    hosts = [h for h in (hosts or []) if h]
    if not hosts:
        raise typer.BadParameter("at least one --host is required", param_hint="--host")
    return hosts


def _exit_for(report: FleetReport) -> None:
    if report.failed:
        raise typer.Exit(code=1)


def _roster(rt: Runtime) -> InstanceRoster:
    return InstanceRoster(rt.settings.roster_path)


def _write_pem(dst: Path, block: PemBlock, mode: int) -> None:
    fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        f.write(block.data)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file [env: MACHINE_CONFIG]"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging on the console"),
):
    with _fail_on_error():
        ctx.obj = Runtime(settings=load_settings(config), debug=debug)


# ------------------------------------------------------------------------------
# exec
# ------------------------------------------------------------------------------

@exec_app.command("run")
def exec_run(
    ctx: typer.Context,
    command: List[str] = typer.Argument(..., help="Command to run on every host"),
    host: HostsOpt = None,
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
    sudo: SudoOpt = False,
    dryrun: DryRunOpt = False,
):
    """Run one command on every host."""
    rt = _runtime(ctx)
    hosts = _require_hosts(host)
    fleet = _dispatcher(rt, SSHOptions(user, cert, port, password), dry_run=dryrun)
    with _fail_on_error():
        report = fleet.run_across_hosts(hosts, Recipe.for_command(" ".join(command), sudo=sudo))
    _exit_for(report)


@exec_app.command("script")
def exec_script(
    ctx: typer.Context,
    scripts: List[Path] = typer.Argument(..., help="Local scripts, run in order"),
    host: HostsOpt = None,
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
    sudo: SudoOpt = False,
    dryrun: DryRunOpt = False,
):
    """Copy each script to every host and run it."""
    rt = _runtime(ctx)
    hosts = _require_hosts(host)
    missing = [str(p) for p in scripts if not p.is_file()]
    if missing:
        raise typer.BadParameter(f"no such file: {', '.join(missing)}", param_hint="SCRIPTS")
    fleet = _dispatcher(rt, SSHOptions(user, cert, port, password), dry_run=dryrun)
    with _fail_on_error():
        report = fleet.run_across_hosts(hosts, Recipe.for_scripts([str(p) for p in scripts], sudo=sudo))
    _exit_for(report)


@exec_app.command("playbook")
def exec_playbook(
    ctx: typer.Context,
    playbook: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML playbook, may hold several documents"),
    host: HostsOpt = None,
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
    dryrun: DryRunOpt = False,
):
    """
    Run a playbook. Each document runs on every host and must succeed
    everywhere before the next one starts.
    """
    rt = _runtime(ctx)
    hosts = _require_hosts(host)
    fleet = _dispatcher(rt, SSHOptions(user, cert, port, password), dry_run=dryrun)
    with _fail_on_error():
        for recipe in load_recipes(playbook):
            report = fleet.run_across_hosts(hosts, recipe)
            _exit_for(report)


# ------------------------------------------------------------------------------
# generic
# ------------------------------------------------------------------------------

def _provision_generic(
    rt: Runtime,
    ssh: SSHOptions,
    *,
    host: str,
    name: str,
    driver: str,
    options: EngineOptions,
) -> None:
    s = rt.settings
    fleet = _dispatcher(rt, ssh)
    provisioner = EngineProvisioner(
        LocalCAIssuer(s.certpath, s.organization),
        options=options,
        ctx=fleet.ctx,
        bus=fleet.bus,
    )
    with _fail_on_error():
        report = fleet.run_task([host], provisioner.provision)
        _exit_for(report)

        roster = _roster(rt).load()
        previous = roster.get(name)
        roster[name] = Instance(
            id=previous.id if previous else name,
            driver=driver,
            docker_host=f"{host}:{s.engine_port}",
            state="running",
        )
        roster.save()
    typer.echo(f"{name} - registered at tcp://{host}:{s.engine_port}")


@generic_app.command("create")
def generic_create(
    ctx: typer.Context,
    host: str = typer.Option(..., "--host", "-H", help="Host to provision"),
    name: str = typer.Option(..., "--name", help="Roster name for the instance"),
    altname: List[str] = typer.Option([], "--altname", help="Extra certificate subject (repeatable)"),
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
    skip_install: bool = typer.Option(False, "--skip-install", help="Docker Engine is already installed"),
):
    """Install Docker Engine with TLS on a host and record it."""
    rt = _runtime(ctx)
    s = rt.settings
    options = EngineOptions(
        install=not skip_install,
        provision=True,
        altnames=list(altname),
        ready_attempts=s.ready_attempts,
        ready_interval=s.ready_interval,
        install_attempts=s.install_attempts,
        install_interval=s.install_interval,
        engine_port=s.engine_port,
    )
    _provision_generic(rt, SSHOptions(user, cert, port, password), host=host, name=name, driver="generic", options=options)


@generic_app.command("regenerate-certificate")
def generic_regenerate_certificate(
    ctx: typer.Context,
    host: str = typer.Option(..., "--host", "-H"),
    name: str = typer.Option(..., "--name"),
    altname: List[str] = typer.Option([], "--altname"),
    is_new: bool = typer.Option(False, "--is-new", help="Write a fresh daemon.json instead of merging"),
    driver: str = typer.Option("generic", "--driver"),
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
):
    """Issue a new engine certificate and reconfigure the daemon."""
    rt = _runtime(ctx)
    s = rt.settings
    options = EngineOptions(
        install=False,
        provision=is_new,
        altnames=list(altname),
        ready_attempts=s.ready_attempts,
        ready_interval=s.ready_interval,
        engine_port=s.engine_port,
    )
    _provision_generic(rt, SSHOptions(user, cert, port, password), host=host, name=name, driver=driver, options=options)


# ------------------------------------------------------------------------------
# roster
# ------------------------------------------------------------------------------

def _active(inst: Instance) -> bool:
    return bool(inst.docker_host) and os.environ.get("DOCKER_HOST") == f"tcp://{inst.docker_host}"


@app.command("ls")
def ls(
    ctx: typer.Context,
    current: bool = typer.Option(False, "--current", help="Only print the active instance name"),
):
    """List known instances."""
    rt = _runtime(ctx)
    with _fail_on_error():
        roster = _roster(rt).load()

    if current:
        for name, inst in roster.items():
            if _active(inst):
                typer.echo(name)
        return

    rows = [("NAME", "ACTIVE", "DRIVER", "STATE", "URL")]
    for name, inst in roster.items():
        url = f"tcp://{inst.docker_host}" if inst.docker_host else ""
        rows.append((name, "*" if _active(inst) else "-", inst.driver, inst.state, url))
    widths = [max(len(r[i]) for r in rows) for i in range(len(rows[0]))]
    for r in rows:
        typer.echo("  ".join(col.ljust(w) for col, w in zip(r, widths)).rstrip())


def _lookup(rt: Runtime, name: Optional[str]) -> tuple[str, Instance]:
    name = name or os.environ.get("MACHINE_NAME")
    if not name:
        raise typer.BadParameter("no instance name given and MACHINE_NAME is not set", param_hint="NAME")
    with _fail_on_error():
        roster = _roster(rt).load()
    inst = roster.get(name)
    if inst is None:
        typer.echo(f"{name} - no such instance", err=True)
        raise typer.Exit(code=1)
    return name, inst


@app.command("ip")
def ip(ctx: typer.Context, name: Optional[str] = typer.Argument(None, help="Instance name [env: MACHINE_NAME]")):
    """Print an instance's address."""
    name, inst = _lookup(_runtime(ctx), name)
    if not inst.address:
        typer.echo(f"{name} - no address recorded", err=True)
        raise typer.Exit(code=1)
    typer.echo(inst.address)


ENV_VARS = ("DOCKER_TLS_VERIFY", "DOCKER_CERT_PATH", "DOCKER_HOST", "MACHINE_NAME")


@app.command("env")
def env(ctx: typer.Context, name: str = typer.Argument(..., help="Instance name, or 'clear' / 'display'")):
    """Print shell exports that point docker at an instance."""
    if name == "clear":
        typer.echo(f"unset {' '.join(ENV_VARS)}")
        typer.echo("# Run this command to configure your shell:")
        typer.echo("# eval $(machine env clear)")
        return
    if name == "display":
        for var in ENV_VARS:
            typer.echo(f"{var}={os.environ.get(var, '')}")
        return

    rt = _runtime(ctx)
    name, inst = _lookup(rt, name)
    if not inst.docker_host:
        typer.echo(f"{name} - no engine endpoint recorded", err=True)
        raise typer.Exit(code=1)
    certpath = Path(rt.settings.certpath).expanduser()
    typer.echo("export DOCKER_TLS_VERIFY=1")
    typer.echo(f'export DOCKER_CERT_PATH="{certpath}"')
    typer.echo(f'export DOCKER_HOST="tcp://{inst.docker_host}"')
    typer.echo(f'export MACHINE_NAME="{name}"')
    typer.echo("# Run this command to configure your shell:")
    typer.echo(f"# eval $(machine env {name})")


@app.command("ssh")
def ssh(
    ctx: typer.Context,
    host: str = typer.Argument(..., help="Host to open a shell on"),
    user: UserOpt = None,
    cert: CertOpt = None,
    port: PortOpt = None,
    password: PasswordOpt = None,
):
    """Open an interactive shell on a host."""
    rt = _runtime(ctx)
    opts = SSHOptions(user, cert, port, password).resolve(rt.settings)
    config = SSHConfig(
        user=opts.user,
        server=host,
        key=opts.cert,
        port=opts.port,
        password=opts.password,
        connect_timeout=rt.settings.connect_timeout,
    )
    cmdr = SSHCommander(config)
    with _fail_on_error():
        try:
            cmdr.shell()
        finally:
            cmdr.close()


# ------------------------------------------------------------------------------
# tls
# ------------------------------------------------------------------------------

@tls_app.command("generate-ca")
def tls_generate_ca(
    ctx: typer.Context,
    org: Optional[str] = typer.Option(None, "--org", help="Organization for the CA subject"),
):
    """Create a CA and a client certificate signed by it."""
    rt = _runtime(ctx)
    s = rt.settings
    org = org or s.organization
    certpath = Path(s.certpath).expanduser()
    with _fail_on_error():
        ca_path = generate_ca_certificate(certpath, org)
        _, cert, key = generate_client_certificate(certpath, org)
        _write_pem(certpath / CLIENT_CERT, cert, 0o644)
        _write_pem(certpath / CLIENT_KEY, key, 0o600)
    typer.echo(f"CA written to {ca_path}")
    typer.echo(f"client certificate written to {certpath / CLIENT_CERT}")


@tls_app.command("gen-cert")
def tls_gen_cert(
    ctx: typer.Context,
    host: str = typer.Option(..., "--host", "-H", help="Host the certificate is for"),
    altname: List[str] = typer.Option([], "--altname", help="Extra certificate subject (repeatable)"),
    out: Path = typer.Option(Path("."), "--out", "-o", file_okay=False, help="Directory to write the PEM files to"),
):
    """Issue a server certificate signed by the local CA."""
    rt = _runtime(ctx)
    s = rt.settings
    names = [host, "localhost", "127.0.0.1", *altname]
    with _fail_on_error():
        ca, cert, key = generate_server_certificate(s.certpath, s.organization, names)
        out.mkdir(parents=True, exist_ok=True)
        _write_pem(out / ca.name, ca, 0o644)
        _write_pem(out / cert.name, cert, 0o644)
        _write_pem(out / key.name, key, 0o600)
    typer.echo(f"server certificate for {', '.join(names)} written to {out}")


# ------------------------------------------------------------------------------
# recipe
# ------------------------------------------------------------------------------

@app.command("gen-recipe")
def gen_recipe(
    out: Path = typer.Option(Path("."), "--out", "-o", file_okay=False, help="Directory to write the recipe to"),
    force: bool = typer.Option(False, "--force", help="Replace files that already exist"),
):
    """Write a starter playbook for Docker Engine hosts, for exec playbook."""
    with _fail_on_error():
        written = write_starter_recipe(out, overwrite=force)
    for path in written:
        typer.echo(f"wrote {path}")
    typer.echo(f"# machine exec playbook {out / COMPOSE_FILE} --host <host>")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
