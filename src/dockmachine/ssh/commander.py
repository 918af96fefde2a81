# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/ssh/commander.py

from __future__ import annotations

import logging
import os
import posixpath
import shlex
import socket
import stat
import threading
import time
import uuid
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional, Protocol, Tuple

import paramiko
from paramiko.agent import AgentRequestHandler

from dockmachine.errors import CommandError, CopyError, OperationCancelled, SSHConnectionError
from dockmachine.ssh import shell as tty
from dockmachine.ssh.config import SSHConfig

log = logging.getLogger("dockmachine")

SUDO_PREFIX = "sudo -s"
UPLOAD_DIR = "/tmp"


@dataclass(frozen=True)
class Response:
    """
    One unit of streamed output. The last item of every stream is ``final``
    and carries the command's error, or None on success.
    """
    text: Optional[str] = None
    error: Optional[Exception] = None
    final: bool = False

    def data(self) -> Tuple[Optional[str], Optional[Exception]]:
        return self.text, self.error


class Commander(Protocol):
    """
    Command, file transfer and shell capability against one remote host.
    """

    def host(self) -> Tuple[str, int]: ...

    def elevate(self) -> "Commander": ...

    def step_down(self) -> "Commander": ...

    def run(self, cmd: str) -> str: ...

    def run_quiet(self, cmd: str) -> None: ...

    def stream(self, cmd: str) -> Iterator[Response]: ...

    def load(self, target: str, here: BinaryIO) -> None: ...

    def copy(self, src: BinaryIO, size: int, dst: str, mode: int) -> None: ...

    def copy_file(self, src: str, dst: str, mode: int = 0o644) -> None: ...

    def mkdir(self, path: str) -> None: ...

    def shell(self) -> None: ...

    def close(self) -> None: ...


class SSHCommander:
    """
    paramiko-backed Commander. Every non-interactive call dials its own
    connection and closes it before returning.

    Elevation is a value, not a toggle: ``elevate()`` returns a sibling
    commander that prefixes commands with ``sudo -s`` and leaves this one
    untouched, so it can be scoped with ``with cmdr.elevate() as root:``.
    """

    poll_interval = 0.05
    recv_timeout = 1.0

    def __init__(
        self,
        config: SSHConfig,
        *,
        sudo: bool = False,
        cancel: Optional[threading.Event] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.config = config
        self.sudo = sudo
        self.cancel = cancel
        self._client_factory = client_factory
        self._agent_handler: Optional[AgentRequestHandler] = None

    def __repr__(self) -> str:
        return f"<SSHCommander {self.config.user}@{self.config.addr} sudo={self.sudo}>"

    def __enter__(self) -> "SSHCommander":
        return self

    def __exit__(self, *exc) -> None:
        return None

    # ------------------ connection & utils ------------------

    def host(self) -> Tuple[str, int]:
        return self.config.server, self.config.port

    def _sibling(self, sudo: bool) -> "SSHCommander":
        if sudo == self.sudo:
            return self
        return SSHCommander(
            self.config,
            sudo=sudo,
            cancel=self.cancel,
            client_factory=self._client_factory,
        )

    def elevate(self) -> "SSHCommander":
        return self._sibling(True)

    def step_down(self) -> "SSHCommander":
        return self._sibling(False)

    def _wrap(self, cmd: str) -> str:
        return f"{SUDO_PREFIX} {cmd}" if self.sudo else cmd

    def _check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled(f"{self.config.server} - cancelled")

    def _connect(self) -> paramiko.SSHClient:
        cfg = self.config
        pkey = cfg.load_key()
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=cfg.server,
                port=cfg.port,
                username=cfg.user,
                password=cfg.password if not pkey else None,
                pkey=pkey,
                timeout=cfg.connect_timeout,
                allow_agent=True,
                look_for_keys=False,
            )
        except (paramiko.SSHException, socket.error) as exc:
            client.close()
            raise SSHConnectionError(cfg.server, f"{type(exc).__name__}: {exc}") from exc
        return client

    def _exec(self, client: paramiko.SSHClient, cmd: str, *, combine: bool = False):
        try:
            chan = client.get_transport().open_session()
            if combine:
                chan.set_combine_stderr(True)
            chan.exec_command(self._wrap(cmd))
        except (paramiko.SSHException, socket.error) as exc:
            raise SSHConnectionError(self.config.server, f"{type(exc).__name__}: {exc}") from exc
        return chan

    def _drain(self, chan) -> bytes:
        chan.settimeout(self.recv_timeout)
        chunks = []
        while True:
            self._check_cancel()
            try:
                data = chan.recv(32 * 1024)
            except socket.timeout:
                continue
            if not data:
                break
            chunks.append(data)
        return b"".join(chunks)

    def _check(self, chan, cmd: str, output: str = "") -> None:
        status = chan.recv_exit_status()
        if status != 0:
            raise CommandError(cmd, status, output, host=self.config.server)

    # ------------------ commands ------------------

    def run(self, cmd: str) -> str:
        """
        Run ``cmd`` and return combined stdout/stderr.
        """
        client = self._connect()
        try:
            chan = self._exec(client, cmd, combine=True)
            output = self._drain(chan).decode("utf-8", "replace")
            self._check(chan, cmd, output)
            return output
        finally:
            client.close()

    def run_quiet(self, cmd: str) -> None:
        client = self._connect()
        try:
            chan = self._exec(client, cmd, combine=True)
            self._drain(chan)
            self._check(chan, cmd)
        finally:
            client.close()

    def stream(self, cmd: str) -> Iterator[Response]:
        """
        Start ``cmd`` and return an iterator of its output lines, stdout and
        stderr interleaved as they arrive. Connection errors raise here;
        the command's own failure arrives as the final Response.
        """
        client = self._connect()
        try:
            chan = self._exec(client, cmd)
        except Exception:
            client.close()
            raise
        return self._pump(client, chan, cmd)

    def _pump(self, client: paramiko.SSHClient, chan, cmd: str) -> Iterator[Response]:
        pending = {"out": b"", "err": b""}

        def lines(kind: str, data: bytes) -> Iterator[Response]:
            buf = pending[kind] + data
            *complete, pending[kind] = buf.split(b"\n")
            for raw in complete:
                yield Response(text=raw.rstrip(b"\r").decode("utf-8", "replace"))

        try:
            while True:
                got = False
                if chan.recv_ready():
                    data = chan.recv(4096)
                    got = bool(data)
                    yield from lines("out", data)
                if chan.recv_stderr_ready():
                    data = chan.recv_stderr(4096)
                    got = got or bool(data)
                    yield from lines("err", data)
                self._check_cancel()
                if got:
                    continue
                if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
                    break
                time.sleep(self.poll_interval)

            for kind in ("out", "err"):
                if pending[kind]:
                    yield Response(text=pending[kind].rstrip(b"\r").decode("utf-8", "replace"))

            status = chan.recv_exit_status()
            error = CommandError(cmd, status, host=self.config.server) if status != 0 else None
            yield Response(error=error, final=True)
        finally:
            client.close()

    # ------------------ files ------------------

    def load(self, target: str, here: BinaryIO) -> None:
        cmd = f"cat {shlex.quote(target)}"
        client = self._connect()
        try:
            chan = self._exec(client, cmd)
            here.write(self._drain(chan))
            err = b""
            while chan.recv_stderr_ready():
                err += chan.recv_stderr(4096)
            self._check(chan, cmd, err.decode("utf-8", "replace"))
        finally:
            client.close()

    def copy(self, src: BinaryIO, size: int, dst: str, mode: int) -> None:
        """
        Upload ``size`` bytes from ``src`` to ``dst`` on the host.

        The bytes go over SFTP into a private temp file as the login user;
        ``install`` then moves them into place with ``mode``, through the
        sudo prefix when this commander is elevated.
        """
        kind = stat.S_IFMT(mode)
        if kind not in (0, stat.S_IFREG):
            raise CopyError("Can only copy regular file")
        perm = stat.S_IMODE(mode) & 0o777

        parent = posixpath.dirname(dst)
        if parent:
            self.mkdir(parent)

        tmp = posixpath.join(UPLOAD_DIR, f".machine-{uuid.uuid4().hex[:12]}-{posixpath.basename(dst)}")
        client = self._connect()
        try:
            sftp = client.open_sftp()
            try:
                # private until install sets the final mode
                with sftp.open(tmp, "wb") as fh:
                    fh.chmod(0o600)
                attrs = sftp.putfo(src, tmp, file_size=size)
            finally:
                sftp.close()
        except (IOError, paramiko.SSHException) as exc:
            raise CopyError(f"{self.config.server} - {dst}: {exc}") from exc
        finally:
            client.close()
        if attrs is not None and attrs.st_size != size:
            self._discard(tmp)
            raise CopyError(f"{self.config.server} - {dst}: sent {attrs.st_size} of {size} bytes")

        cmd = f"install -m {perm:04o} {shlex.quote(tmp)} {shlex.quote(dst)} && rm -f {shlex.quote(tmp)}"
        try:
            self.run_quiet(cmd)
        except CommandError as exc:
            self._discard(tmp)
            raise CopyError(f"{self.config.server} - {dst}: {exc}") from exc

    def _discard(self, tmp: str) -> None:
        try:
            self.step_down().run_quiet(f"rm -f {shlex.quote(tmp)}")
        except (CommandError, SSHConnectionError) as exc:
            log.warning("%s - leaving %s behind: %s", self.config.server, tmp, exc)

    def copy_file(self, src: str, dst: str, mode: int = 0o644) -> None:
        try:
            f = open(src, "rb")
        except OSError as exc:
            raise CopyError(f"{src}: {exc.strerror or exc}") from exc
        with f:
            size = os.fstat(f.fileno()).st_size
            self.copy(f, size, dst, mode)

    def mkdir(self, path: str) -> None:
        self.run_quiet(f"mkdir -p {shlex.quote(path)}")

    # ------------------ interactive ------------------

    def shell(self) -> None:
        client = self._connect()
        try:
            chan = client.get_transport().open_session()
            if os.environ.get("SSH_AUTH_SOCK"):
                self._agent_handler = AgentRequestHandler(chan)
            width, height = tty.terminal_size()
            chan.get_pty(term="xterm", width=width, height=height)
            chan.invoke_shell()
            tty.interactive(chan)
            chan.recv_exit_status()
        finally:
            client.close()

    def close(self) -> None:
        if self._agent_handler is not None:
            self._agent_handler.close()
            self._agent_handler = None
