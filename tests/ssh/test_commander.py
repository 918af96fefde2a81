import io
import socket
import stat
import threading
from types import SimpleNamespace

import pytest

from dockmachine.errors import CommandError, CopyError, OperationCancelled, SSHConnectionError
from dockmachine.ssh.commander import SSHCommander
from dockmachine.ssh.config import SSHConfig

# ----------------- Fakes for Paramiko -----------------

class FakeRemote:
    """Shared state for every fake connection to one host."""
    def __init__(self, results=None, fail=None):
        self.results = {} if results is None else results
        self.fail = fail
        self.log = []
        self.channels = []
        self.uploads = {}
        self.short_write = None

class FakeChannel:
    def __init__(self, remote):
        self.remote = remote
        self.combine = False
        self.cmd = None
        self.out = b""
        self.err = b""
        self.status = 0
    def settimeout(self, t): pass
    def set_combine_stderr(self, flag): self.combine = flag
    def exec_command(self, cmd):
        self.cmd = cmd
        self.remote.log.append(("exec", cmd))
        out, err, status = self.remote.results.get(cmd, (b"", b"", 0))
        self.out, self.err, self.status = (out + err, b"", status) if self.combine else (out, err, status)
    def recv(self, n):
        data, self.out = self.out[:n], self.out[n:]
        return data
    def recv_ready(self): return bool(self.out)
    def recv_stderr_ready(self): return bool(self.err)
    def recv_stderr(self, n):
        data, self.err = self.err[:n], self.err[n:]
        return data
    def exit_status_ready(self): return True
    def recv_exit_status(self): return self.status

class FakeTransport:
    def __init__(self, remote): self.remote = remote
    def open_session(self):
        ch = FakeChannel(self.remote)
        self.remote.channels.append(ch)
        return ch

class FakeRemoteFile:
    def __init__(self, remote, path): self.remote, self.path = remote, path
    def __enter__(self): return self
    def __exit__(self, *exc): pass
    def chmod(self, mode): self.remote.log.append(("chmod", self.path, mode))

class FakeSFTP:
    def __init__(self, remote): self.remote = remote
    def open(self, path, mode="r"): return FakeRemoteFile(self.remote, path)
    def putfo(self, fl, path, file_size=0):
        data = fl.read()
        self.remote.uploads[path] = data
        self.remote.log.append(("putfo", path, file_size))
        return SimpleNamespace(st_size=len(data) if self.remote.short_write is None else self.remote.short_write)
    def close(self): self.remote.log.append(("sftp_close",))

class FakeSSHClient:
    def __init__(self, remote): self.remote = remote
    def set_missing_host_key_policy(self, policy): pass
    def connect(self, **kw):
        self.remote.log.append(("connect", kw["hostname"], kw["port"], kw["username"]))
        if self.remote.fail:
            raise self.remote.fail
    def get_transport(self): return FakeTransport(self.remote)
    def open_sftp(self): return FakeSFTP(self.remote)
    def close(self): self.remote.log.append(("close",))


def make_commander(remote, **kw):
    cfg = SSHConfig(user="ubuntu", server="10.0.0.5")
    return SSHCommander(cfg, client_factory=lambda: FakeSSHClient(remote), **kw)


def execs(remote):
    return [e[1] for e in remote.log if e[0] == "exec"]

# ----------------- Tests -----------------

def test_run_returns_combined_output_and_closes():
    remote = FakeRemote({"uname -a": (b"Linux\n", b"warning\n", 0)})
    out = make_commander(remote).run("uname -a")
    assert out == "Linux\nwarning\n"
    assert remote.log[0] == ("connect", "10.0.0.5", 22, "ubuntu")
    assert remote.log[-1] == ("close",)


def test_run_nonzero_exit_raises_command_error():
    remote = FakeRemote({"false": (b"nope\n", b"", 2)})
    with pytest.raises(CommandError) as ei:
        make_commander(remote).run("false")
    assert ei.value.exit_status == 2
    assert ei.value.output == "nope\n"
    assert ei.value.host == "10.0.0.5"
    assert ("close",) in remote.log


def test_connect_failure_is_translated():
    remote = FakeRemote(fail=socket.error("connection refused"))
    with pytest.raises(SSHConnectionError) as ei:
        make_commander(remote).run_quiet("date")
    assert isinstance(ei.value, ConnectionError)
    assert "10.0.0.5" in str(ei.value)
    assert execs(remote) == []


def test_elevate_returns_sibling_and_leaves_original_plain():
    remote = FakeRemote()
    cmdr = make_commander(remote)
    root = cmdr.elevate()

    root.run_quiet("id")
    cmdr.run_quiet("id")
    root.step_down().run_quiet("whoami")

    assert execs(remote) == ["sudo -s id", "id", "whoami"]
    assert cmdr.sudo is False
    assert root.elevate() is root
    assert root.host() == ("10.0.0.5", 22)


def test_stream_yields_lines_then_final_error():
    remote = FakeRemote({"make": (b"a\nb\npartial", b"oops\n", 3)})
    responses = list(make_commander(remote).stream("make"))

    texts = [r.text for r in responses if not r.final]
    assert texts == ["a", "b", "oops", "partial"]
    final = responses[-1]
    assert final.final
    assert isinstance(final.error, CommandError)
    assert final.error.exit_status == 3
    assert remote.log[-1] == ("close",)


def test_stream_success_ends_with_clean_final():
    remote = FakeRemote({"echo hi": (b"hi\n", b"", 0)})
    responses = list(make_commander(remote).stream("echo hi"))
    assert [r.data() for r in responses] == [("hi", None), (None, None)]
    assert responses[-1].final


def test_copy_rejects_non_regular_mode_before_connecting():
    remote = FakeRemote()
    with pytest.raises(CopyError, match="regular file"):
        make_commander(remote).copy(io.BytesIO(b"x"), 1, "/tmp/x", stat.S_IFDIR | 0o755)
    assert remote.log == []


def test_copy_uploads_over_sftp_then_installs_with_mode():
    remote = FakeRemote()
    make_commander(remote).elevate().copy(io.BytesIO(b"hello"), 5, "/etc/docker/ca.pem", 0o644)

    [tmp] = remote.uploads
    assert tmp.startswith("/tmp/.machine-") and tmp.endswith("-ca.pem")
    assert remote.uploads[tmp] == b"hello"
    assert ("chmod", tmp, 0o600) in remote.log
    assert ("sftp_close",) in remote.log
    assert execs(remote) == [
        "sudo -s mkdir -p /etc/docker",
        f"sudo -s install -m 0644 {tmp} /etc/docker/ca.pem && rm -f {tmp}",
    ]


def test_copy_strips_file_type_bits_from_mode():
    remote = FakeRemote()
    make_commander(remote).copy(io.BytesIO(b"k"), 1, "/home/ubuntu/key.pem", stat.S_IFREG | 0o600)

    [tmp] = remote.uploads
    assert execs(remote)[-1] == f"install -m 0600 {tmp} /home/ubuntu/key.pem && rm -f {tmp}"


def test_copy_short_upload_raises_and_removes_temp():
    remote = FakeRemote()
    remote.short_write = 2
    with pytest.raises(CopyError, match="sent 2 of 5 bytes"):
        make_commander(remote).elevate().copy(io.BytesIO(b"hello"), 5, "/etc/docker/ca.pem", 0o644)

    [tmp] = remote.uploads
    assert execs(remote) == ["sudo -s mkdir -p /etc/docker", f"rm -f {tmp}"]


class FailInstall(dict):
    def get(self, cmd, default=None):
        if "install -m" in cmd:
            return (b"", b"install: cannot create regular file\n", 1)
        return default


def test_copy_failed_install_raises_copy_error_and_cleans_up():
    remote = FakeRemote(FailInstall())
    with pytest.raises(CopyError, match="/opt/a.txt"):
        make_commander(remote).elevate().copy(io.BytesIO(b"x"), 1, "/opt/a.txt", 0o644)

    [tmp] = remote.uploads
    assert execs(remote)[-1] == f"rm -f {tmp}"


def test_copy_file_missing_source_raises_copy_error(tmp_path):
    remote = FakeRemote()
    with pytest.raises(CopyError):
        make_commander(remote).copy_file(str(tmp_path / "missing.sh"), "/tmp/.machine/missing.sh")
    assert remote.log == []


def test_load_writes_remote_bytes():
    remote = FakeRemote({"cat /etc/docker/daemon.json": (b'{"debug": true}', b"", 0)})
    cmdr = make_commander(remote)

    buf = io.BytesIO()
    cmdr.load("/etc/docker/daemon.json", buf)
    assert buf.getvalue() == b'{"debug": true}'


def test_load_missing_file_raises_with_stderr():
    remote = FakeRemote({"cat /nope": (b"", b"cat: /nope: No such file\n", 1)})
    with pytest.raises(CommandError) as ei:
        make_commander(remote).load("/nope", io.BytesIO())
    assert "No such file" in ei.value.output


def test_cancelled_commander_stops_reading():
    cancel = threading.Event()
    cancel.set()
    remote = FakeRemote({"sleep 100": (b"", b"", 0)})
    with pytest.raises(OperationCancelled):
        make_commander(remote, cancel=cancel).run("sleep 100")
    assert remote.log[-1] == ("close",)
