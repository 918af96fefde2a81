import threading

import pytest

from dockmachine.errors import CommandError, FleetError, SSHConnectionError
from dockmachine.fleet.dispatcher import FleetDispatcher
from dockmachine.observers.dispatcher import EventBus
from dockmachine.observers.events import FleetSummary, HostFinished
from dockmachine.playbook.models import Recipe
from dockmachine.ssh.commander import Response


class FakeCommander:
    def __init__(self, host, failing=()):
        self._host = host
        self.failing = set(failing)
        self.streamed = []
        self.closed = False
    def host(self): return (self._host, 22)
    def elevate(self): return self
    def stream(self, cmd):
        self.streamed.append(cmd)
        error = CommandError(cmd, 1, host=self._host) if self._host in self.failing else None
        return iter([Response(text="hi"), Response(error=error, final=True)])
    def copy_file(self, src, dst, mode=0o644): pass
    def run_quiet(self, cmd): pass
    def close(self): self.closed = True


class Recorder:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()
    def notify(self, event):
        with self._lock:
            self.events.append(event)


def make_dispatcher(failing=(), unreachable=()):
    built = {}
    def build(host):
        if host in unreachable:
            raise SSHConnectionError(host, "no route to host")
        built[host] = FakeCommander(host, failing)
        return built[host]
    rec = Recorder()
    return FleetDispatcher(build, bus=EventBus([rec])), built, rec


SMOKE = Recipe.model_validate({"provision": [{"name": "smoke", "ok2fail": False, "action": [{"cmd": "echo hi"}]}]})


def test_two_healthy_hosts_report_success():
    fleet, built, rec = make_dispatcher()

    report = fleet.run_across_hosts(["a", "b"], SMOKE)

    assert report.ok
    assert sorted(o.host for o in report.outcomes) == ["a", "b"]
    assert all(c.streamed == ["echo hi"] and c.closed for c in built.values())
    finished = [e for e in rec.events if isinstance(e, HostFinished)]
    assert len(finished) == 2
    summary = [e for e in rec.events if isinstance(e, FleetSummary)]
    assert summary[0].ok == 2 and summary[0].failed == 0


@pytest.mark.parametrize("n,failing", [(5, {"h1"}), (5, {"h0", "h2", "h4"}), (3, {"h0", "h1", "h2"})])
def test_any_failure_fails_the_fleet_but_every_host_reports(n, failing):
    hosts = [f"h{i}" for i in range(n)]
    fleet, built, _ = make_dispatcher(failing=failing)

    report = fleet.run_across_hosts(hosts, SMOKE)

    assert not report.ok
    assert len(report.outcomes) == n
    assert {o.host for o in report.failed} == failing
    # failing hosts never stop their siblings
    assert set(built) == set(hosts)
    assert report.summary() == f"OK={n - len(failing)} FAILED={len(failing)}"


def test_raise_for_failures_carries_outcomes():
    fleet, _, _ = make_dispatcher(failing={"b"})
    report = fleet.run_across_hosts(["a", "b"], SMOKE)

    with pytest.raises(FleetError) as ei:
        report.raise_for_failures()
    assert [o.host for o in ei.value.failed] == ["b"]
    assert len(ei.value.outcomes) == 2


def test_connection_failure_becomes_host_outcome():
    fleet, _, rec = make_dispatcher(unreachable={"down"})

    report = fleet.run_across_hosts(["up", "down"], SMOKE)

    assert [o.host for o in report.failed] == ["down"]
    assert isinstance(report.failed[0].error, SSHConnectionError)
    finished = {e.host: e.ok for e in rec.events if isinstance(e, HostFinished)}
    assert finished == {"up": True, "down": False}


def test_run_task_counts_plain_return_as_success():
    fleet, _, _ = make_dispatcher()
    seen = []

    def task(cmdr):
        seen.append(cmdr.host()[0])
        if cmdr.host()[0] == "bad":
            raise CommandError("install", 100)
        return "anything"

    report = fleet.run_task(["good", "bad"], task)

    assert sorted(seen) == ["bad", "good"]
    assert [o.host for o in report.failed] == ["bad"]
    assert all(o.duration_s >= 0 for o in report.outcomes)


def test_empty_fleet_is_trivially_ok():
    fleet, built, _ = make_dispatcher()
    report = fleet.run_across_hosts([], SMOKE)
    assert report.ok and report.outcomes == [] and built == {}


def test_cancel_sets_shared_event():
    fleet, _, _ = make_dispatcher()
    fleet.cancel()
    assert fleet.ctx.cancelled
    report = fleet.run_across_hosts(["a"], SMOKE)
    assert not report.ok
