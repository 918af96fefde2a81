import threading

import pytest

from dockmachine.errors import CommandError, OperationCancelled, RetryError, UnreachableError
from dockmachine.utils import retry as retry_mod
from dockmachine.utils.retry import retry_call, wait_ready


class ScriptedCommander:
    """Answers run_quiet with the queued outcomes, in order."""
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
    def host(self): return ("10.0.0.7", 22)
    def run_quiet(self, cmd):
        self.calls.append(cmd)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome


@pytest.fixture
def no_sleep(monkeypatch):
    slept = []
    monkeypatch.setattr(retry_mod.time, "sleep", lambda s: slept.append(s))
    return slept


def test_retry_call_returns_first_success(no_sleep):
    calls = []
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise CommandError("x", 1)
        return "ok"

    assert retry_call(flaky, retries=5, delay=2.0) == "ok"
    assert len(calls) == 3
    assert no_sleep == [2.0, 2.0]


def test_retry_call_exhausts_and_chains_last_error(no_sleep):
    errors = [CommandError("x", 1), CommandError("x", 2)]
    seen = []
    def always():
        raise errors[len(seen) % 2]

    with pytest.raises(RetryError) as ei:
        retry_call(always, retries=2, delay=1.0, on_retry=lambda n, e: seen.append((n, e)))
    assert [n for n, _ in seen] == [1, 2]
    assert ei.value.__cause__ is errors[1]
    # no pause after the final attempt
    assert no_sleep == [1.0]


def test_retry_call_does_not_retry_unlisted_errors(no_sleep):
    def boom():
        raise KeyError("nope")
    with pytest.raises(KeyError):
        retry_call(boom, retries=3, delay=1.0)
    assert no_sleep == []


def test_wait_ready_succeeds_on_third_attempt():
    cmdr = ScriptedCommander([CommandError("date", 255), CommandError("date", 255), None])
    wait_ready(cmdr, attempts=12, interval=0)
    assert cmdr.calls == ["date", "date", "date"]


def test_wait_ready_uses_exactly_the_attempt_budget():
    cmdr = ScriptedCommander([CommandError("date", 255)] * 10)
    with pytest.raises(UnreachableError) as ei:
        wait_ready(cmdr, attempts=4, interval=0)
    assert len(cmdr.calls) == 4
    assert ei.value.host == "10.0.0.7"
    assert "Unable to contact remote after 4 attempts" in str(ei.value)


def test_wait_ready_stops_when_cancelled_between_attempts():
    cancel = threading.Event()

    class CancellingCommander(ScriptedCommander):
        def run_quiet(self, cmd):
            cancel.set()
            super().run_quiet(cmd)

    cmdr = CancellingCommander([CommandError("date", 255)] * 5)
    with pytest.raises(OperationCancelled):
        wait_ready(cmdr, attempts=5, interval=10.0, cancel=cancel)
    assert cmdr.calls == ["date"]
