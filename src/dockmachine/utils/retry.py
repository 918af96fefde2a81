# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from dockmachine.errors import MachineError, OperationCancelled, RetryError, UnreachableError

log = logging.getLogger("dockmachine")

T = TypeVar("T")

READY_COMMAND = "date"


def _pause(delay: float, cancel: Optional[threading.Event]) -> None:
    if cancel is None:
        time.sleep(delay)
    elif cancel.wait(delay):
        raise OperationCancelled("cancelled while waiting to retry")


def retry_call(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (MachineError,),
    on_retry: Callable[[int, Exception], None] | None = None,
    cancel: Optional[threading.Event] = None,
    name: Optional[str] = None,
) -> T:
    """
    Call ``fn`` up to ``retries`` times, sleeping ``delay`` seconds between
    failed attempts. Raises RetryError chained to the last failure.
    """
    last_exc = None
    for attempt in range(1, retries + 1):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{name or fn.__name__} cancelled")
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if on_retry:
                on_retry(attempt, exc)
            if attempt == retries:
                break
            _pause(delay, cancel)
    raise RetryError(f"{name or fn.__name__} failed after {retries} retries") from last_exc


def wait_ready(
    cmdr,
    *,
    attempts: int = 12,
    interval: float = 5.0,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Poll the host with a trivial command until it answers. Freshly booted
    machines take a while before sshd accepts sessions.
    """
    host, _ = cmdr.host()

    def _log(attempt: int, exc: Exception) -> None:
        log.info("[%s] SSH not ready (attempt %d/%d, %s)", host, attempt, attempts, exc)

    try:
        retry_call(
            lambda: cmdr.run_quiet(READY_COMMAND),
            retries=attempts,
            delay=interval,
            on_retry=_log,
            cancel=cancel,
            name="wait_ready",
        )
    except RetryError as exc:
        raise UnreachableError(host, attempts) from exc.__cause__
