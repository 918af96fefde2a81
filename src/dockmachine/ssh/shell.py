# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/ssh/shell.py

from __future__ import annotations

import os
import shutil
import sys
import termios
import tty
from contextlib import contextmanager
from selectors import EVENT_READ, DefaultSelector
from typing import Tuple

DEFAULT_TERMINAL_SIZE = (80, 24)


def terminal_size() -> Tuple[int, int]:
    size = shutil.get_terminal_size(fallback=DEFAULT_TERMINAL_SIZE)
    if size.columns <= 0 or size.lines <= 0:
        return DEFAULT_TERMINAL_SIZE
    return size.columns, size.lines


@contextmanager
def raw_terminal(fd: int):
    if not os.isatty(fd):
        yield
        return
    old = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def interactive(chan) -> None:
    """
    Pump local stdin into the channel and channel output to local
    stdout/stderr until the remote shell exits.
    """
    stdin_fd = sys.stdin.fileno()
    selector = DefaultSelector()
    selector.register(chan, EVENT_READ)
    selector.register(stdin_fd, EVENT_READ)

    with raw_terminal(stdin_fd):
        try:
            while not chan.closed:
                for key, _ in selector.select(timeout=0.5):
                    if key.fileobj is chan:
                        if chan.recv_stderr_ready():
                            sys.stderr.buffer.write(chan.recv_stderr(4096))
                            sys.stderr.buffer.flush()
                        data = chan.recv(4096) if chan.recv_ready() or chan.exit_status_ready() else b""
                        if not data and chan.exit_status_ready():
                            return
                        sys.stdout.buffer.write(data)
                        sys.stdout.buffer.flush()
                    else:
                        data = os.read(stdin_fd, 1024)
                        if not data:
                            chan.shutdown_write()
                            selector.unregister(stdin_fd)
                            continue
                        chan.sendall(data)
        finally:
            selector.close()
