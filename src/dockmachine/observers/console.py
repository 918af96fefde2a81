# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/observers/console.py
import threading

import typer

from .events import BaseEvent
from .interface import Observer


class ConsoleObserver(Observer):
    """Prints one attributable line per event: ``host - text``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        text = event.line()
        if not text:
            return
        line = f"{event.host} - {text}" if event.host else text
        with self._lock:
            typer.echo(line, err=bool(event.is_error))
