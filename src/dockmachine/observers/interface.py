# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/observers/interface.py
from __future__ import annotations

from typing import Protocol, runtime_checkable

from .events import BaseEvent


@runtime_checkable
class Observer(Protocol):
    """
    Receives every event the EventBus emits for a run. ``notify`` is called
    from worker threads, one call per event, so implementations that share
    a sink (terminal, file) serialize their writes.
    """

    def notify(self, event: BaseEvent) -> None: ...
