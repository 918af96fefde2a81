# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("dockmachine")


class EventBus:
    def __init__(self, observers: Optional[Iterable[Observer]] = None, *, run_id: str = ""):
        self._observers: List[Observer] = list(observers or [])
        for ob in self._observers:
            if not isinstance(ob, Observer):
                raise TypeError(f"{ob!r} has no notify(event) method")
        self.run_id = run_id

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break runs
                log.debug("observer %r failed on %s", ob, type(event).__name__, exc_info=True)
