# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import threading
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how commands are executed
    """

    dry_run: bool = False
    cancel: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()
