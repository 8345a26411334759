# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from .events import BaseEvent, new_ctx
from .interface import Observer

log = logging.getLogger("strata")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None, run_id: Optional[str] = None):
        self._observers = list(observers or [])
        self.run_id = new_ctx(run_id)["run_id"]

    @property
    def ctx(self) -> Dict[str, Any]:
        """Fresh timestamp plus this bus' run id, spread into every event."""
        return new_ctx(self.run_id)

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break a pass
                log.debug("observer %r failed on %s", ob, type(event).__name__, exc_info=True)
