# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/interface.py
"""
Observer contract, and the flat record form of an event shared by the
logger, console and JSON-lines observers.
"""

from __future__ import annotations
from typing import Any, Dict, Protocol, Tuple, Type

from .events import (
    BaseEvent,
    InventoryFailed,
    ManifestFailed,
    ProviderSecretFailed,
    WorkspaceWaitTimedOut,
)

# events after which the pass cannot converge on this attempt
FAILURE_EVENTS: Tuple[Type[BaseEvent], ...] = (
    ManifestFailed,
    WorkspaceWaitTimedOut,
    InventoryFailed,
    ProviderSecretFailed,
)

_ENVELOPE = ("type", "ts", "run_id")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


def event_record(event: BaseEvent) -> Dict[str, Any]:
    """``{"type": <event class>, **fields}`` without unset optional fields."""
    fields = {k: v for k, v in event.dict().items() if v is not None}
    return {"type": type(event).__name__, **fields}


def event_summary(event: BaseEvent) -> str:
    """``key=value`` pairs of the payload, envelope left out."""
    return ", ".join(f"{k}={v}" for k, v in event_record(event).items() if k not in _ENVELOPE)
