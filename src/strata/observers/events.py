# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single provisioning pass

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
    }


# ---------------------------------------------------------------------
# Pass lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PassStarted(BaseEvent):
    instance: str
    subroutine: str

@dataclass(frozen=True)
class PassFinished(BaseEvent):
    instance: str
    subroutine: str
    ok: bool
    requeue_after: Optional[float] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Manifest lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ManifestApplied(BaseEvent):
    path: str
    workspace: str
    kind: str
    name: str

@dataclass(frozen=True)
class ManifestUnchanged(BaseEvent):
    path: str
    workspace: str
    kind: str
    name: str

@dataclass(frozen=True)
class ManifestSkipped(BaseEvent):
    path: str
    workspace: str
    reason: str

@dataclass(frozen=True)
class ManifestFailed(BaseEvent):
    path: str
    workspace: str
    error: str

@dataclass(frozen=True)
class DriftDetected(BaseEvent):
    workspace: str
    kind: str
    name: str
    diff: Optional[List[Dict[str, Any]]] = None


# ---------------------------------------------------------------------
# Workspace lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class WorkspaceWaitStarted(BaseEvent):
    parent: str
    name: str
    timeout_s: float

@dataclass(frozen=True)
class WorkspaceReady(BaseEvent):
    parent: str
    name: str

@dataclass(frozen=True)
class WorkspaceWaitTimedOut(BaseEvent):
    parent: str
    name: str
    timeout_s: float

@dataclass(frozen=True)
class ExtraWorkspaceApplied(BaseEvent):
    parent: str
    name: str
    type: str

@dataclass(frozen=True)
class ExtraWorkspaceSkipped(BaseEvent):
    path: str
    reason: str


# ---------------------------------------------------------------------
# Readiness & inventory
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ReadinessChecked(BaseEvent):
    kind: str
    name: str
    namespace: str
    ready: bool

@dataclass(frozen=True)
class InventoryAssembled(BaseEvent):
    keys: List[str]

@dataclass(frozen=True)
class InventoryFailed(BaseEvent):
    error: str
    partial_keys: List[str]


# ---------------------------------------------------------------------
# Provider connections
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ProviderSecretWritten(BaseEvent):
    secret: str
    namespace: str
    server: str
    scoped: bool

@dataclass(frozen=True)
class ProviderSecretFailed(BaseEvent):
    secret: str
    error: str
