# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/readiness/gate.py
"""
Readiness checks.

``is_ready`` evaluates one live object against a :class:`ReadinessSpec`:

* conditions mode - some entry of ``status.conditions`` matches both the
  configured ``type`` and ``status`` exactly;
* field path mode - the string at ``statusFieldPath`` equals
  ``statusValue``. A missing path or a non-string value is simply "not
  ready".

``wait_for_resource`` fetches once and raises :class:`NotReadyError` so the
caller can requeue. ``poll_until_ready`` is the bounded blocking variant the
provisioner uses between workspace levels.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional

from ..config.defaults import WORKSPACE_API_VERSION, WORKSPACE_KIND, WORKSPACE_READY_PHASE
from ..config.models import ReadinessSpec
from ..errors import (
    DeadlineExceededError,
    NotFoundError,
    NotReadyError,
    ReadinessTimeoutError,
)
from ..kube.client import CLIENT_ERRORS, ResourceClient
from ..manifest.document import FieldTypeError, Unstructured
from ..observers.dispatcher import EventBus
from ..observers.events import (
    ReadinessChecked,
    WorkspaceReady,
    WorkspaceWaitStarted,
    WorkspaceWaitTimedOut,
)

log = logging.getLogger("strata")


# ---------------------------------------------------------------------
# predicates
# ---------------------------------------------------------------------
def matches_condition(obj: Optional[Unstructured], condition_type: str, condition_status: str) -> bool:
    if obj is None:
        return False
    try:
        conditions = obj.nested_slice("status", "conditions")
    except FieldTypeError:
        return False
    for c in conditions or []:
        if isinstance(c, dict) and c.get("type") == condition_type and c.get("status") == condition_status:
            return True
    return False


def matches_status_field(obj: Optional[Unstructured], field_path: List[str], expected: str) -> bool:
    if obj is None or not field_path:
        return False
    value = obj.nested_string(*field_path)
    return value is not None and value == expected


def is_ready(spec: ReadinessSpec, obj: Optional[Unstructured]) -> bool:
    if spec.uses_status_field_path:
        return matches_status_field(obj, spec.status_field_path, spec.status_value)
    return matches_condition(obj, spec.condition_type, spec.condition_status)


# ---------------------------------------------------------------------
# one-shot checks
# ---------------------------------------------------------------------
def wait_for_resource(
    client: ResourceClient,
    spec: ReadinessSpec,
    version: str,
    bus: Optional[EventBus] = None,
) -> List[Unstructured]:
    """
    Check every object *spec* identifies once.

    Returns the objects checked. Raises :class:`NotReadyError` naming the
    first unready object; a point lookup that finds nothing is not ready.
    """
    api_version = spec.api_version(version)

    if spec.name:
        try:
            obj = client.get(api_version, spec.kind, spec.name, spec.namespace or None)
        except NotFoundError as e:
            log.info("Resource %s/%s of type %s not found", spec.namespace, spec.name, spec.kind)
            raise NotReadyError(spec.kind, spec.name, spec.namespace, detail="not found") from e
        except CLIENT_ERRORS as e:
            log.info("Error getting resource %s/%s: %s", spec.namespace, spec.name, e)
            raise NotReadyError(spec.kind, spec.name, spec.namespace, detail=str(e)) from e
        items = [obj]
    else:
        selector = spec.label_selector.to_selector_string()
        try:
            items = client.list(api_version, spec.kind, spec.namespace or None, selector)
        except CLIENT_ERRORS as e:
            log.info("Error listing %s resources: %s", spec.kind, e)
            raise NotReadyError(spec.kind, selector, spec.namespace, detail=str(e)) from e

    for obj in items:
        ready = is_ready(spec, obj)
        if bus:
            bus.emit(ReadinessChecked(
                **bus.ctx,
                kind=spec.kind, name=obj.name, namespace=obj.namespace, ready=ready,
            ))
        if not ready:
            log.info(
                "Resource %s/%s of type %s is not ready yet",
                obj.namespace, obj.name, obj.kind or spec.kind,
            )
            raise NotReadyError(obj.kind or spec.kind, obj.name, obj.namespace)
    return items


def check_all(
    client: ResourceClient,
    specs: Iterable[ReadinessSpec],
    bus: Optional[EventBus] = None,
) -> None:
    """Run :func:`wait_for_resource` for every descriptor and listed version."""
    for spec in specs:
        log.info("Waiting for resource type: %s", spec.kind)
        for version in spec.versions:
            wait_for_resource(client, spec, version, bus)


# ---------------------------------------------------------------------
# bounded polling
# ---------------------------------------------------------------------
def poll_until_ready(
    observe: Callable[[], bool],
    *,
    what: str,
    kind: str,
    interval: float = 1.0,
    timeout: float = 15.0,
    deadline: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Call *observe* until it returns True, at most every *interval* seconds.

    Exceptions from *observe* count as "not ready yet". Raises
    :class:`ReadinessTimeoutError` after *timeout* seconds, or
    :class:`DeadlineExceededError` if the pass *deadline* (a ``clock()``
    value) passes first.
    """
    end = clock() + timeout
    while True:
        try:
            if observe():
                return
        except Exception as e:
            log.debug("%s %s not observed yet: %s", kind, what, e)

        now = clock()
        if deadline is not None and now >= deadline:
            raise DeadlineExceededError(f"deadline exceeded while waiting for {kind} {what}")
        if now >= end:
            raise ReadinessTimeoutError(kind, what, timeout)

        pause = min(interval, end - now)
        if deadline is not None:
            pause = min(pause, deadline - now)
        sleep(max(pause, 0.0))


def workspace_phase(client: ResourceClient, name: str) -> str:
    ws = client.get(WORKSPACE_API_VERSION, WORKSPACE_KIND, name)
    return ws.nested_string("status", "phase") or ""


def wait_for_workspace(
    parent: ResourceClient,
    name: str,
    *,
    interval: float = 1.0,
    timeout: float = 15.0,
    deadline: Optional[float] = None,
    bus: Optional[EventBus] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block until workspace *name* reports phase Ready in the *parent* scope."""
    if bus:
        bus.emit(WorkspaceWaitStarted(
            **bus.ctx, parent=parent.workspace_path, name=name, timeout_s=timeout,
        ))

    def observe() -> bool:
        phase = workspace_phase(parent, name)
        ready = phase == WORKSPACE_READY_PHASE
        log.info("waiting for workspace to be ready: workspace=%s phase=%s ready=%s", name, phase or "-", ready)
        return ready

    try:
        poll_until_ready(
            observe,
            what=name,
            kind=WORKSPACE_KIND,
            interval=interval,
            timeout=timeout,
            deadline=deadline,
            sleep=sleep,
            clock=clock,
        )
    except ReadinessTimeoutError:
        if bus:
            bus.emit(WorkspaceWaitTimedOut(
                **bus.ctx,
                parent=parent.workspace_path, name=name, timeout_s=timeout,
            ))
        raise

    if bus:
        bus.emit(WorkspaceReady(**bus.ctx, parent=parent.workspace_path, name=name))
