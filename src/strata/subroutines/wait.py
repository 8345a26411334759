# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/wait.py

from __future__ import annotations

import logging
from typing import Optional

from ..config.defaults import (
    AUDIENCE_PLACEHOLDER,
    DEFAULT_WAIT_CONFIG,
    WORKSPACE_API_VERSION,
    WORKSPACE_AUTH_CONFIG_KIND,
    WORKSPACE_AUTH_CONFIG_NAME,
)
from ..config.models import PlatformInstance
from ..errors import NotReadyError, StrataError
from ..inventory.assemblers import InventoryCache
from ..kube.client import CLIENT_ERRORS, ResourceClient
from ..manifest.document import FieldTypeError
from ..readiness.gate import check_all
from .base import OperatorContext, Result, connect, error_result

log = logging.getLogger("strata")


class WaitSubroutine:
    """Hold the instance back until its dependent releases/resources report ready."""

    name = "WaitSubroutine"

    def __init__(self, ctx: OperatorContext):
        self.ctx = ctx

    def finalize(self, instance: PlatformInstance) -> Result:
        return Result()

    def process(self, instance: PlatformInstance, cache: Optional[InventoryCache] = None) -> Result:
        if self.ctx.infra is None:
            raise StrataError("wait subroutine needs a hosting cluster client")
        requeue = self.ctx.config.requeue_after_seconds

        if instance.spec.wait is not None:
            log.info("Using custom WaitConfig")
            wait = instance.spec.wait
        else:
            log.info("No WaitConfig specified, using defaults")
            wait = DEFAULT_WAIT_CONFIG

        try:
            check_all(self.ctx.infra, wait.resource_types, self.ctx.bus)
        except NotReadyError as e:
            return error_result(e, requeue)

        factory, early = connect(self.ctx, instance)
        if early is not None:
            return early
        try:
            check_authentication_audience(factory.for_workspace(self.ctx.config.kcp.root_path))
        except NotReadyError as e:
            log.info("%s, triggering reconcile", e)
            return error_result(e, requeue)
        return Result()


def check_authentication_audience(root: ResourceClient) -> None:
    """
    Raise :class:`NotReadyError` while the organization authentication
    configuration still carries the placeholder audience, or cannot be read.
    """
    kind, name = WORKSPACE_AUTH_CONFIG_KIND, WORKSPACE_AUTH_CONFIG_NAME
    try:
        wac = root.get(WORKSPACE_API_VERSION, kind, name)
    except CLIENT_ERRORS as e:
        raise NotReadyError(kind, name, detail=str(e)) from e

    try:
        jwt = wac.nested_slice("spec", "jwt")
    except FieldTypeError as e:
        raise NotReadyError(kind, name, detail=str(e)) from e
    if not jwt:
        raise NotReadyError(kind, name, detail="no spec.jwt entries")

    issuer = jwt[0].get("issuer") if isinstance(jwt[0], dict) else None
    audiences = issuer.get("audiences") if isinstance(issuer, dict) else None
    if not isinstance(audiences, list):
        raise NotReadyError(kind, name, detail="spec.jwt[0].issuer.audiences not found")

    if AUDIENCE_PLACEHOLDER in audiences:
        raise NotReadyError(kind, name, detail=f"audience is still {AUDIENCE_PLACEHOLDER}")
