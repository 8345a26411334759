# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/base.py
"""
Entry points driven by the external reconciliation scheduler.

Every subroutine exposes ``process(instance)`` and ``finalize(instance)``
and answers with a :class:`Result`: an optional requeue delay plus an
optional error. Retryable errors ("not ready yet") come back with the short
configured requeue delay so the scheduler retries quickly instead of
escalating.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Sequence, Tuple

from ..config.models import OperatorConfig, PlatformInstance
from ..errors import NotFoundError, StrataError
from ..inventory.assemblers import InventoryCache
from ..kube.client import (
    ClientFactory,
    KcpClientFactory,
    ResourceClient,
    SecretReader,
    TRANSPORT_ERRORS,
    external_kcp_host,
)
from ..observers.dispatcher import EventBus
from ..observers.events import PassFinished, PassStarted

log = logging.getLogger("strata")


@dataclass(frozen=True)
class Result:
    requeue_after: Optional[float] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.requeue_after is None


@dataclass
class OperatorContext:
    """Collaborators and configuration shared by all subroutines."""

    config: OperatorConfig
    secrets: SecretReader
    infra: Optional[ResourceClient] = None     # hosting cluster, for readiness checks
    kcp_clients: Optional[ClientFactory] = None  # set to bypass the admin secret
    bus: EventBus = field(default_factory=EventBus)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def admin_secret_location(self, instance: PlatformInstance) -> Tuple[str, str]:
        conn = self.config.kcp
        ref = instance.spec.kcp.admin_secret_ref
        if ref is None:
            return conn.cluster_admin_secret_name, conn.namespace
        return ref.name, ref.namespace or conn.namespace

    def admin_credentials(self, instance: PlatformInstance) -> Dict[str, bytes]:
        """Data of the control-plane admin client certificate secret."""
        name, namespace = self.admin_secret_location(instance)
        return self.secrets.read_secret(name, namespace)

    def kcp_server(self, instance: PlatformInstance) -> str:
        return external_kcp_host(instance, self.config.kcp)

    def kcp_client_factory(self, instance: PlatformInstance) -> ClientFactory:
        if self.kcp_clients is not None:
            return self.kcp_clients
        name, namespace = self.admin_secret_location(instance)
        return KcpClientFactory.from_admin_secret(
            self.secrets,
            self.config.kcp,
            self.kcp_server(instance),
            secret_name=name,
            secret_namespace=namespace,
        )

    def deadline(self) -> Optional[float]:
        timeout = self.config.pass_timeout_seconds
        return self.clock() + timeout if timeout else None


class Subroutine(Protocol):
    name: str

    def process(self, instance: PlatformInstance, cache: Optional[InventoryCache] = None) -> Result: ...

    def finalize(self, instance: PlatformInstance) -> Result: ...


def error_result(err: BaseException, requeue_after: float) -> Result:
    if getattr(err, "retryable", False):
        return Result(requeue_after=requeue_after, error=err)
    return Result(error=err)


def connect(ctx: OperatorContext, instance: PlatformInstance) -> tuple[Optional[ClientFactory], Optional[Result]]:
    """
    Workspace client factory for *instance*.

    A missing admin secret is expected while the control plane comes up and
    yields a plain requeue instead of an error.
    """
    requeue = ctx.config.requeue_after_seconds
    try:
        return ctx.kcp_client_factory(instance), None
    except NotFoundError:
        log.info(
            "KCP admin secret %s not found yet, retry in %gs",
            ctx.config.kcp.cluster_admin_secret_name, requeue,
        )
        return None, Result(requeue_after=requeue)
    except StrataError as e:
        log.error("Failed to build kcp client: %s", e)
        return None, error_result(e, requeue)


def process_all(
    subroutines: Sequence[Subroutine],
    instance: PlatformInstance,
    bus: Optional[EventBus] = None,
) -> Result:
    """
    Run subroutines in order with one shared inventory cache.

    Stops at the first result that is not ok and returns it.
    """
    bus = bus or EventBus()
    cache = InventoryCache()
    for sub in subroutines:
        bus.emit(PassStarted(**bus.ctx, instance=instance.name, subroutine=sub.name))
        try:
            res = sub.process(instance, cache)
        except (StrataError,) + TRANSPORT_ERRORS as e:
            # subroutines translate their own errors; this is a last resort
            log.error("%s failed: %s", sub.name, e)
            res = Result(error=e)
        bus.emit(PassFinished(
            **bus.ctx,
            instance=instance.name,
            subroutine=sub.name,
            ok=res.ok,
            requeue_after=res.requeue_after,
            error=str(res.error) if res.error else None,
        ))
        if not res.ok:
            return res
    return Result()


def finalize_all(subroutines: Sequence[Subroutine], instance: PlatformInstance) -> Result:
    for sub in reversed(list(subroutines)):
        res = sub.finalize(instance)
        if not res.ok:
            return res
    return Result()
