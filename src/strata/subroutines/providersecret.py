# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/providersecret.py
"""
Kubeconfig secrets for the platform components that talk to the control
plane.

Each provider connection becomes one secret on the hosting cluster holding
a ``kubeconfig`` key. Connections naming an APIExport (or an endpoint
slice) get a scoped kubeconfig: a ServiceAccount in the export workspace
with RBAC derived from the export, and a token for it. The others reuse
the admin client certificate, re-pointed at the workspace path, the
endpoint slice URL or ``rawPath``.

Nothing is written until the root shard and the front proxy report
``Available``. A failing connection does not stop the others; the pass
reports all failures together and requeues.
"""

from __future__ import annotations

import base64
import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from ..config.defaults import (
    APIEXPORT_API_VERSION,
    APIEXPORT_ENDPOINT_SLICE_KIND,
    APIEXPORT_KIND,
    APIEXPORT_V2_API_VERSION,
    AVAILABLE_CONDITION,
    DEFAULT_PROVIDER_CONNECTIONS,
    FRONT_PROXY_KIND,
    KCP_OPERATOR_API_VERSION,
    PLATFORM_NAMESPACE,
    PROVIDER_SECRET_KEY,
    ROOT_SHARD_KIND,
    SCOPED_SA_NAMESPACE,
)
from ..config.models import PlatformInstance, ProviderConnection
from ..errors import (
    ConnectivityError,
    NotFoundError,
    NotReadyError,
    ProviderSecretError,
    StrataError,
)
from ..inventory.assemblers import InventoryCache
from ..kube.client import CLIENT_ERRORS, ClientFactory
from ..kube.kubeconfig import (
    dump_kubeconfig,
    join_url,
    provider_host_port,
    provider_kubeconfig,
    rbac_from_api_export,
    scoped_rbac_objects,
    scoped_server_url,
    service_account_name,
    url_base,
)
from ..manifest.document import FieldTypeError, Unstructured
from ..observers.events import ProviderSecretFailed, ProviderSecretWritten
from ..readiness.gate import matches_condition
from .base import OperatorContext, Result, connect, error_result

log = logging.getLogger("strata")


def provider_connections(instance: PlatformInstance) -> List[ProviderConnection]:
    """Declared connections (or the built-in ones) plus the extras."""
    kcp = instance.spec.kcp
    base = kcp.provider_connections or DEFAULT_PROVIDER_CONNECTIONS
    return list(base) + list(kcp.extra_provider_connections)


class ProviderSecretSubroutine:
    name = "ProvidersecretSubroutine"

    def __init__(self, ctx: OperatorContext):
        self.ctx = ctx

    def finalize(self, instance: PlatformInstance) -> Result:
        return Result()

    def process(self, instance: PlatformInstance, cache: Optional[InventoryCache] = None) -> Result:
        ctx = self.ctx
        requeue = ctx.config.requeue_after_seconds
        if ctx.infra is None:
            raise StrataError("provider secret subroutine needs a hosting cluster client")

        try:
            self.check_control_plane()
        except NotReadyError as e:
            log.info("%s", e)
            return error_result(e, requeue)

        factory, early = connect(ctx, instance)
        if early is not None:
            return early
        try:
            admin = ctx.admin_credentials(instance)
        except NotFoundError:
            log.info("KCP admin secret not found yet, retry in %gs", requeue)
            return Result(requeue_after=requeue)
        except StrataError as e:
            return error_result(e, requeue)

        bus = ctx.bus
        failures: List[Tuple[str, BaseException]] = []
        for pc in provider_connections(instance):
            try:
                self.handle(instance, factory, admin, pc)
            except (StrataError, FieldTypeError) + CLIENT_ERRORS as e:
                log.error("Failed to handle provider connection %s: %s", pc.secret, e)
                bus.emit(ProviderSecretFailed(**bus.ctx, secret=pc.secret, error=str(e)))
                failures.append((pc.secret, e))

        if failures:
            return error_result(ProviderSecretError(failures), requeue)
        return Result()

    # ------------------------------------------------------------------
    # gates
    # ------------------------------------------------------------------
    def check_control_plane(self) -> None:
        """Raise :class:`NotReadyError` unless the root shard and front proxy are available."""
        conn = self.ctx.config.kcp
        for kind, name in ((ROOT_SHARD_KIND, conn.root_shard_name), (FRONT_PROXY_KIND, conn.front_proxy_name)):
            try:
                obj = self.ctx.infra.get(KCP_OPERATOR_API_VERSION, kind, name, conn.namespace)
            except CLIENT_ERRORS as e:
                raise NotReadyError(kind, name, conn.namespace, detail=str(e)) from e
            if not matches_condition(obj, AVAILABLE_CONDITION, "True"):
                raise NotReadyError(kind, name, conn.namespace)

    # ------------------------------------------------------------------
    # one connection
    # ------------------------------------------------------------------
    def handle(
        self,
        instance: PlatformInstance,
        factory: ClientFactory,
        admin: Dict[str, bytes],
        pc: ProviderConnection,
    ) -> Unstructured:
        """Write the secret for *pc*; returns the applied Secret."""
        host_port = provider_host_port(self.ctx.config.kcp, instance, pc.external)
        if host_port is None and not pc.use_admin_kubeconfig:
            raise ConnectivityError(
                f"scoped kubeconfig requested for {pc.secret} but no base URL is configured"
            )
        namespace = pc.namespace or PLATFORM_NAMESPACE

        if pc.endpoint_slice_name:
            client = factory.for_workspace(pc.path)
            try:
                eps = client.get(APIEXPORT_API_VERSION, APIEXPORT_ENDPOINT_SLICE_KIND, pc.endpoint_slice_name)
            except NotFoundError as e:
                raise NotReadyError(
                    APIEXPORT_ENDPOINT_SLICE_KIND, pc.endpoint_slice_name, detail=f"not found in {pc.path}"
                ) from e
            endpoints = eps.nested_slice("status", "apiExportEndpoints") or []
            if not endpoints:
                raise NotReadyError(
                    APIEXPORT_ENDPOINT_SLICE_KIND, pc.endpoint_slice_name, detail="no endpoints in slice"
                )
            if not pc.use_admin_kubeconfig:
                export = pc.api_export_name or pc.endpoint_slice_name
                return self.write_scoped(factory, pc, export, host_port, admin, namespace)
            first = endpoints[0] if isinstance(endpoints[0], dict) else {}
            path = urlsplit(str(first.get("url", ""))).path
        elif pc.api_export_name and not pc.use_admin_kubeconfig:
            return self.write_scoped(factory, pc, pc.api_export_name, host_port, admin, namespace)
        else:
            path = pc.raw_path or f"/clusters/{pc.path}"

        server = join_url(host_port or url_base(self.ctx.kcp_server(instance)), path)
        kubeconfig = provider_kubeconfig(
            server,
            ca_data=admin.get("ca.crt", b""),
            cert_data=admin.get("tls.crt"),
            key_data=admin.get("tls.key"),
        )
        return self.write_secret(pc.secret, namespace, kubeconfig, server, scoped=False)

    def write_scoped(
        self,
        factory: ClientFactory,
        pc: ProviderConnection,
        export_name: str,
        host_port: str,
        admin: Dict[str, bytes],
        namespace: str,
    ) -> Unstructured:
        if not pc.path:
            raise StrataError(f"scoped kubeconfig for {pc.secret} requires the export workspace path")

        client = factory.for_workspace(pc.path)
        try:
            export = client.get(APIEXPORT_V2_API_VERSION, APIEXPORT_KIND, export_name)
        except NotFoundError as e:
            raise NotReadyError(APIEXPORT_KIND, export_name, detail=f"not found in {pc.path}") from e

        provider_key = f"{export.name}-{pc.secret}" if export.name else pc.secret
        for obj in scoped_rbac_objects(provider_key, rbac_from_api_export(export)):
            client.apply(obj, self.ctx.config.field_owner)

        token = client.create_token(
            SCOPED_SA_NAMESPACE,
            service_account_name(provider_key),
            self.ctx.config.provider_token_expiration_seconds,
        )
        server = scoped_server_url(host_port, pc.path)
        kubeconfig = provider_kubeconfig(server, ca_data=admin.get("ca.crt", b""), token=token)
        return self.write_secret(pc.secret, namespace, kubeconfig, server, scoped=True)

    def write_secret(self, name: str, namespace: str, kubeconfig: dict, server: str, scoped: bool) -> Unstructured:
        secret = Unstructured.new("v1", "Secret", name, namespace)
        secret.set_nested("Opaque", "type")
        secret.set_nested(
            {PROVIDER_SECRET_KEY: base64.b64encode(dump_kubeconfig(kubeconfig)).decode("ascii")},
            "data",
        )
        applied = self.ctx.infra.apply(secret, self.ctx.config.field_owner)

        log.info("Created or updated provider secret %s/%s (%s)", namespace, name, "scoped" if scoped else "admin")
        bus = self.ctx.bus
        bus.emit(ProviderSecretWritten(**bus.ctx, secret=name, namespace=namespace, server=server, scoped=scoped))
        return applied
