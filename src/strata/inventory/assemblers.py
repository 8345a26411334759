# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/inventory/assemblers.py
"""
Template values computed from live cluster state.

* export identity hashes (``ApiExportRoot...IdentityHash``) read from the
  root workspace,
* webhook CA bundles read from secrets and base64 encoded,
* exposure values (base domain, protocol, port, ``domain:port``).

Expensive lookups go through an :class:`InventoryCache` that lives for one
provisioning pass.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from ..config.defaults import (
    APIEXPORT_API_VERSION,
    APIEXPORT_KIND,
    DEFAULT_BASE_DOMAIN,
    DEFAULT_PORT,
    DEFAULT_PROTOCOL,
    DEFAULT_WEBHOOK_CONFIGURATIONS,
    DISABLE_CONTENT_CONFIGURATIONS_KEY,
    DISABLE_CONTENT_CONFIGURATIONS_TOGGLE,
    EXPORT_HASH_KEYS,
    IAM_WEBHOOK_SECRET_NAME,
    WELL_KNOWN_EXPORTS,
)
from ..config.models import PlatformInstance, WebhookConfiguration
from ..errors import InventoryError, NotFoundError
from ..kube.client import CLIENT_ERRORS, ResourceClient, SecretReader
from ..observers.dispatcher import EventBus
from ..observers.events import InventoryAssembled, InventoryFailed

log = logging.getLogger("strata")


class InventoryCache:
    """
    Memo for one provisioning pass.

    Each key is computed once and then only read. Not safe to share between
    concurrent passes.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        if key not in self._data:
            self._data[key] = compute()
        return self._data[key]


# ---------------------------------------------------------------------
# export identity hashes
# ---------------------------------------------------------------------
def export_hash_key(export: str) -> str:
    key = EXPORT_HASH_KEYS.get(export)
    if key:
        return key
    camel = "".join(p[:1].upper() + p[1:] for p in export.split("."))
    return f"ApiExportRoot{camel}IdentityHash"


def export_identity_hashes(
    root: ResourceClient,
    exports: Iterable[str] = WELL_KNOWN_EXPORTS,
    cache: Optional[InventoryCache] = None,
) -> Dict[str, str]:
    """
    Read ``status.identityHash`` of each export in the root workspace.

    Stops at the first failure with an :class:`InventoryError` whose
    ``partial`` holds the hashes read so far.
    """
    exports = list(exports)

    def compute() -> Dict[str, str]:
        hashes: Dict[str, str] = {}
        for name in exports:
            try:
                export = root.get(APIEXPORT_API_VERSION, APIEXPORT_KIND, name)
            except CLIENT_ERRORS as e:
                raise InventoryError(f"Failed to get APIExport {name}: {e}", partial=hashes) from e
            identity = export.nested_string("status", "identityHash")
            if not identity:
                raise InventoryError(f"APIExport {name} has no identity hash yet", partial=hashes)
            hashes[export_hash_key(name)] = identity
        return hashes

    if cache is None:
        return compute()
    return dict(cache.get_or_compute("exportHashes:" + ",".join(exports), compute))


# ---------------------------------------------------------------------
# CA bundles
# ---------------------------------------------------------------------
def webhook_configurations(instance: PlatformInstance) -> List[WebhookConfiguration]:
    """Declared webhook configurations (or the built-in ones) plus the extras."""
    kcp = instance.spec.kcp
    base = kcp.webhook_configurations or DEFAULT_WEBHOOK_CONFIGURATIONS
    return list(base) + list(kcp.extra_webhook_configurations)


def read_ca(
    secrets: SecretReader,
    config: WebhookConfiguration,
    cache: Optional[InventoryCache] = None,
) -> bytes:
    ref = config.secret_ref

    def compute() -> bytes:
        data = secrets.read_secret(ref.name, ref.namespace)
        value = data.get(config.secret_data)
        if not value:
            raise InventoryError(
                f"secret {ref.namespace}/{ref.name} has no key {config.secret_data!r}"
            )
        return value

    if cache is None:
        return compute()
    return cache.get_or_compute(f"ca:{ref.namespace}/{ref.name}/{config.secret_data}", compute)


def ca_bundle_values(
    secrets: SecretReader,
    configs: Iterable[WebhookConfiguration],
    cache: Optional[InventoryCache] = None,
) -> Dict[str, str]:
    """Base64 CA bundles keyed by each descriptor's template key."""
    configs = [c for c in configs if c.template_key]

    def compute() -> Dict[str, str]:
        values: Dict[str, str] = {}
        for cfg in configs:
            try:
                raw = read_ca(secrets, cfg, cache)
            except CLIENT_ERRORS as e:
                raise InventoryError(
                    f"Failed to read CA for {cfg.template_key}: {e}", partial=values
                ) from e
            except InventoryError as e:
                raise InventoryError(str(e), partial=values) from e
            values[cfg.template_key] = base64.b64encode(raw).decode("ascii")
        return values

    if cache is None:
        return compute()
    return dict(cache.get_or_compute("caBundles", compute))


def iam_webhook_ca(secrets: SecretReader, namespace: str, cache: Optional[InventoryCache] = None) -> str:
    """Base64 CA of the authorization webhook; empty if the secret does not exist yet."""

    def compute() -> str:
        try:
            data = secrets.read_secret(IAM_WEBHOOK_SECRET_NAME, namespace)
        except NotFoundError:
            return ""
        except CLIENT_ERRORS as e:
            raise InventoryError(f"Failed to get secret {IAM_WEBHOOK_SECRET_NAME}: {e}") from e
        return base64.b64encode(data.get("ca.crt", b"")).decode("ascii")

    if cache is None:
        return compute()
    return cache.get_or_compute(f"iamWebhookCA:{namespace}", compute)


# ---------------------------------------------------------------------
# exposure
# ---------------------------------------------------------------------
def base_domain_port_protocol(instance: Optional[PlatformInstance]) -> Tuple[str, str, int, str]:
    """``(baseDomain, baseDomainPort, port, protocol)`` with defaults applied."""
    base_domain, port, protocol = DEFAULT_BASE_DOMAIN, DEFAULT_PORT, DEFAULT_PROTOCOL

    exposure = instance.spec.exposure if instance else None
    if exposure is not None:
        port = exposure.port or port
        base_domain = exposure.base_domain or base_domain
        protocol = exposure.protocol or protocol

    if port in (80, 443):
        base_domain_port = base_domain
    else:
        base_domain_port = f"{base_domain}:{port}"
    return base_domain, base_domain_port, port, protocol


def exposure_values(instance: Optional[PlatformInstance]) -> Dict[str, str]:
    base_domain, base_domain_port, port, protocol = base_domain_port_protocol(instance)
    return {
        "baseDomain": base_domain,
        "baseDomainPort": base_domain_port,
        "port": str(port),
        "protocol": protocol,
    }


# ---------------------------------------------------------------------
# full value set
# ---------------------------------------------------------------------
def _flatten(values: Dict[str, Any]) -> Iterator[Tuple[str, Any]]:
    for k, v in values.items():
        if isinstance(v, bool):
            yield k, "true" if v else "false"
        else:
            yield k, v


def content_configurations_disabled(instance: PlatformInstance) -> bool:
    return any(t.name == DISABLE_CONTENT_CONFIGURATIONS_TOGGLE for t in instance.spec.feature_toggles)


def assemble_template_values(
    instance: PlatformInstance,
    root: ResourceClient,
    secrets: SecretReader,
    cache: InventoryCache,
    bus: Optional[EventBus] = None,
    *,
    include_exports: bool = True,
    include_ca_bundles: bool = True,
) -> Dict[str, Any]:
    """
    Build the template value set for one pass.

    ``spec.values`` entries come first and computed values override them.
    """
    values: Dict[str, Any] = dict(_flatten(instance.spec.values))
    computed: Dict[str, Any] = {}
    try:
        computed.update(exposure_values(instance))
        computed["helmReleaseNamespace"] = instance.namespace
        computed["iamWebhookCA"] = iam_webhook_ca(secrets, instance.namespace, cache)
        if content_configurations_disabled(instance):
            computed[DISABLE_CONTENT_CONFIGURATIONS_KEY] = "true"
        if include_exports:
            computed.update(export_identity_hashes(root, cache=cache))
        if include_ca_bundles:
            computed.update(ca_bundle_values(secrets, webhook_configurations(instance), cache))
    except InventoryError as e:
        log.error("Failed to assemble template values: %s (partial: %s)", e, sorted(e.partial))
        if bus:
            bus.emit(InventoryFailed(**bus.ctx, error=str(e), partial_keys=sorted(e.partial)))
        raise

    values.update(computed)
    values.setdefault(DISABLE_CONTENT_CONFIGURATIONS_KEY, "false")

    log.debug("Assembled template values: %s", sorted(values))
    if bus:
        bus.emit(InventoryAssembled(**bus.ctx, keys=sorted(values)))
    return values
