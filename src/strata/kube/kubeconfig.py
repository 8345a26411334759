# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/kube/kubeconfig.py
"""
Kubeconfig documents handed to platform components.

A provider secret carries either the admin client certificate pointed at a
workspace path, or a ServiceAccount token whose permissions are derived
from an APIExport (a scoped kubeconfig).
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import yaml

from ..config.defaults import (
    EXTERNAL_KCP_HOST_PREFIX,
    SCOPED_NAME_PREFIX,
    SCOPED_SA_NAMESPACE,
    WORKSPACE_ACCESS_BINDING_PREFIX,
    WORKSPACE_ACCESS_ROLE,
)
from ..config.models import KcpConnection, PlatformInstance
from ..manifest.document import Unstructured
from .client import internal_kcp_host

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
RBAC_GROUP = "rbac.authorization.k8s.io"
STATUS_VERBS = ["get", "update", "patch"]
READ_VERBS = ["get", "list", "watch"]
WRITE_VERBS = {"*", "update", "patch"}


# ---------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------
def join_url(base: str, path: str) -> str:
    """``https://kcp:6443/`` + ``/clusters/root`` -> ``https://kcp:6443/clusters/root``."""
    if not path:
        return base.rstrip("/")
    return base.rstrip("/") + "/" + path.lstrip("/")


def url_base(url: str) -> str:
    """Scheme and authority only; a bare host gets ``https://``."""
    if "://" not in url:
        url = "https://" + url
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def scoped_server_url(host_port: str, workspace_path: str) -> str:
    return join_url(host_port, f"clusters/{workspace_path}")


def provider_host_port(
    conn: KcpConnection,
    instance: Optional[PlatformInstance],
    external: bool,
) -> Optional[str]:
    """
    Base URL written into a provider kubeconfig.

    External connections use the exposed API host ``kcp.api.<baseDomain>``
    (port 443 unless the exposure names one). Everything else goes through
    the in-cluster front proxy. ``None`` when neither is configured.
    """
    exposure = instance.spec.exposure if instance else None
    if external and exposure is not None and exposure.base_domain:
        if ":" in exposure.base_domain:
            return f"https://{EXTERNAL_KCP_HOST_PREFIX}{exposure.base_domain}"
        return f"https://{EXTERNAL_KCP_HOST_PREFIX}{exposure.base_domain}:{exposure.port or 443}"
    if conn.front_proxy_name:
        return internal_kcp_host(conn)
    return None


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------
def provider_kubeconfig(
    server: str,
    *,
    ca_data: bytes = b"",
    token: Optional[str] = None,
    cert_data: Optional[bytes] = None,
    key_data: Optional[bytes] = None,
) -> Dict[str, Any]:
    def b64(raw: bytes) -> str:
        return base64.b64encode(raw).decode("ascii")

    cluster: Dict[str, Any] = {"server": server}
    if ca_data:
        cluster["certificate-authority-data"] = b64(ca_data)

    user: Dict[str, Any] = {}
    if token:
        user["token"] = token
    if cert_data:
        user["client-certificate-data"] = b64(cert_data)
    if key_data:
        user["client-key-data"] = b64(key_data)

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "default-cluster", "cluster": cluster}],
        "users": [{"name": "default-auth", "user": user}],
        "contexts": [
            {"name": "default-context", "context": {"cluster": "default-cluster", "user": "default-auth"}}
        ],
        "current-context": "default-context",
    }


def dump_kubeconfig(kubeconfig: Dict[str, Any]) -> bytes:
    return yaml.safe_dump(kubeconfig, sort_keys=False).encode("utf-8")


# ---------------------------------------------------------------------
# RBAC for scoped kubeconfigs
# ---------------------------------------------------------------------
def rbac_from_api_export(export: Unstructured) -> List[Dict[str, Any]]:
    """
    Policy rules a provider needs to serve *export*.

    Full access to every exported resource, the claimed verbs on every
    permission claim (``*`` when none are listed), status write access where
    the resource is writable, access to the export's virtual workspace
    content, read access to endpoint slices and bindings, and discovery.
    """
    rules: List[Dict[str, Any]] = []

    for res in export.nested_slice("spec", "resources") or []:
        group, resource = res.get("group", ""), res.get("name", "")
        rules.append({"apiGroups": [group], "resources": [resource], "verbs": ["*"]})
        rules.append({"apiGroups": [group], "resources": [f"{resource}/status"], "verbs": list(STATUS_VERBS)})

    for claim in export.nested_slice("spec", "permissionClaims") or []:
        group, resource = claim.get("group", ""), claim.get("resource", "")
        verbs = list(claim.get("verbs") or ["*"])
        rules.append({"apiGroups": [group], "resources": [resource], "verbs": verbs})
        if WRITE_VERBS.intersection(verbs):
            rules.append({"apiGroups": [group], "resources": [f"{resource}/status"], "verbs": list(STATUS_VERBS)})

    if export.name:
        rules.append({
            "apiGroups": ["apis.kcp.io"],
            "resources": ["apiexports/content"],
            "resourceNames": [export.name],
            "verbs": ["*"],
        })
    rules.append({"apiGroups": ["apis.kcp.io"], "resources": ["apiexportendpointslices"], "verbs": list(READ_VERBS)})
    rules.append({"apiGroups": ["apis.kcp.io"], "resources": ["apibindings"], "verbs": list(READ_VERBS)})
    rules.append({
        "nonResourceURLs": ["/api", "/api/*", "/apis", "/apis/*", "/clusters/*"],
        "verbs": ["get"],
    })
    return rules


def sanitize_provider_key(key: str) -> str:
    return key.replace("_", "-").replace(" ", "-")


def service_account_name(provider_key: str) -> str:
    return SCOPED_NAME_PREFIX + sanitize_provider_key(provider_key)


def scoped_rbac_objects(provider_key: str, rules: List[Dict[str, Any]]) -> List[Unstructured]:
    """
    ServiceAccount, ClusterRole and the two ClusterRoleBindings of a provider.

    The second binding grants the control plane's workspace access role so
    the content authorizer admits the ServiceAccount before local RBAC runs.
    """
    key = sanitize_provider_key(provider_key)
    sa_name = service_account_name(provider_key)
    role_name = SCOPED_NAME_PREFIX + key
    subject = {"kind": "ServiceAccount", "namespace": SCOPED_SA_NAMESPACE, "name": sa_name}

    sa = Unstructured.new("v1", "ServiceAccount", sa_name, SCOPED_SA_NAMESPACE)

    role = Unstructured.new(RBAC_API_VERSION, "ClusterRole", role_name)
    role.set_nested(rules, "rules")

    def binding(name: str, role_ref: str) -> Unstructured:
        crb = Unstructured.new(RBAC_API_VERSION, "ClusterRoleBinding", name)
        crb.set_nested({"apiGroup": RBAC_GROUP, "kind": "ClusterRole", "name": role_ref}, "roleRef")
        crb.set_nested([dict(subject)], "subjects")
        return crb

    return [
        sa,
        role,
        binding(role_name, role_name),
        binding(WORKSPACE_ACCESS_BINDING_PREFIX + key, WORKSPACE_ACCESS_ROLE),
    ]
