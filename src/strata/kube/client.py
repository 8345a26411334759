# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/kube/client.py
"""
Cluster access.

Three collaborators are used by the engine and all of them are protocols so
tests can hand in in-memory fakes:

* :class:`ResourceClient` - get/list/patch/apply for generic documents and
  ServiceAccount tokens, scoped either to the hosting cluster or to one
  control-plane workspace.
* :class:`ClientFactory` - builds a :class:`ResourceClient` for a workspace
  path such as ``root:orgs``.
* :class:`SecretReader` - reads secret data from the hosting cluster.

The concrete implementations sit on the official ``kubernetes`` client and
its dynamic client.
"""

from __future__ import annotations

import base64
import copy
import logging
from typing import Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlsplit

from kubernetes import client as k8s
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError

from ..config.models import ExposureConfig, KcpConnection, PlatformInstance
from ..errors import ConnectivityError, KubeApiError, NotFoundError
from ..manifest.document import Unstructured

log = logging.getLogger("strata")

MERGE_PATCH = "application/merge-patch+json"

ADMIN_SECRET_KEYS = ("ca.crt", "tls.crt", "tls.key")

# raised underneath the API client when the server cannot be reached
TRANSPORT_ERRORS = (HTTPError, OSError)

# everything a client call may fail with
CLIENT_ERRORS = (KubeApiError, ConnectivityError) + TRANSPORT_ERRORS


# ---------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------
class ResourceClient(Protocol):
    workspace_path: str

    def get(
        self, api_version: str, kind: str, name: str, namespace: Optional[str] = None
    ) -> Unstructured: ...

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: str = "",
    ) -> List[Unstructured]: ...

    def apply(self, obj: Unstructured, field_manager: str) -> Unstructured: ...

    def patch(
        self,
        api_version: str,
        kind: str,
        name: str,
        body: dict,
        namespace: Optional[str] = None,
    ) -> Unstructured: ...

    def create_token(self, namespace: str, service_account: str, expiration_seconds: int) -> str: ...


class ClientFactory(Protocol):
    def for_workspace(self, workspace_path: str) -> ResourceClient: ...


class SecretReader(Protocol):
    def read_secret(self, name: str, namespace: str) -> Dict[str, bytes]: ...


# ---------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------
def scoped_host(host: str, workspace_path: str) -> str:
    """``https://kcp:6443/any/path`` -> ``https://kcp:6443/clusters/<workspace_path>``."""
    parts = urlsplit(host)
    if not parts.scheme or not parts.netloc:
        raise ConnectivityError(f"Unable to parse kcp host: {host}")
    return f"{parts.scheme}://{parts.netloc}/clusters/{workspace_path}"


def internal_kcp_host(conn: KcpConnection) -> str:
    return f"https://{conn.front_proxy_name}-front-proxy.{conn.namespace}:{conn.front_proxy_port}"


def external_kcp_host(instance: Optional[PlatformInstance], conn: KcpConnection) -> str:
    """
    URL the control plane is reached on.

    An explicit ``kcp.url`` wins, then the instance exposure, then the
    in-cluster front proxy service.
    """
    if conn.url:
        return conn.url
    exposure: Optional[ExposureConfig] = instance.spec.exposure if instance else None
    if exposure is None:
        return internal_kcp_host(conn)
    return f"{exposure.protocol}://{exposure.base_domain}:{exposure.port}"


# ---------------------------------------------------------------------
# Admin kubeconfig
# ---------------------------------------------------------------------
def admin_kubeconfig(secret_data: Mapping[str, bytes], server: str, secret_name: str = "") -> dict:
    """Build a kubeconfig document from the control-plane admin client certificate."""
    for key in ADMIN_SECRET_KEYS:
        if not secret_data.get(key):
            raise ConnectivityError(f"secret {secret_name} missing or empty key {key!r}")

    def b64(key: str) -> str:
        return base64.b64encode(secret_data[key]).decode("ascii")

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {"name": "kcp", "cluster": {"server": server, "certificate-authority-data": b64("ca.crt")}}
        ],
        "users": [
            {
                "name": "admin",
                "user": {
                    "client-certificate-data": b64("tls.crt"),
                    "client-key-data": b64("tls.key"),
                },
            }
        ],
        "contexts": [{"name": "admin", "context": {"cluster": "kcp", "user": "admin"}}],
        "current-context": "admin",
    }


def configuration_from_kubeconfig(kubeconfig: dict) -> k8s.Configuration:
    cfg = k8s.Configuration()
    try:
        k8s_config.load_kube_config_from_dict(kubeconfig, client_configuration=cfg)
    except ConfigException as e:
        raise ConnectivityError(f"Failed to build config from kubeconfig: {e}") from e
    return cfg


def load_host_configuration(kube_context: Optional[str] = None) -> k8s.Configuration:
    """Configuration for the hosting cluster: in-cluster first, then kubeconfig."""
    cfg = k8s.Configuration()
    try:
        k8s_config.load_incluster_config(client_configuration=cfg)
        return cfg
    except ConfigException:
        log.debug("Not running in-cluster, falling back to kubeconfig")
    try:
        k8s_config.load_kube_config(context=kube_context, client_configuration=cfg)
    except (ConfigException, OSError) as e:
        raise ConnectivityError(f"unable to load kubeconfig: {e}") from e
    return cfg


# ---------------------------------------------------------------------
# Dynamic client implementation
# ---------------------------------------------------------------------
def _translate(e: ApiException, kind: str, name: str, namespace: Optional[str]) -> KubeApiError:
    if e.status == 404:
        return NotFoundError(kind, name, namespace)
    return KubeApiError(f"{kind} {name}: {e.reason}", status=e.status)


def _unreachable(host: str, e: BaseException) -> ConnectivityError:
    return ConnectivityError(f"unable to reach {host}: {e}")


class KubernetesResourceClient:
    def __init__(self, configuration: k8s.Configuration, workspace_path: str = ""):
        self.workspace_path = workspace_path
        self._configuration = configuration
        self._api_client: Optional[k8s.ApiClient] = None
        self._dynamic: Optional[DynamicClient] = None

    @property
    def api_client(self) -> k8s.ApiClient:
        if self._api_client is None:
            self._api_client = k8s.ApiClient(configuration=self._configuration)
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        # discovery runs on construction, so defer it to first use
        if self._dynamic is None:
            try:
                self._dynamic = DynamicClient(self.api_client)
            except ApiException as e:
                raise ConnectivityError(
                    f"unable to create client for {self._configuration.host}: {e.reason}"
                ) from e
            except TRANSPORT_ERRORS as e:
                raise _unreachable(self._configuration.host, e) from e
        return self._dynamic

    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise KubeApiError(f"no resource {kind} in {api_version}: {e}") from e
        except ApiException as e:
            raise _translate(e, kind, "", None) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e

    def get(self, api_version, kind, name, namespace=None) -> Unstructured:
        res = self._resource(api_version, kind)
        ns = namespace if res.namespaced else None
        try:
            obj = self.dynamic.get(res, name=name, namespace=ns)
        except ApiException as e:
            raise _translate(e, kind, name, ns) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e
        return Unstructured(obj.to_dict())

    def list(self, api_version, kind, namespace=None, label_selector="") -> List[Unstructured]:
        res = self._resource(api_version, kind)
        kwargs = {}
        if res.namespaced and namespace:
            kwargs["namespace"] = namespace
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            result = self.dynamic.get(res, **kwargs)
        except ApiException as e:
            raise _translate(e, kind, "", namespace) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e
        return [Unstructured(item) for item in result.to_dict().get("items", [])]

    def apply(self, obj: Unstructured, field_manager: str) -> Unstructured:
        res = self._resource(obj.api_version, obj.kind)
        ns = obj.namespace if res.namespaced else None
        try:
            applied = self.dynamic.server_side_apply(
                res,
                body=obj.to_dict(),
                name=obj.name,
                namespace=ns,
                field_manager=field_manager,
            )
        except ApiException as e:
            raise _translate(e, obj.kind, obj.name, ns) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e
        return Unstructured(applied.to_dict())

    def patch(self, api_version, kind, name, body, namespace=None) -> Unstructured:
        res = self._resource(api_version, kind)
        ns = namespace if res.namespaced else None
        try:
            patched = self.dynamic.patch(
                res, body=body, name=name, namespace=ns, content_type=MERGE_PATCH
            )
        except ApiException as e:
            raise _translate(e, kind, name, ns) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e
        return Unstructured(patched.to_dict())

    def create_token(self, namespace: str, service_account: str, expiration_seconds: int) -> str:
        """Issue a bound token for a ServiceAccount through the TokenRequest API."""
        body = k8s.AuthenticationV1TokenRequest(
            spec=k8s.V1TokenRequestSpec(audiences=[], expiration_seconds=expiration_seconds)
        )
        try:
            issued = k8s.CoreV1Api(self.api_client).create_namespaced_service_account_token(
                name=service_account, namespace=namespace, body=body
            )
        except ApiException as e:
            raise _translate(e, "ServiceAccount", service_account, namespace) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self._configuration.host, e) from e
        return issued.status.token


class KcpClientFactory:
    """Hands out workspace scoped clients sharing one admin configuration."""

    def __init__(self, configuration: k8s.Configuration):
        self._configuration = configuration
        self._clients: Dict[str, KubernetesResourceClient] = {}

    @classmethod
    def from_admin_secret(
        cls,
        secrets: SecretReader,
        conn: KcpConnection,
        server: str,
        secret_name: Optional[str] = None,
        secret_namespace: Optional[str] = None,
    ) -> "KcpClientFactory":
        name = secret_name or conn.cluster_admin_secret_name
        namespace = secret_namespace or conn.namespace
        data = secrets.read_secret(name, namespace)
        return cls(configuration_from_kubeconfig(admin_kubeconfig(data, server, name)))

    def for_workspace(self, workspace_path: str) -> KubernetesResourceClient:
        client = self._clients.get(workspace_path)
        if client is None:
            cfg = copy.deepcopy(self._configuration)
            cfg.host = scoped_host(self._configuration.host, workspace_path)
            client = KubernetesResourceClient(cfg, workspace_path)
            self._clients[workspace_path] = client
        return client


class KubernetesSecretReader:
    def __init__(self, configuration: Optional[k8s.Configuration] = None):
        api_client = k8s.ApiClient(configuration=configuration) if configuration else k8s.ApiClient()
        self.core = k8s.CoreV1Api(api_client)

    def read_secret(self, name: str, namespace: str) -> Dict[str, bytes]:
        try:
            secret = self.core.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            raise _translate(e, "Secret", name, namespace) from e
        except TRANSPORT_ERRORS as e:
            raise _unreachable(self.core.api_client.configuration.host, e) from e
        return {k: base64.b64decode(v) for k, v in (secret.data or {}).items()}
