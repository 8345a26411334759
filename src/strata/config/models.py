# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/config/models.py

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    # instance YAML uses the control plane's camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------
# Readiness descriptors
# ---------------------------------------------------------------------
class LabelSelectorRequirement(_Model):
    key: str
    operator: Literal["In", "NotIn", "Exists", "DoesNotExist"]
    values: List[str] = Field(default_factory=list)


class LabelSelector(_Model):
    match_labels: Dict[str, str] = Field(default_factory=dict)
    match_expressions: List[LabelSelectorRequirement] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def to_selector_string(self) -> str:
        """
        Render the selector in the API server's query syntax, e.g.
        ``app=web,tier in (a,b),!legacy``.
        """
        parts = [f"{k}={v}" for k, v in sorted(self.match_labels.items())]
        for req in self.match_expressions:
            op = req.operator
            if op == "In":
                parts.append(f"{req.key} in ({','.join(req.values)})")
            elif op == "NotIn":
                parts.append(f"{req.key} notin ({','.join(req.values)})")
            elif op == "Exists":
                parts.append(req.key)
            elif op == "DoesNotExist":
                parts.append(f"!{req.key}")
            else:
                raise ValueError(f"unsupported label selector operator '{op}'")
        return ",".join(parts)


class ReadinessSpec(_Model):
    """
    What "ready" means for one resource class.

    Exactly one identification mode (``name`` or ``labelSelector``) and one
    readiness mode (conditions or ``statusFieldPath``) may be supplied.
    """

    group: str = ""
    versions: List[str] = Field(default_factory=lambda: ["v1"])
    kind: str
    namespace: str = ""
    name: str = ""
    label_selector: LabelSelector = Field(default_factory=LabelSelector)
    condition_type: str = ""
    condition_status: str = ""
    status_field_path: List[str] = Field(default_factory=list)
    status_value: str = ""

    @model_validator(mode="before")
    @classmethod
    def _lift_inline_selector(cls, data: Any) -> Any:
        # the selector may also be written inline on the descriptor
        if isinstance(data, dict) and ("matchLabels" in data or "matchExpressions" in data):
            data = dict(data)
            selector = dict(data.get("labelSelector") or {})
            for key in ("matchLabels", "matchExpressions"):
                if key in data:
                    selector[key] = data.pop(key)
            data["labelSelector"] = selector
        return data

    @model_validator(mode="after")
    def _check_modes(self) -> "ReadinessSpec":
        if self.name and not self.label_selector.is_empty():
            raise ValueError(
                f"{self.kind}: name and labelSelector are mutually exclusive"
            )
        if self.status_field_path:
            if self.condition_type or self.condition_status:
                raise ValueError(
                    f"{self.kind}: statusFieldPath cannot be combined with "
                    f"conditionType/conditionStatus"
                )
            if not self.status_value:
                raise ValueError(f"{self.kind}: statusValue is required with statusFieldPath")
        elif not self.condition_type:
            raise ValueError(
                f"{self.kind}: either conditionType or statusFieldPath must be set"
            )
        elif not self.condition_status:
            raise ValueError(f"{self.kind}: conditionStatus is required with conditionType")
        return self

    @property
    def uses_status_field_path(self) -> bool:
        return bool(self.status_field_path)

    def api_version(self, version: str) -> str:
        return f"{self.group}/{version}" if self.group else version


class WaitConfig(_Model):
    resource_types: List[ReadinessSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------
# Control plane declarations
# ---------------------------------------------------------------------
class WorkspaceTypeReference(_Model):
    name: str
    path: str = "root"


class WorkspaceDeclaration(_Model):
    path: str
    type: WorkspaceTypeReference


class DefaultAPIBindingConfiguration(_Model):
    workspace_type_path: str
    export: str
    path: str


class SecretReference(_Model):
    name: str
    namespace: str = ""


class WebhookRef(_Model):
    api_version: str = "admissionregistration.k8s.io/v1"
    kind: str = "MutatingWebhookConfiguration"
    name: str
    path: str


class WebhookConfiguration(_Model):
    secret_ref: SecretReference
    secret_data: str = "ca.crt"
    webhook_ref: WebhookRef
    # template value key the base64 CA bundle is published under
    template_key: Optional[str] = None


class ProviderConnection(_Model):
    """
    A kubeconfig secret written for one platform component.

    With ``apiExportName`` set (and no ``useAdminKubeconfig``) the secret
    carries a ServiceAccount token scoped to that export; otherwise it
    reuses the admin credentials pointed at the workspace, the endpoint
    slice URL or ``rawPath``.
    """

    secret: str
    path: str = ""
    raw_path: Optional[str] = None
    endpoint_slice_name: Optional[str] = None
    api_export_name: str = ""
    use_admin_kubeconfig: bool = False
    external: bool = False
    namespace: Optional[str] = None


class KcpSpec(_Model):
    extra_workspaces: List[WorkspaceDeclaration] = Field(default_factory=list)
    extra_default_api_bindings: List[DefaultAPIBindingConfiguration] = Field(
        default_factory=list, alias="extraDefaultAPIBindings"
    )
    webhook_configurations: List[WebhookConfiguration] = Field(default_factory=list)
    extra_webhook_configurations: List[WebhookConfiguration] = Field(default_factory=list)
    admin_secret_ref: Optional[SecretReference] = None
    provider_connections: List[ProviderConnection] = Field(default_factory=list)
    extra_provider_connections: List[ProviderConnection] = Field(default_factory=list)


class ExposureConfig(_Model):
    base_domain: str = ""
    port: int = 0
    protocol: str = ""


class FeatureToggle(_Model):
    name: str
    parameters: Dict[str, str] = Field(default_factory=dict)


class InstanceSpec(_Model):
    exposure: Optional[ExposureConfig] = None
    kcp: KcpSpec = Field(default_factory=KcpSpec)
    values: Dict[str, Any] = Field(default_factory=dict)
    feature_toggles: List[FeatureToggle] = Field(default_factory=list)
    wait: Optional[WaitConfig] = None


class KcpWorkspace(_Model):
    name: str
    phase: str


class InstanceStatus(_Model):
    kcp_workspaces: List[KcpWorkspace] = Field(default_factory=list)


class PlatformInstance(_Model):
    name: str
    namespace: str = "default"
    spec: InstanceSpec = Field(default_factory=InstanceSpec)
    status: InstanceStatus = Field(default_factory=InstanceStatus)

    @model_validator(mode="before")
    @classmethod
    def _flatten_metadata(cls, data: Any) -> Any:
        # accept a full resource document as well as the flat form
        if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
            data = dict(data)
            meta = data.pop("metadata")
            data.pop("apiVersion", None)
            data.pop("kind", None)
            data.setdefault("name", meta.get("name"))
            if meta.get("namespace"):
                data.setdefault("namespace", meta["namespace"])
        return data


# ---------------------------------------------------------------------
# Operator configuration
# ---------------------------------------------------------------------
class KcpConnection(_Model):
    url: Optional[str] = None
    namespace: str = "platform-mesh-system"
    cluster_admin_secret_name: str = "kcp-cluster-admin-client-cert"
    front_proxy_name: str = "frontproxy"
    root_shard_name: str = "root"
    front_proxy_port: str = "6443"
    root_path: str = "root"


class OperatorConfig(_Model):
    workspace_dir: Path = Path("/operator")
    field_owner: str = "platform-mesh-operator"
    verbose_diff: bool = False
    requeue_after_seconds: float = 5.0
    workspace_poll_interval_seconds: float = 1.0
    workspace_poll_timeout_seconds: float = 15.0
    # overall budget for one pass; unset means only the per-wait timeouts apply
    pass_timeout_seconds: Optional[float] = None
    provider_token_expiration_seconds: int = 86400
    kcp: KcpConnection = Field(default_factory=KcpConnection)

    @property
    def kcp_manifests_dir(self) -> Path:
        return self.workspace_dir / "manifests" / "kcp"

    @property
    def features_dir(self) -> Path:
        return self.workspace_dir / "manifests" / "features"
