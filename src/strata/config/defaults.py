# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/config/defaults.py
"""
Built-in defaults used when the instance does not declare its own.
"""

from __future__ import annotations

from typing import Dict, List

from .models import (
    LabelSelector,
    LabelSelectorRequirement,
    ProviderConnection,
    ReadinessSpec,
    SecretReference,
    WaitConfig,
    WebhookConfiguration,
    WebhookRef,
)

ROOT_WORKSPACE = "root"
WORKSPACE_SEPARATOR = ":"

# exposure
DEFAULT_BASE_DOMAIN = "portal.localhost"
DEFAULT_PORT = 8443
DEFAULT_PROTOCOL = "https"

# exports whose identity hashes are published as template values, in lookup order
EXPORT_HASH_KEYS: Dict[str, str] = {
    "tenancy.kcp.io": "ApiExportRootTenancyKcpIoIdentityHash",
    "shards.core.kcp.io": "ApiExportRootShardsKcpIoIdentityHash",
    "topology.kcp.io": "ApiExportRootTopologyKcpIoIdentityHash",
}
WELL_KNOWN_EXPORTS: List[str] = list(EXPORT_HASH_KEYS)

# workspace objects
WORKSPACE_API_VERSION = "tenancy.kcp.io/v1alpha1"
WORKSPACE_KIND = "Workspace"
WORKSPACE_TYPE_KIND = "WorkspaceType"
WORKSPACE_READY_PHASE = "Ready"

APIEXPORT_API_VERSION = "apis.kcp.io/v1alpha1"
APIEXPORT_KIND = "APIExport"

CONTENT_CONFIGURATION_API_VERSION = "ui.platform-mesh.io/v1alpha1"
CONTENT_CONFIGURATION_KIND = "ContentConfiguration"
DISABLE_CONTENT_CONFIGURATIONS_KEY = "featureDisableContentConfigurations"
DISABLE_CONTENT_CONFIGURATIONS_TOGGLE = "feature-disable-contentconfigurations"

# webhook CA material
PLATFORM_NAMESPACE = "platform-mesh-system"
PLATFORM_WORKSPACE = "root:platform-mesh-system"
DEFAULT_CA_SECRET_KEY = "ca.crt"

IAM_WEBHOOK_SECRET_NAME = "rebac-authz-webhook-cert"

DEFAULT_WEBHOOK_CONFIGURATIONS: List[WebhookConfiguration] = [
    WebhookConfiguration(
        secret_ref=SecretReference(
            name="account-operator-webhook-server-cert",
            namespace=PLATFORM_NAMESPACE,
        ),
        secret_data=DEFAULT_CA_SECRET_KEY,
        webhook_ref=WebhookRef(
            kind="MutatingWebhookConfiguration",
            name="account-operator.webhooks.core.platform-mesh.io",
            path=PLATFORM_WORKSPACE,
        ),
        template_key="accountOperatorMutatingWebhookCA",
    ),
    WebhookConfiguration(
        secret_ref=SecretReference(
            name="account-operator-webhook-server-cert",
            namespace=PLATFORM_NAMESPACE,
        ),
        secret_data=DEFAULT_CA_SECRET_KEY,
        webhook_ref=WebhookRef(
            kind="ValidatingWebhookConfiguration",
            name="organization-validator.webhooks.core.platform-mesh.io",
            path=PLATFORM_WORKSPACE,
        ),
        template_key="accountOperatorValidatingWebhookCA",
    ),
    WebhookConfiguration(
        secret_ref=SecretReference(
            name="security-operator-ca-secret",
            namespace=PLATFORM_NAMESPACE,
        ),
        secret_data=DEFAULT_CA_SECRET_KEY,
        webhook_ref=WebhookRef(
            kind="ValidatingWebhookConfiguration",
            name="identityproviderconfiguration-validator.webhooks.core.platform-mesh.io",
            path=PLATFORM_WORKSPACE,
        ),
        template_key="identityProviderValidatingWebhookCA",
    ),
]


def _helm_release_ready(release: str) -> ReadinessSpec:
    return ReadinessSpec(
        group="helm.toolkit.fluxcd.io",
        versions=["v2"],
        kind="HelmRelease",
        namespace="default",
        label_selector=LabelSelector(
            match_expressions=[
                LabelSelectorRequirement(
                    key="helm.toolkit.fluxcd.io/name",
                    operator="In",
                    values=[release],
                )
            ]
        ),
        condition_type="Ready",
        condition_status="True",
    )


DEFAULT_WAIT_CONFIG = WaitConfig(
    resource_types=[
        _helm_release_ready("platform-mesh-operator-components"),
        _helm_release_ready("platform-mesh-operator-infra-components"),
    ]
)

KNOWN_FEATURE_TOGGLES: List[str] = [
    "feature-enable-getting-started",
    "feature-enable-iam",
    "feature-enable-marketplace",
]

# kcp-operator objects gating provider secrets
KCP_OPERATOR_API_VERSION = "operator.kcp.io/v1alpha1"
ROOT_SHARD_KIND = "RootShard"
FRONT_PROXY_KIND = "FrontProxy"
AVAILABLE_CONDITION = "Available"

# provider kubeconfig secrets
APIEXPORT_V2_API_VERSION = "apis.kcp.io/v1alpha2"
APIEXPORT_ENDPOINT_SLICE_KIND = "APIExportEndpointSlice"
PROVIDER_SECRET_KEY = "kubeconfig"
SCOPED_SA_NAMESPACE = "default"
SCOPED_NAME_PREFIX = "platform-mesh-provider-"
WORKSPACE_ACCESS_BINDING_PREFIX = "platform-mesh-workspace-access-"
WORKSPACE_ACCESS_ROLE = "system:kcp:workspace:access"
EXTERNAL_KCP_HOST_PREFIX = "kcp.api."


def _provider(secret: str, path: str = PLATFORM_WORKSPACE, **kw) -> ProviderConnection:
    return ProviderConnection(secret=secret, path=path, **kw)


DEFAULT_PROVIDER_CONNECTIONS: List[ProviderConnection] = [
    _provider("account-operator-kubeconfig"),
    _provider("rebac-authz-webhook-kubeconfig"),
    _provider("security-operator-kubeconfig"),
    _provider("kubernetes-grapqhl-gateway-kubeconfig", endpoint_slice_name="core.platform-mesh.io"),
    _provider("extension-manager-operator-kubeconfig"),
    _provider("iam-service-kubeconfig"),
    _provider("portal-kubeconfig", path="", raw_path="/services/contentconfigurations"),
    _provider("security-initializer-kubeconfig", path=ROOT_WORKSPACE),
    _provider("security-terminator-kubeconfig", path=ROOT_WORKSPACE),
]

# organization authentication; a placeholder audience means setup has not finished
WORKSPACE_AUTH_CONFIG_KIND = "WorkspaceAuthenticationConfiguration"
WORKSPACE_AUTH_CONFIG_NAME = "orgs-authentication"
AUDIENCE_PLACEHOLDER = "<placeholder>"
