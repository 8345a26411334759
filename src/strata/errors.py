# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


class StrataError(RuntimeError):
    """Base class for provisioning failures."""

    # "not ready yet" conditions: the caller should requeue with a short delay
    retryable: bool = False


# ---------------------------------------------------------------------
# Templating / materialization
# ---------------------------------------------------------------------
class TemplateError(StrataError):
    """Raised when a manifest template cannot be rendered."""


class TemplateParseError(TemplateError):
    """Raised when the template text is not syntactically valid."""


class TemplateExecutionError(TemplateError):
    """Raised when rendering references a value that is not available."""


class ManifestParseError(StrataError):
    def __init__(self, path: str, output: str, reason: str):
        self.path = path
        self.output = output
        super().__init__(
            f"Failed to unmarshal YAML from template {path}: {reason}. Output:\n{output}"
        )


# ---------------------------------------------------------------------
# Cluster access
# ---------------------------------------------------------------------
class ConnectivityError(StrataError):
    """Raised when a scoped client or kubeconfig cannot be built."""

    retryable = True


class KubeApiError(StrataError):
    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class NotFoundError(KubeApiError):
    def __init__(self, kind: str, name: str, namespace: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found", status=404)


class ApplyError(StrataError):
    def __init__(self, path: str, kind: str, name: str, cause: BaseException):
        self.path = path
        self.kind = kind
        self.name = name
        self.cause = cause
        # transport failures and unreachable servers stay retryable once wrapped
        self.retryable = getattr(cause, "retryable", not isinstance(cause, StrataError))
        super().__init__(f"Failed to apply manifest file: {path} ({kind}/{name}): {cause}")


# ---------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------
class NotReadyError(StrataError):
    retryable = True

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None, detail: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace or ""
        msg = f"resource {self.namespace}/{name} of type {kind} is not ready yet"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ReadinessTimeoutError(NotReadyError, TimeoutError):
    def __init__(self, kind: str, name: str, timeout_s: float, namespace: Optional[str] = None):
        self.timeout_s = timeout_s
        super().__init__(kind, name, namespace)
        self.args = (f"{kind} {name} did not become ready within {timeout_s:g}s",)


class DeadlineExceededError(StrataError, TimeoutError):
    """Raised when the enclosing pass deadline expires during a wait."""


# ---------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------
class InventoryError(StrataError):
    def __init__(self, message: str, partial: Optional[Dict[str, Any]] = None):
        self.partial: Dict[str, Any] = dict(partial or {})
        super().__init__(message)


# ---------------------------------------------------------------------
# Provider connections
# ---------------------------------------------------------------------
class ProviderSecretError(StrataError):
    """One or more provider kubeconfig secrets could not be written."""

    retryable = True

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = list(failures)
        detail = "; ".join(f"{secret}: {err}" for secret, err in self.failures)
        super().__init__(f"provider connection(s) failed: {detail}")
