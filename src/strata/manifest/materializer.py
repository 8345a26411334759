# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/manifest/materializer.py
"""
Turn rendered manifest text into a resource document.

A manifest that renders to nothing (typically one whose whole body sits in
an ``{{ if }}`` block that is switched off) materializes to :data:`NO_OP`.
Callers must check for it before applying.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml

from ..config.defaults import (
    CONTENT_CONFIGURATION_API_VERSION,
    CONTENT_CONFIGURATION_KIND,
    DISABLE_CONTENT_CONFIGURATIONS_KEY,
    WORKSPACE_API_VERSION,
    WORKSPACE_SEPARATOR,
    WORKSPACE_TYPE_KIND,
)
from ..config.models import DefaultAPIBindingConfiguration
from ..errors import ManifestParseError
from .document import Unstructured
from .template import TemplateRenderer, render_template

log = logging.getLogger("strata")


class _NoOp:
    _instance: Optional["_NoOp"] = None

    def __new__(cls) -> "_NoOp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_OP"


NO_OP = _NoOp()

Materialized = Union[Unstructured, _NoOp]


def parse_manifest(rendered: str | bytes, path: str | Path = "<memory>") -> Materialized:
    """Parse one rendered manifest into a document, or :data:`NO_OP` if empty."""
    if isinstance(rendered, bytes):
        try:
            rendered = rendered.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ManifestParseError(
                str(path), "", f"not valid UTF-8 ({e.reason} at byte {e.start})"
            ) from e
    try:
        data = yaml.safe_load(rendered)
    except yaml.YAMLError as e:
        raise ManifestParseError(str(path), rendered, str(e)) from e

    if data is None:
        return NO_OP
    if not isinstance(data, dict):
        raise ManifestParseError(
            str(path), rendered, f"expected a mapping, got {type(data).__name__}"
        )
    return Unstructured(data)


def inject_default_api_bindings(
    obj: Unstructured,
    workspace_path: str,
    bindings: Iterable[DefaultAPIBindingConfiguration],
) -> int:
    """
    Append configured default API bindings to a WorkspaceType.

    Only bindings whose ``workspaceTypePath`` is exactly
    ``"<workspace_path>:<object name>"`` are appended, in input order.
    Returns the number of entries appended.
    """
    if obj.kind != WORKSPACE_TYPE_KIND or obj.api_version != WORKSPACE_API_VERSION:
        return 0

    target = f"{workspace_path}{WORKSPACE_SEPARATOR}{obj.name}"
    extra = [b for b in bindings if b.workspace_type_path == target]
    if not extra:
        return 0

    current = obj.nested("spec", "defaultAPIBindings")
    if not isinstance(current, list):
        current = []
    for b in extra:
        current.append({"path": b.path, "export": b.export})
    obj.set_nested(current, "spec", "defaultAPIBindings")

    log.debug("Injected %d default API binding(s) into %s", len(extra), target)
    return len(extra)


def is_disabled_content_configuration(obj: Unstructured, values: Mapping[str, Any]) -> bool:
    return (
        obj.kind == CONTENT_CONFIGURATION_KIND
        and obj.api_version == CONTENT_CONFIGURATION_API_VERSION
        and str(values.get(DISABLE_CONTENT_CONFIGURATIONS_KEY, "")).lower() == "true"
    )


def materialize(
    text: str | bytes,
    values: Mapping[str, Any],
    *,
    path: str | Path = "<memory>",
    workspace_path: str = "",
    bindings: Iterable[DefaultAPIBindingConfiguration] = (),
    renderer: Optional[TemplateRenderer] = None,
) -> Materialized:
    """Render, parse and post-process a manifest for *workspace_path*."""
    if renderer is not None:
        rendered = renderer.render(text, values, name=str(path))
    else:
        rendered = render_template(values, text, name=str(path))

    obj = parse_manifest(rendered, path)
    if obj is NO_OP:
        return NO_OP

    log.debug(
        "Materialized %s from %s (namespace=%s)",
        obj.identity(), path, obj.namespace or "-",
    )
    inject_default_api_bindings(obj, workspace_path, bindings)
    return obj


def materialize_file(
    path: Path,
    values: Mapping[str, Any],
    *,
    workspace_path: str = "",
    bindings: Iterable[DefaultAPIBindingConfiguration] = (),
    renderer: Optional[TemplateRenderer] = None,
) -> Materialized:
    return materialize(
        Path(path).read_bytes(),
        values,
        path=path,
        workspace_path=workspace_path,
        bindings=bindings,
        renderer=renderer,
    )
