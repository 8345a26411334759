# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/manifest/document.py
"""
Generic resource document.

Resources arrive as arbitrary trees of maps, lists and scalars (any CRD is
possible), so the document keeps the raw tree but only hands it out through
path based accessors that check the type found at the end of the path.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional

_MISSING = object()


class FieldTypeError(TypeError):
    """Raised when a path resolves to a value of an unexpected type."""


class Unstructured:
    __slots__ = ("object",)

    def __init__(self, obj: Optional[Dict[str, Any]] = None):
        self.object: Dict[str, Any] = obj if obj is not None else {}

    @classmethod
    def new(
        cls,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> "Unstructured":
        meta: Dict[str, Any] = {"name": name}
        if namespace:
            meta["namespace"] = namespace
        return cls({"apiVersion": api_version, "kind": kind, "metadata": meta})

    # ------------------------------------------------------------------
    # path accessors
    # ------------------------------------------------------------------
    def nested(self, *path: str, default: Any = None) -> Any:
        node: Any = self.object
        for key in path:
            if not isinstance(node, Mapping) or key not in node:
                return default
            node = node[key]
        return node

    def nested_string(self, *path: str) -> Optional[str]:
        """String at *path*, or None when missing or not a string."""
        value = self.nested(*path, default=_MISSING)
        if isinstance(value, str):
            return value
        return None

    def nested_slice(self, *path: str) -> Optional[List[Any]]:
        value = self.nested(*path, default=_MISSING)
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, list):
            raise FieldTypeError(f".{'.'.join(path)} is {type(value).__name__}, not a list")
        return value

    def nested_map(self, *path: str) -> Optional[Dict[str, Any]]:
        value = self.nested(*path, default=_MISSING)
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, dict):
            raise FieldTypeError(f".{'.'.join(path)} is {type(value).__name__}, not a map")
        return value

    def set_nested(self, value: Any, *path: str) -> None:
        if not path:
            raise ValueError("empty field path")
        node = self.object
        for key in path[:-1]:
            child = node.get(key)
            if child is None:
                child = node[key] = {}
            elif not isinstance(child, dict):
                raise FieldTypeError(f"cannot descend into {key}: {type(child).__name__}")
            node = child
        node[path[-1]] = value

    def remove_nested(self, *path: str) -> None:
        parent = self.nested(*path[:-1]) if len(path) > 1 else self.object
        if isinstance(parent, dict):
            parent.pop(path[-1], None)

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------
    @property
    def api_version(self) -> str:
        return self.nested_string("apiVersion") or ""

    @property
    def kind(self) -> str:
        return self.nested_string("kind") or ""

    @property
    def name(self) -> str:
        return self.nested_string("metadata", "name") or ""

    @property
    def namespace(self) -> str:
        return self.nested_string("metadata", "namespace") or ""

    @property
    def labels(self) -> Dict[str, str]:
        return self.nested_map("metadata", "labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.nested_map("metadata", "annotations") or {}

    def identity(self) -> str:
        where = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.kind}/{where}"

    # ------------------------------------------------------------------
    def deep_copy(self) -> "Unstructured":
        return Unstructured(copy.deepcopy(self.object))

    def to_dict(self) -> Dict[str, Any]:
        return self.object

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Unstructured):
            return NotImplemented
        return self.object == other.object

    def __repr__(self) -> str:
        return f"Unstructured({self.identity()})"

