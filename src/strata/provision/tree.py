# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/provision/tree.py
"""
Manifest source tree layout.

A directory is a workspace. Files directly inside it are the manifests for
that workspace; subdirectories named ``NN-name`` (two digits, a dash, then
``[A-Za-z0-9-]+``) are child workspaces called ``name``::

    kcp/
      00-apiexports.yaml          -> applied in root
      01-platform-mesh-system/    -> root:platform-mesh-system
        workspace-type.yaml
      02-orgs/                    -> root:orgs
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from ..config.defaults import WORKSPACE_SEPARATOR

WORKSPACE_DIR_RE = re.compile(r"^[0-9]{2}-[A-Za-z0-9-]+$")
_WORKSPACE_NAME_RE = re.compile(r"[0-9]{2}-([A-Za-z0-9-]+)$")


def is_workspace_dir(name: str) -> bool:
    return bool(WORKSPACE_DIR_RE.match(name))


def workspace_name(dir_name: str) -> str:
    """``01-platform-mesh-system`` -> ``platform-mesh-system``."""
    m = _WORKSPACE_NAME_RE.search(Path(dir_name).name)
    if not m:
        raise ValueError(f"invalid workspace name: {dir_name}")
    return m.group(1)


def list_manifests(directory: Path) -> List[Path]:
    """Regular files directly in *directory*, in lexical order."""
    return sorted(p for p in Path(directory).iterdir() if p.is_file())


def child_workspace_dirs(directory: Path) -> List[Path]:
    return sorted(
        p for p in Path(directory).iterdir() if p.is_dir() and is_workspace_dir(p.name)
    )


def join_path(parent: str, name: str) -> str:
    return f"{parent}{WORKSPACE_SEPARATOR}{name}"


@dataclass
class WorkspaceNode:
    path: str
    directory: Path
    manifests: List[Path] = field(default_factory=list)
    children: List[str] = field(default_factory=list)

    @classmethod
    def load(cls, directory: Path, path: str) -> "WorkspaceNode":
        directory = Path(directory)
        return cls(
            path=path,
            directory=directory,
            manifests=list_manifests(directory),
            children=[d.name for d in child_workspace_dirs(directory)],
        )

    def child(self, dir_name: str) -> "WorkspaceNode":
        return WorkspaceNode.load(self.directory / dir_name, join_path(self.path, workspace_name(dir_name)))


def walk(directory: Path, root_path: str) -> List[WorkspaceNode]:
    """All nodes below *directory*, parents before children."""
    nodes: List[WorkspaceNode] = []
    stack = [WorkspaceNode.load(directory, root_path)]
    while stack:
        node = stack.pop()
        nodes.append(node)
        stack.extend(node.child(d) for d in reversed(node.children))
    return nodes
