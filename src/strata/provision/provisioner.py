# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/provision/provisioner.py
"""
Hierarchical provisioner.

Walks a manifest source tree parent-first. At every workspace node all
manifests are rendered, materialized and applied (only when the live object
drifted). Manifest failures do not stop the remaining manifests of the node,
but the first one fails the node and therefore the pass. Before descending
into a child workspace the provisioner blocks until the child reports phase
``Ready`` in its parent scope; a timeout aborts the pass.

The traversal uses an explicit stack so deep trees never grow the call
stack.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from ..config.defaults import (
    ROOT_WORKSPACE,
    WORKSPACE_API_VERSION,
    WORKSPACE_KIND,
    WORKSPACE_SEPARATOR,
)
from ..config.models import DefaultAPIBindingConfiguration, WorkspaceDeclaration
from ..errors import ApplyError, NotFoundError, StrataError
from ..kube.client import CLIENT_ERRORS, ClientFactory, ResourceClient
from ..manifest.compare import compare
from ..manifest.document import Unstructured
from ..manifest.materializer import (
    NO_OP,
    is_disabled_content_configuration,
    materialize_file,
)
from ..manifest.template import TemplateRenderer
from ..observers.dispatcher import EventBus
from ..observers.events import (
    DriftDetected,
    ExtraWorkspaceApplied,
    ExtraWorkspaceSkipped,
    ManifestApplied,
    ManifestFailed,
    ManifestSkipped,
    ManifestUnchanged,
)
from ..readiness.gate import wait_for_workspace
from .tree import WorkspaceNode

log = logging.getLogger("strata")

APPLIED = "applied"
UNCHANGED = "unchanged"
SKIPPED = "skipped"


@dataclass
class ProvisionContext:
    """Everything one provisioning pass reads. Never mutated by the pass."""

    clients: ClientFactory
    values: Mapping[str, Any] = field(default_factory=dict)
    field_owner: str = "platform-mesh-operator"
    bindings: Sequence[DefaultAPIBindingConfiguration] = ()
    verbose_diff: bool = False
    poll_interval: float = 1.0
    poll_timeout: float = 15.0
    deadline: Optional[float] = None
    bus: EventBus = field(default_factory=EventBus)
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic


@dataclass
class _Frame:
    node: WorkspaceNode
    values: Mapping[str, Any]
    parent: Optional[str] = None  # parent workspace path; None for the start node


class HierarchicalProvisioner:
    def __init__(self, ctx: ProvisionContext):
        self.ctx = ctx

    # ------------------------------------------------------------------
    # single manifest
    # ------------------------------------------------------------------
    def apply_manifest(
        self,
        client: ResourceClient,
        path: Path,
        values: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Render, materialize and (if drifted) apply one manifest file.

        Returns ``"applied"``, ``"unchanged"`` or ``"skipped"``.
        """
        ctx = self.ctx
        bus = ctx.bus
        values = ctx.values if values is None else values
        ws = client.workspace_path

        obj = materialize_file(
            path,
            values,
            workspace_path=ws,
            bindings=ctx.bindings,
            renderer=ctx.renderer,
        )
        if obj is NO_OP:
            log.debug("Manifest %s rendered empty, skipping", path)
            bus.emit(ManifestSkipped(**bus.ctx, path=str(path), workspace=ws, reason="empty"))
            return SKIPPED

        if is_disabled_content_configuration(obj, values):
            log.debug(
                "Skipping ContentConfiguration %s due to disabled content configurations",
                obj.name,
            )
            bus.emit(ManifestSkipped(
                **bus.ctx, path=str(path), workspace=ws, reason="content configurations disabled",
            ))
            return SKIPPED

        try:
            live: Optional[Unstructured] = client.get(
                obj.api_version, obj.kind, obj.name, obj.namespace or None
            )
        except NotFoundError:
            live = None
        except CLIENT_ERRORS as e:
            raise ApplyError(str(path), obj.kind, obj.name, e) from e

        if live is not None:
            result = compare(live, obj, verbose=ctx.verbose_diff)
            if not result.needs_write:
                log.debug("Manifest %s (%s) unchanged", path, obj.identity())
                bus.emit(ManifestUnchanged(
                    **bus.ctx, path=str(path), workspace=ws, kind=obj.kind, name=obj.name,
                ))
                return UNCHANGED
            bus.emit(DriftDetected(
                **bus.ctx, workspace=ws, kind=obj.kind, name=obj.name, diff=result.diff,
            ))

        try:
            client.apply(obj, ctx.field_owner)
        except CLIENT_ERRORS as e:
            raise ApplyError(str(path), obj.kind, obj.name, e) from e

        log.info("Applied manifest file %s (%s/%s) in %s", path, obj.kind, obj.name, ws)
        bus.emit(ManifestApplied(
            **bus.ctx, path=str(path), workspace=ws, kind=obj.kind, name=obj.name,
        ))
        return APPLIED

    # ------------------------------------------------------------------
    # one node
    # ------------------------------------------------------------------
    def apply_node(
        self,
        client: ResourceClient,
        node: WorkspaceNode,
        values: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Exception]:
        """
        Attempt every manifest of *node*; return the first failure, if any.
        """
        first: Optional[Exception] = None
        bus = self.ctx.bus
        for path in node.manifests:
            log.debug("Applying file %s", path)
            try:
                self.apply_manifest(client, path, values)
            except (StrataError, OSError) as e:
                log.warning(
                    "Failed to apply manifest file %s, continuing to next file in directory: %s",
                    path, e,
                )
                bus.emit(ManifestFailed(**bus.ctx, path=str(path), workspace=node.path, error=str(e)))
                if first is None:
                    first = e
        return first

    # ------------------------------------------------------------------
    # whole tree
    # ------------------------------------------------------------------
    def apply_dir_structure(self, directory: Path, root_path: str = ROOT_WORKSPACE) -> List[str]:
        """
        Provision the tree under *directory* starting at workspace *root_path*.

        Returns the workspace paths visited, in order. Raises the first
        manifest failure of a node, or the readiness error of a child
        workspace, and stops there.
        """
        ctx = self.ctx
        visited: List[str] = []
        stack = [_Frame(WorkspaceNode.load(directory, root_path), ctx.values)]

        while stack:
            frame = stack.pop()
            node = frame.node

            if frame.parent is not None:
                name = node.path.rsplit(WORKSPACE_SEPARATOR, 1)[-1]
                wait_for_workspace(
                    ctx.clients.for_workspace(frame.parent),
                    name,
                    interval=ctx.poll_interval,
                    timeout=ctx.poll_timeout,
                    deadline=ctx.deadline,
                    bus=ctx.bus,
                    sleep=ctx.sleep,
                    clock=ctx.clock,
                )

            client = ctx.clients.for_workspace(node.path)
            err = self.apply_node(client, node, frame.values)
            visited.append(node.path)
            if err is not None:
                raise err

            # reversed so the first child is processed first
            for dir_name in reversed(node.children):
                stack.append(_Frame(node.child(dir_name), frame.values, parent=node.path))

        return visited

    # ------------------------------------------------------------------
    # declared workspaces outside the tree
    # ------------------------------------------------------------------
    def apply_extra_workspaces(self, declarations: Iterable[WorkspaceDeclaration]) -> List[str]:
        """
        Server-side-apply a bare Workspace for each declaration under its parent.

        Returns the applied paths. Declarations without a separator are
        skipped with a warning.
        """
        ctx = self.ctx
        bus = ctx.bus
        applied: List[str] = []

        for decl in declarations:
            parent, sep, name = decl.path.rpartition(WORKSPACE_SEPARATOR)
            if not sep or not parent or not name:
                log.warning("Invalid extra workspace path %r, skipping", decl.path)
                bus.emit(ExtraWorkspaceSkipped(**bus.ctx, path=decl.path, reason="no parent path"))
                continue

            ws = Unstructured.new(WORKSPACE_API_VERSION, WORKSPACE_KIND, name)
            ws.set_nested({"name": decl.type.name, "path": decl.type.path}, "spec", "type")

            client = ctx.clients.for_workspace(parent)
            try:
                client.apply(ws, ctx.field_owner)
            except CLIENT_ERRORS as e:
                raise ApplyError(decl.path, WORKSPACE_KIND, name, e) from e

            log.info("Applied extra workspace %s (type %s:%s)", decl.path, decl.type.path, decl.type.name)
            bus.emit(ExtraWorkspaceApplied(
                **bus.ctx, parent=parent, name=name, type=f"{decl.type.path}:{decl.type.name}",
            ))
            applied.append(decl.path)

        return applied
