# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/kcpsetup.py

from __future__ import annotations

import logging
from typing import List, Optional

from ..config.defaults import WORKSPACE_READY_PHASE, WORKSPACE_SEPARATOR
from ..config.models import KcpWorkspace, PlatformInstance
from ..errors import StrataError
from ..inventory.assemblers import InventoryCache, assemble_template_values
from ..provision.provisioner import HierarchicalProvisioner, ProvisionContext
from .base import OperatorContext, Result, connect, error_result

log = logging.getLogger("strata")


class KcpSetupSubroutine:
    """
    Provision the control-plane workspace tree for an instance.

    Assembles the template values (export hashes, CA bundles, exposure),
    walks ``<workspaceDir>/manifests/kcp`` from the root workspace, then
    applies the instance's extra workspaces.
    """

    name = "KcpsetupSubroutine"

    def __init__(self, ctx: OperatorContext):
        self.ctx = ctx

    def finalize(self, instance: PlatformInstance) -> Result:
        return Result()

    def process(self, instance: PlatformInstance, cache: Optional[InventoryCache] = None) -> Result:
        ctx = self.ctx
        cfg = ctx.config
        log.debug("Processing instance %s/%s", instance.namespace, instance.name)

        factory, early = connect(ctx, instance)
        if early is not None:
            return early

        cache = cache if cache is not None else InventoryCache()
        try:
            values = assemble_template_values(
                instance,
                factory.for_workspace(cfg.kcp.root_path),
                ctx.secrets,
                cache,
                ctx.bus,
            )
            provisioner = HierarchicalProvisioner(ProvisionContext(
                clients=factory,
                values=values,
                field_owner=cfg.field_owner,
                bindings=instance.spec.kcp.extra_default_api_bindings,
                verbose_diff=cfg.verbose_diff,
                poll_interval=cfg.workspace_poll_interval_seconds,
                poll_timeout=cfg.workspace_poll_timeout_seconds,
                deadline=ctx.deadline(),
                bus=ctx.bus,
                sleep=ctx.sleep,
                clock=ctx.clock,
            ))
            visited = provisioner.apply_dir_structure(cfg.kcp_manifests_dir, cfg.kcp.root_path)
            provisioner.apply_extra_workspaces(instance.spec.kcp.extra_workspaces)
        except (StrataError, OSError) as e:
            log.error("Failed to create kcp workspaces: %s", e)
            return error_result(e, cfg.requeue_after_seconds)

        instance.status.kcp_workspaces = [
            KcpWorkspace(name=path, phase=WORKSPACE_READY_PHASE)
            for path in top_level_workspaces(visited, cfg.kcp.root_path)
        ]
        log.debug("Successful kcp setup")
        return Result()


def top_level_workspaces(paths: List[str], root_path: str) -> List[str]:
    """Direct children of *root_path* among *paths*, e.g. ``root:orgs``."""
    prefix = root_path + WORKSPACE_SEPARATOR
    return [
        p for p in paths
        if p.startswith(prefix) and WORKSPACE_SEPARATOR not in p[len(prefix):]
    ]
