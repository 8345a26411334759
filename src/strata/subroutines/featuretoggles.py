# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/featuretoggles.py

from __future__ import annotations

import logging
from typing import Optional

from ..config.defaults import DISABLE_CONTENT_CONFIGURATIONS_TOGGLE, KNOWN_FEATURE_TOGGLES
from ..config.models import PlatformInstance
from ..errors import StrataError
from ..inventory.assemblers import InventoryCache, assemble_template_values
from ..provision.provisioner import HierarchicalProvisioner, ProvisionContext
from .base import OperatorContext, Result, connect, error_result

log = logging.getLogger("strata")


class FeatureToggleSubroutine:
    """Apply ``<workspaceDir>/manifests/features/<toggle>`` for each enabled toggle."""

    name = "FeatureToggleSubroutine"

    def __init__(self, ctx: OperatorContext):
        self.ctx = ctx

    def finalize(self, instance: PlatformInstance) -> Result:
        return Result()

    def process(self, instance: PlatformInstance, cache: Optional[InventoryCache] = None) -> Result:
        toggles = [t.name for t in instance.spec.feature_toggles]
        enabled = []
        for name in toggles:
            if name in KNOWN_FEATURE_TOGGLES:
                enabled.append(name)
            elif name == DISABLE_CONTENT_CONFIGURATIONS_TOGGLE:
                # consumed as a template value, no manifests of its own
                continue
            else:
                log.warning("Unknown feature toggle %s", name)

        if not enabled:
            return Result()

        factory, early = connect(self.ctx, instance)
        if early is not None:
            return early

        ctx = self.ctx
        cfg = ctx.config
        cache = cache if cache is not None else InventoryCache()
        try:
            values = assemble_template_values(
                instance,
                factory.for_workspace(cfg.kcp.root_path),
                ctx.secrets,
                cache,
                ctx.bus,
                include_exports=False,
                include_ca_bundles=False,
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
            for name in enabled:
                directory = cfg.features_dir / name
                log.info("Applying KCP manifests for feature toggle %s from %s", name, directory)
                provisioner.apply_dir_structure(directory, cfg.kcp.root_path)
                log.info("Enabled feature %s", name)
        except (StrataError, OSError) as e:
            log.error("Failed to apply feature toggle manifests: %s", e)
            return error_result(e, cfg.requeue_after_seconds)

        return Result()
