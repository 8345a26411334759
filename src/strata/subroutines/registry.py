# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/subroutines/registry.py

from __future__ import annotations
from typing import Iterable, List, Optional

from strata.subroutines.base import OperatorContext, Subroutine
from strata.subroutines.featuretoggles import FeatureToggleSubroutine
from strata.subroutines.kcpsetup import KcpSetupSubroutine
from strata.subroutines.providersecret import ProviderSecretSubroutine
from strata.subroutines.wait import WaitSubroutine
from strata.subroutines.webhooks import WebhooksSubroutine

# short names accepted on the command line, in execution order
SUBROUTINES = {
    "setup": KcpSetupSubroutine,
    "providers": ProviderSecretSubroutine,
    "webhooks": WebhooksSubroutine,
    "features": FeatureToggleSubroutine,
    "wait": WaitSubroutine,
}


def build_subroutines(ctx: OperatorContext, only: Optional[Iterable[str]] = None) -> List[Subroutine]:
    selected = set(only) if only else set(SUBROUTINES)
    unknown = selected - set(SUBROUTINES)
    if unknown:
        raise ValueError(f"unknown subroutine(s): {', '.join(sorted(unknown))}")
    return [cls(ctx) for key, cls in SUBROUTINES.items() if key in selected]
