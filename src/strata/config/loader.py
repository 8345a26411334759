# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/config/loader.py

import logging
import os
from pathlib import Path

import yaml

from .models import OperatorConfig
from .models import PlatformInstance

log = logging.getLogger("strata")


def deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_overrides_file(config_path: Path) -> Path | None:
    """
    Locate an overrides file using this priority:

    1. STRATA_OVERRIDES_FILE environment variable (explicit override)
    2. overrides.yaml in the same directory as the config
    """
    env = os.environ.get("STRATA_OVERRIDES_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("STRATA_OVERRIDES_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "overrides.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def load_operator_config(path: str | Path) -> OperatorConfig:
    """
    Load and validate the operator configuration.

    ``${ENV_VAR}`` placeholders are resolved at load time. An overrides file
    (``STRATA_OVERRIDES_FILE`` or ``overrides.yaml`` next to the config) is
    deep-merged before validation so environment specific values can live
    outside the main file.
    """
    path = Path(path)
    data = _load_yaml(path)

    overrides_path = _find_overrides_file(path)
    if overrides_path:
        log.debug("Merging overrides from %s", overrides_path)
        deep_merge(data, _load_yaml(overrides_path))

    return OperatorConfig.model_validate(data)


def load_instance(path: str | Path) -> PlatformInstance:
    """Load a platform instance document (flat or full resource form)."""
    return PlatformInstance.model_validate(_load_yaml(Path(path)))
