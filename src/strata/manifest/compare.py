# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/strata/manifest/compare.py
"""
Drift detection between a live object and its desired manifest.

Both sides are sanitized before comparison: server managed metadata is
dropped from both, ``status`` is dropped from the live copy, and live
labels/annotations are pruned down to the keys the desired object declares.
Every other field is compared in full.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import jsonpatch

from .document import Unstructured

log = logging.getLogger("strata")

SERVER_MANAGED_METADATA = (
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "uid",
    "managedFields",
    "selfLink",
    "finalizers",
    "ownerReferences",
)

_DESIRED_KEYED_MAPS = ("labels", "annotations")


@dataclass(frozen=True)
class Comparison:
    needs_write: bool
    diff: Optional[List[Dict[str, Any]]] = None


def strip_server_metadata(obj: Unstructured) -> None:
    for key in SERVER_MANAGED_METADATA:
        obj.remove_nested("metadata", key)


def _drop_empty_maps(obj: Unstructured) -> None:
    for key in _DESIRED_KEYED_MAPS:
        if obj.nested("metadata", key, default=None) == {}:
            obj.remove_nested("metadata", key)


def sanitize(live: Unstructured, desired: Unstructured) -> tuple[Unstructured, Unstructured]:
    """Return sanitized deep copies of *live* and *desired*."""
    live = live.deep_copy()
    desired = desired.deep_copy()

    strip_server_metadata(live)
    live.remove_nested("status")
    strip_server_metadata(desired)

    for key in _DESIRED_KEYED_MAPS:
        live_map = live.nested("metadata", key)
        if not isinstance(live_map, dict):
            continue
        wanted = desired.nested("metadata", key)
        wanted = wanted if isinstance(wanted, dict) else {}
        for k in [k for k in live_map if k not in wanted]:
            del live_map[k]

    _drop_empty_maps(live)
    _drop_empty_maps(desired)
    return live, desired


def compare(live: Unstructured, desired: Unstructured, verbose: bool = False) -> Comparison:
    clean_live, clean_desired = sanitize(live, desired)
    if clean_live.object == clean_desired.object:
        return Comparison(needs_write=False)

    diff = None
    if verbose:
        try:
            diff = jsonpatch.make_patch(clean_live.object, clean_desired.object).patch
        except Exception as e:  # diagnostics only
            log.debug("Could not compute diff for %s: %s", desired.identity(), e)
        else:
            log.debug("Drift detected for %s: %s", desired.identity(), diff)
    return Comparison(needs_write=True, diff=diff)


def needs_write(live: Optional[Unstructured], desired: Unstructured, verbose: bool = False) -> bool:
    """True when *desired* must be applied. A missing live object always needs a write."""
    if live is None:
        return True
    return compare(live, desired, verbose).needs_write
