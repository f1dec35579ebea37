# src/cache/overlay.py — v1
"""Graft live entity fields onto a cached artifact payload at read time.

The stored payload is never modified: overlay() works on a deep copy, so
two reads with different live-field snapshots cannot leak into each other
or into the store.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping


def overlay(
    artifact_payload: Mapping[str, Any] | None,
    live_fields: Mapping[str, Any],
    field_paths: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of the payload with live fields injected.

    Args:
        artifact_payload: Cached generation result (treated as opaque).
        live_fields: Current values read from the entity's own row.
        field_paths: Configured live field → dotted target path in the payload.
            Defaults to every key of ``live_fields`` at the top level.

    Returns:
        New merged dict. Live values overwrite whatever the payload held.
        Fields that are absent or None are left as generated.
    """
    merged: dict[str, Any] = copy.deepcopy(dict(artifact_payload or {}))
    paths = field_paths if field_paths is not None else {k: k for k in live_fields}

    for name, path in paths.items():
        value = live_fields.get(name)
        if value is None:
            continue
        _set_path(merged, path.split("."), copy.deepcopy(value))

    return merged


def _set_path(target: dict[str, Any], keys: list[str], value: Any) -> None:
    """Set target[k1][k2]...[kn] = value, replacing non-dict intermediates."""
    node = target
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value
