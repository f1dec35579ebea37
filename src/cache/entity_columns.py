# src/cache/entity_columns.py — v1
"""Parse queryable entity columns out of a freshly generated breakdown.

Generators return monitoring markers either as plain strings or as objects
like ``{"marker": "HDL"}``; both shapes collapse to a list of strings.
"""

from __future__ import annotations

from typing import Any

from analysiscache.cache.models import DerivedColumns


def parse_derived_columns(payload: dict[str, Any]) -> DerivedColumns:
    """Extract affected systems and monitoring markers from a payload."""
    markers = payload.get("monitoring_markers")
    return DerivedColumns(
        affected_systems=_string_list(payload.get("affected_systems")),
        key_monitoring_markers=_marker_list(markers),
    )


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value]


def _marker_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    markers: list[str] = []
    for item in value:
        if isinstance(item, str):
            markers.append(item)
        elif isinstance(item, dict) and "marker" in item:
            if item["marker"] is not None:
                markers.append(str(item["marker"]))
        else:
            markers.append(str(item))
    return [m for m in markers if m]
