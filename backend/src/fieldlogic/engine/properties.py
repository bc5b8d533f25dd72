"""Component property overrides written by propertyDerivation entries.

Targets are one or two dot levels (`label`, `hint.text`). Overrides are
layered over a deep copy of the field's static props; the static props are
never mutated.
"""

import copy
from collections.abc import Iterable
from typing import Any

from fieldlogic.config.loader import MAX_PROPERTY_DEPTH
from fieldlogic.errors import PropertyPathError


def _segments(target: str) -> list[str]:
    segments = target.split(".")
    if not target or any(not s for s in segments) or len(segments) > MAX_PROPERTY_DEPTH:
        raise PropertyPathError(f"Invalid targetProperty '{target}'")
    return segments


def set_property(properties: dict[str, Any], target: str, value: Any) -> None:
    segments = _segments(target)
    if len(segments) == 1:
        properties[segments[0]] = value
        return
    parent = properties.get(segments[0])
    if not isinstance(parent, dict):
        parent = {}
        properties[segments[0]] = parent
    parent[segments[1]] = value


def get_property(properties: dict[str, Any], target: str) -> Any:
    current: Any = properties
    for segment in _segments(target):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def build_properties(
    static: dict[str, Any], overrides: Iterable[tuple[str, Any]]
) -> dict[str, Any]:
    """Static props with the active overrides applied in entry order."""
    properties = copy.deepcopy(static)
    for target, value in overrides:
        set_property(properties, target, value)
    return properties
