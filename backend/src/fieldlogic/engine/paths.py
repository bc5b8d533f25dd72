"""Dot-path helpers for form values.

Concrete paths address a value (`items.0.street`). Template paths use `$`
for an array index (`items.$.street`) and identify the same field across
every array item. `$root.` marks a path as absolute inside an array item.
"""

import re
from collections.abc import Mapping
from typing import Any

ITEM = "$"
ROOT = "$root"

_INDEX = re.compile(r"^\d+$")


def split(path: str) -> list[str]:
    return path.split(".") if path else []


def join(*parts: str) -> str:
    return ".".join(p for p in parts if p)


def is_index(segment: str) -> bool:
    return bool(_INDEX.match(segment))


def is_absolute(path: str) -> bool:
    return path == ROOT or path.startswith(ROOT + ".")


def strip_root(path: str) -> str:
    return path[len(ROOT) + 1:] if path.startswith(ROOT + ".") else ""


def resolve(path: str, scope: str) -> str:
    """Resolve a relative path against an array item scope, honouring `$root.`."""
    if is_absolute(path):
        return strip_root(path)
    return join(scope, path)


def get_in(data: Any, path: str) -> Any:
    """Read the value at path, None when any segment is missing."""
    current = data
    for segment in split(path):
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, list) and is_index(segment):
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def set_in(data: dict[str, Any], path: str, value: Any) -> None:
    """Write value at path, creating intermediate dicts as needed."""
    segments = split(path)
    if not segments:
        raise ValueError("Cannot set the root value")

    current: Any = data
    for segment in segments[:-1]:
        if isinstance(current, list):
            current = current[int(segment)]
            continue
        child = current.get(segment)
        if child is None:
            child = {}
            current[segment] = child
        current = child

    last = segments[-1]
    if isinstance(current, list):
        current[int(last)] = value
    else:
        current[last] = value


def related(a: str, b: str) -> bool:
    """True when a change at one path can change the value at the other.

    That is the case when the paths are equal or one is a segment prefix of
    the other. The empty path (the whole value) is related to everything.
    """
    if not a or not b or a == b:
        return True
    if len(a) < len(b):
        return b.startswith(a + ".")
    return a.startswith(b + ".")


def instantiate(template: str, indices: tuple[int, ...]) -> str:
    """Replace the leading `$` placeholders of a template with indices."""
    if not indices:
        return template
    segments = split(template)
    remaining = list(indices)
    for i, segment in enumerate(segments):
        if segment == ITEM and remaining:
            segments[i] = str(remaining.pop(0))
    return ".".join(segments)


def templates_related(a: str, b: str) -> bool:
    """`related` for template paths, where `$` matches any index."""
    sa, sb = split(a), split(b)
    for x, y in zip(sa, sb):
        if x == y:
            continue
        if (x == ITEM and (y == ITEM or is_index(y))) or (y == ITEM and is_index(x)):
            continue
        return False
    return True


def to_template(path: str, array_templates: set[str]) -> str:
    """Turn a concrete path into its template by replacing array item indices."""
    out: list[str] = []
    for segment in split(path):
        if is_index(segment) and ".".join(out) in array_templates:
            out.append(ITEM)
        else:
            out.append(segment)
    return ".".join(out)
