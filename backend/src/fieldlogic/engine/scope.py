"""Array scope resolution.

Field specs describe the configuration tree at template level. Instances
bind a spec to one concrete position in the current form value: a field
inside an array item gets a concrete path (`items.0.street`) and a scope,
the path of its innermost enclosing item (`items.0`). Logic evaluated for
the instance sees `formValue` rooted at that scope.
"""

import copy
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from fieldlogic.config.loader import FieldNode
from fieldlogic.engine import paths
from fieldlogic.expressions import EvaluationContext


@dataclass(eq=False)
class FieldSpec:
    """A configuration node placed in the form: its template path and scope.

    Attributes:
        node: The configuration node
        template: State key template (`items.$.street`)
        scope_template: Template of the innermost enclosing array item, "" at root
        parent: Enclosing spec, None at top level
        children: Child specs
    """

    node: FieldNode
    template: str
    scope_template: str
    parent: "FieldSpec | None" = None
    children: list["FieldSpec"] = field(default_factory=list)

    @property
    def has_value(self) -> bool:
        return self.node.holds_value or self.node.nests_value

    def ancestors(self) -> Iterator["FieldSpec"]:
        current = self.parent
        while current is not None:
            yield current
            current = current.parent


@dataclass(frozen=True)
class FieldInstance:
    spec: FieldSpec
    path: str
    indices: tuple[int, ...] = ()
    scope: str = ""


def build_specs(
    nodes: tuple[FieldNode, ...],
    prefix: str = "",
    scope: str = "",
    parent: FieldSpec | None = None,
) -> list[FieldSpec]:
    """Lay the configuration tree out as specs.

    Rows and pages do not add a value level, so their children share the
    parent's prefix. Array children live under `<array>.$`.
    """
    specs = []
    for node in nodes:
        spec = FieldSpec(
            node=node,
            template=paths.join(prefix, node.key),
            scope_template=scope,
            parent=parent,
        )
        if node.is_array:
            item = paths.join(spec.template, paths.ITEM)
            spec.children = build_specs(node.children, item, item, spec)
        elif node.nests_value:
            spec.children = build_specs(node.children, spec.template, scope, spec)
        else:
            spec.children = build_specs(node.children, prefix, scope, spec)
        specs.append(spec)
    return specs


def walk_specs(specs: list[FieldSpec]) -> Iterator[FieldSpec]:
    for spec in specs:
        yield spec
        yield from walk_specs(spec.children)


def instantiate_fields(
    specs: list[FieldSpec],
    root: Mapping[str, Any],
    indices: tuple[int, ...] = (),
    scope: str = "",
) -> Iterator[FieldInstance]:
    """Yield an instance for every spec at every position in the current value."""
    for spec in specs:
        path = paths.instantiate(spec.template, indices)
        yield FieldInstance(spec=spec, path=path, indices=indices, scope=scope)
        if spec.node.is_array:
            items = paths.get_in(root, path)
            for i in range(len(items) if isinstance(items, list) else 0):
                yield from instantiate_fields(
                    spec.children, root, indices + (i,), paths.join(path, str(i))
                )
        else:
            yield from instantiate_fields(spec.children, root, indices, scope)


def build_value(
    specs: list[FieldSpec],
    provided: Mapping[str, Any] | None = None,
    *,
    empty: bool = False,
) -> dict[str, Any]:
    """Build a form value from configured defaults overlaid with provided values.

    With `empty=True` every leaf is None and every array is empty; this is
    the value `clear()` resets to. Keys without a spec are kept as given.
    """
    provided = provided or {}
    value = {} if empty else copy.deepcopy(dict(provided))
    _fill(specs, provided, value, empty)
    return value


def _fill(
    specs: list[FieldSpec],
    provided: Mapping[str, Any],
    target: dict[str, Any],
    empty: bool,
) -> None:
    for spec in specs:
        node = spec.node
        if node.is_button:
            continue
        if node.type in ("row", "page"):
            _fill(spec.children, provided, target, empty)
            continue

        given = provided.get(node.key)
        has = node.key in provided and not empty
        if node.is_array:
            if has and isinstance(given, list):
                items = given
            elif not empty and isinstance(node.default, list):
                items = node.default
            else:
                items = []
            target[node.key] = [item_value(spec, item) for item in items]
        elif node.nests_value:
            if has and isinstance(given, Mapping):
                base = given
            elif not empty and isinstance(node.default, Mapping):
                base = node.default
            else:
                base = {}
            target[node.key] = build_value(spec.children, base, empty=empty)
        elif has:
            target[node.key] = copy.deepcopy(given)
        else:
            target[node.key] = None if empty else copy.deepcopy(node.default)


def item_value(array_spec: FieldSpec, item: Any = None) -> dict[str, Any]:
    """One array item: template defaults overlaid with the given values."""
    return build_value(array_spec.children, item if isinstance(item, Mapping) else None)


def evaluation_context(
    root: Mapping[str, Any],
    instance: FieldInstance,
    external: Mapping[str, Any],
) -> EvaluationContext:
    """Build the scoped context logic for this instance is evaluated in."""
    scoped = paths.get_in(root, instance.scope) if instance.scope else root
    return EvaluationContext(
        form_value=scoped if isinstance(scoped, Mapping) else {},
        field_value=paths.get_in(root, instance.path),
        field_path=instance.path,
        external_data=external,
        root_form_value=root,
    )
