"""Template-level dependency graph between derivations.

Nodes are derivation entries keyed `<template path>#<index>`. There is an
edge A -> B when B reads a path related to the field A writes. The graph is
built once per configuration; runtime instances of an entry share its rank.

Strongly connected components are classified with Tarjan's algorithm:
a component spanning one field (self reference) or two fields (a
bidirectional pair such as USD <-> EUR) is allowed and is settled by the
stabilization policy, anything larger is a DependencyCycleError.
"""

from dataclasses import dataclass
from typing import Any

from fieldlogic.config.loader import LogicEntry
from fieldlogic.engine import paths
from fieldlogic.engine.dependencies import DependencyResolver, template_path
from fieldlogic.engine.scope import FieldSpec, walk_specs
from fieldlogic.errors import DependencyCycleError
from fieldlogic.expressions import EXTERNAL, FORM, Dependency


@dataclass(eq=False)
class EntryTemplate:
    """A logic entry of one field spec, with its template-level dependencies."""

    id: str
    spec: FieldSpec
    index: int
    entry: LogicEntry
    dependencies: list[Dependency]

    @property
    def template(self) -> str:
        return self.spec.template

    @property
    def form_templates(self) -> list[str]:
        return [
            template_path(d, self.spec.scope_template)
            for d in self.dependencies
            if d.source == FORM
        ]

    @property
    def external_paths(self) -> list[str]:
        return [d.path for d in self.dependencies if d.source == EXTERNAL]

    def reads(self, template: str) -> bool:
        return any(paths.templates_related(t, template) for t in self.form_templates)


def compile_entries(specs: list[FieldSpec], resolver: DependencyResolver) -> list[EntryTemplate]:
    """Create an EntryTemplate for every logic entry in the tree."""
    entries = []
    for spec in walk_specs(specs):
        for index, entry in enumerate(spec.node.logic):
            entries.append(
                EntryTemplate(
                    id=f"{spec.template}#{index}",
                    spec=spec,
                    index=index,
                    entry=entry,
                    dependencies=resolver.for_entry(entry, spec.template),
                )
            )
    return entries


class DependencyGraph:
    """Inspectable dependency graph with cycle classification and ranks.

    Raises:
        DependencyCycleError: If derivations form a cycle over three or more fields
    """

    def __init__(self, entries: list[EntryTemplate]):
        self.entries = {e.id: e for e in entries if e.entry.type == "derivation"}
        self.edges: dict[str, list[str]] = {
            source.id: [
                target.id for target in self.entries.values() if target.reads(source.template)
            ]
            for source in self.entries.values()
        }
        self.components = self._strongly_connected()
        self._component_of = {
            entry_id: i for i, component in enumerate(self.components) for entry_id in component
        }
        self._check_cycles()
        self.ranks = self._rank()

    def _strongly_connected(self) -> list[list[str]]:
        """Tarjan's algorithm. Components come out in reverse topological order."""
        index: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[list[str]] = []

        def visit(node: str) -> None:
            index[node] = lowlink[node] = len(index)
            stack.append(node)
            on_stack.add(node)
            for target in self.edges[node]:
                if target not in index:
                    visit(target)
                    lowlink[node] = min(lowlink[node], lowlink[target])
                elif target in on_stack:
                    lowlink[node] = min(lowlink[node], index[target])
            if lowlink[node] == index[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))

        for node in self.entries:
            if node not in index:
                visit(node)
        return components

    def _check_cycles(self) -> None:
        for component in self.components:
            fields = {self.entries[entry_id].template for entry_id in component}
            if len(fields) > 2:
                raise DependencyCycleError(component)

    def _rank(self) -> dict[str, int]:
        ranks: dict[str, int] = {}
        # Tarjan emits sinks first, so walk the components backwards
        for rank, component in enumerate(reversed(self.components)):
            for entry_id in component:
                ranks[entry_id] = rank
        return ranks

    def rank(self, entry_id: str) -> int:
        return self.ranks.get(entry_id, len(self.components))

    def order(self) -> list[str]:
        """Derivation entry ids in evaluation order."""
        return sorted(self.entries, key=lambda entry_id: (self.rank(entry_id), entry_id))

    def component(self, entry_id: str) -> list[str]:
        """Entry ids that share a strongly connected component with this one."""
        position = self._component_of.get(entry_id)
        return [] if position is None else self.components[position]

    def is_cyclic(self, entry_id: str) -> bool:
        component = self.component(entry_id)
        return len(component) > 1 or entry_id in self.edges.get(entry_id, [])

    def bidirectional_pairs(self) -> list[tuple[str, str]]:
        """Field template pairs whose derivations read each other."""
        pairs = []
        for component in self.components:
            fields = sorted({self.entries[entry_id].template for entry_id in component})
            if len(fields) == 2:
                pairs.append((fields[0], fields[1]))
        return pairs

    def dependents_of(self, template: str) -> list[str]:
        """Derivation entry ids that read the given template path."""
        return [
            entry_id for entry_id in self.order() if self.entries[entry_id].reads(template)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": [
                {
                    "id": entry_id,
                    "field": self.entries[entry_id].template,
                    "rank": self.rank(entry_id),
                    "dependsOn": self.entries[entry_id].form_templates,
                }
                for entry_id in self.order()
            ],
            "bidirectionalPairs": [list(pair) for pair in self.bidirectional_pairs()],
        }
