"""Derivation scheduling and stabilization.

A change set (concrete form paths plus external data keys) selects the
affected derivation instances. Immediate derivations run in a rank-ordered
worklist until nothing changes; debounced ones are handed to the host's
debouncer instead.

Stabilization policy:
- a computed value equal to the field's current value, or to the entry's
  previous output in this cycle, is stable and does not propagate
  (numbers compare within `Settings.epsilon`);
- an entry evaluated more than `Settings.max_iterations` times in one cycle
  is frozen together with the other members of its cycle in the same array
  item, and a `non_convergence` diagnostic is recorded;
- iteration counts carry over into the runs started by debounced entries,
  so a debounced pair that never settles is frozen like an immediate one;
  any other change starts the count again;
- frozen entries are skipped until a change outside the frozen paths, or
  any external data change, starts a fresh cycle;
- an entry with `stopOnUserOverride` is skipped while the user owns its
  field; with `reEngageOnDependencyChange` a later change to one of its
  dependencies hands the field back to the derivation.
"""

import heapq
import itertools
import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from fieldlogic.config.loader import LogicEntry
from fieldlogic.engine import paths
from fieldlogic.engine.dependencies import concrete_path
from fieldlogic.engine.graph import EntryTemplate
from fieldlogic.engine.scope import FieldInstance
from fieldlogic.errors import DerivationConflictError
from fieldlogic.expressions import FORM
from fieldlogic.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    """A recoverable problem found while evaluating an entry.

    Attributes:
        kind: "error" for a failing expression or function, "non_convergence"
            for a frozen derivation
        path: Concrete path of the hosting field
        entry: Entry instance id (`<path>#<index>`)
        message: Human-readable description
    """

    kind: str
    path: str
    entry: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "path": self.path, "entry": self.entry, "message": self.message}


@dataclass(eq=False)
class EntryInstance:
    """One entry template bound to one concrete field instance."""

    id: str
    template: EntryTemplate
    field: FieldInstance
    form_paths: tuple[str, ...]
    external_paths: tuple[str, ...]

    @property
    def entry(self) -> LogicEntry:
        return self.template.entry

    @property
    def path(self) -> str:
        return self.field.path

    @property
    def label(self) -> str:
        return self.entry.debug_name or self.id

    def affected_by(self, changed: Iterable[str], external: Iterable[str]) -> bool:
        for changed_path in changed:
            if any(paths.related(p, changed_path) for p in self.form_paths):
                return True
        for key in external:
            if any(paths.related(p, key) for p in self.external_paths):
                return True
        return False


def instantiate_entry(template: EntryTemplate, field: FieldInstance) -> EntryInstance:
    return EntryInstance(
        id=f"{field.path}#{template.index}",
        template=template,
        field=field,
        form_paths=tuple(
            concrete_path(d, field.scope, field.indices)
            for d in template.dependencies
            if d.source == FORM
        ),
        external_paths=tuple(template.external_paths),
    )


class StabilizerHost(Protocol):
    """What the stabilizer needs from the engine."""

    def derivation_instances(self) -> Iterable[EntryInstance]: ...

    def siblings(self, instance: EntryInstance) -> list[EntryInstance]: ...

    def cycle_mates(self, instance: EntryInstance) -> list[EntryInstance]: ...

    def rank(self, instance: EntryInstance) -> int: ...

    def condition_holds(self, instance: EntryInstance) -> bool: ...

    def compute(self, instance: EntryInstance) -> Any: ...

    def read(self, path: str) -> Any: ...

    def write(self, path: str, value: Any) -> None: ...

    def schedule_debounced(self, instance: EntryInstance) -> None: ...

    def overridden(self, path: str) -> bool: ...

    def release_override(self, path: str) -> None: ...


def same_value(a: Any, b: Any, epsilon: float) -> bool:
    """Equality used for stability, with a numeric tolerance."""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    numeric = (int, float, Decimal)
    if (
        isinstance(a, numeric)
        and isinstance(b, numeric)
        and not isinstance(a, bool)
        and not isinstance(b, bool)
    ):
        return abs(float(a) - float(b)) <= epsilon
    return a == b


class DerivationStabilizer:
    """Runs derivations to a fixed point and tracks frozen entries."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.frozen: dict[str, str] = {}  # entry id -> field path
        self._counts: Counter[str] = Counter()
        self._previous: dict[str, Any] = {}

    def thaw(self, changed: Iterable[str], external: Iterable[str]) -> None:
        """Unfreeze everything when the change reaches outside the frozen set."""
        if not self.frozen:
            return
        frozen_paths = set(self.frozen.values())
        external = list(external)
        if external or any(path not in frozen_paths for path in changed):
            logger.debug("Thawing %d frozen derivations", len(self.frozen))
            self.frozen.clear()

    def forget(self, prefix: str) -> None:
        """Drop frozen entries under a removed or rebuilt subtree."""
        for entry_id, path in list(self.frozen.items()):
            if paths.related(prefix, path):
                del self.frozen[entry_id]

    def reset_counts(self) -> None:
        """Forget iteration counts and previous outputs."""
        self._counts.clear()
        self._previous.clear()

    def run(
        self,
        host: StabilizerHost,
        changed: Iterable[str],
        external: Iterable[str] = (),
        forced: Iterable[str] = (),
        carry_counts: bool = False,
    ) -> tuple[set[str], list[Diagnostic]]:
        """Run affected derivations until stable.

        Args:
            host: The engine
            changed: Concrete form paths that changed
            external: External data keys that changed
            forced: Entry ids to evaluate regardless of dependencies, bypassing debounce
            carry_counts: Continue the iteration counts of the previous run
                instead of starting new ones (used for debounced entries)

        Returns:
            The written field paths and the diagnostics produced.

        Raises:
            DerivationConflictError: If two derivations on one field are active
        """
        changed = list(changed)
        external = list(external)
        forced = set(forced)
        self.thaw(changed, external)
        if not carry_counts:
            self.reset_counts()

        heap: list[tuple[int, int, str, EntryInstance]] = []
        queued: set[str] = set()
        sequence = itertools.count()
        counts = self._counts
        previous = self._previous
        written: set[str] = set()
        diagnostics: list[Diagnostic] = []

        def enqueue(instance: EntryInstance, immediate: bool = False) -> None:
            if instance.id in self.frozen or instance.id in queued:
                return
            if instance.entry.stop_on_user_override and host.overridden(instance.path):
                logger.debug(
                    "Derivation '%s' skipped: '%s' was set by the user",
                    instance.label,
                    instance.path,
                )
                return
            if instance.entry.debounced and not immediate:
                host.schedule_debounced(instance)
                return
            heapq.heappush(heap, (host.rank(instance), next(sequence), instance.id, instance))
            queued.add(instance.id)

        def dependency_changed(instance: EntryInstance) -> None:
            if instance.entry.re_engage_on_dependency_change and host.overridden(instance.path):
                logger.debug("Derivation '%s' re-engaged on '%s'", instance.label, instance.path)
                host.release_override(instance.path)
            enqueue(instance)

        instances = list(host.derivation_instances())
        for instance in instances:
            if instance.id in forced:
                enqueue(instance, immediate=True)
            elif instance.affected_by(changed, external):
                # a field the user set in this change stays theirs
                if instance.path in changed:
                    enqueue(instance)
                else:
                    dependency_changed(instance)

        while heap:
            _, _, entry_id, instance = heapq.heappop(heap)
            queued.discard(entry_id)
            if entry_id in self.frozen:
                continue

            counts[entry_id] += 1
            if counts[entry_id] > self.settings.max_iterations:
                diagnostics.append(self._freeze(host, instance))
                continue

            if not host.condition_holds(instance):
                continue
            self._check_conflict(host, instance)

            try:
                value = host.compute(instance)
            except Exception as e:
                logger.error("Derivation '%s' failed: %s", instance.label, e)
                diagnostics.append(Diagnostic("error", instance.path, entry_id, str(e)))
                continue

            epsilon = self.settings.epsilon
            if same_value(value, host.read(instance.path), epsilon) or (
                entry_id in previous and same_value(value, previous[entry_id], epsilon)
            ):
                previous[entry_id] = value
                continue

            logger.debug("Derivation '%s' wrote %r to '%s'", instance.label, value, instance.path)
            previous[entry_id] = value
            host.write(instance.path, value)
            written.add(instance.path)
            for dependent in instances:
                if dependent.affected_by([instance.path], ()):
                    dependency_changed(dependent)

        return written, diagnostics

    def _check_conflict(self, host: StabilizerHost, instance: EntryInstance) -> None:
        for sibling in host.siblings(instance):
            if host.condition_holds(sibling):
                raise DerivationConflictError(
                    f"Derivations '{instance.label}' and '{sibling.label}' are both active",
                    instance.path,
                )

    def _freeze(self, host: StabilizerHost, instance: EntryInstance) -> Diagnostic:
        group = [instance, *host.cycle_mates(instance)]
        for member in group:
            self.frozen[member.id] = member.path
        message = (
            f"Derivation did not converge after {self.settings.max_iterations} "
            f"iterations; frozen: {', '.join(sorted(m.path for m in group))}"
        )
        logger.warning("Derivation '%s': %s", instance.label, message)
        return Diagnostic("non_convergence", instance.path, instance.id, message)
