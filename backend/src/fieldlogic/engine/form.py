"""FormEngine: the reactive facade over a form configuration.

Every change runs one evaluation cycle:

1. derivations run to a fixed point (DerivationStabilizer)
2. hidden / disabled / readonly / required entries of value fields and
   containers
3. property derivations
4. validation of the affected fields
5. hidden / disabled entries of buttons, which may read form aggregates
6. fieldStateChanged for every field whose state changed

Usage:
    engine = FormEngine(ConfigLoader().load_file(path), registry=registry)
    engine.events.on("fieldStateChanged", on_change)
    engine.set_value("quantity", 3)
    engine.field_state("total").value
"""

import asyncio
import copy
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

import httpx

from fieldlogic.config.loader import FormConfig, ValidatorConfig
from fieldlogic.engine import paths
from fieldlogic.engine.conditions import ConditionEvaluator
from fieldlogic.engine.debounce import Debouncer
from fieldlogic.engine.dependencies import DependencyResolver, concrete_path
from fieldlogic.engine.events import CLEAR, DIAGNOSTIC, FIELD_STATE_CHANGED, RESET, SUBMIT, EventBus
from fieldlogic.engine.graph import DependencyGraph, EntryTemplate, compile_entries
from fieldlogic.engine.properties import build_properties
from fieldlogic.engine.scheduler import (
    DerivationStabilizer,
    Diagnostic,
    EntryInstance,
    instantiate_entry,
)
from fieldlogic.engine.scope import (
    FieldInstance,
    FieldSpec,
    build_specs,
    build_value,
    evaluation_context,
    instantiate_fields,
    item_value,
    walk_specs,
)
from fieldlogic.engine.state import FieldState
from fieldlogic.expressions import (
    EXTERNAL,
    FORM,
    EvaluationContext,
    Evaluator,
    ExpressionFunctions,
    default_functions,
    to_bool,
)
from fieldlogic.registry import FunctionRegistry
from fieldlogic.settings import Settings
from fieldlogic.validation import (
    MessageResolver,
    ValidationOutcome,
    ValidationPipeline,
    ValidatorContext,
)

logger = logging.getLogger(__name__)

FLAGS = ("hidden", "disabled", "readonly", "required")

SubmitHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


class FormEngine:
    """Computes field state for a form configuration as values change.

    Args:
        config: Loaded form configuration
        registry: Custom functions referenced by functionName
        initial_value: Values overlaid on the configured defaults; reset() returns here
        external_data: External state readable as `externalData`
        settings: Engine tunables, defaults from Settings()
        functions: Expression function table, defaults to the builtins
        http_client: Client for customHttp validators; one is created on demand otherwise

    Raises:
        UnresolvedFunctionError: If a functionName is not registered
        DependencyCycleError: If derivations form a cycle over three or more fields
    """

    def __init__(
        self,
        config: FormConfig,
        registry: FunctionRegistry | None = None,
        *,
        initial_value: Mapping[str, Any] | None = None,
        external_data: Mapping[str, Any] | None = None,
        settings: Settings | None = None,
        functions: ExpressionFunctions | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.registry = registry if registry is not None else FunctionRegistry()
        self.settings = settings if settings is not None else Settings()
        self.functions = functions if functions is not None else default_functions()
        self.events = EventBus()
        self.diagnostics: list[Diagnostic] = []

        self.resolver = DependencyResolver()
        self.conditions = ConditionEvaluator(self.functions, self.resolver, self._form_state)
        self.messages = MessageResolver(config.default_validation_messages)
        self.pipeline = ValidationPipeline(
            config,
            self.registry,
            self.functions,
            self.conditions,
            self.resolver,
            report=self._report_validator_error,
        )

        self._specs = build_specs(config.fields)
        self._templates = compile_entries(self._specs, self.resolver)
        self._check_functions()
        self.graph = DependencyGraph(self._templates)
        self._templates_by_field: dict[str, list[EntryTemplate]] = {}
        for template in self._templates:
            self._templates_by_field.setdefault(template.template, []).append(template)
        self._validation_deps = {
            spec.template: self.resolver.for_validation(spec.node, config, spec.template)
            for spec in walk_specs(self._specs)
            if spec.node.holds_value
        }

        self._stabilizer = DerivationStabilizer(self.settings)
        self._debouncer = Debouncer(self._run_debounced)
        self._client = http_client
        self._owns_client = http_client is None

        self._external: dict[str, Any] = dict(external_data or {})
        self._initial = build_value(self._specs, initial_value)
        self._value = copy.deepcopy(self._initial)
        self._submitting = False
        self._user_set: set[str] = set()  # paths last written by set_values

        # Runtime state, rebuilt when the array structure changes
        self._fields: dict[str, FieldInstance] = {}
        self._entries: dict[str, EntryInstance] = {}
        self._entries_by_field: dict[str, list[EntryInstance]] = {}
        self._derivations: list[EntryInstance] = []
        self._ancestors: dict[str, list[str]] = {}

        # Entry results and validation results
        self._state_results: dict[str, bool] = {}
        self._overrides: dict[str, Any] = {}
        self._flags: dict[str, tuple[bool, bool, bool, bool]] = {}
        self._errors: dict[str, tuple[ValidationOutcome, ...]] = {}
        self._async_errors: dict[str, tuple[ValidationOutcome, ...]] = {}
        self._generations: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._queued: dict[str, tuple[int, list[ValidatorConfig], ValidatorContext]] = {}
        self._states: dict[str, FieldState] = {}

        self._instantiate()
        self._cycle(forced_prefix="")

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def _check_functions(self) -> None:
        for template in self._templates:
            name = template.entry.function_name
            if not name:
                continue
            if template.entry.type == "propertyDerivation":
                self.registry.property_derivations.get(name)
            else:
                self.registry.derivations.get(name)
        self.pipeline.check_functions()

    def _instantiate(self) -> None:
        """Bind every spec and entry to the current array structure."""
        self._fields = {
            instance.path: instance
            for instance in instantiate_fields(self._specs, self._value)
        }
        self._entries = {}
        self._entries_by_field = {}
        self._ancestors = {}
        for path, instance in self._fields.items():
            self._ancestors[path] = [
                paths.instantiate(ancestor.template, instance.indices)
                for ancestor in instance.spec.ancestors()
            ]
            for template in self._templates_by_field.get(instance.spec.template, []):
                entry = instantiate_entry(template, instance)
                self._entries[entry.id] = entry
                self._entries_by_field.setdefault(path, []).append(entry)
        self._derivations = sorted(
            (e for e in self._entries.values() if e.entry.type == "derivation"),
            key=lambda e: (self.graph.rank(e.template.id), e.id),
        )

    def _restructure(self, prefix: str) -> None:
        """Drop runtime state under an array whose items changed, then rebind."""

        def under(path: str) -> bool:
            return paths.related(prefix, path)

        self._debouncer.cancel_where(lambda key: under(key.rsplit("#", 1)[0]))
        for path in [p for p in set(self._tasks) | set(self._queued) if under(p)]:
            self._cancel_async(path)
        for cache in (self._state_results, self._overrides):
            for entry_id in [k for k in cache if under(k.rsplit("#", 1)[0])]:
                del cache[entry_id]
        for cache in (self._errors, self._async_errors, self._flags):
            for path in [p for p in cache if under(p)]:
                del cache[path]
        self._stabilizer.forget(prefix)
        self._user_set = {p for p in self._user_set if not under(p)}
        self._instantiate()

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    @property
    def value(self) -> dict[str, Any]:
        """The whole form value. Rows and pages do not nest values."""
        return copy.deepcopy(self._value)

    def get_value(self, path: str) -> Any:
        return copy.deepcopy(paths.get_in(self._value, path))

    def set_value(self, path: str, value: Any) -> None:
        """Set one field's value and run a cycle.

        Raises:
            ValueError: If path is not a value-bearing field
        """
        self.set_values({path: value})

    def set_values(self, values: Mapping[str, Any]) -> None:
        """Set several values, then run a single cycle."""
        restructured: list[str] = []
        for path, value in values.items():
            instance = self._value_field(path)
            spec = instance.spec
            if spec.node.is_array:
                value = [item_value(spec, item) for item in (value or [])]
                restructured.append(path)
            elif spec.node.nests_value:
                value = build_value(spec.children, value if isinstance(value, Mapping) else None)
                if any(c.node.is_array for c in walk_specs(spec.children)):
                    restructured.append(path)
            else:
                value = copy.deepcopy(value)
            paths.set_in(self._value, path, value)

        for path in restructured:
            self._restructure(path)
        self._user_set.update(values)
        prefix = restructured[0] if len(restructured) == 1 else ("" if restructured else None)
        self._cycle(changed=list(values), forced_prefix=prefix)

    def add_array_item(
        self, path: str, item: Mapping[str, Any] | None = None, index: int | None = None
    ) -> int:
        """Insert an item (template defaults overlaid with `item`). Returns its index."""
        spec = self._array_field(path).spec
        items = paths.get_in(self._value, path)
        if not isinstance(items, list):
            items = []
            paths.set_in(self._value, path, items)
        index = len(items) if index is None else max(0, min(index, len(items)))
        items.insert(index, item_value(spec, item))
        logger.debug("Added item %d to '%s'", index, path)
        self._restructure(path)
        self._cycle(changed=[path], forced_prefix=path)
        return index

    def remove_array_item(self, path: str, index: int) -> None:
        """Remove an item and tear down its runtime state.

        Raises:
            IndexError: If there is no item at index
        """
        self._array_field(path)
        items = paths.get_in(self._value, path)
        if not isinstance(items, list) or not 0 <= index < len(items):
            raise IndexError(f"'{path}' has no item {index}")
        del items[index]
        logger.debug("Removed item %d from '%s'", index, path)
        self._restructure(path)
        self._cycle(changed=[path], forced_prefix=path)

    def _value_field(self, path: str) -> FieldInstance:
        instance = self._fields.get(path)
        if instance is None or not instance.spec.has_value:
            raise ValueError(f"Unknown field path '{path}'")
        return instance

    def _array_field(self, path: str) -> FieldInstance:
        instance = self._value_field(path)
        if not instance.spec.node.is_array:
            raise ValueError(f"'{path}' is not an array field")
        return instance

    # -------------------------------------------------------------------------
    # External data
    # -------------------------------------------------------------------------

    @property
    def external_data(self) -> Mapping[str, Any]:
        return MappingProxyType(self._external)

    def set_external_data(self, data: Mapping[str, Any]) -> None:
        """Replace external data; changed keys trigger dependents like value changes."""
        data = dict(data)
        changed = [
            key for key in set(self._external) | set(data)
            if self._external.get(key) != data.get(key)
        ]
        self._external = data
        if changed:
            self._cycle(external=changed)

    def update_external_data(self, partial: Mapping[str, Any]) -> None:
        """Merge top-level keys into external data."""
        changed = [key for key, value in partial.items() if self._external.get(key) != value]
        self._external.update(partial)
        if changed:
            self._cycle(external=changed)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def field_state(self, path: str) -> FieldState:
        state = self._states.get(path)
        if state is None:
            raise ValueError(f"Unknown field path '{path}'")
        return state

    def field_states(self) -> dict[str, FieldState]:
        return dict(self._states)

    def errors(self) -> dict[str, list[str]]:
        """Resolved messages for every field that currently has errors."""
        return {path: list(s.messages) for path, s in self._states.items() if s.messages}

    @property
    def valid(self) -> bool:
        return all(not self._active_errors(path) for path in self._fields)

    @property
    def pending(self) -> bool:
        return bool(self._tasks or self._queued)

    @property
    def submitting(self) -> bool:
        return self._submitting

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def submit(self, handler: SubmitHandler | None = None) -> bool:
        """Settle pending work, then emit `submit` and call handler if the form is valid.

        `formSubmitting` holds while this runs. Returns whether the form was submitted.
        """
        self._submitting = True
        self._refresh_buttons()
        try:
            await self.settle()
            if not self.valid:
                logger.debug("Submit blocked: form is invalid")
                return False
            value = self.value
            self.events.emit(SUBMIT, value)
            if handler is not None:
                result = handler(value)
                if inspect.isawaitable(result):
                    await result
            return True
        finally:
            self._submitting = False
            self._refresh_buttons()

    def reset(self) -> None:
        """Restore the initial value and re-evaluate everything."""
        self._restart(copy.deepcopy(self._initial))
        self.events.emit(RESET)

    def clear(self) -> None:
        """Empty every field and array, then re-evaluate everything."""
        self._restart(build_value(self._specs, empty=True))
        self.events.emit(CLEAR)

    def _restart(self, value: dict[str, Any]) -> None:
        self._value = value
        self._restructure("")
        self._stabilizer.frozen.clear()
        self._user_set.clear()
        self._cycle(forced_prefix="")

    def reevaluate(self) -> None:
        """Evaluate every entry, including function entries without dependsOn."""
        self._cycle(forced_prefix="")

    def flush_debounced(self) -> int:
        """Run pending debounced entries now. Returns how many ran."""
        return self._debouncer.flush()

    async def settle(self) -> None:
        """Run debounced entries and wait for every async validator to finish."""
        self.flush_debounced()
        while self._queued or self._tasks:
            for path, (generation, validators, ctx) in list(self._queued.items()):
                del self._queued[path]
                self._tasks[path] = asyncio.create_task(
                    self._run_async(path, generation, validators, ctx)
                )
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            for path, task in list(self._tasks.items()):
                if task.done():
                    del self._tasks[path]
            self.flush_debounced()

    async def close(self) -> None:
        """Cancel timers and async validators and close the owned HTTP client."""
        self._debouncer.cancel_all()
        for path in list(self._tasks) + list(self._queued):
            self._cancel_async(path)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Evaluation cycle
    # -------------------------------------------------------------------------

    def _cycle(
        self,
        changed: Iterable[str] = (),
        external: Iterable[str] = (),
        forced_prefix: str | None = None,
        forced_ids: Iterable[str] = (),
        carry_counts: bool = False,
    ) -> None:
        changed = list(changed)
        external = list(external)
        forced = set(forced_ids)
        if forced_prefix is not None:
            forced.update(
                e.id for e in self._entries.values() if paths.related(forced_prefix, e.path)
            )

        written, diagnostics = self._stabilizer.run(
            self, changed, external, forced, carry_counts=carry_counts
        )
        for diagnostic in diagnostics:
            self._record(diagnostic)
        touched = set(changed) | written

        previous_flags = dict(self._flags)
        self._run_state_entries(touched, external, forced, buttons=False)
        self._run_property_entries(touched, external, forced)
        self._compute_flags(buttons=False)
        flag_changes = {
            path for path, flags in self._flags.items() if previous_flags.get(path) != flags
        }
        self._validate(self._fields_to_validate(touched, external, flag_changes, forced_prefix))
        self._refresh_buttons(forced)

    def _refresh_buttons(self, forced: set[str] | None = None) -> None:
        # Buttons read form aggregates, so all of them are re-evaluated
        self._run_state_entries(None, (), forced or set(), buttons=True)
        self._compute_flags(buttons=True)
        self._publish()

    def _affected(
        self,
        entry: EntryInstance,
        touched: set[str] | None,
        external: list[str],
        forced: set[str],
    ) -> bool:
        if entry.id in forced or touched is None:
            return True
        if entry.affected_by(touched, external):
            if entry.entry.debounced:
                self._schedule(entry)
                return False
            return True
        return False

    def _run_state_entries(
        self,
        touched: set[str] | None,
        external: list[str],
        forced: set[str],
        buttons: bool,
    ) -> None:
        for entry in self._entries.values():
            if entry.entry.type not in FLAGS or entry.field.spec.node.is_button != buttons:
                continue
            if not self._affected(entry, touched, external, forced):
                continue
            context = self._context(entry.field)
            try:
                active = self.conditions.evaluate(entry.entry.condition, context)
                if entry.entry.source is None:
                    result = active
                else:
                    result = active and to_bool(self._source_value(entry, context))
            except Exception as e:
                self._entry_failed(entry, e)
                continue
            self._state_results[entry.id] = result

    def _run_property_entries(
        self, touched: set[str], external: list[str], forced: set[str]
    ) -> None:
        for entry in self._entries.values():
            if entry.entry.type != "propertyDerivation":
                continue
            if not self._affected(entry, touched, external, forced):
                continue
            context = self._context(entry.field)
            try:
                if not self.conditions.evaluate(entry.entry.condition, context):
                    self._overrides.pop(entry.id, None)
                    continue
                self._overrides[entry.id] = self._source_value(entry, context)
            except Exception as e:
                self._entry_failed(entry, e)

    def _compute_flags(self, buttons: bool) -> None:
        for path, instance in self._fields.items():
            node = instance.spec.node
            if node.is_button != buttons:
                continue
            flags = {name: bool(getattr(node, name)) for name in FLAGS}
            for entry in self._entries_by_field.get(path, []):
                if entry.entry.type in flags and self._state_results.get(entry.id):
                    flags[entry.entry.type] = True
            self._flags[path] = (
                flags["hidden"],
                flags["disabled"],
                flags["readonly"],
                flags["required"],
            )

    def _context(self, instance: FieldInstance) -> EvaluationContext:
        return evaluation_context(self._value, instance, MappingProxyType(self._external))

    def _source_value(self, entry: EntryInstance, context: EvaluationContext) -> Any:
        logic = entry.entry
        if logic.source == "value":
            return copy.deepcopy(logic.value)
        if logic.source == "expression":
            return Evaluator(context, self.functions).evaluate(
                self.resolver.ast(logic.expression or "")
            )
        if logic.source == "function":
            namespace = (
                self.registry.property_derivations
                if logic.type == "propertyDerivation"
                else self.registry.derivations
            )
            return namespace.get(logic.function_name or "")(context)
        return None

    def _entry_failed(self, entry: EntryInstance, error: Exception) -> None:
        logger.error("Logic entry '%s' failed: %s", entry.label, error)
        self._record(Diagnostic("error", entry.path, entry.id, str(error)))

    def _record(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        self.events.emit(DIAGNOSTIC, diagnostic)

    def _report_validator_error(self, path: str, label: str, message: str) -> None:
        self._record(Diagnostic("error", path, label, message))

    # -------------------------------------------------------------------------
    # Stabilizer host
    # -------------------------------------------------------------------------

    def derivation_instances(self) -> list[EntryInstance]:
        return self._derivations

    def siblings(self, instance: EntryInstance) -> list[EntryInstance]:
        return [
            e
            for e in self._entries_by_field.get(instance.path, [])
            if e.entry.type == "derivation" and e.id != instance.id
        ]

    def cycle_mates(self, instance: EntryInstance) -> list[EntryInstance]:
        component = set(self.graph.component(instance.template.id))
        return [
            e
            for e in self._derivations
            if e.id != instance.id
            and e.template.id in component
            and (
                e.field.scope == instance.field.scope
                or not e.field.scope
                or not instance.field.scope
            )
        ]

    def rank(self, instance: EntryInstance) -> int:
        return self.graph.rank(instance.template.id)

    def condition_holds(self, instance: EntryInstance) -> bool:
        return self.conditions.evaluate(instance.entry.condition, self._context(instance.field))

    def compute(self, instance: EntryInstance) -> Any:
        return self._source_value(instance, self._context(instance.field))

    def read(self, path: str) -> Any:
        return paths.get_in(self._value, path)

    def write(self, path: str, value: Any) -> None:
        paths.set_in(self._value, path, value)

    def schedule_debounced(self, instance: EntryInstance) -> None:
        self._schedule(instance)

    def overridden(self, path: str) -> bool:
        return path in self._user_set

    def release_override(self, path: str) -> None:
        self._user_set.discard(path)

    def _schedule(self, entry: EntryInstance) -> None:
        delay = entry.entry.debounce_ms
        self._debouncer.schedule(
            entry.id, self.settings.default_debounce_ms if delay is None else delay
        )

    def _run_debounced(self, entry_id: str) -> None:
        if entry_id not in self._entries:
            return
        logger.debug("Running debounced entry '%s'", entry_id)
        # still the cycle that scheduled it, as far as convergence goes
        self._cycle(forced_ids=[entry_id], carry_counts=True)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _inactive(self, path: str) -> bool:
        """Hidden or disabled, or inside a hidden container."""
        hidden, disabled, _, _ = self._flags.get(path, (False, False, False, False))
        if hidden or disabled:
            return True
        return any(self._flags.get(a, (False,) * 4)[0] for a in self._ancestors.get(path, []))

    def _fields_to_validate(
        self,
        touched: set[str],
        external: list[str],
        flag_changes: set[str],
        forced_prefix: str | None,
    ) -> list[str]:
        selected = []
        for path, instance in self._fields.items():
            if not instance.spec.node.holds_value:
                continue
            if forced_prefix is not None and paths.related(forced_prefix, path):
                selected.append(path)
            elif any(paths.related(path, t) for t in touched):
                selected.append(path)
            elif path in flag_changes or any(a in flag_changes for a in self._ancestors[path]):
                selected.append(path)
            elif self._validation_affected(instance, touched, external):
                selected.append(path)
        return selected

    def _validation_affected(
        self, instance: FieldInstance, touched: set[str], external: list[str]
    ) -> bool:
        for dependency in self._validation_deps.get(instance.spec.template, []):
            if dependency.source == FORM:
                target = concrete_path(dependency, instance.scope, instance.indices)
                if any(paths.related(target, t) for t in touched):
                    return True
            elif dependency.source == EXTERNAL:
                if any(paths.related(dependency.path, k) for k in external):
                    return True
        return False

    def _validate(self, field_paths: list[str]) -> None:
        for path in field_paths:
            instance = self._fields[path]
            self._cancel_async(path)
            self._async_errors.pop(path, None)
            if self._inactive(path):
                self._errors[path] = ()
                continue

            ctx, context = self.pipeline.contexts(
                path, instance.scope, self._value, MappingProxyType(self._external)
            )
            required = self._flags.get(path, (False,) * 4)[3]
            outcomes = self.pipeline.validate(instance.spec.node, ctx, context, required)
            self._errors[path] = tuple(outcomes)
            if outcomes:
                continue

            validators = self.pipeline.async_validators(instance.spec.node, context)
            if validators:
                snapshot = ValidatorContext(
                    path,
                    instance.scope,
                    copy.deepcopy(self._value),
                    MappingProxyType(copy.deepcopy(self._external)),
                )
                self._start_async(path, validators, snapshot)

    def _start_async(
        self, path: str, validators: list[ValidatorConfig], ctx: ValidatorContext
    ) -> None:
        generation = self._generations.get(path, 0) + 1
        self._generations[path] = generation
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: run on settle()
            self._queued[path] = (generation, validators, ctx)
            return
        self._tasks[path] = loop.create_task(self._run_async(path, generation, validators, ctx))

    def _cancel_async(self, path: str) -> None:
        self._generations[path] = self._generations.get(path, 0) + 1
        self._queued.pop(path, None)
        task = self._tasks.pop(path, None)
        if task is not None and not task.done():
            task.cancel()

    async def _run_async(
        self,
        path: str,
        generation: int,
        validators: list[ValidatorConfig],
        ctx: ValidatorContext,
    ) -> None:
        outcomes = await self.pipeline.validate_async(validators, ctx, self._http_client())
        if self._generations.get(path) != generation:
            logger.debug("Discarding stale async validation for '%s'", path)
            return
        self._tasks.pop(path, None)
        self._async_errors[path] = tuple(outcomes)
        self._refresh_buttons()

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.http_timeout)
        return self._client

    def _active_errors(self, path: str) -> tuple[ValidationOutcome, ...]:
        if self._inactive(path):
            return ()
        return self._errors.get(path, ()) + self._async_errors.get(path, ())

    # -------------------------------------------------------------------------
    # Form-state predicates (button conditions)
    # -------------------------------------------------------------------------

    def _form_state(self, predicate: str, field_path: str) -> bool:
        if predicate == "formSubmitting":
            return self._submitting
        if predicate == "formInvalid":
            return not self.valid
        if predicate == "pageInvalid":
            page = self._page_of(field_path)
            if page is None:
                return not self.valid
            return any(
                self._active_errors(path)
                for path, instance in self._fields.items()
                if any(a is page for a in instance.spec.ancestors())
            )
        return False

    def _page_of(self, field_path: str) -> FieldSpec | None:
        instance = self._fields.get(field_path)
        if instance is None:
            return None
        for ancestor in instance.spec.ancestors():
            if ancestor.node.type == "page":
                return ancestor
        return None

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _publish(self) -> None:
        for path in [p for p in self._states if p not in self._fields]:
            del self._states[path]
        for path, instance in self._fields.items():
            state = self._build_state(instance)
            if self._states.get(path) != state:
                self._states[path] = state
                self.events.emit(FIELD_STATE_CHANGED, path, state)

    def _build_state(self, instance: FieldInstance) -> FieldState:
        node = instance.spec.node
        path = instance.path
        hidden, disabled, readonly, required = self._flags.get(path, (False,) * 4)
        overrides = [
            (entry.entry.target_property or "", self._overrides[entry.id])
            for entry in self._entries_by_field.get(path, [])
            if entry.id in self._overrides
        ]
        errors = self._active_errors(path) if node.holds_value else ()
        value = paths.get_in(self._value, path) if instance.spec.has_value else None
        return FieldState(
            path=path,
            value=copy.deepcopy(value),
            hidden=hidden,
            disabled=disabled,
            readonly=readonly,
            required=required,
            properties=build_properties(node.props, overrides),
            errors=errors,
            messages=tuple(self.messages.resolve(e, node.validation_messages) for e in errors),
            pending=path in self._tasks or path in self._queued,
        )
