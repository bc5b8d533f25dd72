"""fieldlogic reactive engine.

Provides:
- FormEngine: value/state facade running evaluation cycles
- DependencyGraph: template-level derivation graph with cycle classification
- EventBus: fieldStateChanged, submit, reset, clear and diagnostic events
- FieldState: resolved per-field state

Usage:
    from fieldlogic.engine import FormEngine

    engine = FormEngine(config, registry=registry, external_data={"rate": 1.1})
    engine.set_value("amountUSD", 100)
"""

from fieldlogic.engine.conditions import ConditionEvaluator, compare_values
from fieldlogic.engine.dependencies import DependencyResolver
from fieldlogic.engine.events import EVENTS, EventBus
from fieldlogic.engine.form import FormEngine
from fieldlogic.engine.graph import DependencyGraph, EntryTemplate, compile_entries
from fieldlogic.engine.scheduler import DerivationStabilizer, Diagnostic
from fieldlogic.engine.scope import FieldInstance, FieldSpec, build_specs
from fieldlogic.engine.state import FieldState

__all__ = [
    "ConditionEvaluator",
    "DependencyGraph",
    "DependencyResolver",
    "DerivationStabilizer",
    "Diagnostic",
    "EVENTS",
    "EntryTemplate",
    "EventBus",
    "FieldInstance",
    "FieldSpec",
    "FieldState",
    "FormEngine",
    "build_specs",
    "compare_values",
    "compile_entries",
]
