"""Custom function registry for fieldlogic.

Provides registration and lookup for application functions referenced by
name from form configuration:

- derivations: `fn(ctx: EvaluationContext) -> value`
- property_derivations: `fn(ctx: EvaluationContext) -> property value`
- validators: `fn(ctx: ValidatorContext, params: dict) -> result`
- async_validators: `async fn(ctx: ValidatorContext, params: dict) -> result`,
  or an `HttpValidator` for `customHttp` validators

A validator result is None (valid), an error kind string, a mapping with a
`kind` key (other keys become outcome params), or a list of those.

Dependency contract: a logic entry that uses `functionName` and declares no
`dependsOn` depends on nothing. The engine cannot see which fields a Python
function reads, so such an entry is evaluated when the form (or its array
item) is instantiated, on reset and clear, and on `FormEngine.reevaluate()`,
never on field changes. Function authors must list every field the function
reads in `dependsOn`.

Validators follow the same rule. A field is re-validated when its own value
changes, and when anything its `when`, `expression` or `errorParams` read
changes. A validator function that reads other fields through
`ValidatorContext.value_of` must list them in the validator's `dependsOn`
(paths relative to the array item, or `$root.`-prefixed); otherwise its
outcome goes stale when those fields change:

    {"type": "custom", "functionName": "matchesPassword", "dependsOn": ["password"]}

Registries are plain instances passed to `FormEngine`; nothing is global.
"""

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from fieldlogic.errors import UnresolvedFunctionError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


class FunctionNamespace(Generic[T]):
    """One namespace of the registry, keyed by function name."""

    def __init__(self, label: str):
        self.label = label
        self._functions: dict[str, T] = {}

    def register(self, name: str, fn: T) -> None:
        """Register a function by name.

        Idempotent: re-registering an existing name is a no-op.
        """
        if name in self._functions:
            logger.debug("%s function '%s' already registered", self.label, name)
            return
        self._functions[name] = fn

    def get(self, name: str) -> T:
        """Get a registered function by name.

        Raises:
            UnresolvedFunctionError: If the name is not registered
        """
        if name not in self._functions:
            raise UnresolvedFunctionError(
                f"{self.label} function '{name}' is not registered. "
                "Functions must be registered before the form is built."
            )
        return self._functions[name]

    def is_registered(self, name: str) -> bool:
        return name in self._functions

    def list_registered(self) -> list[str]:
        return sorted(self._functions.keys())

    def clear(self) -> None:
        self._functions.clear()


class FunctionRegistry:
    """Registry of custom functions, injected into FormEngine.

    Example:
        registry = FunctionRegistry()

        @registry.derivation("fullName")
        def full_name(ctx: EvaluationContext) -> str:
            return f"{ctx.form_value['first']} {ctx.form_value['last']}"

        engine = FormEngine(config, registry=registry)
    """

    def __init__(self) -> None:
        self.derivations: FunctionNamespace[Callable[..., Any]] = FunctionNamespace("Derivation")
        self.property_derivations: FunctionNamespace[Callable[..., Any]] = FunctionNamespace(
            "Property derivation"
        )
        self.validators: FunctionNamespace[Callable[..., Any]] = FunctionNamespace("Validator")
        self.async_validators: FunctionNamespace[Any] = FunctionNamespace("Async validator")

    def derivation(self, name: str) -> Callable[[F], F]:
        """Decorator to register a derivation function."""
        return self._decorator(self.derivations, name)

    def property_derivation(self, name: str) -> Callable[[F], F]:
        """Decorator to register a property derivation function."""
        return self._decorator(self.property_derivations, name)

    def validator(self, name: str) -> Callable[[F], F]:
        """Decorator to register a synchronous validator."""
        return self._decorator(self.validators, name)

    def async_validator(self, name: str) -> Callable[[F], F]:
        """Decorator to register an async validator coroutine function."""
        return self._decorator(self.async_validators, name)

    @staticmethod
    def _decorator(namespace: FunctionNamespace, name: str) -> Callable[[F], F]:
        def decorator(fn: F) -> F:
            namespace.register(name, fn)
            return fn

        return decorator

    def clear(self) -> None:
        """Clear all namespaces."""
        for namespace in (
            self.derivations,
            self.property_derivations,
            self.validators,
            self.async_validators,
        ):
            namespace.clear()
