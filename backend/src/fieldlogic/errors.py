"""Exception hierarchy for fieldlogic.

Configuration errors are fatal and raised while a form is being built.
Evaluation errors are caught at the logic entry boundary and turned into
diagnostics by the scheduler.
"""


class FieldLogicError(Exception):
    """Base class for all fieldlogic errors."""


class ConfigurationError(FieldLogicError, ValueError):
    """The form configuration is invalid. Raised at build time."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class IllegalLogicError(ConfigurationError):
    """A logic type is attached to a node kind that does not admit it."""


class UnresolvedFunctionError(ConfigurationError):
    """A functionName does not resolve in the injected registry."""


class DependencyCycleError(ConfigurationError):
    """Derivations form a cycle that is not a bidirectional pair."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            "Derivation cycle detected: " + " -> ".join(cycle + cycle[:1])
        )


class PropertyPathError(ConfigurationError):
    """A propertyDerivation target path is empty or deeper than two levels."""


class ExpressionSyntaxError(ConfigurationError):
    """An expression does not parse or uses names outside the sandbox."""


class DerivationConflictError(ConfigurationError):
    """More than one derivation on the same field is active at once."""
