"""fieldlogic: reactive field-logic engine for declarative forms.

Given a tree of field definitions, fieldlogic keeps every field's
visibility, enabled/readonly/required state, derived value, derived
component properties and validation errors consistent as values change.

Usage:
    from fieldlogic import ConfigLoader, FormEngine, FunctionRegistry

    config = ConfigLoader().load_file(Path("forms/order.yaml"))
    engine = FormEngine(config, registry=FunctionRegistry())
    engine.set_values({"quantity": 2, "unitPrice": 50})
"""

# The engine is imported first: validation modules import engine submodules
from fieldlogic.engine import FieldState, FormEngine
from fieldlogic.config import ConfigLoader, FormConfig
from fieldlogic.errors import (
    ConfigurationError,
    DependencyCycleError,
    DerivationConflictError,
    ExpressionSyntaxError,
    FieldLogicError,
    IllegalLogicError,
    PropertyPathError,
    UnresolvedFunctionError,
)
from fieldlogic.registry import FunctionRegistry
from fieldlogic.settings import Settings
from fieldlogic.validation import HttpValidator, ValidatorContext

__version__ = "0.1.0"

__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "DependencyCycleError",
    "DerivationConflictError",
    "ExpressionSyntaxError",
    "FieldLogicError",
    "FieldState",
    "FormConfig",
    "FormEngine",
    "FunctionRegistry",
    "HttpValidator",
    "IllegalLogicError",
    "PropertyPathError",
    "Settings",
    "UnresolvedFunctionError",
    "ValidatorContext",
]
