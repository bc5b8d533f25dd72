"""Function table for the fieldlogic expression language.

Expressions call functions by name, e.g. `round(formValue.total, 2)`.
Every entry carries enough metadata for `GET /api/functions` to document it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class FunctionCategory(Enum):
    STRING = "string"
    DATE = "date"
    MATH = "math"
    COLLECTION = "collection"
    LOGIC = "logic"


@dataclass
class FunctionParameter:
    """One documented parameter. `variadic` marks a trailing *args parameter."""

    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None
    variadic: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "required": self.required,
            "variadic": self.variadic,
        }


@dataclass
class FunctionDefinition:
    """A callable exposed to expressions together with its documentation.

    Attributes:
        name: Name used at call sites
        description: One-line summary
        category: Documentation grouping
        parameters: Documented parameters, in call order
        return_type: Documented result type ("number", "string", "any", ...)
        implementation: The Python callable; receives evaluated arguments
        examples: Sample expressions
    """

    name: str
    description: str
    category: FunctionCategory
    parameters: list[FunctionParameter]
    return_type: str
    implementation: Callable[..., Any]
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "parameters": [parameter.to_dict() for parameter in self.parameters],
            "returnType": self.return_type,
            "examples": list(self.examples),
        }


class ExpressionFunctions:
    """Per-engine table of expression functions.

    Tables are instances rather than module state, so a function registered
    for one form is invisible to every other form. Use `default_functions()`
    for a table holding the builtins.
    """

    def __init__(self) -> None:
        self._functions: dict[str, FunctionDefinition] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def register(self, definition: FunctionDefinition) -> None:
        """Add a function, replacing any earlier one with the same name."""
        self._functions[definition.name] = definition

    def is_registered(self, name: str) -> bool:
        return name in self

    def get(self, name: str) -> FunctionDefinition:
        """Look up a function.

        Raises:
            ValueError: No function of that name is registered
        """
        try:
            return self._functions[name]
        except KeyError:
            raise ValueError(f"Unknown function: {name}") from None

    def export_documentation(self) -> dict[str, Any]:
        """All functions, keyed by name and grouped by category value."""
        documented = {name: definition.to_dict() for name, definition in sorted(self._functions.items())}
        by_category: dict[str, list[dict[str, Any]]] = {}
        for entry in documented.values():
            by_category.setdefault(entry["category"], []).append(entry)
        return {"functions": documented, "byCategory": by_category}


def default_functions() -> ExpressionFunctions:
    """A fresh table preloaded with every builtin."""
    from fieldlogic.expressions.builtins import register_all_builtins

    functions = ExpressionFunctions()
    register_all_builtins(functions)
    return functions
