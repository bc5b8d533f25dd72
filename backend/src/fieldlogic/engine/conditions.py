"""Condition evaluation for logic entries, validators and schema guards."""

import logging
import math
import re
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from fieldlogic.config.loader import Condition
from fieldlogic.engine import paths
from fieldlogic.engine.dependencies import DependencyResolver
from fieldlogic.expressions import (
    EXTERNAL,
    EvaluationContext,
    ExpressionFunctions,
    Evaluator,
    parse_dependency,
    to_bool,
)

logger = logging.getLogger(__name__)

# (predicate, field path) -> bool, supplied by the engine for button conditions
FormStateProvider = Callable[[str, str], bool]


def _stringify(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip()) if value.strip() else 0.0
        except ValueError:
            return math.nan
    if value is None:
        return 0.0
    return math.nan


def _equals(left: Any, right: Any) -> bool:
    # No coercion: True does not equal 1 and "5" does not equal 5
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    numeric = (int, float, Decimal)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return float(left) == float(right)
    if type(left) is not type(right):
        return False
    return left == right


def _matches(value: Any, pattern: Any) -> bool:
    try:
        return re.search(str(pattern), _stringify(value)) is not None
    except re.error:
        logger.warning("Invalid regex pattern in condition: %r", pattern)
        return False


def _ordered(check: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(left: Any, right: Any) -> bool:
        a, b = _number(left), _number(right)
        if math.isnan(a) or math.isnan(b):
            return False
        return check(a, b)

    return compare


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "notEquals": lambda a, b: not _equals(a, b),
    "greater": _ordered(lambda a, b: a > b),
    "greaterOrEqual": _ordered(lambda a, b: a >= b),
    "less": _ordered(lambda a, b: a < b),
    "lessOrEqual": _ordered(lambda a, b: a <= b),
    "contains": lambda a, b: _stringify(b) in _stringify(a),
    "startsWith": lambda a, b: _stringify(a).startswith(_stringify(b)),
    "endsWith": lambda a, b: _stringify(a).endswith(_stringify(b)),
    "matches": _matches,
}


def compare_values(actual: Any, expected: Any, operator: str) -> bool:
    """Apply a fieldValue operator. Unknown operators are false."""
    compare = OPERATORS.get(operator)
    if compare is None:
        return False
    return compare(actual, expected)


class ConditionEvaluator:
    """Evaluates Condition trees against an EvaluationContext.

    Errors raised while evaluating a condition are logged and the condition
    counts as false, so one broken rule never stops a cycle.
    """

    def __init__(
        self,
        functions: ExpressionFunctions,
        resolver: DependencyResolver,
        form_state: FormStateProvider | None = None,
    ):
        self.functions = functions
        self.resolver = resolver
        self.form_state = form_state

    def evaluate(self, condition: Condition | None, context: EvaluationContext) -> bool:
        """Evaluate a condition; a missing condition is true."""
        if condition is None:
            return True
        try:
            return self._evaluate(condition, context)
        except Exception as e:
            logger.warning(
                "Condition on '%s' failed, treating as false: %s", context.field_path, e
            )
            return False

    def _evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        kind = condition.type
        if kind == "literal":
            return bool(condition.value)
        if kind == "and":
            return all(self._evaluate(c, context) for c in condition.conditions)
        if kind == "or":
            return any(self._evaluate(c, context) for c in condition.conditions)
        if kind == "fieldValue":
            actual = self.read(condition.field_path or "", context)
            return compare_values(actual, condition.value, condition.operator or "equals")
        if kind == "javascript":
            ast = self.resolver.ast(condition.expression or "")
            return to_bool(Evaluator(context, self.functions).evaluate(ast))
        if self.form_state is None:
            return False
        return self.form_state(kind, context.field_path)

    @staticmethod
    def read(field_path: str, context: EvaluationContext) -> Any:
        """Read a fieldValue path: scope-relative unless `$root.` or `externalData.`."""
        dependency = parse_dependency(field_path)
        if dependency.source == EXTERNAL:
            return paths.get_in(context.external_data, dependency.path)
        if dependency.absolute:
            root = context.root_form_value
            return paths.get_in(context.form_value if root is None else root, dependency.path)
        return paths.get_in(context.form_value, dependency.path)
