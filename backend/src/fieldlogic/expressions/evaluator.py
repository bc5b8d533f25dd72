"""Evaluator for the fieldlogic expression language.

Walks the AST and computes the result against an evaluation context
holding the scoped form value, the hosting field's value and external data.

The evaluator is a sandbox: only the context variables below are
addressable, member access only reads mappings (plus `.length`), and
method calls are restricted to a per-type whitelist.
"""

import operator
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from functools import singledispatchmethod
from typing import Any, Callable

from fieldlogic.expressions.functions import ExpressionFunctions
from fieldlogic.expressions.parser import (
    ASTNode,
    ArrayLiteral,
    BinaryOp,
    Conditional,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    MethodCall,
    UnaryOp,
    parse,
)

# Names an expression may reference
CONTEXT_VARIABLES = frozenset({"formValue", "fieldValue", "externalData", "rootFormValue"})

BLOCKED_PROPERTIES = frozenset({
    "constructor",
    "__proto__",
    "prototype",
    "__defineGetter__",
    "__defineSetter__",
    "__lookupGetter__",
    "__lookupSetter__",
})


class EvaluationError(Exception):
    """Error during expression evaluation."""
    pass


@dataclass(frozen=True)
class EvaluationContext:
    """Context for expression evaluation.

    Attributes:
        form_value: The form value, scoped to the innermost array item
        field_value: Value of the field hosting the logic entry
        field_path: Absolute path of the hosting field
        external_data: Read-only external state
        root_form_value: The whole form value, regardless of scope
    """

    form_value: Mapping[str, Any]
    field_value: Any = None
    field_path: str = ""
    external_data: Mapping[str, Any] = field(default_factory=dict)
    root_form_value: Mapping[str, Any] | None = None

    def variables(self) -> dict[str, Any]:
        return {
            "formValue": self.form_value,
            "fieldValue": self.field_value,
            "externalData": self.external_data,
            "rootFormValue": (
                self.form_value if self.root_form_value is None else self.root_form_value
            ),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_fixed(value: Any, digits: int = 0) -> str:
    quantum = Decimal(10) ** -int(digits)
    return str(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _js_string(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None else _js_string(v) for v in value)
    return str(value)


def _index_of(seq: Any, item: Any, start: int = 0) -> int:
    try:
        return seq.index(item, start)
    except ValueError:
        return -1


def _last_index_of(seq: Any, item: Any) -> int:
    if isinstance(seq, str):
        return seq.rfind(item)
    for i in range(len(seq) - 1, -1, -1):
        if seq[i] == item:
            return i
    return -1


def _substring(s: str, start: int, end: int | None = None) -> str:
    start = max(0, int(start))
    end = len(s) if end is None else max(0, int(end))
    if start > end:
        start, end = end, start
    return s[start:end]


def _slice(seq: Any, start: int = 0, end: int | None = None) -> Any:
    return seq[int(start):None if end is None else int(end)]


STRING_METHODS: dict[str, Callable[..., Any]] = {
    "charAt": lambda s, i=0: s[int(i)] if 0 <= int(i) < len(s) else "",
    "concat": lambda s, *args: s + "".join(_js_string(a) for a in args),
    "endsWith": lambda s, suffix: s.endswith(str(suffix)),
    "includes": lambda s, sub: str(sub) in s,
    "indexOf": lambda s, sub, start=0: s.find(str(sub), int(start)),
    "lastIndexOf": _last_index_of,
    "padEnd": lambda s, n, fill=" ": s.ljust(int(n), fill[:1] or " "),
    "padStart": lambda s, n, fill=" ": s.rjust(int(n), fill[:1] or " "),
    "repeat": lambda s, n: s * int(n),
    "replace": lambda s, old, new: s.replace(str(old), str(new), 1),
    "slice": _slice,
    "split": lambda s, sep=None: list(s) if sep == "" else s.split(sep),
    "startsWith": lambda s, prefix: s.startswith(str(prefix)),
    "substring": _substring,
    "toLowerCase": lambda s: s.lower(),
    "toUpperCase": lambda s: s.upper(),
    "trim": lambda s: s.strip(),
    "trimEnd": lambda s: s.rstrip(),
    "trimStart": lambda s: s.lstrip(),
    "toString": _js_string,
}

NUMBER_METHODS: dict[str, Callable[..., Any]] = {
    "toFixed": _to_fixed,
    "toString": _js_string,
}

ARRAY_METHODS: dict[str, Callable[..., Any]] = {
    "concat": lambda a, *args: list(a) + [
        x for arg in args for x in (arg if isinstance(arg, (list, tuple)) else [arg])
    ],
    "includes": lambda a, item: item in a,
    "indexOf": _index_of,
    "join": lambda a, sep=",": str(sep).join("" if v is None else _js_string(v) for v in a),
    "lastIndexOf": _last_index_of,
    "slice": lambda a, start=0, end=None: list(_slice(a, start, end)),
    "toString": _js_string,
}


_ORDERINGS: dict[str, Callable[[int, int], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITHMETIC: dict[str, tuple[str, Callable[[Any, Any], Any]]] = {
    "-": ("subtract", operator.sub),
    "*": ("multiply", operator.mul),
    "/": ("divide", operator.truediv),
    "%": ("modulo", operator.mod),
}


def _guard(name: str) -> None:
    if name in BLOCKED_PROPERTIES or name.startswith("__"):
        raise EvaluationError(f'Property "{name}" is not accessible for security reasons')


def _to_number(value: Any) -> int | float | Decimal | None:
    """Coerce numeric strings the way form inputs deliver them."""
    if isinstance(value, bool):
        return int(value)
    if _is_number(value):
        return value
    if not isinstance(value, str):
        return None
    try:
        return float(value) if any(c in value for c in ".eE") else int(value)
    except ValueError:
        return None


def _align_dates(left: date, right: date) -> tuple[date, date]:
    # a datetime compared against a plain date compares by calendar day
    if isinstance(left, datetime) and not isinstance(right, datetime):
        return left.date(), right
    if isinstance(right, datetime) and not isinstance(left, datetime):
        return left, right.date()
    return left, right


def _equals(left: Any, right: Any) -> bool:
    """Loose equality: null only equals null, and "5" == 5 holds."""
    if left is None or right is None:
        return left is right
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    if (_is_number(left) and isinstance(right, str)) or (isinstance(left, str) and _is_number(right)):
        return _to_number(left) == _to_number(right)
    if isinstance(left, date) and isinstance(right, date):
        left, right = _align_dates(left, right)
    return left == right


def _compare(left: Any, right: Any) -> int:
    """Three-way comparison; null sorts before everything else."""
    if left is None or right is None:
        return (left is not None) - (right is not None)

    if isinstance(left, date) and isinstance(right, date):
        left, right = _align_dates(left, right)
        return (left > right) - (left < right)
    if isinstance(left, str) and isinstance(right, str):
        return (left > right) - (left < right)

    a, b = _to_number(left), _to_number(right)
    if a is None or b is None:
        raise EvaluationError(f"Cannot compare {type(left).__name__} and {type(right).__name__}")
    return (float(a) > float(b)) - (float(a) < float(b))


def _contains(collection: Any, item: Any) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return item is not None and str(item) in collection
    if not isinstance(collection, (list, tuple, Mapping)):
        raise EvaluationError(
            f"'in' operator requires collection, got {type(collection).__name__}"
        )
    return item in collection


def _arithmetic(left: Any, right: Any, verb: str, op: Callable[[Any, Any], Any]) -> Any:
    # An untouched input holds "" and propagates like null
    if any(v is None or v == "" for v in (left, right)):
        return None
    a, b = _to_number(left), _to_number(right)
    if a is None or b is None:
        raise EvaluationError(f"Cannot {verb} {type(left).__name__} and {type(right).__name__}")
    if isinstance(a, Decimal) != isinstance(b, Decimal):
        a, b = Decimal(str(a)), Decimal(str(b))
    return op(a, b)


def _plus(left: Any, right: Any) -> Any:
    if not (isinstance(left, str) or isinstance(right, str)):
        return _arithmetic(left, right, "add", operator.add)
    if left is None or right is None:
        return None
    return _js_string(left) + _js_string(right)


def _method_table(value: Any) -> dict[str, Callable[..., Any]]:
    if isinstance(value, str):
        return STRING_METHODS
    if isinstance(value, (list, tuple)):
        return ARRAY_METHODS
    if _is_number(value):
        return NUMBER_METHODS
    return {}


class Evaluator:
    """Evaluates an expression AST against one EvaluationContext.

    Usage:
        ctx = EvaluationContext(form_value={"quantity": 2, "unitPrice": 5})
        result = Evaluator(ctx, functions).evaluate(parse("formValue.quantity * formValue.unitPrice"))
    """

    def __init__(self, context: EvaluationContext, functions: ExpressionFunctions):
        self.context = context
        self.functions = functions
        self._variables = context.variables()

    @singledispatchmethod
    def evaluate(self, node: ASTNode) -> Any:
        raise EvaluationError(f"Unknown node type: {type(node).__name__}")

    @evaluate.register
    def _(self, node: Literal) -> Any:
        return node.value

    @evaluate.register
    def _(self, node: ArrayLiteral) -> Any:
        return [self.evaluate(element) for element in node.elements]

    @evaluate.register
    def _(self, node: Identifier) -> Any:
        try:
            return self._variables[node.name]
        except KeyError:
            raise EvaluationError(f"Unknown identifier: {node.name}") from None

    @evaluate.register
    def _(self, node: MemberAccess) -> Any:
        target = self.evaluate(node.object)
        _guard(node.member)
        if isinstance(target, Mapping):
            return target.get(node.member)
        if node.member == "length" and isinstance(target, (str, list, tuple)):
            return len(target)
        return None

    @evaluate.register
    def _(self, node: IndexAccess) -> Any:
        target = self.evaluate(node.object)
        index = self.evaluate(node.index)
        if target is None:
            return None
        if isinstance(index, str):
            _guard(index)
        if isinstance(target, Mapping):
            return target.get(index)
        if not isinstance(target, (list, tuple, str)):
            return None
        if index == "length":
            return len(target)
        if isinstance(index, float) and index.is_integer():
            index = int(index)
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(target):
            return target[index]
        return None

    @evaluate.register
    def _(self, node: UnaryOp) -> Any:
        operand = self.evaluate(node.operand)
        if node.operator == "!":
            return not to_bool(operand)
        if operand is None:
            return None
        number = _to_number(operand)
        if number is None:
            raise EvaluationError(f"Cannot apply unary {node.operator} to {operand!r}")
        return -number if node.operator == "-" else number

    @evaluate.register
    def _(self, node: BinaryOp) -> Any:
        op = node.operator
        left = self.evaluate(node.left)

        # && and || short-circuit and yield an operand, not a boolean
        if op == "&&":
            return self.evaluate(node.right) if to_bool(left) else left
        if op == "||":
            return left if to_bool(left) else self.evaluate(node.right)
        if op == "??":
            return self.evaluate(node.right) if left is None else left

        right = self.evaluate(node.right)
        if op in _ORDERINGS:
            return _ORDERINGS[op](_compare(left, right), 0)
        if op in _ARITHMETIC:
            verb, func = _ARITHMETIC[op]
            if op in ("/", "%") and right != "" and _to_number(right) == 0:
                raise EvaluationError("Division by zero" if op == "/" else "Modulo by zero")
            return _arithmetic(left, right, verb, func)
        if op == "+":
            return _plus(left, right)
        if op in ("==", "!="):
            return _equals(left, right) == (op == "==")
        if op in ("in", "not in"):
            return _contains(right, left) == (op == "in")
        raise EvaluationError(f"Unknown operator: {op}")

    @evaluate.register
    def _(self, node: Conditional) -> Any:
        branch = node.consequent if to_bool(self.evaluate(node.test)) else node.alternate
        return self.evaluate(branch)

    @evaluate.register
    def _(self, node: FunctionCall) -> Any:
        if not self.functions.is_registered(node.name):
            raise EvaluationError(f"Unknown function: {node.name}")
        implementation = self.functions.get(node.name).implementation
        args = [self.evaluate(arg) for arg in node.arguments]
        try:
            return implementation(*args)
        except Exception as e:
            raise EvaluationError(f"Error calling {node.name}: {e}") from e

    @evaluate.register
    def _(self, node: MethodCall) -> Any:
        target = self.evaluate(node.object)
        _guard(node.method)
        if target is None:
            if node.optional:
                return None
            raise EvaluationError(f'Cannot call "{node.method}" on null')

        method = _method_table(target).get(node.method)
        if method is None:
            raise EvaluationError(f'Method "{node.method}" is not allowed for security reasons')

        args = [self.evaluate(arg) for arg in node.arguments]
        try:
            return method(target, *args)
        except (TypeError, ValueError, IndexError) as e:
            raise EvaluationError(f"Error calling {node.method}: {e}") from e


def to_bool(value: Any) -> bool:
    """Truthiness shared by conditions, validators and the && and || operators.

    Empty strings, zero and null are false; arrays and objects are true
    even when empty.
    """
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float, Decimal, str)):
        return bool(value)
    return True


def evaluate(
    expression: str | ASTNode,
    context: EvaluationContext,
    functions: ExpressionFunctions,
) -> Any:
    """Evaluate an expression string, or an already parsed AST, against a context.

    Example:
        evaluate(
            'formValue.status == "active" && formValue.count > 0',
            EvaluationContext(form_value={"status": "active", "count": 5}),
            default_functions(),
        )  # True
    """
    tree = parse(expression) if isinstance(expression, str) else expression
    return Evaluator(context, functions).evaluate(tree)


def evaluate_bool(
    expression: str | ASTNode,
    context: EvaluationContext,
    functions: ExpressionFunctions,
) -> bool:
    return to_bool(evaluate(expression, context, functions))
