"""Built-in functions for the fieldlogic expression language.

`register_all_builtins(functions)` loads every builtin into an
ExpressionFunctions table. `default_functions()` does this for you.

Categories:
- String: len, isEmpty, concat, trim, upper, lower, matches, startsWith, endsWith
- Date: now, today, date, daysBetween, addDays, year, month, day
- Math: abs, round, floor, ceil, min, max, sum, number
- Collection: contains, size, first, last
- Logic: coalesce, if
"""

import math
import re
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable

from fieldlogic.expressions.functions import (
    ExpressionFunctions,
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
)


def register_all_builtins(functions: ExpressionFunctions) -> None:
    """Register all built-in functions on the given table."""
    for name, description, category, parameters, return_type, impl, examples in _BUILTINS:
        functions.register(
            FunctionDefinition(
                name=name,
                description=description,
                category=category,
                parameters=parameters,
                return_type=return_type,
                implementation=impl,
                examples=examples,
            )
        )


# -----------------------------------------------------------------------------
# String Functions
# -----------------------------------------------------------------------------


def _len(value: Any) -> int:
    """Return length of string or array, 0 for None."""
    if isinstance(value, (str, list, tuple)):
        return len(value)
    return 0


def _is_empty(value: Any) -> bool:
    """Return True if value is None, blank string, or empty array."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _concat(*args: Any) -> str:
    return "".join(str(a) for a in args if a is not None)


def _matches(value: str | None, pattern: str) -> bool:
    """Test if string matches regex pattern anywhere."""
    if value is None:
        return False
    try:
        return re.search(pattern, str(value)) is not None
    except re.error:
        return False


def _text(transform: Callable[[str], Any]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        return transform("" if value is None else str(value))
    return apply


# -----------------------------------------------------------------------------
# Date Functions
# -----------------------------------------------------------------------------


def _to_date(value: Any) -> date | None:
    """Coerce a date, datetime or ISO string (as date inputs deliver) to a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _days_between(start: Any, end: Any) -> int | None:
    start_date, end_date = _to_date(start), _to_date(end)
    if start_date is None or end_date is None:
        return None
    return (end_date - start_date).days


def _add_days(value: Any, days: int) -> str | None:
    """Add days to a date and return it as an ISO string."""
    d = _to_date(value)
    if d is None or days is None:
        return None
    return (d + timedelta(days=int(days))).isoformat()


def _date_part(part: str) -> Callable[[Any], int | None]:
    def extract(value: Any) -> int | None:
        d = _to_date(value)
        return None if d is None else getattr(d, part)
    return extract


# -----------------------------------------------------------------------------
# Math Functions
# -----------------------------------------------------------------------------


def _number(value: Any) -> float | int | Decimal | None:
    """Parse a numeric input value, None when it is blank or not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    try:
        text = str(value).strip()
        return float(text) if text else None
    except ValueError:
        return None


def _abs(value: Any) -> Any:
    n = _number(value)
    return None if n is None else abs(n)


def _round_num(value: Any, decimals: int = 0) -> float | int | Decimal | None:
    """Round half up to the given decimal places.

    Python's round() uses banker's rounding, which surprises users entering
    currency amounts (round(2.5) == 2), so the value is quantized instead.
    """
    n = _number(value)
    if n is None:
        return None
    decimals = int(decimals or 0)
    try:
        quantized = Decimal(str(n)).quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return n
    if isinstance(n, Decimal):
        return quantized
    if decimals <= 0:
        return int(quantized)
    return float(quantized)


def _floor(value: Any) -> int | None:
    n = _number(value)
    return None if n is None else math.floor(n)


def _ceil(value: Any) -> int | None:
    n = _number(value)
    return None if n is None else math.ceil(n)


def _numbers(args: tuple[Any, ...]) -> list[Any]:
    # min(a, b) and min([a, b]) are both accepted
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        args = tuple(args[0])
    return [n for n in (_number(a) for a in args) if n is not None]


def _min_val(*args: Any) -> Any:
    values = _numbers(args)
    return min(values) if values else None


def _max_val(*args: Any) -> Any:
    values = _numbers(args)
    return max(values) if values else None


def _sum(*args: Any) -> Any:
    return sum(_numbers(args))


# -----------------------------------------------------------------------------
# Collection Functions
# -----------------------------------------------------------------------------


def _contains(collection: Any, item: Any) -> bool:
    if collection is None:
        return False
    if isinstance(collection, str):
        return item is not None and str(item) in collection
    return item in collection


def _size(collection: Any) -> int:
    if collection is None:
        return 0
    return len(collection)


def _first(collection: Any) -> Any:
    return collection[0] if collection else None


def _last(collection: Any) -> Any:
    return collection[-1] if collection else None


# -----------------------------------------------------------------------------
# Logic Functions
# -----------------------------------------------------------------------------


def _coalesce(*args: Any) -> Any:
    """Return first non-null value."""
    for arg in args:
        if arg is not None:
            return arg
    return None


def _if_then(condition: Any, true_value: Any, false_value: Any = None) -> Any:
    return true_value if condition else false_value


def _p(name: str, type_: str, description: str, **kwargs: Any) -> FunctionParameter:
    return FunctionParameter(name, type_, description, **kwargs)


_S, _D, _M, _C, _L = (
    FunctionCategory.STRING,
    FunctionCategory.DATE,
    FunctionCategory.MATH,
    FunctionCategory.COLLECTION,
    FunctionCategory.LOGIC,
)

_BuiltinRow = tuple[
    str, str, FunctionCategory, list[FunctionParameter], str, Callable[..., Any], list[str]
]

_BUILTINS: list[_BuiltinRow] = [
    ("len", "Returns length of string or array", _S,
     [_p("value", "string|array", "The value to measure")], "number", _len,
     ["len(formValue.description) <= 500"]),
    ("isEmpty", "Returns true if value is null, blank string, or empty array", _S,
     [_p("value", "any", "The value to check")], "boolean", _is_empty,
     ["isEmpty(formValue.middleName)"]),
    ("concat", "Concatenates all arguments as strings, skipping nulls", _S,
     [_p("values", "string", "Strings to concatenate", variadic=True)], "string", _concat,
     ['concat(formValue.firstName, " ", formValue.lastName)']),
    ("trim", "Removes whitespace from both ends of a string", _S,
     [_p("value", "string", "The string to trim")], "string", _text(str.strip),
     ['trim(formValue.name) != ""']),
    ("upper", "Converts string to uppercase", _S,
     [_p("value", "string", "The string to convert")], "string", _text(str.upper),
     ['upper(formValue.countryCode) == "US"']),
    ("lower", "Converts string to lowercase", _S,
     [_p("value", "string", "The string to convert")], "string", _text(str.lower),
     ["lower(formValue.email)"]),
    ("matches", "Tests if string contains a match for the regex pattern", _S,
     [_p("value", "string", "The string to test"), _p("pattern", "string", "Regex pattern")],
     "boolean", _matches,
     ['matches(formValue.sku, "^[A-Z]{3}-[0-9]{4}$")']),
    ("startsWith", "Tests if string starts with prefix", _S,
     [_p("value", "string", "The string to test"), _p("prefix", "string", "Prefix to check for")],
     "boolean", lambda value, prefix: value is not None and str(value).startswith(prefix),
     ['startsWith(formValue.sku, "PRD-")']),
    ("endsWith", "Tests if string ends with suffix", _S,
     [_p("value", "string", "The string to test"), _p("suffix", "string", "Suffix to check for")],
     "boolean", lambda value, suffix: value is not None and str(value).endswith(suffix),
     ['endsWith(formValue.email, "@company.com")']),

    ("now", "Returns current datetime in UTC", _D, [], "datetime", _now,
     ["daysBetween(formValue.createdAt, now()) <= 30"]),
    ("today", "Returns today's date as an ISO string", _D, [], "date",
     lambda: date.today().isoformat(),
     ["formValue.startDate >= today()"]),
    ("date", "Parses an ISO date string into a date", _D,
     [_p("value", "string", "ISO date or datetime")], "date", _to_date,
     ['date(formValue.endDate) > date(formValue.startDate)']),
    ("daysBetween", "Returns number of days between two dates", _D,
     [_p("start", "date", "Start date"), _p("end", "date", "End date")], "number", _days_between,
     ["daysBetween(formValue.checkIn, formValue.checkOut)"]),
    ("addDays", "Adds days to a date (negative to subtract), returning an ISO date", _D,
     [_p("date", "date", "The date"), _p("days", "number", "Days to add")], "date", _add_days,
     ["addDays(formValue.startDate, 1)"]),
    ("year", "Extracts year from date", _D,
     [_p("date", "date", "The date")], "number", _date_part("year"),
     ["year(formValue.birthDate) < 2000"]),
    ("month", "Extracts month from date (1-12)", _D,
     [_p("date", "date", "The date")], "number", _date_part("month"),
     ["month(formValue.startDate) == 12"]),
    ("day", "Extracts day of month from date (1-31)", _D,
     [_p("date", "date", "The date")], "number", _date_part("day"),
     ["day(formValue.dueDate) <= 15"]),

    ("abs", "Returns absolute value", _M,
     [_p("value", "number", "The number")], "number", _abs,
     ["abs(formValue.balance) < 1000"]),
    ("round", "Rounds half up to the given decimal places", _M,
     [_p("value", "number", "The number"),
      _p("decimals", "number", "Decimal places", required=False, default=0)],
     "number", _round_num,
     ["round(formValue.subtotal * 0.1, 2)"]),
    ("floor", "Rounds down to nearest integer", _M,
     [_p("value", "number", "The number")], "number", _floor,
     ["floor(formValue.rating) >= 3"]),
    ("ceil", "Rounds up to nearest integer", _M,
     [_p("value", "number", "The number")], "number", _ceil,
     ["ceil(formValue.hours)"]),
    ("min", "Returns minimum value, ignoring nulls", _M,
     [_p("values", "number", "Numbers to compare", variadic=True)], "number", _min_val,
     ["min(formValue.price, formValue.maxPrice)"]),
    ("max", "Returns maximum value, ignoring nulls", _M,
     [_p("values", "number", "Numbers to compare", variadic=True)], "number", _max_val,
     ["max(formValue.quantity, 1)"]),
    ("sum", "Sums numbers or an array of numbers, ignoring nulls", _M,
     [_p("values", "number", "Numbers to add", variadic=True)], "number", _sum,
     ["sum(formValue.amounts)"]),
    ("number", "Parses a numeric input value", _M,
     [_p("value", "any", "The value to parse")], "number", _number,
     ["number(formValue.quantity) > 0"]),

    ("contains", "Checks if collection contains item", _C,
     [_p("collection", "array|string", "The collection"), _p("item", "any", "Item to find")],
     "boolean", _contains,
     ['contains(formValue.tags, "urgent")']),
    ("size", "Returns size of collection", _C,
     [_p("collection", "array|object", "The collection")], "number", _size,
     ["size(formValue.lineItems) > 0"]),
    ("first", "Returns first element of collection", _C,
     [_p("collection", "array", "The collection")], "any", _first,
     ["first(formValue.addresses)"]),
    ("last", "Returns last element of collection", _C,
     [_p("collection", "array", "The collection")], "any", _last,
     ["last(formValue.addresses)"]),

    ("coalesce", "Returns first non-null value", _L,
     [_p("values", "any", "Values to check", variadic=True)], "any", _coalesce,
     ['coalesce(formValue.nickname, formValue.firstName, "Unknown")']),
    ("if", "Returns trueValue if condition is true, else falseValue", _L,
     [_p("condition", "boolean", "The condition"),
      _p("trueValue", "any", "Value if true"),
      _p("falseValue", "any", "Value if false", required=False, default=None)],
     "any", _if_then,
     ['if(formValue.quantity > 100, "bulk", "standard")']),
]
