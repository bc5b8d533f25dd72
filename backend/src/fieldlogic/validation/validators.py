"""Built-in field validators.

- required: Field must have a non-empty value
- email: Basic address format
- min/max: Numeric bounds
- minLength/maxLength: String (or list) length bounds
- pattern: Regex that must match the whole value

Each check returns a ValidationOutcome or None. Apart from `required`, the
checks are only run on non-empty values.
"""

import logging
import re
from typing import Any

from fieldlogic.validation.types import ValidationOutcome

logger = logging.getLogger(__name__)


# =============================================================================
# Format Patterns
# =============================================================================

# Email: Basic RFC 5322 compliant pattern
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
)


def is_empty(value: Any) -> bool:
    """Check if a value is considered empty."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, dict)) and len(value) == 0:
        return True
    return False


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Checks
# =============================================================================


def check_required(value: Any, path: str) -> ValidationOutcome | None:
    if is_empty(value):
        return ValidationOutcome("required", path)
    return None


def check_email(value: Any, path: str) -> ValidationOutcome | None:
    if isinstance(value, str) and not EMAIL_PATTERN.match(value):
        return ValidationOutcome("email", path)
    return None


def check_min(value: Any, bound: Any, path: str) -> ValidationOutcome | None:
    num_value, num_bound = _number(value), _number(bound)
    if num_value is None or num_bound is None:
        return None
    if num_value < num_bound:
        return ValidationOutcome("min", path, {"min": bound, "actual": value})
    return None


def check_max(value: Any, bound: Any, path: str) -> ValidationOutcome | None:
    num_value, num_bound = _number(value), _number(bound)
    if num_value is None or num_bound is None:
        return None
    if num_value > num_bound:
        return ValidationOutcome("max", path, {"max": bound, "actual": value})
    return None


def check_min_length(value: Any, bound: Any, path: str) -> ValidationOutcome | None:
    if not isinstance(value, (str, list)) or bound is None:
        return None
    if len(value) < int(bound):
        return ValidationOutcome(
            "minLength", path, {"requiredLength": int(bound), "actualLength": len(value)}
        )
    return None


def check_max_length(value: Any, bound: Any, path: str) -> ValidationOutcome | None:
    if not isinstance(value, (str, list)) or bound is None:
        return None
    if len(value) > int(bound):
        return ValidationOutcome(
            "maxLength", path, {"requiredLength": int(bound), "actualLength": len(value)}
        )
    return None


def check_pattern(value: Any, pattern: Any, path: str) -> ValidationOutcome | None:
    if pattern is None:
        return None
    text = value if isinstance(value, str) else str(value)
    try:
        matched = re.fullmatch(str(pattern), text) is not None
    except re.error:
        # Invalid regex in configuration - log this but don't fail the field
        logger.warning("Invalid pattern %r on '%s'", pattern, path)
        return None
    if not matched:
        return ValidationOutcome(
            "pattern", path, {"requiredPattern": str(pattern), "actualValue": value}
        )
    return None


BOUND_CHECKS = {
    "min": check_min,
    "max": check_max,
    "minLength": check_min_length,
    "maxLength": check_max_length,
    "pattern": check_pattern,
}
