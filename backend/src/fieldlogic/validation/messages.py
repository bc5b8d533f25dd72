"""Message resolution for validation outcomes.

Lookup order for an outcome's kind:
1. the field's `validationMessages`
2. the form's `defaultValidationMessages`
3. the built-in default for the kind, or text derived from the kind name

`{{name}}` placeholders are filled from the outcome params; unknown
placeholders are left as they are.
"""

import re
from collections.abc import Mapping
from typing import Any

from fieldlogic.validation.types import ValidationOutcome

DEFAULT_MESSAGES = {
    "required": "This field is required",
    "email": "Please enter a valid email address",
    "min": "Value must be at least {{min}}",
    "max": "Value must be at most {{max}}",
    "minLength": "Must be at least {{requiredLength}} characters",
    "maxLength": "Must be at most {{requiredLength}} characters",
    "pattern": "Invalid format",
    "custom": "Invalid value",
}

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def kind_to_text(kind: str) -> str:
    """`usernameTaken` -> `Username taken`."""
    words = _CAMEL.sub(" ", kind).replace("_", " ").split()
    if not words:
        return "Invalid value"
    text = " ".join(w.lower() for w in words)
    return text[0].upper() + text[1:]


def interpolate(template: str, params: Mapping[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        return str(params[name]) if name in params else match.group(0)

    return _PLACEHOLDER.sub(replace, template)


class MessageResolver:
    def __init__(self, defaults: Mapping[str, str] | None = None):
        self.defaults = dict(defaults or {})

    def resolve(
        self, outcome: ValidationOutcome, field_messages: Mapping[str, str] | None = None
    ) -> str:
        template = (field_messages or {}).get(outcome.kind)
        if template is None:
            template = self.defaults.get(outcome.kind)
        if template is None:
            template = DEFAULT_MESSAGES.get(outcome.kind) or kind_to_text(outcome.kind)
        return interpolate(template, outcome.params)
