"""Observable per-field state."""

from dataclasses import dataclass, field
from typing import Any

from fieldlogic.validation.types import ValidationOutcome


@dataclass(frozen=True)
class FieldState:
    """Resolved state of one field instance.

    Attributes:
        path: Concrete path (`items.0.street`)
        value: Current value; None for buttons and layout containers
        hidden / disabled / readonly / required: Effective flags
        properties: Static props with property derivation overrides applied
        errors: Validation outcomes, empty while hidden or disabled
        messages: Resolved text for `errors`, in the same order
        pending: An async validator is queued or running
    """

    path: str
    value: Any = None
    hidden: bool = False
    disabled: bool = False
    readonly: bool = False
    required: bool = False
    properties: dict[str, Any] = field(default_factory=dict, hash=False)
    errors: tuple[ValidationOutcome, ...] = ()
    messages: tuple[str, ...] = ()
    pending: bool = False

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "value": self.value,
            "hidden": self.hidden,
            "disabled": self.disabled,
            "readonly": self.readonly,
            "required": self.required,
            "properties": self.properties,
            "errors": [e.to_dict() for e in self.errors],
            "messages": list(self.messages),
            "pending": self.pending,
        }
